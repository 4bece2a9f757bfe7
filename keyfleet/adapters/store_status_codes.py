"""Canonical secret store HTTP status semantics for adapter-layer routing."""

from __future__ import annotations

from enum import Enum
from typing import Final


class StoreStatusCode(int, Enum):
    """HTTP status codes with defined meaning on the secret store API."""

    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    RATE_LIMITED = 429
    INTERNAL_ERROR = 500
    UPSTREAM_ERROR = 502
    SEALED_OR_MAINTENANCE = 503
    GATEWAY_TIMEOUT = 504


STORE_STATUS_DEFAULT_MESSAGES: Final[dict[int, str]] = {
    StoreStatusCode.BAD_REQUEST.value: "Invalid request, missing or invalid data.",
    StoreStatusCode.UNAUTHORIZED.value: "Authentication details are missing or invalid.",
    StoreStatusCode.FORBIDDEN.value: "Permission denied for the supplied credentials.",
    StoreStatusCode.NOT_FOUND.value: "Invalid path or no data stored at path.",
    StoreStatusCode.RATE_LIMITED.value: "Too many requests. Please try again shortly.",
    StoreStatusCode.INTERNAL_ERROR.value: "Internal server error.",
    StoreStatusCode.UPSTREAM_ERROR.value: "Upstream dependency of the store returned an error.",
    StoreStatusCode.SEALED_OR_MAINTENANCE.value: "Store is down for maintenance or is currently sealed.",
    StoreStatusCode.GATEWAY_TIMEOUT.value: "Store gateway timed out.",
}

STORE_RETRYABLE_STATUS_CODES: Final[frozenset[int]] = frozenset(
    {
        StoreStatusCode.RATE_LIMITED.value,
        StoreStatusCode.INTERNAL_ERROR.value,
        StoreStatusCode.UPSTREAM_ERROR.value,
        StoreStatusCode.SEALED_OR_MAINTENANCE.value,
        StoreStatusCode.GATEWAY_TIMEOUT.value,
    }
)

STORE_REJECTION_STATUS_CODES: Final[frozenset[int]] = frozenset(
    {
        StoreStatusCode.BAD_REQUEST.value,
        StoreStatusCode.UNAUTHORIZED.value,
        StoreStatusCode.FORBIDDEN.value,
    }
)


def store_status_default_message(status_code: int, fallback_message: str) -> str:
    """Return canonical default message for a store status code.

    Args:
        status_code: Upstream HTTP status code.
        fallback_message: Fallback message when code has no canonical meaning.

    Returns:
        str: Canonical message for known code, else provided fallback message.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return STORE_STATUS_DEFAULT_MESSAGES.get(status_code, fallback_message)


def store_status_is_retryable(status_code: int) -> bool:
    """Return whether a failed request with `status_code` may be retried.

    Args:
        status_code: Upstream HTTP status code.

    Returns:
        bool: True for transient upstream conditions.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return status_code in STORE_RETRYABLE_STATUS_CODES
