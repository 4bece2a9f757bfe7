"""Project-native typed exceptions for secret store adapter failures."""

from __future__ import annotations


class StoreAdapterError(Exception):
    """Base exception for adapter-level secret store failures.

    Attributes:
        status_code: Optional upstream HTTP status code.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StoreTransientError(StoreAdapterError, ConnectionError):
    """Transport failure, timeout, or retryable upstream status."""


class AuthError(StoreAdapterError, RuntimeError):
    """Authentication with the secret store did not yield a usable token."""


class StoreAuthRejectedError(AuthError, PermissionError):
    """Definitive rejection of the machine identity. Never retried."""


class FetchError(StoreAdapterError, RuntimeError):
    """Authenticated bundle read did not yield a cacheable bundle."""


class StoreTokenRejectedError(FetchError, PermissionError):
    """Access token was refused by the store during a read."""


class StoreBundleInvalidError(FetchError, ValueError):
    """Bundle response is incomplete or malformed and must not be cached."""
