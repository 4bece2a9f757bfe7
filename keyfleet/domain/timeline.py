"""Shared timeline and clock helpers for audit and deployment diagnostics."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable


def domain_utc_now() -> datetime:
    """Return the current timezone-aware UTC timestamp.

    Returns:
        datetime: Current UTC time.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return datetime.now(timezone.utc)


def domain_build_stage_event(
    stage: str,
    status: str,
    details: dict[str, Any] | None = None,
    clock: Callable[[], datetime] = domain_utc_now,
) -> dict[str, object]:
    """Build one structured timeline event payload.

    Args:
        stage: Stage name, for example `planning` or `verify`.
        status: Stage status marker.
        details: Optional structured details object. Must never carry credential values.
        clock: Timestamp provider, overridable for deterministic tests.

    Returns:
        dict[str, object]: Structured timeline event.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    event_payload: dict[str, object] = {
        "stage": stage,
        "status": status,
        "at_utc": clock().isoformat(),
    }
    if details is not None:
        event_payload["details"] = details
    return event_payload
