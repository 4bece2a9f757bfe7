"""Bounded in-memory audit log for secret access events.

Every record carries metadata only: timestamp, instance identity, event type,
store path, outcome, and optional version or error details. Credential values
are never recorded. Each record is also emitted as one JSON line on the
`keyfleet.audit` logger so container log collectors pick it up.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from datetime import datetime
from typing import Callable

from keyfleet.adapters import AuditRecorderPort
from keyfleet.domain import domain_utc_now

audit_logger = logging.getLogger("keyfleet.audit")


class InMemoryAuditLog(AuditRecorderPort):
    """Ring buffer of audit records with a JSON-line log mirror."""

    def __init__(
        self,
        instance_id: str,
        max_entries: int = 1000,
        clock: Callable[[], datetime] = domain_utc_now,
    ):
        """Initialize the audit log.

        Args:
            instance_id: Identity stamped on every record.
            max_entries: Buffer capacity; oldest records are evicted first.
            clock: UTC timestamp provider.

        Raises:
            ValueError: Raised when max_entries is not positive.
        """

        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._instance_id = instance_id
        self._entries: deque[dict[str, object]] = deque(maxlen=max_entries)
        self._total_count = 0
        self._clock = clock
        self._lock = threading.Lock()

    def audit_instance_id(self) -> str:
        return self._instance_id

    def audit_record(self, event: str, path: str, success: bool, details: dict[str, object] | None = None) -> None:
        """Append one record and mirror it to the audit logger.

        Args:
            event: Audit event type.
            path: Store path involved.
            success: Outcome flag.
            details: Optional metadata. Must never contain credential values.

        Returns:
            None: Record is stored as side effect.

        Raises:
            RuntimeError: This implementation does not raise runtime errors.
        """

        entry: dict[str, object] = {
            "timestamp": self._clock().isoformat(),
            "instance_id": self._instance_id,
            "event": event,
            "path": path,
            "success": success,
        }
        if details:
            entry.update(details)

        with self._lock:
            self._entries.append(entry)
            self._total_count += 1

        audit_logger.info(json.dumps({"audit": True, **entry}, default=str))

    def audit_recent_entries(self, limit: int = 100) -> list[dict[str, object]]:
        """Return up to `limit` most recent records, oldest first.

        Args:
            limit: Maximum number of records.

        Returns:
            list[dict[str, object]]: Copies of the recent records.

        Raises:
            ValueError: Raised when limit is not positive.
        """

        if limit < 1:
            raise ValueError("limit must be >= 1")
        with self._lock:
            recent_entries = list(self._entries)[-limit:]
        return [dict(entry) for entry in recent_entries]

    def audit_total_count(self) -> int:
        """Return the number of records emitted since process start."""

        with self._lock:
            return self._total_count
