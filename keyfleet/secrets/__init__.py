"""Credential lifecycle package: cache, rotation poller, readiness gate, audit log."""

from .audit import InMemoryAuditLog
from .cache import SecretCache
from .interfaces import RefreshError, RefreshResult, StartupLoadError
from .poller import RotationPoller
from .readiness import ReadinessGate

__all__ = [
    "InMemoryAuditLog",
    "ReadinessGate",
    "RefreshError",
    "RefreshResult",
    "RotationPoller",
    "SecretCache",
    "StartupLoadError",
]
