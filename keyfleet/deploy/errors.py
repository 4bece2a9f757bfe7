"""Project-native typed exceptions for rolling deployment failures."""

from __future__ import annotations


class DeploymentError(RuntimeError):
    """Base exception for deployment-step failures.

    Attributes:
        instance_id: Instance the failing step was operating on, when known.
    """

    def __init__(self, message: str, instance_id: str | None = None):
        super().__init__(message)
        self.instance_id = instance_id


class HealthTimeoutError(DeploymentError, TimeoutError):
    """New instance did not report ready within the verify budget. Aborts the plan."""


class SafetyViolationError(DeploymentError):
    """Ready-instance count reached zero or would have. Never retried."""


class InstanceRuntimeError(DeploymentError):
    """Instance runtime command failed (start, stop, list, inspect)."""
