"""Typed interfaces for rolling deployment responsibilities."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol


class DeploymentPhase(str, Enum):
    """Controller state machine phases."""

    IDLE = "idle"
    PLANNING = "planning"
    REPLACING = "replacing"
    VERIFYING = "verifying"
    DRAINING = "draining"
    COMPLETE = "complete"
    ABORTED = "aborted"
    SAFETY_VIOLATION = "safety_violation"


@dataclass(frozen=True)
class RuntimeInstance:
    """Running instance as reported by the instance runtime.

    Attributes:
        instance_id: Opaque runtime identifier.
        created_at: Creation timestamp used for plan ordering.
    """

    instance_id: str
    created_at: datetime


@dataclass(frozen=True)
class InstanceProbeResult:
    """Outcome of one readiness probe call.

    Attributes:
        instance_id: Probed instance.
        ready: True only when the instance reported it may receive traffic.
        status_code: HTTP status of the health response, None when unreachable.
        detail: Short diagnostic text.
    """

    instance_id: str
    ready: bool
    status_code: int | None = None
    detail: str = ""


@dataclass(frozen=True)
class DeploymentResult:
    """Result contract for one deployment run.

    Attributes:
        status: `success`, `completed_with_warnings`, `aborted`, `safety_violation`, or `failed`.
        image_tag: Deployed image tag.
        replaced_count: Number of old instances fully drained.
        final_checks: Per-instance results of the final verification pass.
        timeline: Structured stage events.
        error_code: Deterministic failure code, None on success.
        error_message: Failure detail, None on success.
    """

    status: str
    image_tag: str
    replaced_count: int
    final_checks: tuple[InstanceProbeResult, ...] = ()
    timeline: list[dict[str, object]] = field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None

    _EXIT_CODES = {
        "success": 0,
        "aborted": 1,
        "failed": 1,
        "safety_violation": 2,
        "completed_with_warnings": 3,
    }

    @property
    def exit_code(self) -> int:
        return self._EXIT_CODES.get(self.status, 1)


class InstanceHealthProbe(Protocol):
    """Port asking whether one specific running instance is ready."""

    async def probe_check(self, instance_id: str) -> InstanceProbeResult:
        """Probe one instance once.

        Args:
            instance_id: Instance to probe.

        Returns:
            InstanceProbeResult: Readiness outcome. Transport failures yield `ready=False`.

        Raises:
            RuntimeError: Raised when the probe cannot be executed at all.
        """


class InstanceRuntimePort(Protocol):
    """Port over the process supervisor that runs service instances."""

    def runtime_label(self) -> str:
        """Return a label of the deployment target for logs."""

    async def runtime_list_instances(self) -> list[RuntimeInstance]:
        """Return currently running instances of the service.

        Returns:
            list[RuntimeInstance]: Running instances in any order.

        Raises:
            InstanceRuntimeError: Raised when the runtime cannot be queried.
        """

    async def runtime_start_instance(self, image_tag: str) -> RuntimeInstance:
        """Start exactly one additional instance running `image_tag`.

        Args:
            image_tag: Image tag for the new instance.

        Returns:
            RuntimeInstance: The newly created instance.

        Raises:
            InstanceRuntimeError: Raised when the instance could not be started or identified.
        """

    async def runtime_stop_instance(self, instance_id: str, grace_seconds: int) -> None:
        """Gracefully stop and remove one instance.

        Args:
            instance_id: Instance to stop.
            grace_seconds: Grace period before forced termination.

        Returns:
            None: Instance is stopped as side effect.

        Raises:
            InstanceRuntimeError: Raised when the stop command fails.
        """
