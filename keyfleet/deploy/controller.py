"""Start-first rolling deployment controller with fleet-floor enforcement."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from keyfleet.domain import InstanceRecord, InstanceState, domain_build_stage_event

from .errors import DeploymentError, HealthTimeoutError, InstanceRuntimeError, SafetyViolationError
from .interfaces import (
    DeploymentPhase,
    DeploymentResult,
    InstanceHealthProbe,
    InstanceProbeResult,
    InstanceRuntimePort,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentControllerConfig:
    """Configuration values for one rolling deployment.

    Attributes:
        replicas: Fixed replica count, used when bootstrapping an empty fleet.
        health_timeout_seconds: Verify budget for each new instance.
        health_interval_seconds: Delay between probe attempts.
        probe_timeout_seconds: Upper bound on one probe call.
        stop_grace_seconds: Graceful stop period for retired instances.
        step_pause_seconds: Pause between replacement steps.
    """

    replicas: int = 3
    health_timeout_seconds: float = 60.0
    health_interval_seconds: float = 3.0
    probe_timeout_seconds: float = 2.0
    stop_grace_seconds: int = 30
    step_pause_seconds: float = 5.0


class RollingDeploymentController:
    """Replaces every captured instance one at a time, new before old.

    The controller owns an explicit `InstanceRecord` per instance. Old
    instances are only ever retired after their replacement was verified
    ready, a floor check runs before every destructive action, and the live
    ready count is recomputed from the runtime after every drain.
    """

    def __init__(
        self,
        runtime: InstanceRuntimePort,
        probe: InstanceHealthProbe,
        config: DeploymentControllerConfig,
    ):
        """Initialize controller dependencies.

        Args:
            runtime: Instance lifecycle port.
            probe: Readiness probe port.
            config: Deployment configuration.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies or config values are invalid.
        """

        if runtime is None:
            raise ValueError("runtime must not be None")
        if probe is None:
            raise ValueError("probe must not be None")
        if config.replicas < 1:
            raise ValueError("config.replicas must be >= 1")
        if config.health_timeout_seconds <= 0:
            raise ValueError("config.health_timeout_seconds must be > 0")
        if config.health_interval_seconds <= 0:
            raise ValueError("config.health_interval_seconds must be > 0")
        if config.probe_timeout_seconds <= 0:
            raise ValueError("config.probe_timeout_seconds must be > 0")
        if config.stop_grace_seconds < 0:
            raise ValueError("config.stop_grace_seconds must be >= 0")
        if config.step_pause_seconds < 0:
            raise ValueError("config.step_pause_seconds must be >= 0")

        self._runtime = runtime
        self._probe = probe
        self._config = config
        self._phase = DeploymentPhase.IDLE
        self._step_index: int | None = None
        self._records: dict[str, InstanceRecord] = {}
        self._stopped_records: list[InstanceRecord] = []

    def deploy_phase(self) -> tuple[DeploymentPhase, int | None]:
        """Return the current phase and zero-based step index."""

        return self._phase, self._step_index

    def deploy_records(self) -> tuple[InstanceRecord, ...]:
        """Return fleet bookkeeping for live instances, in plan order."""

        return tuple(self._records.values())

    def deploy_ready_count(self) -> int:
        """Return the number of bookkept instances in READY state."""

        return sum(1 for record in self._records.values() if record.state is InstanceState.READY)

    async def deploy_execute(self, image_tag: str) -> DeploymentResult:
        """Run one full rolling deployment to `image_tag`.

        Args:
            image_tag: Image tag to roll out.

        Returns:
            DeploymentResult: Final outcome with timeline and per-instance final checks.

        Raises:
            ValueError: Raised when image_tag is blank.
            asyncio.CancelledError: Propagated after in-flight drains completed.
        """

        normalized_image_tag = image_tag.strip()
        if not normalized_image_tag:
            raise ValueError("image_tag must not be blank")

        timeline: list[dict[str, object]] = [
            domain_build_stage_event(stage="deployment", status="started", details={"image_tag": normalized_image_tag})
        ]
        replaced_count = 0
        self._records = {}
        self._stopped_records = []

        try:
            self._deploy_set_phase(DeploymentPhase.PLANNING, None)
            plan = await self._deploy_plan(timeline)

            if not plan:
                await self._deploy_bootstrap_fleet(normalized_image_tag, timeline)
            else:
                for step_index, old_record in enumerate(plan):
                    logger.info(
                        "--- Updating replica %s/%s (old=%s) ---", step_index + 1, len(plan), old_record.instance_id
                    )
                    await self._deploy_replace_one(step_index, old_record, normalized_image_tag, timeline)
                    replaced_count += 1
                    if step_index + 1 < len(plan) and self._config.step_pause_seconds > 0:
                        logger.info("Waiting %ss before next replica", self._config.step_pause_seconds)
                        await asyncio.sleep(self._config.step_pause_seconds)

            self._deploy_set_phase(DeploymentPhase.COMPLETE, None)
            final_checks = await self._deploy_final_verification(timeline)
        except HealthTimeoutError as error:
            return self._deploy_failure_result(
                DeploymentPhase.ABORTED,
                "aborted",
                "DEPLOY_HEALTH_TIMEOUT",
                error,
                normalized_image_tag,
                replaced_count,
                timeline,
            )
        except SafetyViolationError as error:
            logger.critical("SAFETY VIOLATION: %s. Operator intervention required.", error)
            return self._deploy_failure_result(
                DeploymentPhase.SAFETY_VIOLATION,
                "safety_violation",
                "DEPLOY_SAFETY_VIOLATION",
                error,
                normalized_image_tag,
                replaced_count,
                timeline,
            )
        except InstanceRuntimeError as error:
            return self._deploy_failure_result(
                DeploymentPhase.ABORTED,
                "aborted",
                "DEPLOY_RUNTIME_ERROR",
                error,
                normalized_image_tag,
                replaced_count,
                timeline,
            )
        except (DeploymentError, ConnectionError, ValueError, RuntimeError) as error:
            return self._deploy_failure_result(
                DeploymentPhase.ABORTED,
                "failed",
                "DEPLOY_UNEXPECTED_ERROR",
                error,
                normalized_image_tag,
                replaced_count,
                timeline,
            )
        except asyncio.CancelledError:
            logger.error("Deployment cancelled during %s", self._phase.value)
            self._deploy_set_phase(DeploymentPhase.ABORTED, self._step_index)
            raise

        failed_checks = [check for check in final_checks if not check.ready]
        status = "completed_with_warnings" if failed_checks else "success"
        timeline.append(
            domain_build_stage_event(
                stage="deployment",
                status=status,
                details={
                    "replaced_count": replaced_count,
                    "live_instances": len(final_checks),
                    "health_failures": len(failed_checks),
                },
            )
        )
        logger.info(
            "DEPLOYMENT COMPLETE (image_tag=%s, replicas_running=%s, health_failures=%s)",
            normalized_image_tag,
            len(final_checks),
            len(failed_checks),
        )
        self._deploy_set_phase(DeploymentPhase.IDLE, None)
        return DeploymentResult(
            status=status,
            image_tag=normalized_image_tag,
            replaced_count=replaced_count,
            final_checks=tuple(final_checks),
            timeline=timeline,
        )

    async def _deploy_plan(self, timeline: list[dict[str, object]]) -> list[InstanceRecord]:
        """Capture the current fleet as the ordered list of instances to replace.

        Args:
            timeline: Mutable stage timeline.

        Returns:
            list[InstanceRecord]: Old instances, oldest first, ties broken by id.

        Raises:
            InstanceRuntimeError: Raised when the runtime cannot be listed.
        """

        running_instances = await self._runtime.runtime_list_instances()
        ordered_instances = sorted(running_instances, key=lambda item: (item.created_at, item.instance_id))
        plan = [
            InstanceRecord(instance_id=item.instance_id, created_at=item.created_at, state=InstanceState.READY)
            for item in ordered_instances
        ]
        self._records = {record.instance_id: record for record in plan}

        logger.info("Captured %s existing instance(s) on %s", len(plan), self._runtime.runtime_label())
        for record in plan:
            logger.info("  - %s (created_at=%s)", record.instance_id, record.created_at.isoformat())
        if plan and len(plan) != self._config.replicas:
            logger.warning("Captured %s instance(s) but %s replicas are configured", len(plan), self._config.replicas)

        timeline.append(
            domain_build_stage_event(
                stage="plan",
                status="completed",
                details={"old_instances": [record.instance_id for record in plan]},
            )
        )
        return plan

    async def _deploy_bootstrap_fleet(self, image_tag: str, timeline: list[dict[str, object]]) -> None:
        """Start and verify `replicas` instances when nothing is running yet."""

        logger.info("No running instances found. Starting %s replica(s)", self._config.replicas)
        for step_index in range(self._config.replicas):
            new_record = await self._deploy_start_and_verify(step_index, image_tag, timeline)
            logger.info(
                "Bootstrap replica %s/%s ready: %s", step_index + 1, self._config.replicas, new_record.instance_id
            )

    async def _deploy_replace_one(
        self,
        step_index: int,
        old_record: InstanceRecord,
        image_tag: str,
        timeline: list[dict[str, object]],
    ) -> None:
        """Run Replacing, Verifying, and Draining for one captured instance.

        Args:
            step_index: Zero-based plan step.
            old_record: Instance to retire.
            image_tag: Image tag of the replacement.
            timeline: Mutable stage timeline.

        Returns:
            None: Bookkeeping and runtime are updated as side effects.

        Raises:
            HealthTimeoutError: Raised when the replacement never became ready.
            SafetyViolationError: Raised when the ready count is or would become zero.
            InstanceRuntimeError: Raised when a runtime command fails.
        """

        new_record = await self._deploy_start_and_verify(step_index, image_tag, timeline)

        self._deploy_set_phase(DeploymentPhase.DRAINING, step_index)
        other_ready_count = await self._deploy_live_ready_count(excluded_instance_id=old_record.instance_id)
        if other_ready_count == 0:
            timeline.append(
                domain_build_stage_event(
                    stage="safety_check",
                    status="failed",
                    details={"step": step_index + 1, "other_ready_count": 0, "old_instance": old_record.instance_id},
                )
            )
            raise SafetyViolationError(
                f"refusing to stop {old_record.instance_id}: no other instance is ready",
                instance_id=old_record.instance_id,
            )

        old_record.record_transition(InstanceState.RETIRING)
        logger.info("Stopping old instance %s (grace=%ss)", old_record.instance_id, self._config.stop_grace_seconds)
        drain_task = asyncio.ensure_future(self._deploy_drain(old_record))
        try:
            await asyncio.shield(drain_task)
        except asyncio.CancelledError:
            # a started stop is never rolled back; let it finish before propagating
            await drain_task
            raise
        timeline.append(
            domain_build_stage_event(
                stage="drain",
                status="completed",
                details={
                    "step": step_index + 1,
                    "old_instance": old_record.instance_id,
                    "new_instance": new_record.instance_id,
                },
            )
        )

        live_ready_count = await self._deploy_live_ready_count()
        timeline.append(
            domain_build_stage_event(
                stage="safety_check",
                status="completed" if live_ready_count > 0 else "failed",
                details={"step": step_index + 1, "live_ready_count": live_ready_count},
            )
        )
        logger.info("Ready instances after step %s: %s", step_index + 1, live_ready_count)
        if live_ready_count == 0:
            raise SafetyViolationError(
                f"0 ready instances after removing {old_record.instance_id}",
                instance_id=old_record.instance_id,
            )

    async def _deploy_start_and_verify(
        self,
        step_index: int,
        image_tag: str,
        timeline: list[dict[str, object]],
    ) -> InstanceRecord:
        """Start one new instance and wait until the probe confirms it ready.

        Args:
            step_index: Zero-based plan step.
            image_tag: Image tag to start.
            timeline: Mutable stage timeline.

        Returns:
            InstanceRecord: New record in READY state.

        Raises:
            HealthTimeoutError: Raised when the instance never became ready; it is stopped first.
            InstanceRuntimeError: Raised when the instance could not be started.
        """

        self._deploy_set_phase(DeploymentPhase.REPLACING, step_index)
        started_instance = await self._runtime.runtime_start_instance(image_tag)
        new_record = InstanceRecord(instance_id=started_instance.instance_id, created_at=started_instance.created_at)
        self._records[new_record.instance_id] = new_record
        logger.info("New instance started: %s", new_record.instance_id)
        timeline.append(
            domain_build_stage_event(
                stage="replace",
                status="completed",
                details={"step": step_index + 1, "new_instance": new_record.instance_id},
            )
        )

        self._deploy_set_phase(DeploymentPhase.VERIFYING, step_index)
        try:
            elapsed_seconds = await self._deploy_wait_ready(new_record.instance_id)
        except (HealthTimeoutError, asyncio.CancelledError):
            await self._deploy_discard_unverified(new_record)
            timeline.append(
                domain_build_stage_event(
                    stage="verify",
                    status="failed",
                    details={"step": step_index + 1, "new_instance": new_record.instance_id},
                )
            )
            raise

        new_record.record_transition(InstanceState.READY)
        timeline.append(
            domain_build_stage_event(
                stage="verify",
                status="completed",
                details={
                    "step": step_index + 1,
                    "new_instance": new_record.instance_id,
                    "elapsed_seconds": round(elapsed_seconds, 3),
                },
            )
        )
        return new_record

    async def _deploy_wait_ready(self, instance_id: str) -> float:
        """Poll the probe until ready or the verify budget elapses.

        Args:
            instance_id: Instance to wait for.

        Returns:
            float: Seconds elapsed until the instance reported ready.

        Raises:
            HealthTimeoutError: Raised when the budget elapsed without a ready result.
        """

        logger.info("Waiting for instance %s to become ready", instance_id)
        started_at = time.monotonic()
        try:
            async with asyncio.timeout(self._config.health_timeout_seconds):
                while True:
                    probe_result = await self._deploy_probe_once(instance_id)
                    elapsed_seconds = time.monotonic() - started_at
                    if probe_result.ready:
                        logger.info("Instance %s is ready (%.1fs elapsed)", instance_id, elapsed_seconds)
                        return elapsed_seconds
                    logger.info(
                        "  ... waiting (%.1fs / %ss) current state: %s",
                        elapsed_seconds,
                        self._config.health_timeout_seconds,
                        probe_result.detail or probe_result.status_code,
                    )
                    await asyncio.sleep(self._config.health_interval_seconds)
        except TimeoutError as error:
            raise HealthTimeoutError(
                f"timed out waiting for {instance_id} to become ready after {self._config.health_timeout_seconds}s",
                instance_id=instance_id,
            ) from error

    async def _deploy_probe_once(self, instance_id: str) -> InstanceProbeResult:
        """Run one probe call bounded by its own timeout."""

        try:
            return await asyncio.wait_for(
                self._probe.probe_check(instance_id),
                timeout=self._config.probe_timeout_seconds,
            )
        except TimeoutError:
            return InstanceProbeResult(instance_id=instance_id, ready=False, detail="probe timed out")

    async def _deploy_discard_unverified(self, record: InstanceRecord) -> None:
        """Best-effort stop of a replacement that never became ready."""

        logger.warning("Stopping unverified instance %s", record.instance_id)
        try:
            await self._runtime.runtime_stop_instance(record.instance_id, self._config.stop_grace_seconds)
        except InstanceRuntimeError as error:
            logger.error("Could not stop unverified instance %s: %s", record.instance_id, error)
        record.record_transition(InstanceState.STOPPED)
        self._records.pop(record.instance_id, None)
        self._stopped_records.append(record)

    async def _deploy_drain(self, record: InstanceRecord) -> None:
        await self._runtime.runtime_stop_instance(record.instance_id, self._config.stop_grace_seconds)
        record.record_transition(InstanceState.STOPPED)
        self._records.pop(record.instance_id, None)
        self._stopped_records.append(record)
        logger.info("Old instance %s stopped and removed", record.instance_id)

    async def _deploy_live_ready_count(self, excluded_instance_id: str | None = None) -> int:
        """Recompute ready capacity from the runtime, independent of bookkeeping.

        Args:
            excluded_instance_id: Instance left out of the count, such as the one about to be stopped.

        Returns:
            int: Number of listed instances whose fresh probe reported ready.
        """

        running_instances = await self._runtime.runtime_list_instances()
        probe_results = await asyncio.gather(
            *(
                self._deploy_probe_once(instance.instance_id)
                for instance in running_instances
                if instance.instance_id != excluded_instance_id
            )
        )
        return sum(1 for result in probe_results if result.ready)

    async def _deploy_final_verification(self, timeline: list[dict[str, object]]) -> list[InstanceProbeResult]:
        """Probe every instance the runtime currently lists and report per-instance outcomes."""

        running_instances = await self._runtime.runtime_list_instances()
        ordered_instances = sorted(running_instances, key=lambda item: (item.created_at, item.instance_id))
        logger.info("Post-deployment verification of %s instance(s)", len(ordered_instances))
        final_checks: list[InstanceProbeResult] = []
        for instance in ordered_instances:
            instance_id = instance.instance_id
            probe_result = await self._deploy_probe_once(instance_id)
            final_checks.append(probe_result)
            if probe_result.ready:
                logger.info("  Instance %s: /health -> %s OK", instance_id, probe_result.status_code)
            else:
                logger.warning(
                    "  WARNING: Instance %s: /health -> %s %s",
                    instance_id,
                    probe_result.status_code,
                    probe_result.detail,
                )
        timeline.append(
            domain_build_stage_event(
                stage="final_verification",
                status="completed",
                details={
                    "checked": [check.instance_id for check in final_checks],
                    "failed": [check.instance_id for check in final_checks if not check.ready],
                },
            )
        )
        return final_checks

    def _deploy_set_phase(self, phase: DeploymentPhase, step_index: int | None) -> None:
        self._phase = phase
        self._step_index = step_index
        logger.debug("Deployment phase -> %s (step=%s)", phase.value, step_index)

    def _deploy_failure_result(
        self,
        phase: DeploymentPhase,
        status: str,
        error_code: str,
        error: Exception,
        image_tag: str,
        replaced_count: int,
        timeline: list[dict[str, object]],
    ) -> DeploymentResult:
        """Finalize a failed run with a deterministic error payload.

        Args:
            phase: Terminal phase to enter.
            status: Result status.
            error_code: Deterministic failure code.
            error: Caught exception.
            image_tag: Image tag being deployed.
            replaced_count: Steps fully completed before the failure.
            timeline: Mutable stage timeline.

        Returns:
            DeploymentResult: Failed deployment result.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        failed_step = self._step_index
        self._deploy_set_phase(phase, failed_step)
        step_label = None if failed_step is None else failed_step + 1
        logger.error("ERROR: deployment %s at step %s: %s", status, step_label, error)
        timeline.append(
            domain_build_stage_event(
                stage="deployment",
                status=status,
                details={
                    "error_code": error_code,
                    "error_type": type(error).__name__,
                    "error_message": str(error),
                    "replaced_count": replaced_count,
                    "live_instances": [record.instance_id for record in self._records.values()],
                },
            )
        )
        return DeploymentResult(
            status=status,
            image_tag=image_tag,
            replaced_count=replaced_count,
            timeline=timeline,
            error_code=error_code,
            error_message=str(error),
        )
