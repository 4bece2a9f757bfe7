"""Rolling deployment package: controller, readiness probe, instance runtime."""

from .controller import DeploymentControllerConfig, RollingDeploymentController
from .docker_runtime import DockerComposeRuntime
from .errors import DeploymentError, HealthTimeoutError, InstanceRuntimeError, SafetyViolationError
from .http_probe import HttpInstanceHealthProbe
from .interfaces import (
    DeploymentPhase,
    DeploymentResult,
    InstanceHealthProbe,
    InstanceProbeResult,
    InstanceRuntimePort,
    RuntimeInstance,
)

__all__ = [
    "DeploymentControllerConfig",
    "DeploymentError",
    "DeploymentPhase",
    "DeploymentResult",
    "DockerComposeRuntime",
    "HealthTimeoutError",
    "HttpInstanceHealthProbe",
    "InstanceHealthProbe",
    "InstanceProbeResult",
    "InstanceRuntimeError",
    "InstanceRuntimePort",
    "RollingDeploymentController",
    "RuntimeInstance",
    "SafetyViolationError",
]
