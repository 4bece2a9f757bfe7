"""Application bootstrap wiring for startup validation and dependency assembly."""

import logging
from dataclasses import dataclass

import httpx
import uvicorn
from fastapi import FastAPI

from keyfleet.adapters import VaultCredentialStoreAdapter
from keyfleet.api import create_api_application
from keyfleet.config import AppSettings, DeploySettings
from keyfleet.deploy import (
    DeploymentControllerConfig,
    DockerComposeRuntime,
    HttpInstanceHealthProbe,
    RollingDeploymentController,
)
from keyfleet.domain import MachineIdentity
from keyfleet.secrets import InMemoryAuditLog, ReadinessGate, RotationPoller, SecretCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceComponents:
    """Wired credential lifecycle components for one service process."""

    store: VaultCredentialStoreAdapter
    cache: SecretCache
    readiness_gate: ReadinessGate
    poller: RotationPoller
    audit_log: InMemoryAuditLog
    application: FastAPI


@dataclass(frozen=True)
class DeployComponents:
    """Wired rolling deployment components for one deploy invocation."""

    runtime: DockerComposeRuntime
    probe: HttpInstanceHealthProbe
    controller: RollingDeploymentController


def bootstrap_create_service(
    settings: AppSettings,
    store_transport: httpx.AsyncBaseTransport | None = None,
) -> ServiceComponents:
    """Assemble the credential lifecycle components and the FastAPI application.

    Args:
        settings: Validated application settings.
        store_transport: Optional httpx transport for the secret store client.

    Returns:
        ServiceComponents: Fully wired service components.

    Raises:
        ValueError: Raised when settings produce invalid component config.
    """

    identity = MachineIdentity(public_id=settings.vault_role_id, private_secret=settings.vault_secret_id)
    audit_log = InMemoryAuditLog(instance_id=settings.instance_id, max_entries=settings.audit_max_entries)
    store = VaultCredentialStoreAdapter(
        identity=identity,
        audit_recorder=audit_log,
        vault_addr=settings.vault_addr,
        approle_mount=settings.vault_approle_mount,
        kv_mount=settings.vault_kv_mount,
        secret_path=settings.vault_secret_path,
        required_keys=tuple(settings.store_required_keys),
        actor_id=settings.instance_id,
        auth_retry_attempts=settings.store_auth_retry_attempts,
        fetch_retry_attempts=settings.store_fetch_retry_attempts,
        retry_backoff_base_seconds=settings.store_backoff_base_seconds,
        retry_max_backoff_seconds=settings.store_backoff_max_seconds,
        jitter_min_multiplier=settings.store_jitter_min_multiplier,
        jitter_max_multiplier=settings.store_jitter_max_multiplier,
        request_timeout_seconds=settings.store_request_timeout_seconds,
        transport=store_transport,
    )
    cache = SecretCache()
    readiness_gate = ReadinessGate(cache=cache)
    poller = RotationPoller(
        store=store,
        cache=cache,
        audit_recorder=audit_log,
        refresh_interval_seconds=settings.refresh_interval_seconds,
        startup_retry_attempts=settings.startup_retry_attempts,
        startup_backoff_base_seconds=settings.startup_backoff_base_seconds,
    )
    application = create_api_application(
        settings=settings,
        cache=cache,
        readiness_gate=readiness_gate,
        poller=poller,
        audit_log=audit_log,
    )
    return ServiceComponents(
        store=store,
        cache=cache,
        readiness_gate=readiness_gate,
        poller=poller,
        audit_log=audit_log,
        application=application,
    )


async def bootstrap_serve(settings: AppSettings, components: ServiceComponents) -> None:
    """Load credentials, start rotation polling, then serve HTTP until shutdown.

    The server only binds after the first bundle is cached, so an instance
    never accepts traffic without credentials.

    Args:
        settings: Validated application settings.
        components: Wired service components.

    Returns:
        None: Returns after the server shuts down.

    Raises:
        StartupLoadError: Raised when the first credential load fails.
    """

    try:
        initial_result = await components.poller.poller_load_initial()
        logger.info(
            "Credentials loaded: version=%s groups=%s readiness=%s",
            initial_result.version,
            ",".join(components.readiness_gate.readiness_available_groups()) or "none",
            components.readiness_gate.readiness_status().value,
        )
        components.poller.poller_start()
        server = uvicorn.Server(
            uvicorn.Config(
                components.application,
                host=settings.application_host,
                port=settings.application_port,
                log_config=None,
            )
        )
        logger.info(
            "Service %s listening on %s:%s",
            settings.instance_id,
            settings.application_host,
            settings.application_port,
        )
        await server.serve()
    finally:
        await components.poller.poller_stop()
        await components.store.store_close()


def bootstrap_create_deploy(settings: DeploySettings) -> DeployComponents:
    """Build the rolling deployment controller for the Compose runtime.

    Args:
        settings: Validated deploy settings.

    Returns:
        DeployComponents: Runtime, probe and controller wired together.

    Raises:
        ValueError: Raised when settings produce invalid component config.
    """

    runtime = DockerComposeRuntime(
        compose_file=settings.deploy_compose_file,
        service_name=settings.deploy_service_name,
        image_name=settings.deploy_image_name,
    )
    probe = HttpInstanceHealthProbe(
        address_resolver=runtime.runtime_instance_address,
        port=settings.deploy_service_port,
        request_timeout_seconds=settings.deploy_probe_timeout_seconds,
    )
    controller = RollingDeploymentController(
        runtime=runtime,
        probe=probe,
        config=DeploymentControllerConfig(
            replicas=settings.deploy_replicas,
            health_timeout_seconds=settings.deploy_health_timeout_seconds,
            health_interval_seconds=settings.deploy_health_interval_seconds,
            probe_timeout_seconds=settings.deploy_probe_timeout_seconds,
            stop_grace_seconds=settings.deploy_stop_grace_seconds,
            step_pause_seconds=settings.deploy_step_pause_seconds,
        ),
    )
    return DeployComponents(runtime=runtime, probe=probe, controller=controller)
