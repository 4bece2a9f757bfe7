"""FastAPI application factory for the credential-aware service surface.

The application only exposes operational endpoints; the business logic that
consumes credentials lives elsewhere and reads them through the secret cache.
"""

from fastapi import FastAPI

from keyfleet.config import AppSettings
from keyfleet.secrets import InMemoryAuditLog, ReadinessGate, RotationPoller, SecretCache

from .routers import api_create_admin_router, api_create_audit_router, api_create_health_router


def create_api_application(
    settings: AppSettings,
    cache: SecretCache,
    readiness_gate: ReadinessGate,
    poller: RotationPoller,
    audit_log: InMemoryAuditLog,
) -> FastAPI:
    """Create the FastAPI application instance for the service.

    Args:
        settings: Validated application settings used for runtime metadata.
        cache: Secret cache backing readiness and version reporting.
        readiness_gate: Readiness gate for health endpoints.
        poller: Rotation poller for the manual refresh endpoint.
        audit_log: Audit log for the audit endpoint.

    Returns:
        FastAPI: Framework application instance.

    Raises:
        ValueError: Raised when dependencies are invalid.
    """

    application = FastAPI(title="keyfleet")

    @application.get("/", tags=["foundation"])
    def foundation_index() -> dict[str, str]:
        return {
            "service": "keyfleet",
            "environment": settings.environment_name,
            "instance_id": settings.instance_id,
        }

    application.include_router(
        api_create_health_router(
            readiness_gate=readiness_gate,
            cache=cache,
            degraded_serves_traffic=settings.health_degraded_serves_traffic,
        )
    )
    application.include_router(api_create_admin_router(poller=poller))
    application.include_router(api_create_audit_router(audit_log=audit_log))

    return application
