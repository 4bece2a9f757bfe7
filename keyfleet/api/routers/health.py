"""Health and readiness router derived from the readiness gate."""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from keyfleet.domain import ReadinessStatus
from keyfleet.secrets import ReadinessGate, SecretCache


def api_create_health_router(
    readiness_gate: ReadinessGate,
    cache: SecretCache,
    degraded_serves_traffic: bool = False,
) -> APIRouter:
    """Create health-check router exposing `/health` and `/ready`.

    Args:
        readiness_gate: Source of truth for readiness.
        cache: Secret cache, read only for the version stamp.
        degraded_serves_traffic: Whether a degraded instance answers 200.

    Returns:
        APIRouter: Router exposing health endpoints.

    Raises:
        ValueError: Raised when dependencies are invalid.
    """

    if readiness_gate is None:
        raise ValueError("readiness_gate must not be None")
    if cache is None:
        raise ValueError("cache must not be None")

    router = APIRouter(tags=["health"])
    started_at = time.monotonic()

    @router.get("/health")
    def api_health_status() -> JSONResponse:
        """Return readiness-gated health for load balancers and the deploy controller.

        Returns:
            JSONResponse: 200 when ready (or degraded and allowed to serve), 503 otherwise.

        Raises:
            RuntimeError: This handler does not raise runtime errors.
        """

        readiness = readiness_gate.readiness_status()
        available_groups = list(readiness_gate.readiness_available_groups())
        expected_groups = readiness_gate.readiness_expected_groups()
        payload: dict[str, object] = {
            "secrets_loaded": readiness is not ReadinessStatus.NOT_READY,
            "uptime_seconds": int(time.monotonic() - started_at),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        if readiness is ReadinessStatus.NOT_READY:
            payload.update({"status": "unhealthy", "reason": "Secrets not yet loaded from store"})
            return JSONResponse(content=payload, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

        payload.update(
            {
                "processors": available_groups,
                "processor_count": len(available_groups),
                "kv_version": cache.cache_version(),
            }
        )
        if readiness is ReadinessStatus.DEGRADED:
            payload.update(
                {
                    "status": "degraded",
                    "reason": f"Only {len(available_groups)}/{len(expected_groups)} processors have credentials",
                }
            )
            status_code = status.HTTP_200_OK if degraded_serves_traffic else status.HTTP_503_SERVICE_UNAVAILABLE
            return JSONResponse(content=payload, status_code=status_code)

        payload["status"] = "healthy"
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    @router.get("/ready")
    def api_ready_status() -> JSONResponse:
        if not cache.cache_is_loaded():
            return JSONResponse(
                content={"ready": False, "reason": "Secrets not loaded"},
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        return JSONResponse(content={"ready": True}, status_code=status.HTTP_200_OK)

    return router
