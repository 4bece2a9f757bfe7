"""Administrative router for manual secret refresh."""

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from keyfleet.secrets import RefreshError, RotationPoller

logger = logging.getLogger(__name__)


def api_create_admin_router(poller: RotationPoller) -> APIRouter:
    """Create admin router exposing `POST /admin/refresh-secrets`.

    Args:
        poller: Rotation poller whose shared refresh path is triggered.

    Returns:
        APIRouter: Router exposing admin endpoints.

    Raises:
        ValueError: Raised when poller is None.
    """

    if poller is None:
        raise ValueError("poller must not be None")

    router = APIRouter(prefix="/admin", tags=["admin"])

    @router.post("/refresh-secrets")
    async def api_admin_refresh_secrets() -> JSONResponse:
        """Trigger an immediate refresh from the secret store.

        Returns:
            JSONResponse: 200 with refresh outcome, 500 with reason on failure.

        Raises:
            RuntimeError: This handler does not raise runtime errors.
        """

        try:
            refresh_result = await poller.poller_trigger_refresh()
        except RefreshError as error:
            logger.error("Manual secret refresh failed: %s", error)
            payload = {"error": "Secret refresh failed", "reason": str(error)}
            return JSONResponse(content=payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        logger.info("Manual secret refresh triggered via admin endpoint")
        payload = {
            "message": "Secrets refreshed successfully",
            "updated": refresh_result.updated,
            "version": refresh_result.version,
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    return router
