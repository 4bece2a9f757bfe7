"""Audit router exposing recent metadata-only secret access records."""

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from keyfleet.secrets import InMemoryAuditLog

_DEFAULT_AUDIT_LIMIT = 100
_MAX_AUDIT_LIMIT = 1000


def api_create_audit_router(audit_log: InMemoryAuditLog) -> APIRouter:
    """Create audit router exposing `GET /audit`.

    Args:
        audit_log: In-memory audit log.

    Returns:
        APIRouter: Router exposing audit endpoint.

    Raises:
        ValueError: Raised when audit_log is None.
    """

    if audit_log is None:
        raise ValueError("audit_log must not be None")

    router = APIRouter(tags=["audit"])

    @router.get("/audit")
    def api_audit_recent(limit: int = Query(default=_DEFAULT_AUDIT_LIMIT)) -> JSONResponse:
        """Return the most recent audit records, clamping `limit` to 1..1000.

        Args:
            limit: Requested number of records.

        Returns:
            JSONResponse: Audit payload with instance identity and counts.

        Raises:
            RuntimeError: This handler does not raise runtime errors.
        """

        bounded_limit = min(max(1, limit), _MAX_AUDIT_LIMIT)
        entries = audit_log.audit_recent_entries(limit=bounded_limit)
        payload = {
            "instance_id": audit_log.audit_instance_id(),
            "total_recorded": audit_log.audit_total_count(),
            "returned": len(entries),
            "entries": entries,
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    return router
