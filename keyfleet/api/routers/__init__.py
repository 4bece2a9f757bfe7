"""API router package for endpoint composition."""

from .admin import api_create_admin_router
from .audit import api_create_audit_router
from .health import api_create_health_router

__all__ = ["api_create_admin_router", "api_create_audit_router", "api_create_health_router"]
