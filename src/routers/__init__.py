"""
API routers for endpoint organization.
"""
from .health import router as health_router
from .vapi import router as vapi_router
from .maintenance import router as maintenance_router

__all__ = [
    "health_router",
    "vapi_router",
    "maintenance_router",
]
