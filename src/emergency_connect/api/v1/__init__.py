"""Version 1 API endpoints."""

from .endpoints import credentials_router, emergency_router, incidents_router

__all__ = [
    "emergency_router",
    "credentials_router",
    "incidents_router",
]
