"""API endpoint modules for version 1."""

from .credentials import router as credentials_router
from .emergency import router as emergency_router
from .incidents import router as incidents_router

__all__ = [
    "emergency_router",
    "credentials_router",
    "incidents_router",
]
