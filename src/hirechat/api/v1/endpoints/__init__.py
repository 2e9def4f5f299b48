"""Endpoint routers for API v1."""

from .system import router as system_router

__all__ = ["system_router"]
