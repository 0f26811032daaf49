"""API routes."""

from settlement.api.routes import router

__all__ = ["router"]
