"""
Routers for the application.

This module exports the FastAPI routers included in the main application.
"""

from app.core.routers.auth import router as auth_router
from app.core.routers.rate_limits import router as rate_limits_router
from app.core.routers.sessions import router as sessions_router

__all__ = ["auth_router", "rate_limits_router", "sessions_router"]
