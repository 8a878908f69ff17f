"""
Shared dependencies for FastAPI endpoints.

"""

from app.core.dependencies.auth import (
    SESSION_USER_KEY,
    get_current_user,
    get_current_active_user,
    get_browser_session_user,
    get_optional_browser_session_user,
    get_operator,
    require_roles,
    CurrentUser,
    BrowserUser,
    OptionalBrowserUser,
    Operator,
    bearer_scheme,
)
from app.core.dependencies.db import get_async_session

__all__ = [
    "SESSION_USER_KEY",
    "get_current_user",
    "get_current_active_user",
    "get_browser_session_user",
    "get_optional_browser_session_user",
    "get_operator",
    "require_roles",
    "CurrentUser",
    "BrowserUser",
    "OptionalBrowserUser",
    "Operator",
    "bearer_scheme",
    "get_async_session",
]
