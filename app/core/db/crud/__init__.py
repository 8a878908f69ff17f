from app.core.db.crud.base import BaseDB
from app.core.db.crud.desktop_session import DesktopSessionDB
from app.core.db.crud.one_time_code import OneTimeCodeDB
from app.core.db.crud.rate_limit_window import RateLimitWindowDB
from app.core.db.crud.user import UserDB

# Global CRUD instances - use these instead of creating new instances
user_db = UserDB()
one_time_code_db = OneTimeCodeDB()
rate_limit_window_db = RateLimitWindowDB()
desktop_session_db = DesktopSessionDB()

__all__ = [
    # Classes (for type hints and subclassing)
    "BaseDB",
    "DesktopSessionDB",
    "OneTimeCodeDB",
    "RateLimitWindowDB",
    "UserDB",
    # Global instances (for actual usage)
    "desktop_session_db",
    "one_time_code_db",
    "rate_limit_window_db",
    "user_db",
]
