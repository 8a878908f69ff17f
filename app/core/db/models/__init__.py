from app.core.db.models.user import User
from app.core.db.models.one_time_code import OneTimeCode
from app.core.db.models.rate_limit_window import RateLimitWindow
from app.core.db.models.desktop_session import DesktopSession

__all__ = [
    "DesktopSession",
    "OneTimeCode",
    "RateLimitWindow",
    "User",
]
