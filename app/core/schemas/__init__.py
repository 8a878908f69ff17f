"""
Shared schemas for API request validation and response serialization.

"""

from app.core.schemas.auth import (
    # Base
    CamelModel,
    MessageResponse,
    # Codes
    OneTimeCodeResponse,
    # Tokens
    TokenExchangeRequest,
    TokenResponse,
    UserSummary,
    RefreshTokenRequest,
    AccessTokenResponse,
)
from app.core.schemas.sessions import (
    DeviceInfoRequest,
    HeartbeatRequest,
    HeartbeatResponse,
    DesktopSessionResponse,
    DesktopSessionsResponse,
)
from app.core.schemas.rate_limits import (
    RateLimitWindowResponse,
    RateLimitDetailResponse,
    EndpointUsageResponse,
    RecentViolationResponse,
    RateLimitOverviewResponse,
    RateLimitResetRequest,
    RateLimitResetResponse,
)

__all__ = [
    # Base
    "CamelModel",
    "MessageResponse",
    # Codes
    "OneTimeCodeResponse",
    # Tokens
    "TokenExchangeRequest",
    "TokenResponse",
    "UserSummary",
    "RefreshTokenRequest",
    "AccessTokenResponse",
    # Sessions
    "DeviceInfoRequest",
    "HeartbeatRequest",
    "HeartbeatResponse",
    "DesktopSessionResponse",
    "DesktopSessionsResponse",
    # Rate limits
    "RateLimitWindowResponse",
    "RateLimitDetailResponse",
    "EndpointUsageResponse",
    "RecentViolationResponse",
    "RateLimitOverviewResponse",
    "RateLimitResetRequest",
    "RateLimitResetResponse",
]
