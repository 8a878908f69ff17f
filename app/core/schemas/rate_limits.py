"""
Rate limit monitoring schemas for operators.
"""

from datetime import datetime
from typing import Annotated

from pydantic import ConfigDict, Field, StringConstraints

from app.core.schemas.auth import CamelModel


class RateLimitWindowResponse(CamelModel):
    """One (user, endpoint) window and what the next request would see."""

    endpoint: str
    limit: int
    current: Annotated[int, Field(description="Requests admitted in the current window")]
    remaining: int
    reset_at: datetime
    window_start: datetime
    violations: Annotated[
        int, Field(description="Denied requests recorded against this window")
    ] = 0


class RateLimitDetailResponse(CamelModel):
    user_id: str
    windows: list[RateLimitWindowResponse]


class EndpointUsageResponse(CamelModel):
    endpoint: str
    requests: int
    blocked: int


class RecentViolationResponse(CamelModel):
    user_id: str
    user_name: str
    endpoint: str
    violations: int
    timestamp: datetime | None = None


class RateLimitOverviewResponse(CamelModel):
    """Totals across every tracked window."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "totalRequests": 1284,
                "blockedRequests": 12,
                "trackedWindows": 41,
                "trackedUsers": 17,
                "topEndpoints": [
                    {"endpoint": "sessions:heartbeat", "requests": 960, "blocked": 4}
                ],
                "recentViolations": [
                    {
                        "userId": "0b7c...",
                        "userName": "Ada Lovelace",
                        "endpoint": "sessions:heartbeat",
                        "violations": 4,
                        "timestamp": "2026-10-17T09:30:00Z",
                    }
                ],
            }
        }
    )

    total_requests: int
    blocked_requests: int
    tracked_windows: int
    tracked_users: int
    top_endpoints: list[EndpointUsageResponse]
    recent_violations: list[RecentViolationResponse]


class RateLimitResetRequest(CamelModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {"userId": "0b7c...", "endpoint": "sessions:heartbeat"}
        }
    )

    user_id: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    endpoint: Annotated[
        str | None,
        StringConstraints(strip_whitespace=True, min_length=1),
        Field(description="Reset only this endpoint; all of the user's windows when omitted"),
    ] = None


class RateLimitResetResponse(CamelModel):
    message: str
    removed: Annotated[int, Field(description="Windows removed")]
    success: bool = True


__all__ = [
    "RateLimitWindowResponse",
    "RateLimitDetailResponse",
    "EndpointUsageResponse",
    "RecentViolationResponse",
    "RateLimitOverviewResponse",
    "RateLimitResetRequest",
    "RateLimitResetResponse",
]
