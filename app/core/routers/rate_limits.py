"""
Rate limit monitoring router.

This module provides endpoints for:
- Viewing rate limit usage across all users, or one user's windows (admin or tester)
- Resetting a user's rate limits (admin)

All endpoints are prefixed with /rate-limits when mounted in the main app.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import rate_limit_logger, settings
from app.core.db.crud import user_db
from app.core.db.models import User
from app.core.dependencies import get_async_session, require_roles
from app.core.enums import UserRole
from app.core.exceptions.types import NotFoundException
from app.core.schemas.rate_limits import (
    EndpointUsageResponse,
    RateLimitDetailResponse,
    RateLimitOverviewResponse,
    RateLimitResetRequest,
    RateLimitResetResponse,
    RateLimitWindowResponse,
    RecentViolationResponse,
)
from app.core.services.rate_limit import (
    RateLimiter,
    get_rate_limiter,
    rate_limit_by_user,
)


router = APIRouter()

UNKNOWN_USER = "Unknown User"

require_limit_viewer = require_roles(UserRole.ADMIN, UserRole.TESTER)
require_admin = require_roles(UserRole.ADMIN)


@router.get(
    "",
    response_model=RateLimitOverviewResponse | RateLimitDetailResponse,
    summary="View rate limit usage",
    dependencies=[
        Depends(
            rate_limit_by_user(
                "rate_limits:view",
                require_limit_viewer,
                limit=settings.RATE_LIMIT_OVERVIEW_REQUESTS,
                window=settings.RATE_LIMIT_DEFAULT_WINDOW,
            )
        )
    ],
    description="""
## View Rate Limit Usage

Requires the **admin** or **tester** role. Without `userId`, returns totals
across every tracked window, the busiest endpoints and the most recent
violations. With `userId`, returns that user's windows, most recently used
first.

Limited to `RATE_LIMIT_OVERVIEW_REQUESTS` (100) requests per hour per user.
""",
)
async def view_rate_limits(
    operator: Annotated[User, Depends(require_limit_viewer)],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    user_id: Annotated[str | None, Query(alias="userId", min_length=1)] = None,
) -> RateLimitOverviewResponse | RateLimitDetailResponse:
    if user_id is not None:
        windows = []
        for snapshot in await limiter.list_windows(user_id):
            status = limiter.describe(snapshot, window=settings.RATE_LIMIT_DEFAULT_WINDOW)
            windows.append(
                RateLimitWindowResponse(
                    endpoint=snapshot.endpoint,
                    limit=status.limit,
                    current=status.current,
                    remaining=status.remaining,
                    reset_at=status.reset_at,
                    window_start=snapshot.window_start,
                    violations=snapshot.violations,
                )
            )
        return RateLimitDetailResponse(user_id=user_id, windows=windows)

    overview = await limiter.overview()
    names = await user_db.get_names_by_ids(
        session, {v.user_id for v in overview.recent_violations}
    )
    return RateLimitOverviewResponse(
        total_requests=overview.total_requests,
        blocked_requests=overview.blocked_requests,
        tracked_windows=overview.tracked_windows,
        tracked_users=overview.tracked_users,
        top_endpoints=[
            EndpointUsageResponse(
                endpoint=usage.endpoint, requests=usage.requests, blocked=usage.blocked
            )
            for usage in overview.top_endpoints
        ],
        recent_violations=[
            RecentViolationResponse(
                user_id=v.user_id,
                user_name=names.get(v.user_id, UNKNOWN_USER),
                endpoint=v.endpoint,
                violations=v.violations,
                timestamp=v.updated_at,
            )
            for v in overview.recent_violations
        ],
    )


@router.post(
    "/reset",
    response_model=RateLimitResetResponse,
    summary="Reset a user's rate limits",
    dependencies=[
        Depends(
            rate_limit_by_user(
                "rate_limits:reset",
                require_admin,
                limit=settings.RATE_LIMIT_RESET_REQUESTS,
                window=settings.RATE_LIMIT_DEFAULT_WINDOW,
            )
        )
    ],
    description="""
## Reset Rate Limits

Requires the **admin** role. Forgets one of the user's windows when
`endpoint` is given, otherwise all of them. The next request starts a fresh
window.

Limited to `RATE_LIMIT_RESET_REQUESTS` (30) requests per hour per user.

### Error Responses

| Status | Reason |
|--------|--------|
| `404 Not Found` | No window exists for the given endpoint |
""",
)
async def reset_rate_limits(
    payload: RateLimitResetRequest,
    operator: Annotated[User, Depends(require_admin)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> RateLimitResetResponse:
    removed = await limiter.reset(payload.user_id, payload.endpoint)
    if payload.endpoint is not None and removed == 0:
        raise NotFoundException("Rate limit record not found")

    message = f"Rate limit reset successfully for user {payload.user_id}"
    if payload.endpoint is not None:
        message += f" on endpoint {payload.endpoint}"
    rate_limit_logger.info(f"{message} by {operator.email}")
    return RateLimitResetResponse(message=message, removed=removed)
