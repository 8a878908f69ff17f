"""
Authentication router for the desktop sign-in handshake.

This module provides endpoints for:
- Issuing a one-time code to a signed-in browser user
- Exchanging a one-time code (or the browser session) for a token pair
- Refreshing an access token

All endpoints are prefixed with /auth when mounted in the main app.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import auth_logger, settings
from app.core.db.crud import user_db
from app.core.db.models import User
from app.core.dependencies import (
    BrowserUser,
    OptionalBrowserUser,
    get_async_session,
    get_browser_session_user,
)
from app.core.enums import RedeemStatus
from app.core.exceptions.types import (
    AuthenticationException,
    CodeAlreadyConsumedException,
    CodeExpiredException,
    CodeNotFoundException,
    ForbiddenException,
    UserNotFoundException,
)
from app.core.schemas.auth import (
    AccessTokenResponse,
    OneTimeCodeResponse,
    RefreshTokenRequest,
    TokenExchangeRequest,
    TokenResponse,
    UserSummary,
)
from app.core.services.code_vault import CodeVault, RedeemResult, get_code_vault
from app.core.services.rate_limit import (
    RateLimiter,
    ensure_allowed,
    get_rate_limiter,
    rate_limit_by_user,
)
from app.core.services.token_issuer import Identity, TokenIssuer, get_token_issuer
from app.core.utils import build_desktop_redirect_uri


router = APIRouter()

REFRESH_ENDPOINT = "auth:refresh"

_REDEEM_FAILURES = {
    RedeemStatus.NOT_FOUND: CodeNotFoundException,
    RedeemStatus.EXPIRED: CodeExpiredException,
    RedeemStatus.CONSUMED: CodeAlreadyConsumedException,
}


# =============================================================================
# Helper Functions
# =============================================================================


def _identity_for(user: User) -> Identity:
    return Identity(user_id=str(user.id), email=user.email, role=user.role)


async def _resolve_redeemed_user(session: AsyncSession, result: RedeemResult) -> User:
    """Load the user a redeemed code vouched for."""
    failure = _REDEEM_FAILURES.get(result.status)
    if failure is not None:
        raise failure()

    async with session.begin():
        user = await user_db.get_by_id(session, UUID(result.identity.user_id))  # type: ignore[union-attr]

    if user is None:
        auth_logger.warning(
            f"Code redeemed for a user that no longer exists: {result.identity.user_id}"  # type: ignore[union-attr]
        )
        raise UserNotFoundException("User account not found")

    if not user.is_active:
        auth_logger.warning(f"Code redeemed for a deactivated user: {user.email}")
        raise ForbiddenException("User account is deactivated")

    return user


# =============================================================================
# Endpoints
# =============================================================================


@router.post(
    "/code",
    response_model=OneTimeCodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a one-time code for the desktop client",
    dependencies=[
        Depends(
            rate_limit_by_user(
                "auth:code",
                get_browser_session_user,
                limit=settings.RATE_LIMIT_CODE_REQUESTS,
                window=settings.RATE_LIMIT_DEFAULT_WINDOW,
            )
        )
    ],
    description="""
## Issue a One-Time Code

Called by the web dashboard for a **signed-in browser user**. Returns an
opaque, single-use code and the deep link that hands it to the desktop client.

The code expires after `ONE_TIME_CODE_EXPIRY_MINUTES` (15 minutes by default)
and can be redeemed exactly once via `POST /auth/token`. Limited to
`RATE_LIMIT_CODE_REQUESTS` (30) requests per hour per user.

### Error Responses

| Status | Reason |
|--------|--------|
| `401 Unauthorized` | No browser session |
| `403 Forbidden` | User account is deactivated |
| `429 Too Many Requests` | Rate limit exceeded |
| `503 Service Unavailable` | Storage unavailable, retry after `Retry-After` seconds |
""",
)
async def issue_code(
    user: BrowserUser,
    vault: Annotated[CodeVault, Depends(get_code_vault)],
) -> OneTimeCodeResponse:
    code = await vault.issue(_identity_for(user))
    return OneTimeCodeResponse(
        code=code,
        expires_in=int(vault.expiry.total_seconds()),
        redirect_uri=build_desktop_redirect_uri(code),
    )


@router.post(
    "/token",
    response_model=TokenResponse,
    summary="Exchange a one-time code for tokens",
    description="""
## Exchange a One-Time Code for Tokens

The desktop client presents the one-time code it received through the deep
link. The code is consumed atomically: however many requests race on the
same code, exactly one receives tokens.

When no code is sent, the signed-in browser session is exchanged instead.

### Error Responses

| Status | Reason |
|--------|--------|
| `401 Unauthorized` | Code invalid, expired or already used; or no session |
| `404 Not Found` | The code's user no longer exists |
| `500 Internal Server Error` | Token signing is misconfigured |
| `503 Service Unavailable` | Storage unavailable, retry after `Retry-After` seconds |
""",
)
async def exchange_token(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    browser_user: OptionalBrowserUser,
    vault: Annotated[CodeVault, Depends(get_code_vault)],
    issuer: Annotated[TokenIssuer, Depends(get_token_issuer)],
    payload: TokenExchangeRequest | None = None,
) -> TokenResponse:
    if payload is not None and payload.code:
        result = await vault.redeem(payload.code)
        user = await _resolve_redeemed_user(session, result)
        method = "one_time_code"
    elif browser_user is not None:
        user = browser_user
        method = "browser_session"
    else:
        raise AuthenticationException("You must be signed in or provide a valid code")

    pair = issuer.issue_token_pair(_identity_for(user))
    auth_logger.info(f"Tokens issued for user {user.email} via {method}")

    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
        refresh_expires_in=pair.refresh_expires_in,
        user=UserSummary(id=user.id, email=user.email, name=user.name, role=user.role),
    )


@router.post(
    "/refresh",
    response_model=AccessTokenResponse,
    summary="Refresh an access token",
    description="""
## Refresh an Access Token

Exchanges a valid refresh token for a new access token. The user is re-read,
so deactivated or deleted users cannot refresh. Limited to
`RATE_LIMIT_REFRESH_REQUESTS` (60) requests per hour per user.

### Error Responses

| Status | Reason |
|--------|--------|
| `401 Unauthorized` | Refresh token invalid or expired, or user unavailable |
| `429 Too Many Requests` | Rate limit exceeded |
""",
)
async def refresh_token(
    payload: RefreshTokenRequest,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    issuer: Annotated[TokenIssuer, Depends(get_token_issuer)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> AccessTokenResponse:
    claims = issuer.verify_refresh_token(payload.refresh_token)
    if claims is None:
        raise AuthenticationException("Invalid or expired refresh token")

    ensure_allowed(
        await limiter.admit(
            str(claims["sub"]),
            REFRESH_ENDPOINT,
            limit=settings.RATE_LIMIT_REFRESH_REQUESTS,
            window=settings.RATE_LIMIT_DEFAULT_WINDOW,
        )
    )

    async with session.begin():
        access_token = await issuer.refresh_access_token(session, payload.refresh_token)

    return AccessTokenResponse(access_token=access_token, expires_in=issuer.access_ttl)
