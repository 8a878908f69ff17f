"""
Authentication dependencies for FastAPI endpoints.

- Desktop clients authenticate with a Bearer access token
- Browser users authenticate with the signed session cookie set by the web login
- Operators may use either, and are checked against the roles an endpoint allows

Example usage:
    from app.core.dependencies.auth import CurrentUser, require_roles

    @router.post("/heartbeat")
    async def heartbeat(user: CurrentUser):
        ...

    @router.delete("/{session_id}")
    async def remove(user: User = Depends(require_roles(UserRole.ADMIN))):
        ...
"""

from typing import Annotated, Callable
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import auth_logger
from app.core.db.crud import user_db
from app.core.db.models import User
from app.core.dependencies.db import get_async_session
from app.core.enums import UserRole
from app.core.exceptions.types import AuthenticationException, ForbiddenException
from app.core.services.token_issuer import TokenIssuer, get_token_issuer

# auto_error=False so that a missing header surfaces as our own 401
bearer_scheme = HTTPBearer(auto_error=False)

# Key the web login stores the signed-in user's id under
SESSION_USER_KEY = "user_id"


async def _load_user(session: AsyncSession, user_id: UUID) -> User | None:
    # Use a transaction to avoid leaving an implicit one open
    async with session.begin():
        return await user_db.get_by_id(session=session, id=user_id)


async def _user_from_access_token(
    token: str, session: AsyncSession, issuer: TokenIssuer
) -> User:
    payload = issuer.verify_access_token(token)
    if payload is None:
        auth_logger.warning("Authentication failed: invalid or expired token")
        raise AuthenticationException("Invalid or expired access token")

    try:
        user_id = UUID(payload["sub"])
    except ValueError:
        auth_logger.warning(
            f"Authentication failed: invalid user ID format '{payload['sub']}'"
        )
        raise AuthenticationException("Invalid access token")

    user = await _load_user(session, user_id)
    if user is None:
        auth_logger.warning(f"Authentication failed: user not found {user_id}")
        raise AuthenticationException("User not found")

    return user


async def get_current_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    issuer: Annotated[TokenIssuer, Depends(get_token_issuer)],
) -> User:
    """
    Resolve the desktop client's user from the Bearer access token.

    Raises:
        AuthenticationException: 401 if the token is missing, invalid, expired,
            of the wrong type, or its user does not exist.
    """
    if credentials is None:
        raise AuthenticationException("Missing access token")

    user = await _user_from_access_token(credentials.credentials, session, issuer)
    auth_logger.debug(f"User authenticated: {user.email}")
    return user


async def get_current_active_user(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    """
    Ensure the current user is active.

    Raises:
        ForbiddenException: 403 if the user account is deactivated.
    """
    if not user.is_active:
        auth_logger.warning(f"Access denied: user deactivated {user.email}")
        raise ForbiddenException("User account is deactivated")

    return user


async def get_browser_session_user(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> User:
    """
    Resolve the signed-in browser user from the session cookie.

    Raises:
        AuthenticationException: 401 if there is no session or its user is gone.
        ForbiddenException: 403 if the user account is deactivated.
    """
    raw_user_id = request.session.get(SESSION_USER_KEY)
    if not raw_user_id:
        raise AuthenticationException("Not signed in. Please sign in and try again.")

    try:
        user_id = UUID(str(raw_user_id))
    except ValueError:
        auth_logger.warning(f"Browser session carries a malformed user id '{raw_user_id}'")
        request.session.clear()
        raise AuthenticationException("Not signed in. Please sign in and try again.")

    user = await _load_user(session, user_id)
    if user is None:
        auth_logger.warning(f"Browser session refers to unknown user {user_id}")
        request.session.clear()
        raise AuthenticationException("Not signed in. Please sign in and try again.")

    if not user.is_active:
        auth_logger.warning(f"Access denied: user deactivated {user.email}")
        raise ForbiddenException("User account is deactivated")

    return user


async def get_optional_browser_session_user(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> User | None:
    """Like get_browser_session_user, but returns None instead of raising."""
    if not request.session.get(SESSION_USER_KEY):
        return None
    try:
        return await get_browser_session_user(request, session)
    except (AuthenticationException, ForbiddenException):
        return None


async def get_operator(
    request: Request,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    issuer: Annotated[TokenIssuer, Depends(get_token_issuer)],
) -> User:
    """
    Resolve an operator from a Bearer token, falling back to the browser session.

    Raises:
        AuthenticationException: 401 if neither credential identifies a user.
        ForbiddenException: 403 if the user account is deactivated.
    """
    if credentials is None:
        return await get_browser_session_user(request, session)

    user = await _user_from_access_token(credentials.credentials, session, issuer)
    if not user.is_active:
        auth_logger.warning(f"Access denied: user deactivated {user.email}")
        raise ForbiddenException("User account is deactivated")
    return user


def require_roles(*roles: UserRole) -> Callable:
    """
    Create a dependency that admits operators holding one of the given roles.

    Args:
        *roles: Roles allowed to call the endpoint.

    Returns:
        A FastAPI dependency returning the operator.
    """
    allowed = set(roles)

    async def dependency(user: Annotated[User, Depends(get_operator)]) -> User:
        if user.role not in allowed:
            auth_logger.warning(
                f"Access denied: {user.email} has role '{user.role.value}', "
                f"requires one of {sorted(r.value for r in allowed)}"
            )
            raise ForbiddenException("Insufficient permissions")
        return user

    return dependency


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[User, Depends(get_current_active_user)]
BrowserUser = Annotated[User, Depends(get_browser_session_user)]
OptionalBrowserUser = Annotated[User | None, Depends(get_optional_browser_session_user)]
Operator = Annotated[User, Depends(get_operator)]


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
]
