"""
Token issuer for desktop clients.

Mints HS256 access/refresh token pairs for a verified identity. Access and
refresh tokens are signed with separate secrets and carry a `type` claim, so
neither can stand in for the other. The issuer keeps no state.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable
from uuid import UUID, uuid4

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import auth_logger, settings
from app.core.db.crud import user_db
from app.core.enums import TokenType, UserRole
from app.core.exceptions.types import (
    AuthenticationException,
    SigningMisconfiguredException,
)
from app.core.utils import utc_now


@dataclass(frozen=True)
class Identity:
    """The subject a token pair is issued for."""

    user_id: str
    email: str
    role: UserRole


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int


class TokenIssuer:
    """
    Issue and verify access/refresh tokens.

    Args:
        access_secret: Key for access tokens. Defaults to settings.JWT_ACCESS_SECRET_KEY.
        refresh_secret: Key for refresh tokens. Defaults to settings.JWT_REFRESH_SECRET_KEY.
        access_ttl: Access token lifetime in seconds.
        refresh_ttl: Refresh token lifetime in seconds.
        clock: Returns the current UTC time.

    Example:
        >>> issuer = TokenIssuer()
        >>> pair = issuer.issue_token_pair(Identity("u1", "a@b.c", UserRole.ADMIN))
        >>> issuer.verify_access_token(pair.access_token)["role"]
        'admin'
    """

    def __init__(
        self,
        access_secret: str | None = None,
        refresh_secret: str | None = None,
        access_ttl: int | None = None,
        refresh_ttl: int | None = None,
        algorithm: str | None = None,
        issuer: str | None = None,
        audience: str | None = None,
        clock: Callable = utc_now,
    ):
        self.access_secret = (
            access_secret if access_secret is not None else settings.JWT_ACCESS_SECRET_KEY
        )
        self.refresh_secret = (
            refresh_secret
            if refresh_secret is not None
            else settings.JWT_REFRESH_SECRET_KEY
        )
        self.access_ttl = access_ttl or settings.JWT_ACCESS_EXPIRE_SECONDS
        self.refresh_ttl = refresh_ttl or settings.JWT_REFRESH_EXPIRE_SECONDS
        self.algorithm = algorithm or settings.JWT_ALGORITHM
        self.issuer = issuer or settings.JWT_ISSUER
        self.audience = audience or settings.JWT_AUDIENCE
        self._clock = clock

    def _encode(
        self, identity: Identity, token_type: TokenType, secret: str, ttl: int
    ) -> str:
        if not secret:
            auth_logger.critical(f"No signing secret configured for {token_type.value} tokens")
            raise SigningMisconfiguredException(
                f"Signing secret for {token_type.value} tokens is not configured."
            )

        now = self._clock()
        claims: dict[str, Any] = {
            "sub": identity.user_id,
            "email": identity.email,
            "role": UserRole(identity.role).value,
            "type": token_type.value,
            "iat": now,
            "exp": now + timedelta(seconds=ttl),
            "jti": str(uuid4()),
            "iss": self.issuer,
            "aud": self.audience,
        }

        try:
            return jwt.encode(claims, secret, algorithm=self.algorithm)
        except Exception as e:
            auth_logger.critical(
                f"Failed to sign {token_type.value} token: {type(e).__name__} - {str(e)}"
            )
            raise SigningMisconfiguredException() from e

    def issue_access_token(self, identity: Identity) -> str:
        return self._encode(identity, TokenType.ACCESS, self.access_secret, self.access_ttl)

    def issue_token_pair(self, identity: Identity) -> TokenPair:
        """
        Issue an access and a refresh token for the same identity.

        Raises:
            SigningMisconfiguredException: If a secret is missing or signing fails.
        """
        pair = TokenPair(
            access_token=self.issue_access_token(identity),
            refresh_token=self._encode(
                identity, TokenType.REFRESH, self.refresh_secret, self.refresh_ttl
            ),
            expires_in=self.access_ttl,
            refresh_expires_in=self.refresh_ttl,
        )
        auth_logger.info(f"Issued token pair for user {identity.user_id}")
        return pair

    def _decode(
        self, token: str | None, token_type: TokenType, secret: str
    ) -> dict[str, Any] | None:
        if not token or not secret:
            return None

        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "iat", "sub", "type"]},
            )
        except jwt.ExpiredSignatureError:
            auth_logger.info(f"Rejected {token_type.value} token: expired")
            return None
        except jwt.InvalidTokenError as e:
            auth_logger.warning(
                f"Rejected {token_type.value} token: {type(e).__name__}"
            )
            return None

        if payload.get("type") != token_type.value:
            auth_logger.warning(
                f"Rejected {token_type.value} token: wrong type '{payload.get('type')}'"
            )
            return None

        return payload

    def verify_access_token(self, token: str | None) -> dict[str, Any] | None:
        """
        Verify an access token.

        Returns:
            The token's claims, or None if the signature, expiry, issuer,
            audience or type does not check out.
        """
        return self._decode(token, TokenType.ACCESS, self.access_secret)

    def verify_refresh_token(self, token: str | None) -> dict[str, Any] | None:
        """Verify a refresh token. Returns the claims or None."""
        return self._decode(token, TokenType.REFRESH, self.refresh_secret)

    async def refresh_access_token(
        self,
        session: AsyncSession,
        refresh_token: str,
    ) -> str:
        """
        Generate a new access token using a valid refresh token.

        The user is re-read so that role changes and deactivations take effect
        on the next refresh.

        Args:
            session: The database session.
            refresh_token: The refresh token to validate.

        Returns:
            str: A new access token.

        Raises:
            AuthenticationException: If the refresh token is invalid or expired,
                or its user no longer exists or is inactive.
        """
        payload = self.verify_refresh_token(refresh_token)
        if payload is None:
            raise AuthenticationException("Invalid or expired refresh token")

        try:
            user_id = UUID(payload["sub"])
        except ValueError:
            auth_logger.warning(f"Token refresh failed: malformed subject '{payload['sub']}'")
            raise AuthenticationException("Invalid or expired refresh token")

        user = await user_db.get_by_id(session, user_id)
        if user is None or not user.is_active:
            auth_logger.warning(f"Token refresh failed: user unavailable {user_id}")
            raise AuthenticationException("User account is not active")

        access_token = self.issue_access_token(
            Identity(user_id=str(user.id), email=user.email, role=user.role)
        )
        auth_logger.info(f"Access token refreshed: user={user.email}")
        return access_token


def get_token_issuer() -> TokenIssuer:
    return TokenIssuer()


__all__ = [
    "Identity",
    "TokenPair",
    "TokenIssuer",
    "get_token_issuer",
]
