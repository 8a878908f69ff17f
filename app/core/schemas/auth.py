"""
Authentication schemas for the desktop sign-in handshake.

- One-time code issuance for a signed-in browser user
- Code (or browser session) exchange for a token pair
- Access token refresh

Fields are snake_case in Python and camelCase on the wire.
"""

from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from app.core.enums import UserRole

# A one-time code as handed to the desktop client
OneTimeCodeStr = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1, max_length=128),
    Field(description="One-time code from the desktop deep link"),
]


class CamelModel(BaseModel):
    """Base model serialising fields as camelCase while accepting either form."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageResponse(CamelModel):
    """Generic message response."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"message": "Operation completed successfully", "success": True}
        }
    )

    message: str
    success: bool = True


class OneTimeCodeResponse(CamelModel):
    """Response schema for a freshly issued one-time code."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "3f9a0c...e41b",
                "expiresIn": 900,
                "redirectUri": "phishguard://auth?code=3f9a0c...e41b",
            }
        }
    )

    code: str
    expires_in: Annotated[int, Field(description="Seconds until the code expires")]
    redirect_uri: Annotated[
        str, Field(description="Deep link that opens the desktop client")
    ]


class TokenExchangeRequest(CamelModel):
    """
    Request schema for exchanging a one-time code for tokens.

    When `code` is omitted, the signed-in browser session is exchanged instead.
    """

    model_config = ConfigDict(json_schema_extra={"example": {"code": "3f9a0c...e41b"}})

    code: OneTimeCodeStr | None = None


class UserSummary(CamelModel):
    id: UUID
    email: str
    name: str | None = None
    role: UserRole


class TokenResponse(CamelModel):
    """Response schema for a token pair."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "accessToken": "eyJhbGciOiJIUzI1NiIs...",
                "refreshToken": "eyJhbGciOiJIUzI1NiIs...",
                "tokenType": "Bearer",
                "expiresIn": 3600,
                "refreshExpiresIn": 2592000,
                "user": {
                    "id": "550e8400-e29b-41d4-a716-446655440000",
                    "email": "analyst@example.com",
                    "name": "Ada Analyst",
                    "role": "tester",
                },
            }
        }
    )

    access_token: str
    refresh_token: str
    token_type: Literal["Bearer"] = "Bearer"
    expires_in: Annotated[int, Field(description="Access token lifetime in seconds")]
    refresh_expires_in: Annotated[
        int, Field(description="Refresh token lifetime in seconds")
    ]
    user: UserSummary


class RefreshTokenRequest(CamelModel):
    """Request schema for refreshing an access token."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"refreshToken": "eyJhbGciOiJIUzI1NiIs..."}}
    )

    refresh_token: Annotated[str, StringConstraints(min_length=1)]


class AccessTokenResponse(CamelModel):
    """Response schema for a refreshed access token."""

    access_token: str
    token_type: Literal["Bearer"] = "Bearer"
    expires_in: int


__all__ = [
    "CamelModel",
    "MessageResponse",
    "OneTimeCodeResponse",
    "TokenExchangeRequest",
    "UserSummary",
    "TokenResponse",
    "RefreshTokenRequest",
    "AccessTokenResponse",
]
