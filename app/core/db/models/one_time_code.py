"""
One-time code model for the desktop sign-in handshake.

"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Enum, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db.models.base import BaseModel
from app.core.enums import UserRole


class OneTimeCode(BaseModel):
    """
    A single-use code vouching for a signed-in identity.

    Codes are stored as SHA-256 hashes; the plain code only ever exists in the
    response to the browser and in the desktop deep link. `consumed` flips from
    False to True at most once, through a conditional UPDATE.

    Attributes:
        code_hash: SHA-256 hex digest of the code (unique lookup key).
        user_id: The user the code was issued for. Not a foreign key: codes
            outlive a deleted user so redemption can report the user missing.
        email: The user's email at issue time.
        role: The user's role at issue time.
        issued_at: When the code was issued.
        expires_at: When the code stops being redeemable.
        consumed: Whether the code has been redeemed.
        consumed_at: When the code was redeemed (None if unused).
    """

    __tablename__ = "one_time_codes"

    code_hash: Mapped[str] = mapped_column(
        String(64),  # SHA256 hex digest is 64 characters
        unique=True,
        nullable=False,
    )

    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    role: Mapped[UserRole] = mapped_column(
        Enum(
            UserRole,
            native_enum=False,
            name="user_role",
            values_callable=lambda roles: [role.value for role in roles],
        ),
        nullable=False,
    )

    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    consumed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    consumed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (Index("ix_one_time_codes_expires_at", "expires_at"),)


__all__ = ["OneTimeCode"]
