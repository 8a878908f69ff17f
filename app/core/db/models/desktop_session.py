from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db.models.base import BaseModel
from app.core.enums import DevicePlatform


class DesktopSession(BaseModel):
    """
    A desktop client install reporting liveness through heartbeats.

    There is one row per (user, hostname, platform). `is_active` records
    explicit deactivation only; whether a session is actually live is derived
    from `last_seen` at read time. Sessions of a deleted user remain until the
    stale sweep removes them and are listed with an unknown owner.
    """

    __tablename__ = "desktop_sessions"

    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )

    platform: Mapped[DevicePlatform] = mapped_column(
        Enum(
            DevicePlatform,
            native_enum=False,
            name="device_platform",
            values_callable=lambda platforms: [p.value for p in platforms],
        ),
        nullable=False,
    )

    hostname: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    app_version: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    os_version: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    electron_version: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    desktop_key_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    ip_address: Mapped[str | None] = mapped_column(
        String(45),
        nullable=True,
    )

    last_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "hostname", "platform", name="uq_desktop_session_device"
        ),
    )


__all__ = ["DesktopSession"]
