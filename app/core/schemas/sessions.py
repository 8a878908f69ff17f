"""
Desktop session schemas for heartbeats and the operator listing.
"""

from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from pydantic import ConfigDict, Field, StringConstraints, field_validator

from app.core.enums import DevicePlatform
from app.core.schemas.auth import CamelModel


class DeviceInfoRequest(CamelModel):
    platform: DevicePlatform
    app_version: Annotated[str, StringConstraints(min_length=1, max_length=50)]
    os_version: Annotated[str, StringConstraints(max_length=100)] = ""
    hostname: Annotated[str, StringConstraints(min_length=1, max_length=255)]
    electron_version: Annotated[str | None, StringConstraints(max_length=50)] = None

    @field_validator("platform", mode="before")
    @classmethod
    def normalize_platform(cls, v: Any) -> Any:
        """Report platforms the service does not know about as "unknown"."""
        if isinstance(v, str) and v not in {p.value for p in DevicePlatform}:
            return DevicePlatform.UNKNOWN
        return v


class HeartbeatRequest(CamelModel):
    """Request schema for a desktop heartbeat."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "deviceInfo": {
                    "platform": "win32",
                    "appVersion": "1.4.2",
                    "osVersion": "10.0.22631",
                    "hostname": "ANALYST-LAPTOP",
                    "electronVersion": "28.1.0",
                },
                "desktopKeyId": "key_123",
            }
        }
    )

    device_info: DeviceInfoRequest
    desktop_key_id: Annotated[str | None, StringConstraints(max_length=255)] = None


class HeartbeatResponse(CamelModel):
    session_id: UUID
    acknowledged: bool = True
    server_time: datetime


class DesktopSessionResponse(CamelModel):
    """A desktop session as shown to operators."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    user_name: str
    user_email: str
    platform: DevicePlatform
    hostname: str
    app_version: str
    os_version: str
    electron_version: str | None = None
    ip_address: str | None = None
    last_seen: datetime
    created_at: datetime
    is_active: Annotated[
        bool, Field(description="Active and heard from within the liveness window")
    ]
    duration: Annotated[str, Field(description='Session age, e.g. "2d 3h" or "7m"')]


class DesktopSessionsResponse(CamelModel):
    """Response schema for the operator session listing."""

    model_config = ConfigDict(from_attributes=True)

    sessions: list[DesktopSessionResponse]
    total: int
    active_sessions: int
    total_users: int


__all__ = [
    "DeviceInfoRequest",
    "HeartbeatRequest",
    "HeartbeatResponse",
    "DesktopSessionResponse",
    "DesktopSessionsResponse",
]
