"""
Desktop session router.

This module provides endpoints for:
- Heartbeats from signed-in desktop clients
- Listing desktop sessions (admin or tester)
- Deactivating a desktop session (admin)

All endpoints are prefixed with /sessions when mounted in the main app.
"""

from dataclasses import asdict
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from app.core.config import settings
from app.core.db.models import User
from app.core.dependencies import CurrentUser, get_current_active_user, require_roles
from app.core.enums import DeactivateOutcome, UserRole
from app.core.exceptions.types import SessionNotFoundException
from app.core.schemas.auth import MessageResponse
from app.core.schemas.sessions import (
    DesktopSessionResponse,
    DesktopSessionsResponse,
    HeartbeatRequest,
    HeartbeatResponse,
)
from app.core.services.rate_limit import rate_limit_by_user
from app.core.services.session_registry import (
    DeviceInfo,
    SessionRegistry,
    get_session_registry,
)
from app.core.utils import get_client_ip, utc_now


router = APIRouter()

# Also the identities for the rate limits below
require_session_viewer = require_roles(UserRole.ADMIN, UserRole.TESTER)
require_admin = require_roles(UserRole.ADMIN)


@router.post(
    "/heartbeat",
    response_model=HeartbeatResponse,
    summary="Record a desktop heartbeat",
    dependencies=[
        Depends(
            rate_limit_by_user(
                "sessions:heartbeat",
                get_current_active_user,
                limit=settings.RATE_LIMIT_HEARTBEAT_REQUESTS,
                window=settings.RATE_LIMIT_DEFAULT_WINDOW,
            )
        )
    ],
    description="""
## Record a Desktop Heartbeat

Sent periodically by the desktop client with a Bearer access token. The first
heartbeat from a device registers a session; later ones refresh its
`lastSeen`, device details and IP address. One session exists per
(user, hostname, platform).

Limited to `RATE_LIMIT_HEARTBEAT_REQUESTS` (150) requests per hour per user.
""",
)
async def heartbeat(
    payload: HeartbeatRequest,
    request: Request,
    user: CurrentUser,
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> HeartbeatResponse:
    device = payload.device_info
    session_id = await registry.heartbeat(
        user_id=user.id,
        device_info=DeviceInfo(
            platform=device.platform,
            hostname=device.hostname,
            app_version=device.app_version,
            os_version=device.os_version,
            electron_version=device.electron_version,
        ),
        ip_address=get_client_ip(request),
        desktop_key_id=payload.desktop_key_id,
    )
    return HeartbeatResponse(session_id=session_id, server_time=utc_now())


@router.get(
    "",
    response_model=DesktopSessionsResponse,
    summary="List desktop sessions",
    dependencies=[
        Depends(
            rate_limit_by_user(
                "sessions:list",
                require_session_viewer,
                limit=settings.RATE_LIMIT_SESSIONS_REQUESTS,
                window=settings.RATE_LIMIT_DEFAULT_WINDOW,
            )
        )
    ],
    description="""
## List Desktop Sessions

Requires the **admin** or **tester** role, with either a Bearer access token
or the browser session. Sessions are returned most-recently-seen first, up to
`SESSION_LIST_LIMIT` (100).

A session is reported active only if it has not been deactivated and sent a
heartbeat within `DESKTOP_SESSION_LIVENESS_SECONDS` (5 minutes).
""",
)
async def list_sessions(
    operator: Annotated[User, Depends(require_session_viewer)],
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
    active_only: Annotated[bool, Query(alias="activeOnly")] = False,
) -> DesktopSessionsResponse:
    listing = await registry.list_sessions(active_only=active_only)
    return DesktopSessionsResponse(
        sessions=[DesktopSessionResponse(**asdict(entry)) for entry in listing.sessions],
        total=listing.total,
        active_sessions=listing.active_sessions,
        total_users=listing.total_users,
    )


@router.delete(
    "/{session_id}",
    response_model=MessageResponse,
    summary="Deactivate a desktop session",
    dependencies=[
        Depends(
            rate_limit_by_user(
                "sessions:deactivate",
                require_admin,
                limit=settings.RATE_LIMIT_DEACTIVATE_REQUESTS,
                window=settings.RATE_LIMIT_DEFAULT_WINDOW,
            )
        )
    ],
    description="""
## Deactivate a Desktop Session

Requires the **admin** role. Deactivating an already inactive session
succeeds again; `404` is returned only for sessions that do not exist.
Limited to `RATE_LIMIT_DEACTIVATE_REQUESTS` (50) requests per hour per user.
""",
)
async def deactivate_session(
    session_id: UUID,
    operator: Annotated[User, Depends(require_admin)],
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> MessageResponse:
    outcome = await registry.deactivate(session_id)
    if outcome is DeactivateOutcome.NOT_FOUND:
        raise SessionNotFoundException()
    return MessageResponse(message="Session deactivated successfully")
