"""
Session registry for desktop clients.

Desktop clients send periodic heartbeats; each heartbeat upserts one row per
(user, hostname, platform). Whether a session is live is never stored: it is
derived at read time from `is_active` and how recently the session was seen,
so every instance agrees on liveness without coordination.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import session_logger, settings
from app.core.db import AsyncSessionLocal
from app.core.db.crud import desktop_session_db
from app.core.enums import DeactivateOutcome, DevicePlatform
from app.core.exceptions.types import StorageUnavailableException
from app.core.utils import as_utc, format_session_duration, utc_now

R = TypeVar("R")

UNKNOWN_OWNER = "Unknown"


@dataclass(frozen=True)
class DeviceInfo:
    platform: DevicePlatform
    hostname: str
    app_version: str
    os_version: str
    electron_version: str | None = None


@dataclass(frozen=True)
class SessionEntry:
    """A desktop session decorated for the operator listing."""

    id: UUID
    user_id: UUID
    user_name: str
    user_email: str
    platform: DevicePlatform
    hostname: str
    app_version: str
    os_version: str
    electron_version: str | None
    ip_address: str | None
    last_seen: datetime
    created_at: datetime
    is_active: bool
    duration: str


@dataclass(frozen=True)
class SessionListing:
    sessions: list[SessionEntry] = field(default_factory=list)
    total: int = 0
    active_sessions: int = 0
    total_users: int = 0


class SessionRegistry:
    """
    Record heartbeats, list sessions and sweep stale ones.

    Args:
        session_factory: Creates sessions on the shared store.
        liveness: A session not seen for this long is reported inactive.
            Defaults to settings.DESKTOP_SESSION_LIVENESS_SECONDS.
        list_limit: Maximum number of sessions in a listing.
        clock: Returns the current UTC time.
        timeout: Seconds to wait for a store operation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        liveness: timedelta | None = None,
        list_limit: int | None = None,
        clock: Callable[[], datetime] = utc_now,
        timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self.liveness = liveness or timedelta(
            seconds=settings.DESKTOP_SESSION_LIVENESS_SECONDS
        )
        self.list_limit = list_limit or settings.SESSION_LIST_LIMIT
        self._clock = clock
        self._timeout = (
            timeout if timeout is not None else settings.STORE_OPERATION_TIMEOUT_SECONDS
        )

    async def _bounded(self, operation: Awaitable[R], action: str) -> R:
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            session_logger.error(f"Session registry timed out while trying to {action}")
            raise StorageUnavailableException() from e

    async def heartbeat(
        self,
        user_id: str | UUID,
        device_info: DeviceInfo,
        ip_address: str | None,
        desktop_key_id: str | None = None,
    ) -> UUID:
        """
        Record a heartbeat from a desktop client.

        Creates the session on first contact; afterwards refreshes `last_seen`,
        the device fields and the IP address, and reactivates the session if
        it had been deactivated.

        Returns:
            The session id, stable across heartbeats from the same device.

        Raises:
            StorageUnavailableException: If the store times out.
            DatabaseException: If the store fails.
        """
        now = self._clock()
        data: dict[str, Any] = {
            "user_id": UUID(str(user_id)),
            "platform": DevicePlatform(device_info.platform),
            "hostname": device_info.hostname,
            "app_version": device_info.app_version,
            "os_version": device_info.os_version,
            "electron_version": device_info.electron_version,
            "desktop_key_id": desktop_key_id,
            "ip_address": ip_address,
        }

        desktop_session, created = await self._bounded(
            self._record(data, now), "record a heartbeat"
        )
        if created:
            session_logger.info(
                f"Desktop session registered: {desktop_session.id} "
                f"user={user_id} host={device_info.hostname} platform={data['platform'].value}"
            )
        else:
            session_logger.debug(f"Heartbeat recorded for session {desktop_session.id}")
        return desktop_session.id

    async def _record(self, data: dict[str, Any], now: datetime):
        async with self._session_factory.begin() as session:
            return await desktop_session_db.record_heartbeat(
                session, data, now=now, commit_self=False
            )

    def is_live(self, is_active: bool, last_seen: datetime, now: datetime) -> bool:
        return is_active and now - as_utc(last_seen) < self.liveness  # type: ignore[operator]

    async def list_sessions(self, active_only: bool = False) -> SessionListing:
        """
        List desktop sessions most-recently-seen first.

        Args:
            active_only: Only return sessions that are currently live.

        Returns:
            SessionListing whose `total` is the number of sessions returned,
            `active_sessions` the number of live sessions overall and
            `total_users` the number of distinct owners in the listing.
        """
        now = self._clock()
        seen_after = now - self.liveness

        rows, active_count = await self._bounded(
            self._list(seen_after if active_only else None, seen_after),
            "list sessions",
        )

        entries = []
        for desktop_session, user_name, user_email in rows:
            last_seen = as_utc(desktop_session.last_seen)
            created_at = as_utc(desktop_session.created_at)
            entries.append(
                SessionEntry(
                    id=desktop_session.id,
                    user_id=desktop_session.user_id,
                    user_name=user_name or UNKNOWN_OWNER,
                    user_email=user_email or UNKNOWN_OWNER,
                    platform=desktop_session.platform,
                    hostname=desktop_session.hostname,
                    app_version=desktop_session.app_version,
                    os_version=desktop_session.os_version,
                    electron_version=desktop_session.electron_version,
                    ip_address=desktop_session.ip_address,
                    last_seen=last_seen,  # type: ignore[arg-type]
                    created_at=created_at,  # type: ignore[arg-type]
                    is_active=self.is_live(desktop_session.is_active, last_seen, now),  # type: ignore[arg-type]
                    duration=format_session_duration(created_at, last_seen),  # type: ignore[arg-type]
                )
            )

        return SessionListing(
            sessions=entries,
            total=len(entries),
            active_sessions=active_count,
            total_users=len({entry.user_id for entry in entries}),
        )

    async def _list(self, filter_seen_after: datetime | None, seen_after: datetime):
        async with self._session_factory() as session:
            rows = await desktop_session_db.list_with_owners(
                session, seen_after=filter_seen_after, limit=self.list_limit
            )
            active_count = await desktop_session_db.count_live(session, seen_after)
        return rows, active_count

    async def deactivate(self, session_id: UUID) -> DeactivateOutcome:
        """
        Deactivate a desktop session.

        Repeating the call on an existing session is a no-op that still
        reports DEACTIVATED; NOT_FOUND means the id never existed or the row
        was swept.
        """
        now = self._clock()
        found = await self._bounded(self._deactivate(session_id, now), "deactivate a session")
        if not found:
            session_logger.warning(f"Deactivation requested for unknown session {session_id}")
            return DeactivateOutcome.NOT_FOUND

        session_logger.info(f"Desktop session deactivated: {session_id}")
        return DeactivateOutcome.DEACTIVATED

    async def _deactivate(self, session_id: UUID, now: datetime) -> bool:
        async with self._session_factory.begin() as session:
            return await desktop_session_db.deactivate(
                session, session_id, now=now, commit_self=False
            )

    async def sweep_stale(self, older_than: timedelta | None = None) -> int:
        """
        Delete sessions not seen within the retention period.

        Args:
            older_than: Retention period. Defaults to
                settings.DESKTOP_SESSION_RETENTION_SECONDS.

        Returns:
            The number of sessions deleted.
        """
        retention = older_than or timedelta(
            seconds=settings.DESKTOP_SESSION_RETENTION_SECONDS
        )
        async with self._session_factory.begin() as session:
            deleted = await desktop_session_db.sweep(
                session, seen_before=self._clock() - retention, commit_self=False
            )
        if deleted:
            session_logger.info(f"Swept {deleted} stale desktop sessions")
        return deleted


def get_session_registry() -> SessionRegistry:
    return SessionRegistry()


__all__ = [
    "DeviceInfo",
    "SessionEntry",
    "SessionListing",
    "SessionRegistry",
    "get_session_registry",
]
