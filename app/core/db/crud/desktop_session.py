"""
CRUD operations for DesktopSession model.

"""

from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import Row, and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.crud.base import BaseDB
from app.core.db.models import DesktopSession, User
from app.core.exceptions.types import DatabaseException


class DesktopSessionDB(BaseDB[DesktopSession]):
    """
    CRUD operations for DesktopSession model.

    Liveness is never stored: callers pass the cutoff (`now - liveness window`)
    and a session counts as live when it is active and was seen after it.
    """

    def __init__(self):
        super().__init__(model=DesktopSession)

    def live_conditions(self, seen_after: datetime) -> list[Any]:
        return [
            self.model.is_active.is_(True),
            self.model.last_seen > seen_after,
        ]

    async def record_heartbeat(
        self,
        session: AsyncSession,
        data: dict[str, Any],
        now: datetime,
        commit_self: bool = True,
    ) -> tuple[DesktopSession, bool]:
        """
        Upsert the session for (user_id, hostname, platform).

        A heartbeat without a `desktop_key_id` keeps the key already stored.

        Returns:
            The session and whether this heartbeat created it.
        """
        keep = ["desktop_key_id"] if data.get("desktop_key_id") is None else None
        return await self.upsert(
            session,
            data={**data, "last_seen": now, "is_active": True},
            unique_fields=["user_id", "hostname", "platform"],
            exclude_from_update=keep,
            now=now,
            commit_self=commit_self,
        )

    async def list_with_owners(
        self,
        session: AsyncSession,
        seen_after: datetime | None,
        limit: int,
    ) -> Sequence[Row]:
        """
        List sessions most-recently-seen first, joined with their owner.

        Args:
            session: The async database session.
            seen_after: When given, only live sessions seen after this time are returned.
            limit: Maximum number of sessions to return.

        Returns:
            Rows of (DesktopSession, user name, user email). The user columns are
            None when the owner no longer exists.

        Raises:
            DatabaseException: If a database error occurs.
        """
        try:
            stmt = (
                select(self.model, User.name, User.email)
                .outerjoin(User, User.id == self.model.user_id)
                .order_by(self.model.last_seen.desc(), self.model.id)
                .limit(limit)
            )
            if seen_after is not None:
                stmt = stmt.where(and_(*self.live_conditions(seen_after)))
            result = await session.execute(stmt)
            return result.all()
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error listing desktop sessions: {str(e)}") from e

    async def count_live(self, session: AsyncSession, seen_after: datetime) -> int:
        return await self.count_by_conditions(session, self.live_conditions(seen_after))

    async def deactivate(
        self,
        session: AsyncSession,
        session_id: UUID,
        now: datetime,
        commit_self: bool = True,
    ) -> bool:
        """
        Mark a session inactive.

        Deactivating an already inactive session still matches the row, so
        repeated calls report success.

        Returns:
            True if the session exists, False otherwise.

        Raises:
            DatabaseException: If a database error occurs.
        """
        matched = await self.update_by_conditions(
            session,
            [self.model.id == session_id],
            {"is_active": False, "updated_at": now},
            commit_self=commit_self,
        )
        return matched > 0

    async def sweep(
        self,
        session: AsyncSession,
        seen_before: datetime,
        commit_self: bool = True,
    ) -> int:
        """Delete sessions whose last heartbeat is older than the given time."""
        return await self.delete_by_conditions(
            session,
            [self.model.last_seen < seen_before],
            commit_self=commit_self,
        )
