"""
CRUD operations for RateLimitWindow model.

"""

from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import DateTime, Row, case, literal, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.crud.base import BaseDB
from app.core.db.models import RateLimitWindow
from app.core.exceptions.types import DatabaseException


def _timestamp(value: datetime):
    # Explicit type so drivers that cast bind parameters keep the timezone
    return literal(value, type_=DateTime(timezone=True))


class RateLimitWindowDB(BaseDB[RateLimitWindow]):
    def __init__(self):
        super().__init__(model=RateLimitWindow)

    async def admit(
        self,
        session: AsyncSession,
        user_id: str,
        endpoint: str,
        limit: int,
        window_seconds: int,
        now: datetime,
        commit_self: bool = True,
    ) -> Row:
        """
        Record one request against a fixed window in a single atomic statement.

        The first request for a key inserts a fresh window. Afterwards, under
        ON CONFLICT DO UPDATE:
        - an elapsed window (`window_start <= now - window`) restarts at `now`
          with a count of 1 and the request is admitted;
        - a window below its limit is incremented and the request is admitted;
        - a full window is left untouched apart from `violation_count`, and
          the request is denied.

        Args:
            session: The async database session.
            user_id: The identity being limited.
            endpoint: The logical endpoint name.
            limit: Maximum admitted requests per window.
            window_seconds: Window length in seconds.
            now: The admission time.
            commit_self: Whether to commit after the statement.

        Returns:
            A row with `request_count`, `window_start` and `last_allowed`
            reflecting the state after this request.

        Raises:
            DatabaseException: If a database error occurs.
        """
        table = self.model
        cutoff = now - timedelta(seconds=window_seconds)
        elapsed = table.window_start <= cutoff
        below_limit = table.request_count < limit

        try:
            stmt = self.insert(session).values(
                user_id=user_id,
                endpoint=endpoint,
                window_start=now,
                request_count=1,
                request_limit=limit,
                violation_count=0,
                last_allowed=True,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "endpoint"],
                set_={
                    "window_start": case(
                        (elapsed, _timestamp(now)), else_=table.window_start
                    ),
                    "request_count": case(
                        (elapsed, 1),
                        (below_limit, table.request_count + 1),
                        else_=table.request_count,
                    ),
                    "violation_count": case(
                        (elapsed, table.violation_count),
                        (below_limit, table.violation_count),
                        else_=table.violation_count + 1,
                    ),
                    "last_allowed": case(
                        (elapsed, True),
                        (below_limit, True),
                        else_=False,
                    ),
                    "request_limit": limit,
                    "updated_at": _timestamp(now),
                },
            ).returning(table.request_count, table.window_start, table.last_allowed)

            result = await session.execute(stmt)
            row = result.one()

            if commit_self:
                await session.commit()
            else:
                await session.flush()

            return row
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error recording rate limit admission for {endpoint}: {str(e)}"
            ) from e

    async def get_window(
        self, session: AsyncSession, user_id: str, endpoint: str
    ) -> RateLimitWindow | None:
        return await self.get_one_by_filters(
            session, {"user_id": user_id, "endpoint": endpoint}
        )

    async def list_windows(
        self, session: AsyncSession, user_id: str | None = None
    ) -> Sequence[RateLimitWindow]:
        """
        List windows most-recently-updated first, optionally for one user.

        Raises:
            DatabaseException: If a database error occurs.
        """
        try:
            stmt = select(self.model).order_by(
                self.model.updated_at.desc(), self.model.endpoint
            )
            if user_id is not None:
                stmt = stmt.where(self.model.user_id == user_id)
            result = await session.execute(stmt)
            return result.scalars().all()
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error listing rate limit windows: {str(e)}") from e

    async def reset(
        self,
        session: AsyncSession,
        user_id: str,
        endpoint: str | None = None,
        commit_self: bool = True,
    ) -> int:
        """Delete one window, or every window of a user when no endpoint is given."""
        conditions = [self.model.user_id == user_id]
        if endpoint is not None:
            conditions.append(self.model.endpoint == endpoint)
        return await self.delete_by_conditions(
            session, conditions, commit_self=commit_self
        )

    async def prune(
        self,
        session: AsyncSession,
        started_before: datetime,
        commit_self: bool = True,
    ) -> int:
        """Delete windows that started before the given time."""
        return await self.delete_by_conditions(
            session,
            [self.model.window_start < started_before],
            commit_self=commit_self,
        )
