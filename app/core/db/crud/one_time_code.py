"""
CRUD operations for OneTimeCode model.

Every state change on a code is a single conditional statement so that
concurrent redemptions on any number of instances are decided by the store.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Row, and_, or_, update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.crud.base import BaseDB
from app.core.db.models import OneTimeCode
from app.core.exceptions.types import DatabaseException


class OneTimeCodeDB(BaseDB[OneTimeCode]):
    """
    CRUD operations for OneTimeCode model.

    Provides the insert-if-absent used when issuing, the conditional consume
    used when redeeming, and the sweep used by the scheduler.
    """

    def __init__(self):
        super().__init__(model=OneTimeCode)

    async def insert_if_absent(
        self,
        session: AsyncSession,
        data: dict[str, Any],
        commit_self: bool = True,
    ) -> UUID | None:
        """
        Insert a code unless its hash already exists.

        Args:
            session: The async database session.
            data: Column values for the new code (must include `code_hash`).
            commit_self: Whether to commit after inserting.

        Returns:
            The new row's id, or None if a code with the same hash exists.

        Raises:
            DatabaseException: If a database error occurs.
        """
        try:
            stmt = (
                self.insert(session)
                .values(**data)
                .on_conflict_do_nothing(index_elements=["code_hash"])
                .returning(self.model.id)
            )
            result = await session.execute(stmt)
            inserted_id = result.scalar_one_or_none()

            if commit_self:
                await session.commit()
            else:
                await session.flush()

            return inserted_id
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error inserting one-time code: {str(e)}") from e

    async def consume(
        self,
        session: AsyncSession,
        code_hash: str,
        now: datetime,
        commit_self: bool = True,
    ) -> Row | None:
        """
        Atomically mark an unexpired, unconsumed code as consumed.

        At most one caller can ever get a row back for a given code.

        Args:
            session: The async database session.
            code_hash: SHA-256 hash of the presented code.
            now: The redemption time.
            commit_self: Whether to commit after updating.

        Returns:
            A row with `id`, `user_id`, `email` and `role` if this call consumed
            the code, otherwise None.

        Raises:
            DatabaseException: If a database error occurs.
        """
        try:
            stmt = (
                sa_update(self.model)
                .where(
                    self.model.code_hash == code_hash,
                    self.model.consumed.is_(False),
                    self.model.expires_at >= now,
                )
                .values(consumed=True, consumed_at=now, updated_at=now)
                .returning(
                    self.model.id,
                    self.model.user_id,
                    self.model.email,
                    self.model.role,
                )
            )
            result = await session.execute(stmt)
            row = result.one_or_none()

            if commit_self:
                await session.commit()
            else:
                await session.flush()

            return row
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error consuming one-time code: {str(e)}") from e

    async def get_by_hash(
        self, session: AsyncSession, code_hash: str
    ) -> OneTimeCode | None:
        return await self.get_one_by_filters(session, {"code_hash": code_hash})

    async def purge(
        self,
        session: AsyncSession,
        now: datetime,
        consumed_before: datetime,
        commit_self: bool = True,
    ) -> int:
        """
        Delete codes that can no longer be redeemed.

        Args:
            session: The async database session.
            now: Codes that expired before this time are deleted, consumed or not.
            consumed_before: Consumed codes redeemed at or before this time are deleted.
            commit_self: Whether to commit after deleting.

        Returns:
            The number of codes deleted.
        """
        return await self.delete_by_conditions(
            session,
            [
                or_(
                    self.model.expires_at < now,
                    and_(
                        self.model.consumed.is_(True),
                        self.model.consumed_at <= consumed_before,
                    ),
                )
            ],
            commit_self=commit_self,
        )
