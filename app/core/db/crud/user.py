from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.crud.base import BaseDB
from app.core.db.models import User
from app.core.exceptions.types import DatabaseException


class UserDB(BaseDB[User]):
    def __init__(self):
        super().__init__(model=User)

    async def get_by_email(self, session: AsyncSession, email: str) -> User | None:
        return await self.get_one_by_filters(session, {"email": email.lower()})

    async def get_names_by_ids(
        self, session: AsyncSession, user_ids: Iterable[str]
    ) -> dict[str, str]:
        """
        Map user ids to display names (the email when a user has no name).

        Ids that are not UUIDs or belong to no user are left out.

        Raises:
            DatabaseException: If a database error occurs.
        """
        ids = set()
        for user_id in user_ids:
            try:
                ids.add(UUID(str(user_id)))
            except ValueError:
                continue
        if not ids:
            return {}

        try:
            result = await session.execute(
                select(self.model.id, self.model.name, self.model.email).where(
                    self.model.id.in_(ids)
                )
            )
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error resolving user names: {str(e)}") from e
        return {str(row.id): row.name or row.email for row in result.all()}
