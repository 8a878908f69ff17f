from datetime import datetime, timezone
from typing import (
    Any,
    TypeVar,
    Generic,
    Type,
    Sequence,
)
from uuid import UUID

from sqlalchemy import (
    SQLColumnExpression,
    and_,
    func,
    update as sa_update,
    delete as sa_delete,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql import Delete, Update

from app.core.exceptions.types import DatabaseException

T = TypeVar("T")


class BaseDB(Generic[T]):
    def __init__(self, model: Type[T]):
        self.model = model

    def insert(self, session: AsyncSession):
        """
        Build an INSERT for the dialect the session is bound to.

        Both the PostgreSQL and SQLite constructs support
        `on_conflict_do_update` / `on_conflict_do_nothing` and `excluded`.
        """
        if session.get_bind().dialect.name == "sqlite":
            return sqlite_insert(self.model)
        return pg_insert(self.model)

    async def get_by_id(
        self, session: AsyncSession, id: UUID, options: list[Any] = []
    ) -> T | None:
        """
        Asynchronously retrieves an instance of the model by its primary key.

        Args:
            session (AsyncSession): The asynchronous database session to use for the query.
            id (UUID): The primary key value of the model instance to retrieve.
            options (list[Any], optional): A list of SQLAlchemy loader options (e.g., selectinload). Defaults to an empty list.

        Returns:
            T | None: The model instance if found, otherwise None.

        Raises:
            DatabaseException: If an error occurs while querying the database.
        """
        try:
            stmt = (
                select(self.model)
                .options(*options)
                .where(getattr(self.model, "id") == id)
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error retrieving {self.model.__name__} with ID {id}: {str(e)}"
            ) from e

    async def get_one_by_filters(
        self, session: AsyncSession, filters: dict, options: list[Any] = []
    ) -> T | None:
        """
        Asynchronously retrieves a single record of the model that matches the given filters.

        Args:
            session (AsyncSession): The asynchronous database session to use for the query.
            filters (dict): A dictionary of filter conditions to apply to the query.
            options (list[Any], optional): A list of SQLAlchemy loader options (e.g., selectinload). Defaults to empty list.

        Returns:
            T | None: An instance of the model if found, otherwise None.

        Raises:
            DatabaseException: If an error occurs while querying the database.
        """
        try:
            stmt = select(self.model).options(*options).filter_by(**filters)
            result = await session.execute(stmt)
            return result.scalars().first()
        except (SQLAlchemyError, ValueError) as e:
            raise DatabaseException(
                f"Error retrieving one {self.model.__name__} with filters {filters}: {str(e)}"
            ) from e

    async def count_by_conditions(
        self,
        session: AsyncSession,
        conditions: Sequence[SQLColumnExpression],
    ) -> int:
        """
        Count records of the model matching the given conditions.

        Raises:
            DatabaseException: If an error occurs while querying the database.
        """
        try:
            stmt = select(func.count()).select_from(self.model).where(and_(*conditions))  # type: ignore[arg-type]
            result = await session.execute(stmt)
            return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error counting {self.model.__name__} with conditions {conditions}: {str(e)}"
            ) from e

    @staticmethod
    async def _finish(session: AsyncSession, commit_self: bool) -> None:
        if commit_self:
            await session.commit()
        else:
            await session.flush()

    async def create(
        self,
        session: AsyncSession,
        data: dict,
        commit_self: bool = True,
    ) -> T:
        """
        Add a new row built from `data` and return it refreshed.

        With `commit_self=False` the row is only flushed, leaving the caller's
        transaction open.

        Raises:
            DatabaseException: If the insert fails.
        """
        try:
            obj = self.model(**data)
            session.add(obj)
            await self._finish(session, commit_self)
            await session.refresh(obj)
            return obj
        except (SQLAlchemyError, ValueError) as e:
            raise DatabaseException(
                f"Error creating {self.model.__name__}: {str(e)}"
            ) from e

    async def update_by_conditions(
        self,
        session: AsyncSession,
        conditions: list[SQLColumnExpression],
        updates: dict,
        commit_self: bool = True,
    ) -> int:
        """Apply `updates` to every row matching `conditions`; returns the row count."""
        try:
            stmt: Update = (
                sa_update(self.model).where(and_(*conditions)).values(**updates)
            )
            result = await session.execute(stmt)
            await self._finish(session, commit_self)
            return result.rowcount  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error updating {self.model.__name__} with conditions {conditions}: {str(e)}"
            ) from e

    async def delete_by_conditions(
        self,
        session: AsyncSession,
        conditions: list[SQLColumnExpression],
        commit_self: bool = True,
    ) -> int:
        """Delete every row matching `conditions`; returns the row count."""
        try:
            stmt: Delete = sa_delete(self.model).where(and_(*conditions))
            result = await session.execute(stmt)
            await self._finish(session, commit_self)
            return result.rowcount  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error deleting {self.model.__name__} with conditions {conditions}: {str(e)}"
            ) from e

    async def upsert(
        self,
        session: AsyncSession,
        data: dict[str, Any],
        unique_fields: list[str],
        exclude_from_update: list[str] | None = None,
        now: datetime | None = None,
        commit_self: bool = True,
    ) -> tuple[T, bool]:
        """
        Upsert a record using INSERT ... ON CONFLICT ... DO UPDATE.

        Performs an atomic upsert operation: inserts a new record if it doesn't exist,
        or updates the existing record if there's a conflict on the unique fields.

        Args:
            session: Database session.
            data: Dictionary of all fields to set on the record.
            unique_fields: List of field names that form the unique constraint
                          for conflict detection (e.g., ["user_id", "hostname"]).
            exclude_from_update: Fields to exclude from updates on conflict.
                                 Defaults to ["id", "created_at"] plus the unique_fields.
            now: Timestamp written to created_at/updated_at. Defaults to the current UTC time.
            commit_self: Whether to commit after the operation.

        Returns:
            A tuple of (instance, created) where created is True if a new record
            was inserted, False if an existing record was updated.

        Raises:
            DatabaseException: If an error occurs during the operation.
            ValueError: If any unique_field is missing from data.
        """
        for field in unique_fields:
            if field not in data:
                raise ValueError(
                    f"Unique field '{field}' must be present in data for upsert"
                )

        try:
            default_exclude = {"id", "created_at", *unique_fields}
            if exclude_from_update:
                default_exclude.update(exclude_from_update)

            insert_data = {k: v for k, v in data.items() if k != "id"}

            now = now or datetime.now(timezone.utc)
            if hasattr(self.model, "created_at") and "created_at" not in insert_data:
                insert_data["created_at"] = now
            if hasattr(self.model, "updated_at") and "updated_at" not in insert_data:
                insert_data["updated_at"] = now

            update_set = {
                k: v for k, v in insert_data.items() if k not in default_exclude
            }
            if hasattr(self.model, "updated_at"):
                update_set["updated_at"] = now

            stmt = (
                self.insert(session)
                .values(**insert_data)
                .on_conflict_do_update(
                    index_elements=unique_fields,
                    set_=update_set,
                )
                .returning(self.model)
                .execution_options(populate_existing=True)
            )

            result = await session.execute(stmt)
            instance = result.scalar_one()
            await self._finish(session, commit_self)

            # created_at and updated_at only match when this call inserted the row
            created = False
            if hasattr(instance, "created_at") and hasattr(instance, "updated_at"):
                created_at = getattr(instance, "created_at")
                updated_at = getattr(instance, "updated_at")
                if created_at and updated_at:
                    created = created_at == updated_at

            return instance, created

        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error upserting {self.model.__name__}: {str(e)}"
            ) from e
