"""
Test suite for BaseDB CRUD operations.

Run all tests:
    pytest tests/core/db/crud/test_base.py -v

Run with coverage:
    pytest tests/core/db/crud/test_base.py --cov=app.core.db.crud.base --cov-report=term-missing -v
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from app.core.db import AsyncSessionLocal
from app.core.db.crud import user_db
from app.core.db.models import User
from app.core.enums import UserRole
from app.core.exceptions.types import DatabaseException


class TestBaseDBReads:

    @pytest.mark.asyncio
    async def test_get_by_id(self, user):
        async with AsyncSessionLocal() as session:
            found = await user_db.get_by_id(session, user.id)
            missing = await user_db.get_by_id(session, uuid4())

        assert found is not None
        assert found.email == user.email
        assert missing is None

    @pytest.mark.asyncio
    async def test_get_one_by_filters(self, user):
        async with AsyncSessionLocal() as session:
            found = await user_db.get_one_by_filters(session, {"email": user.email})

        assert found is not None
        assert found.id == user.id

    @pytest.mark.asyncio
    async def test_get_by_email_is_case_insensitive(self, user):
        async with AsyncSessionLocal() as session:
            found = await user_db.get_by_email(session, user.email.upper())

        assert found is not None
        assert found.id == user.id

    @pytest.mark.asyncio
    async def test_get_one_by_unknown_column_raises(self):
        async with AsyncSessionLocal() as session:
            with pytest.raises(DatabaseException):
                await user_db.get_one_by_filters(session, {"nickname": "x"})

    @pytest.mark.asyncio
    async def test_count_by_conditions(self, user, tester, inactive_user):
        async with AsyncSessionLocal() as session:
            active = await user_db.count_by_conditions(
                session, [User.is_active.is_(True)]
            )

        assert active == 2


class TestBaseDBWrites:

    @pytest.mark.asyncio
    async def test_create_with_commit(self):
        async with AsyncSessionLocal() as session:
            created = await user_db.create(
                session, {"email": "new@example.com", "name": "New", "role": UserRole.USER}
            )

        assert created.id is not None
        assert created.is_active is True

    @pytest.mark.asyncio
    async def test_create_inside_transaction(self):
        async with AsyncSessionLocal.begin() as session:
            await user_db.create(
                session,
                {"email": "txn@example.com", "role": UserRole.TESTER},
                commit_self=False,
            )

        async with AsyncSessionLocal() as session:
            assert await user_db.get_by_email(session, "txn@example.com") is not None

    @pytest.mark.asyncio
    async def test_create_duplicate_raises(self, user):
        async with AsyncSessionLocal() as session:
            with pytest.raises(DatabaseException, match="Error creating User"):
                await user_db.create(session, {"email": user.email, "role": UserRole.USER})

    @pytest.mark.asyncio
    async def test_update_by_conditions(self, user, tester):
        async with AsyncSessionLocal() as session:
            updated = await user_db.update_by_conditions(
                session, [User.role == UserRole.USER], {"is_active": False}
            )

        async with AsyncSessionLocal() as session:
            refreshed = await user_db.get_by_id(session, user.id)
            untouched = await user_db.get_by_id(session, tester.id)

        assert updated == 1
        assert refreshed.is_active is False
        assert untouched.is_active is True

    @pytest.mark.asyncio
    async def test_delete_by_conditions(self, user, tester):
        async with AsyncSessionLocal() as session:
            deleted = await user_db.delete_by_conditions(session, [User.id == user.id])

        async with AsyncSessionLocal() as session:
            assert await user_db.get_by_id(session, user.id) is None
            assert await user_db.get_by_id(session, tester.id) is not None

        assert deleted == 1


class TestBaseDBUpsert:

    @pytest.mark.asyncio
    async def test_upsert_raises_error_for_missing_unique_field(self):
        with pytest.raises(ValueError) as exc_info:
            await user_db.upsert(
                session=AsyncMock(),
                data={"name": "No Email"},
                unique_fields=["email"],
            )

        assert "Unique field 'email' must be present in data" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_upsert_handles_database_error(self):
        from sqlalchemy.exc import SQLAlchemyError

        mock_session = MagicMock()
        mock_session.execute = AsyncMock(
            side_effect=SQLAlchemyError("Database connection failed")
        )

        with pytest.raises(DatabaseException) as exc_info:
            await user_db.upsert(
                session=mock_session,
                data={"email": "x@example.com", "role": UserRole.USER},
                unique_fields=["email"],
            )

        assert "Error upserting User" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_upsert_inserts_then_updates(self):
        first_seen = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
        later = first_seen + timedelta(hours=1)
        data = {"email": "upsert@example.com", "name": "First", "role": UserRole.USER}

        async with AsyncSessionLocal() as session:
            inserted, created = await user_db.upsert(
                session, data=data, unique_fields=["email"], now=first_seen
            )
        async with AsyncSessionLocal() as session:
            updated, created_again = await user_db.upsert(
                session,
                data={**data, "name": "Second"},
                unique_fields=["email"],
                now=later,
            )

        assert created is True
        assert created_again is False
        assert updated.id == inserted.id
        assert updated.name == "Second"

    @pytest.mark.asyncio
    async def test_upsert_excludes_specified_fields_from_update(self):
        data = {"email": "keep@example.com", "name": "Original", "role": UserRole.USER}

        async with AsyncSessionLocal() as session:
            await user_db.upsert(session, data=data, unique_fields=["email"])
        async with AsyncSessionLocal() as session:
            updated, _ = await user_db.upsert(
                session,
                data={**data, "name": "Replaced", "role": UserRole.ADMIN},
                unique_fields=["email"],
                exclude_from_update=["name"],
            )

        assert updated.name == "Original"
        assert updated.role == UserRole.ADMIN
