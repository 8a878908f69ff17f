"""
Test suite for database configuration and utilities.

Run tests:
    pytest tests/core/db/test_db_config.py -v
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from app.core.db.config import (
    AsyncSessionLocal,
    Base,
    _engine_options,
    async_engine,
    dispose_db,
    init_db,
)


class TestDatabaseConfiguration:

    def test_async_engine_is_async_engine(self):
        assert isinstance(async_engine, AsyncEngine)

    def test_async_session_local_is_sessionmaker(self):
        assert callable(AsyncSessionLocal)

    def test_all_tables_registered(self):
        import app.core.db.models  # noqa: F401

        assert {
            "users",
            "one_time_codes",
            "rate_limit_windows",
            "desktop_sessions",
        } <= set(Base.metadata.tables)

    def test_sqlite_waits_on_locks(self):
        options = _engine_options("sqlite+aiosqlite:///./test.db")

        assert options == {"connect_args": {"timeout": 30}}

    def test_server_database_gets_pool(self):
        options = _engine_options("postgresql+asyncpg://u:p@localhost/db")

        assert options["pool_pre_ping"] is True
        assert options["pool_size"] == 20


class TestInitDb:

    @pytest.mark.asyncio
    async def test_init_db_creates_tables(self):
        mock_conn = AsyncMock(spec=AsyncConnection)
        mock_begin = AsyncMock()
        mock_begin.__aenter__ = AsyncMock(return_value=mock_conn)
        mock_begin.__aexit__ = AsyncMock(return_value=None)

        with patch("app.core.db.config.async_engine") as mock_engine:
            mock_engine.begin.return_value = mock_begin

            await init_db()

        mock_engine.begin.assert_called_once()
        mock_conn.run_sync.assert_called_once_with(Base.metadata.create_all)


class TestDisposeDb:

    @pytest.mark.asyncio
    async def test_dispose_db_calls_engine_dispose(self):
        with patch("app.core.db.config.async_engine") as mock_engine:
            mock_engine.dispose = AsyncMock()

            await dispose_db()

            mock_engine.dispose.assert_called_once()
