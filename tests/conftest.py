"""
Pytest configuration and core fixtures.

Integration tests run against a temporary SQLite database file that the
application's own engine points at. Tables are created once per session and
emptied before every test.
"""

import json
import os
import shutil
import tempfile
from base64 import b64encode
from pathlib import Path
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient


def pytest_configure(config):
    """Configure pytest with custom settings."""
    test_db_dir = tempfile.mkdtemp(prefix="phishguard-tests-")
    test_db_url = f"sqlite+aiosqlite:///{Path(test_db_dir) / 'test.db'}"
    config.test_db_dir = test_db_dir

    os.environ["ENVIRONMENT"] = "test"
    os.environ["DATABASE_URL"] = test_db_url
    os.environ["TEST_DATABASE_URL"] = test_db_url
    os.environ["ENABLE_SCHEDULER"] = "false"
    os.environ["RATE_LIMIT_BACKEND"] = "database"
    os.environ["SENTRY_DSN"] = ""

    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (require the test database)",
    )


@pytest.fixture(scope="session", autouse=True)
def setup_test_database(pytestconfig):
    """Create all tables at session start and remove the database file at the end."""
    import asyncio

    from app.core.db import dispose_db, init_db

    async def create_tables():
        await init_db()
        await dispose_db()

    asyncio.run(create_tables())
    yield os.environ["DATABASE_URL"]
    shutil.rmtree(pytestconfig.test_db_dir, ignore_errors=True)


@pytest.fixture(autouse=True)
async def clean_database():
    """Empty every table before a test and release pooled connections after it."""
    from app.core.db import Base, async_engine

    async with async_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())

    yield

    await async_engine.dispose()


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Drop the cached process-wide limiter so each test starts fresh."""
    from app.core.services.rate_limit import get_rate_limiter

    get_rate_limiter.cache_clear()
    yield
    get_rate_limiter.cache_clear()


# ============================================================================
# Users
# ============================================================================


async def _create_user(email: str, name: str | None, role, is_active: bool = True):
    from app.core.db import AsyncSessionLocal
    from app.core.db.crud import user_db

    async with AsyncSessionLocal.begin() as session:
        return await user_db.create(
            session,
            {"email": email, "name": name, "role": role, "is_active": is_active},
            commit_self=False,
        )


@pytest.fixture
async def user():
    from app.core.enums import UserRole

    return await _create_user("desktop.user@example.com", "Desktop User", UserRole.USER)


@pytest.fixture
async def tester():
    from app.core.enums import UserRole

    return await _create_user("tester@example.com", "Test Analyst", UserRole.TESTER)


@pytest.fixture
async def admin():
    from app.core.enums import UserRole

    return await _create_user("admin@example.com", "Site Admin", UserRole.ADMIN)


@pytest.fixture
async def inactive_user():
    from app.core.enums import UserRole

    return await _create_user(
        "inactive@example.com", "Former User", UserRole.USER, is_active=False
    )


@pytest.fixture
def create_user():
    """Factory fixture for tests that need several users."""
    return _create_user


# ============================================================================
# Credentials
# ============================================================================


def create_test_access_token(user) -> str:
    """Create an access token for a user."""
    from app.core.services.token_issuer import Identity, TokenIssuer

    return TokenIssuer().issue_access_token(
        Identity(user_id=str(user.id), email=user.email, role=user.role)
    )


def create_test_token_pair(user):
    from app.core.services.token_issuer import Identity, TokenIssuer

    return TokenIssuer().issue_token_pair(
        Identity(user_id=str(user.id), email=user.email, role=user.role)
    )


def auth_headers(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_test_access_token(user)}"}


def denying_rate_limiter():
    """A limiter that refuses every request; its backend's `admit` is an AsyncMock."""
    from unittest.mock import AsyncMock

    from app.core.services.rate_limit import MemoryBackend, RateLimiter, build_result

    backend = MemoryBackend()
    backend.admit = AsyncMock(  # type: ignore[method-assign]
        side_effect=lambda user_id, endpoint, limit, window, now: build_result(
            limit, now, False, limit, window, now
        )
    )
    return RateLimiter(backend=backend)


def browser_session_cookie(user_id) -> dict[str, str]:
    """
    Build the Cookie header the web login would have set for a signed-in user.

    Mirrors how Starlette's SessionMiddleware signs its cookie.
    """
    import itsdangerous

    from app.core.config import settings

    signer = itsdangerous.TimestampSigner(str(settings.SESSION_SECRET_KEY))
    data = b64encode(json.dumps({"user_id": str(user_id)}).encode("utf-8"))
    value = signer.sign(data).decode("utf-8")
    return {"Cookie": f"{settings.SESSION_COOKIE_NAME}={value}"}


# ============================================================================
# Application
# ============================================================================


@pytest.fixture
def app():
    """Create FastAPI application for testing."""
    from app.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide an async HTTP client.

    The code vault is overridden so redemptions do not leave delayed purge
    tasks running past the end of a test.
    """
    from app.core.services.code_vault import CodeVault, get_code_vault

    app.dependency_overrides[get_code_vault] = lambda: CodeVault(
        purge_delay=None, timeout=30
    )

    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


# ============================================================================
# Redis
# ============================================================================


@pytest.fixture(scope="session")
def redis_container():
    """Start a real Redis for the session; skipped where Docker is unavailable."""
    try:
        from testcontainers.core.container import DockerContainer
        from testcontainers.core.wait_strategies import LogMessageWaitStrategy
    except ImportError:
        pytest.skip("testcontainers not installed")

    container = DockerContainer("redis:7-alpine")
    container.with_exposed_ports(6379)
    container.waiting_for(LogMessageWaitStrategy("Ready to accept connections"))

    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Redis container could not start: {e}")
    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session")
def redis_url(redis_container) -> str:
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    return f"redis://{host}:{port}/0"


@pytest.fixture
async def live_redis(redis_url):
    """Point RedisService at the container and flush it after the test."""
    from app.core.services.redis_service import RedisService

    await RedisService.init(redis_url)

    yield RedisService

    if RedisService._client is not None:
        await RedisService._client.flushdb()
    await RedisService.aclose()
