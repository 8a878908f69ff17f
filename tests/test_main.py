"""
Unit tests for the main FastAPI application.

- FastAPI app initialization and configuration
- Lifespan events (startup and shutdown)
- Health check endpoint
- Root endpoint
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.main import app, lifespan


def _session_override(execute: AsyncMock):
    """Build a get_async_session override whose session runs `execute`."""

    async def override():
        mock_session = AsyncMock(spec=AsyncSession)

        mock_cm = AsyncMock()
        mock_cm.__aenter__ = AsyncMock(return_value=mock_cm)
        mock_cm.__aexit__ = AsyncMock(return_value=None)
        mock_session.begin = MagicMock(return_value=mock_cm)
        mock_session.execute = execute

        yield mock_session

    return override


class TestAppConfiguration:

    def test_app_title(self):
        assert app.title == "PhishGuard API"

    def test_app_version(self):
        assert app.version == "1.0.0"

    def test_app_docs_urls(self):
        assert app.openapi_url == "/openapi.json"
        assert app.docs_url == "/docs"
        assert app.redoc_url == "/redoc"

    def test_app_has_cors_and_session_middleware(self):
        from starlette.middleware.cors import CORSMiddleware
        from starlette.middleware.sessions import SessionMiddleware

        middleware_types = [m.cls for m in app.user_middleware]

        assert CORSMiddleware in middleware_types
        assert SessionMiddleware in middleware_types

    def test_routes_registered(self):
        paths = app.openapi()["paths"]

        assert "/auth/code" in paths
        assert "/auth/token" in paths
        assert "/auth/refresh" in paths
        assert "/sessions/heartbeat" in paths
        assert "/sessions" in paths
        assert "/sessions/{session_id}" in paths
        assert "/rate-limits" in paths
        assert "/rate-limits/reset" in paths


class TestLifespanEvents:

    @pytest.fixture(autouse=True)
    def lifespan_mocks(self):
        """Provide common mocks for all lifespan tests."""
        with (
            patch("app.main.scheduler") as mock_scheduler,
            patch("app.main.initialize_scheduler") as mock_init_sched,
            patch("app.main.RedisService") as mock_redis,
            patch("app.main.dispose_db", new_callable=AsyncMock) as mock_dispose,
        ):
            mock_redis.init = AsyncMock()
            mock_redis.aclose = AsyncMock()
            mock_redis.is_connected.return_value = False
            mock_scheduler.running = True

            self.mocks = {
                "scheduler": mock_scheduler,
                "initialize_scheduler": mock_init_sched,
                "redis": mock_redis,
                "dispose_db": mock_dispose,
            }
            yield

    @pytest.mark.asyncio
    async def test_scheduler_started_and_stopped_when_enabled(self):
        with patch.object(settings, "ENABLE_SCHEDULER", True):
            async with lifespan(app):
                self.mocks["scheduler"].start.assert_called_once()
                self.mocks["initialize_scheduler"].assert_called_once()

        self.mocks["scheduler"].shutdown.assert_called_once()

    @pytest.mark.asyncio
    async def test_scheduler_skipped_when_disabled(self):
        with patch.object(settings, "ENABLE_SCHEDULER", False):
            async with lifespan(app):
                pass

        self.mocks["scheduler"].start.assert_not_called()
        self.mocks["initialize_scheduler"].assert_not_called()
        self.mocks["scheduler"].shutdown.assert_not_called()

    @pytest.mark.asyncio
    async def test_redis_initialized_for_redis_backend(self):
        self.mocks["redis"].is_connected.return_value = True

        with patch.object(settings, "RATE_LIMIT_BACKEND", "redis"):
            async with lifespan(app):
                pass

        self.mocks["redis"].init.assert_awaited_once_with(settings.REDIS_URL)
        self.mocks["redis"].aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_not_required_for_database_backend(self):
        with patch.object(settings, "RATE_LIMIT_BACKEND", "database"):
            async with lifespan(app):
                pass

        self.mocks["redis"].init.assert_not_called()
        self.mocks["redis"].aclose.assert_not_called()

    @pytest.mark.asyncio
    async def test_shutdown_disposes_database_engine(self):
        async with lifespan(app):
            self.mocks["dispose_db"].assert_not_called()

        self.mocks["dispose_db"].assert_awaited_once()


class TestRootEndpoint:

    @pytest.mark.asyncio
    async def test_root_endpoint_returns_welcome_message(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Welcome to PhishGuard API"
        assert data["version"] == "1.0.0"
        assert data["documentations"]["swagger"] == "http://test/docs"
        assert data["documentations"]["redoc"] == "http://test/redoc"

    def test_root_endpoint_not_in_schema(self):
        openapi_schema = app.openapi()
        assert "/" not in openapi_schema.get("paths", {})


class TestHealthCheckEndpoint:

    @pytest.mark.asyncio
    async def test_health_check_with_real_database(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "PhishGuard API is running" in data["message"]
        assert data["checks"] == {"database": "ok"}

    @pytest.mark.asyncio
    async def test_health_check_head_method_supported(self, client):
        response = await client.head("/health")

        assert response.status_code == 200
        assert len(response.content) == 0

    @pytest.mark.asyncio
    async def test_health_check_handles_database_failure(self):
        from sqlalchemy.exc import OperationalError

        from app.core.dependencies import get_async_session

        app.dependency_overrides[get_async_session] = _session_override(
            AsyncMock(side_effect=OperationalError("Database connection failed", None, None))
        )

        try:
            async with AsyncClient(
                transport=ASGITransport(app=app), base_url="http://test"
            ) as client:
                response = await client.get("/health")

            assert response.status_code == 503
            data = response.json()
            assert "One or more health checks failed" in data["detail"]
            assert data["details"]["checks"]["database"] == "unhealthy"
            assert data["details"]["status"] == "degraded"
        finally:
            app.dependency_overrides.clear()

    @pytest.mark.asyncio
    async def test_health_check_invalid_database_response(self):
        from app.core.dependencies import get_async_session

        mock_result = MagicMock()
        mock_result.scalar.return_value = 0
        app.dependency_overrides[get_async_session] = _session_override(
            AsyncMock(return_value=mock_result)
        )

        try:
            async with AsyncClient(
                transport=ASGITransport(app=app), base_url="http://test"
            ) as client:
                response = await client.get("/health")

            assert response.status_code == 503
        finally:
            app.dependency_overrides.clear()

    @pytest.mark.asyncio
    async def test_health_check_reports_redis_for_redis_backend(self, client):
        with (
            patch.object(settings, "RATE_LIMIT_BACKEND", "redis"),
            patch(
                "app.main.RedisService.ping", new_callable=AsyncMock, return_value=False
            ),
        ):
            response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["details"]["checks"] == {
            "database": "ok",
            "redis": "unhealthy",
        }
