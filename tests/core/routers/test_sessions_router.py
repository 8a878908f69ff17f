"""
Integration tests for desktop session router endpoints.
"""

from uuid import uuid4

import pytest
from httpx import AsyncClient


HEARTBEAT_PAYLOAD = {
    "deviceInfo": {
        "platform": "win32",
        "appVersion": "1.4.2",
        "osVersion": "10.0.22631",
        "hostname": "ANALYST-LAPTOP",
        "electronVersion": "28.1.0",
    },
    "desktopKeyId": "key_123",
}


async def _heartbeat(client: AsyncClient, user, payload=None, headers=None):
    from tests.conftest import auth_headers

    return await client.post(
        "/sessions/heartbeat",
        json=payload or HEARTBEAT_PAYLOAD,
        headers={**auth_headers(user), **(headers or {})},
    )


class TestHeartbeatEndpoint:

    @pytest.mark.asyncio
    async def test_heartbeat_registers_session(self, client: AsyncClient, user):
        response = await _heartbeat(client, user)

        assert response.status_code == 200
        data = response.json()
        assert data["acknowledged"] is True
        assert data["sessionId"]
        assert data["serverTime"]

    @pytest.mark.asyncio
    async def test_repeat_heartbeat_returns_same_session(
        self, client: AsyncClient, user
    ):
        first = await _heartbeat(client, user)
        second = await _heartbeat(client, user)

        assert first.json()["sessionId"] == second.json()["sessionId"]

    @pytest.mark.asyncio
    async def test_keyless_heartbeat_keeps_desktop_key(
        self, client: AsyncClient, user
    ):
        from uuid import UUID

        from app.core.db import AsyncSessionLocal
        from app.core.db.crud import desktop_session_db

        keyless = {"deviceInfo": HEARTBEAT_PAYLOAD["deviceInfo"]}

        first = await _heartbeat(client, user)
        second = await _heartbeat(client, user, payload=keyless)

        assert second.status_code == 200
        async with AsyncSessionLocal() as session:
            stored = await desktop_session_db.get_by_id(
                session, UUID(first.json()["sessionId"])
            )
        assert stored.desktop_key_id == "key_123"

    @pytest.mark.asyncio
    async def test_heartbeat_records_forwarded_ip(
        self, client: AsyncClient, user, admin
    ):
        from tests.conftest import auth_headers

        await _heartbeat(
            client, user, headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
        )

        listing = await client.get("/sessions", headers=auth_headers(admin))
        assert listing.json()["sessions"][0]["ipAddress"] == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_unknown_platform_is_recorded_as_unknown(
        self, client: AsyncClient, user, admin
    ):
        from tests.conftest import auth_headers

        payload = {
            "deviceInfo": {
                "platform": "freebsd",
                "appVersion": "1.4.2",
                "hostname": "bsd-box",
            }
        }
        response = await _heartbeat(client, user, payload=payload)
        assert response.status_code == 200

        listing = await client.get("/sessions", headers=auth_headers(admin))
        session = listing.json()["sessions"][0]
        assert session["platform"] == "unknown"
        assert session["osVersion"] == ""
        assert session["electronVersion"] is None

    @pytest.mark.asyncio
    async def test_heartbeat_requires_token(self, client: AsyncClient):
        response = await client.post("/sessions/heartbeat", json=HEARTBEAT_PAYLOAD)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_heartbeat_rejects_refresh_token(self, client: AsyncClient, user):
        from tests.conftest import create_test_token_pair

        pair = create_test_token_pair(user)
        response = await client.post(
            "/sessions/heartbeat",
            json=HEARTBEAT_PAYLOAD,
            headers={"Authorization": f"Bearer {pair.refresh_token}"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_heartbeat_from_inactive_user(
        self, client: AsyncClient, inactive_user
    ):
        response = await _heartbeat(client, inactive_user)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_heartbeat_validates_device_info(self, client: AsyncClient, user):
        payload = {"deviceInfo": {"platform": "linux", "appVersion": "1.0.0"}}

        response = await _heartbeat(client, user, payload=payload)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_heartbeat_is_rate_limited(self, client: AsyncClient, app, user):
        from app.core.config import settings
        from app.core.services.rate_limit import (
            MemoryBackend,
            RateLimiter,
            get_rate_limiter,
        )

        limiter = RateLimiter(backend=MemoryBackend())
        app.dependency_overrides[get_rate_limiter] = lambda: limiter
        for _ in range(settings.RATE_LIMIT_HEARTBEAT_REQUESTS - 1):
            await limiter.admit(
                str(user.id),
                "sessions:heartbeat",
                limit=settings.RATE_LIMIT_HEARTBEAT_REQUESTS,
                window=settings.RATE_LIMIT_DEFAULT_WINDOW,
            )

        last_allowed = await _heartbeat(client, user)
        denied = await _heartbeat(client, user)

        assert last_allowed.status_code == 200
        assert denied.status_code == 429
        assert denied.json()["resetAt"] is not None
        assert denied.headers["X-RateLimit-Limit"] == str(
            settings.RATE_LIMIT_HEARTBEAT_REQUESTS
        )
        assert denied.headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_rate_limit_store_failure_denies(
        self, client: AsyncClient, app, user
    ):
        from unittest.mock import AsyncMock

        from app.core.exceptions.types import DatabaseException
        from app.core.services.rate_limit import (
            MemoryBackend,
            RateLimiter,
            get_rate_limiter,
        )

        backend = MemoryBackend()
        backend.admit = AsyncMock(side_effect=DatabaseException("down"))  # type: ignore[method-assign]
        app.dependency_overrides[get_rate_limiter] = lambda: RateLimiter(backend=backend)

        response = await _heartbeat(client, user)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "5"


class TestListSessionsEndpoint:

    @pytest.mark.asyncio
    async def test_admin_lists_sessions(self, client: AsyncClient, user, admin):
        from tests.conftest import auth_headers

        await _heartbeat(client, user)

        response = await client.get("/sessions", headers=auth_headers(admin))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["activeSessions"] == 1
        assert data["totalUsers"] == 1
        session = data["sessions"][0]
        assert session["userId"] == str(user.id)
        assert session["userName"] == "Desktop User"
        assert session["userEmail"] == user.email
        assert session["platform"] == "win32"
        assert session["hostname"] == "ANALYST-LAPTOP"
        assert session["isActive"] is True
        assert session["duration"] == "0m"

    @pytest.mark.asyncio
    async def test_tester_lists_sessions_with_browser_session(
        self, client: AsyncClient, user, tester
    ):
        from tests.conftest import browser_session_cookie

        await _heartbeat(client, user)

        response = await client.get(
            "/sessions", headers=browser_session_cookie(tester.id)
        )

        assert response.status_code == 200
        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_plain_user_is_forbidden(self, client: AsyncClient, user):
        from tests.conftest import auth_headers

        response = await client.get("/sessions", headers=auth_headers(user))

        assert response.status_code == 403
        assert response.json()["detail"] == "Insufficient permissions"

    @pytest.mark.asyncio
    async def test_anonymous_is_unauthorized(self, client: AsyncClient):
        response = await client.get("/sessions")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_active_only(self, client: AsyncClient, user, admin):
        from tests.conftest import auth_headers

        response = await _heartbeat(client, user)
        session_id = response.json()["sessionId"]
        await client.delete(f"/sessions/{session_id}", headers=auth_headers(admin))

        everything = await client.get("/sessions", headers=auth_headers(admin))
        active = await client.get(
            "/sessions", params={"activeOnly": "true"}, headers=auth_headers(admin)
        )

        assert everything.json()["total"] == 1
        assert everything.json()["sessions"][0]["isActive"] is False
        assert active.json()["total"] == 0
        assert active.json()["sessions"] == []


class TestDeactivateSessionEndpoint:

    @pytest.mark.asyncio
    async def test_admin_deactivates_session(self, client: AsyncClient, user, admin):
        from tests.conftest import auth_headers

        session_id = (await _heartbeat(client, user)).json()["sessionId"]

        response = await client.delete(
            f"/sessions/{session_id}", headers=auth_headers(admin)
        )

        assert response.status_code == 200
        assert response.json() == {
            "message": "Session deactivated successfully",
            "success": True,
        }

    @pytest.mark.asyncio
    async def test_repeat_deactivation_succeeds(self, client: AsyncClient, user, admin):
        from tests.conftest import auth_headers

        session_id = (await _heartbeat(client, user)).json()["sessionId"]

        first = await client.delete(f"/sessions/{session_id}", headers=auth_headers(admin))
        second = await client.delete(f"/sessions/{session_id}", headers=auth_headers(admin))

        assert first.status_code == second.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_session(self, client: AsyncClient, admin):
        from tests.conftest import auth_headers

        response = await client.delete(
            f"/sessions/{uuid4()}", headers=auth_headers(admin)
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Session not found."

    @pytest.mark.asyncio
    async def test_tester_cannot_deactivate(self, client: AsyncClient, user, tester):
        from tests.conftest import auth_headers

        session_id = (await _heartbeat(client, user)).json()["sessionId"]

        response = await client.delete(
            f"/sessions/{session_id}", headers=auth_headers(tester)
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_deactivation_is_rate_limited(
        self, client: AsyncClient, app, user, admin
    ):
        from app.core.config import settings
        from app.core.services.rate_limit import get_rate_limiter
        from tests.conftest import auth_headers, denying_rate_limiter

        session_id = (await _heartbeat(client, user)).json()["sessionId"]
        limiter = denying_rate_limiter()
        app.dependency_overrides[get_rate_limiter] = lambda: limiter

        response = await client.delete(
            f"/sessions/{session_id}", headers=auth_headers(admin)
        )

        assert response.status_code == 429
        user_id, endpoint, limit, _, _ = limiter.backend.admit.await_args.args
        assert (user_id, endpoint) == (str(admin.id), "sessions:deactivate")
        assert limit == settings.RATE_LIMIT_DEACTIVATE_REQUESTS

        app.dependency_overrides.pop(get_rate_limiter)
        listing = await client.get("/sessions", headers=auth_headers(admin))
        assert listing.json()["sessions"][0]["isActive"] is True

    @pytest.mark.asyncio
    async def test_malformed_session_id(self, client: AsyncClient, admin):
        from tests.conftest import auth_headers

        response = await client.delete("/sessions/not-a-uuid", headers=auth_headers(admin))

        assert response.status_code == 422
