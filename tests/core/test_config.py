"""
Test suite for application settings.

Run tests:
    pytest tests/core/test_config.py -v
"""

import pytest
from pydantic import ValidationError

from app.core.config import Settings


class TestDefaults:

    def test_handshake_defaults(self):
        settings = Settings(_env_file=None)  # type: ignore[call-arg]

        assert settings.ONE_TIME_CODE_EXPIRY_MINUTES == 15
        assert settings.JWT_ACCESS_EXPIRE_SECONDS == 3600
        assert settings.JWT_REFRESH_EXPIRE_SECONDS == 30 * 24 * 3600
        assert settings.RATE_LIMIT_HEARTBEAT_REQUESTS == 150
        assert settings.RATE_LIMIT_SESSIONS_REQUESTS == 100
        assert settings.DESKTOP_SESSION_LIVENESS_SECONDS == 300
        assert settings.DESKTOP_URI_SCHEME == "phishguard"


class TestSessionWindowValidation:

    def test_retention_shorter_than_liveness_is_rejected(self):
        with pytest.raises(ValidationError, match="DESKTOP_SESSION_RETENTION_SECONDS"):
            Settings(
                _env_file=None,  # type: ignore[call-arg]
                DESKTOP_SESSION_LIVENESS_SECONDS=600,
                DESKTOP_SESSION_RETENTION_SECONDS=300,
            )

    def test_equal_windows_are_accepted(self):
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            DESKTOP_SESSION_LIVENESS_SECONDS=600,
            DESKTOP_SESSION_RETENTION_SECONDS=600,
        )

        assert settings.DESKTOP_SESSION_RETENTION_SECONDS == 600


class TestProductionValidation:

    def test_default_secrets_rejected_in_production(self):
        with pytest.raises(ValidationError, match="JWT_ACCESS_SECRET_KEY"):
            Settings(_env_file=None, ENVIRONMENT="production")  # type: ignore[call-arg]

    def test_memory_backend_rejected_in_production(self):
        with pytest.raises(ValidationError, match="memory"):
            Settings(
                _env_file=None,  # type: ignore[call-arg]
                ENVIRONMENT="production",
                SESSION_SECRET_KEY="s" * 32,
                JWT_ACCESS_SECRET_KEY="a" * 32,
                JWT_REFRESH_SECRET_KEY="r" * 32,
                RATE_LIMIT_BACKEND="memory",
            )

    def test_configured_production_settings(self):
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            ENVIRONMENT="production",
            SESSION_SECRET_KEY="s" * 32,
            JWT_ACCESS_SECRET_KEY="a" * 32,
            JWT_REFRESH_SECRET_KEY="r" * 32,
            RATE_LIMIT_BACKEND="redis",
        )

        assert settings.RATE_LIMIT_BACKEND == "redis"

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, RATE_LIMIT_BACKEND="carrier-pigeon")  # type: ignore[call-arg]
