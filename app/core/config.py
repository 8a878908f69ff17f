from functools import lru_cache
import logging
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.logger import setup_logger, init_sentry


class Settings(BaseSettings):
    # Application settings
    ENVIRONMENT: str = "development"  # Options: development, production, test
    API_DOMAIN: str = "http://localhost:8000"
    APP_NAME: str = "PhishGuard API"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = """
Backend for the PhishGuard phishing-URL detection dashboard and its desktop companion.

## Desktop trust handshake

| Step | Endpoint | Description |
|------|----------|-------------|
| 1 | `POST /auth/code` | Signed-in browser user receives a one-time code and a `phishguard://` deep link. |
| 2 | `POST /auth/token` | Desktop client redeems the code (exactly once) for an access/refresh token pair. |
| 3 | `POST /auth/refresh` | Desktop client trades its refresh token for a new access token. |
| 4 | `POST /sessions/heartbeat` | Desktop client reports liveness and device metadata. |

Operators inspect and deactivate desktop sessions through `GET /sessions` and
`DELETE /sessions/{id}`. Every protected endpoint is rate limited per user.
"""
    DEBUG: bool = False

    # CORS settings
    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:3000"]
    CORS_ALLOW_CREDENTIALS: bool = True

    # Browser session settings (cookie written by the web login)
    SESSION_COOKIE_NAME: str = "session"
    SESSION_SECRET_KEY: str = "supersecretkey"
    SESSION_SAME_SITE_COOKIE_POLICY: Literal["lax", "strict", "none"] = "lax"

    # JWT settings
    JWT_ACCESS_SECRET_KEY: str = "access_secret_change_in_production"
    JWT_REFRESH_SECRET_KEY: str = "refresh_secret_change_in_production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "phishguard-api"
    JWT_AUDIENCE: str = "phishguard-client"
    JWT_ACCESS_EXPIRE_SECONDS: int = 3600  # 1 hour
    JWT_REFRESH_EXPIRE_SECONDS: int = 2592000  # 30 days

    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./phishguard.db"
    TEST_DATABASE_URL: str = "sqlite+aiosqlite:///./phishguard_test.db"
    STORE_OPERATION_TIMEOUT_SECONDS: float = 5.0

    # Redis settings
    REDIS_URL: str = "redis://localhost:6379/0"

    # One-time code settings
    ONE_TIME_CODE_EXPIRY_MINUTES: int = 15
    ONE_TIME_CODE_PURGE_DELAY_SECONDS: float = 1.0
    ONE_TIME_CODE_MAX_ISSUE_ATTEMPTS: int = 3
    DESKTOP_URI_SCHEME: str = "phishguard"

    # Rate limiting settings
    RATE_LIMIT_BACKEND: Literal["database", "redis", "memory"] = "database"
    RATE_LIMIT_DEFAULT_REQUESTS: int = 100
    RATE_LIMIT_DEFAULT_WINDOW: int = 3600  # seconds
    RATE_LIMIT_FAILURE_RETRY_SECONDS: int = 5
    RATE_LIMIT_PRUNE_AFTER_SECONDS: int = 86400
    RATE_LIMIT_HEARTBEAT_REQUESTS: int = 150
    RATE_LIMIT_SESSIONS_REQUESTS: int = 100
    RATE_LIMIT_REFRESH_REQUESTS: int = 60
    RATE_LIMIT_CODE_REQUESTS: int = 30
    RATE_LIMIT_DEACTIVATE_REQUESTS: int = 50
    RATE_LIMIT_OVERVIEW_REQUESTS: int = 100
    RATE_LIMIT_RESET_REQUESTS: int = 30

    # Desktop session settings
    DESKTOP_SESSION_LIVENESS_SECONDS: int = 300  # 5 minutes
    DESKTOP_SESSION_RETENTION_SECONDS: int = 3600
    SESSION_LIST_LIMIT: int = 100

    # Scheduler settings
    ENABLE_SCHEDULER: bool = True
    CODE_SWEEP_INTERVAL_SECONDS: int = 60
    SESSION_SWEEP_INTERVAL_SECONDS: int = 300
    RATE_LIMIT_PRUNE_INTERVAL_SECONDS: int = 3600

    # Sentry settings
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    model_config: SettingsConfigDict = SettingsConfigDict(  # type: ignore
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _validate_session_windows(self) -> "Settings":
        """Stale sessions must stay visible at least as long as they count as live."""
        if self.DESKTOP_SESSION_RETENTION_SECONDS < self.DESKTOP_SESSION_LIVENESS_SECONDS:
            raise ValueError(
                "DESKTOP_SESSION_RETENTION_SECONDS must be greater than or equal "
                "to DESKTOP_SESSION_LIVENESS_SECONDS."
            )
        return self

    @model_validator(mode="after")
    def _validate_production_secrets(self) -> "Settings":
        """Ensure insecure default secrets are overridden in production."""
        if self.ENVIRONMENT != "production":
            return self

        insecure_defaults: dict[str, str] = {
            "SESSION_SECRET_KEY": "supersecretkey",
            "JWT_ACCESS_SECRET_KEY": "access_secret_change_in_production",
            "JWT_REFRESH_SECRET_KEY": "refresh_secret_change_in_production",
        }

        still_default = [
            name
            for name, default_val in insecure_defaults.items()
            if getattr(self, name) == default_val
        ]

        if still_default:
            raise ValueError(
                f"ENVIRONMENT is 'production' but the following secrets still "
                f"have their insecure default values: {', '.join(still_default)}. "
                f"Set them via environment variables or .env file."
            )

        if self.RATE_LIMIT_BACKEND == "memory":
            raise ValueError(
                "RATE_LIMIT_BACKEND='memory' only works for a single instance; "
                "use 'database' or 'redis' in production."
            )

        return self


@lru_cache()
def get_settings() -> Settings:
    return Settings()  # type: ignore


settings = get_settings()

if not settings.DEBUG:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )

# One logger (and log file) per component, each tagged separately in Sentry
app_logger = setup_logger(
    name="app_logger",
    log_file="logs/app.log",
    level=logging.INFO,
    sentry_tag="app",
)
database_logger = setup_logger(
    name="database_logger",
    log_file="logs/database.log",
    level=logging.INFO,
    sentry_tag="database",
)
request_logger = setup_logger(
    name="request_logger",
    log_file="logs/requests.log",
    level=logging.INFO,
    sentry_tag="request",
)
scheduler_logger = setup_logger(
    name="scheduler_logger",
    log_file="logs/scheduler.log",
    level=logging.INFO,
    sentry_tag="scheduler",
)
utils_logger = setup_logger(
    name="utils_logger",
    log_file="logs/utils.log",
    level=logging.INFO,
    sentry_tag="utils",
)
auth_logger = setup_logger(
    name="auth_logger",
    log_file="logs/auth.log",
    level=logging.INFO,
    sentry_tag="auth",
)
redis_logger = setup_logger(
    name="redis_logger",
    log_file="logs/redis.log",
    level=logging.INFO,
    sentry_tag="redis",
)
rate_limit_logger = setup_logger(
    name="rate_limit_logger",
    log_file="logs/rate_limit.log",
    level=logging.INFO,
    sentry_tag="rate_limit",
)
session_logger = setup_logger(
    name="session_logger",
    log_file="logs/sessions.log",
    level=logging.INFO,
    sentry_tag="sessions",
)

__all__ = [
    "settings",
    "get_settings",
    "Settings",
    "app_logger",
    "database_logger",
    "request_logger",
    "scheduler_logger",
    "utils_logger",
    "auth_logger",
    "redis_logger",
    "rate_limit_logger",
    "session_logger",
]
