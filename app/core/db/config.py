from typing import Any

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncAttrs,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import database_logger, settings

ASYNC_SQLALCHEMY_DATABASE_URL = (
    settings.TEST_DATABASE_URL
    if settings.ENVIRONMENT == "test"
    else settings.DATABASE_URL
)


def _engine_options(url: str) -> dict[str, Any]:
    """
    Engine keyword arguments for the configured backend.

    SQLite (tests, single-box development) waits on its file lock instead of
    failing immediately; server databases get a sized, pre-pinged pool.
    """
    if url.startswith("sqlite"):
        return {"connect_args": {"timeout": 30}}
    return {
        "pool_size": 20,  # Increase pool size for concurrent connections
        "max_overflow": 30,  # Allow overflow connections
        "pool_pre_ping": True,  # Validate connections before use
        "pool_recycle": 3600,  # Recycle connections every hour
    }


async_engine: AsyncEngine = create_async_engine(
    ASYNC_SQLALCHEMY_DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_options(ASYNC_SQLALCHEMY_DATABASE_URL),
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    autoflush=False,
    expire_on_commit=False,
    autobegin=True,  # Automatically begin transactions
)


# Base class for declarative_base
class Base(AsyncAttrs, DeclarativeBase):
    pass


async def init_db() -> None:
    """
    Initializes the database by creating all the tables defined in the metadata.

    Returns:
        None
    """
    # Register every model on the metadata before creating tables
    import app.core.db.models  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    database_logger.info("Database tables created.")


async def dispose_db() -> None:
    """
    Dispose the database connection.
    This function is responsible for disposing the database connection by calling the `dispose()` method of the `async_engine` object.

    Returns:
        None
    """
    await async_engine.dispose()
