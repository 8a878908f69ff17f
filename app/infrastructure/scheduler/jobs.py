from datetime import timedelta

from app.core.config import scheduler_logger, settings
from app.core.services.code_vault import CodeVault
from app.core.services.rate_limit import get_rate_limiter
from app.core.services.session_registry import SessionRegistry


async def purge_expired_codes() -> None:
    """
    Periodic task to delete one-time codes that can no longer be redeemed.

    Removes codes past their expiry (consumed or not) and consumed codes whose
    delayed purge never ran, e.g. because the redeeming instance stopped.
    """
    scheduler_logger.info("Starting purge of expired one-time codes")
    deleted_count = await CodeVault().purge_expired()
    scheduler_logger.info(
        f"Completed purge of expired one-time codes. Deleted {deleted_count} record(s)."
    )


async def sweep_stale_sessions(retention_seconds: int | None = None) -> None:
    """
    Periodic task to delete desktop sessions not seen within the retention period.

    Args:
        retention_seconds (int | None): Sessions silent for longer than this are
            deleted. Defaults to settings.DESKTOP_SESSION_RETENTION_SECONDS.
    """
    retention = retention_seconds or settings.DESKTOP_SESSION_RETENTION_SECONDS
    scheduler_logger.info(
        f"Starting sweep of desktop sessions not seen for {retention} seconds"
    )
    deleted_count = await SessionRegistry().sweep_stale(
        older_than=timedelta(seconds=retention)
    )
    scheduler_logger.info(
        f"Completed sweep of stale desktop sessions. Deleted {deleted_count} record(s)."
    )


async def prune_rate_limit_windows(older_than_seconds: int | None = None) -> None:
    """
    Periodic task to delete rate limit windows that started long ago.

    Args:
        older_than_seconds (int | None): Windows that started earlier than this
            are deleted. Defaults to settings.RATE_LIMIT_PRUNE_AFTER_SECONDS.
    """
    age = older_than_seconds or settings.RATE_LIMIT_PRUNE_AFTER_SECONDS
    scheduler_logger.info(f"Starting prune of rate limit windows older than {age} seconds")
    deleted_count = await get_rate_limiter().prune_stale(older_than=age)
    scheduler_logger.info(
        f"Completed prune of rate limit windows. Deleted {deleted_count} record(s)."
    )
