"""
Scheduler Module for PhishGuard API.

Runs the periodic sweeps that keep the shared store small: expired one-time
codes, stale desktop sessions and old rate limit windows. None of the sweeps
is needed for correctness; every business check reads timestamps directly.

Standalone Usage:
    python -m app.infrastructure.scheduler.main
"""

import asyncio
import logging
import signal
from datetime import timezone

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import scheduler_logger, settings
from app.core.services import RedisService


logging.getLogger("apscheduler").setLevel(logging.INFO)

scheduler = AsyncIOScheduler(
    jobstores={"default": MemoryJobStore()},
    timezone=timezone.utc,
)


def schedule_purge_expired_codes_job(interval_seconds: int = 60) -> None:
    """
    Schedule the purge_expired_codes job to run at specified intervals.
    """
    # Import here to avoid circular import issues
    from app.infrastructure.scheduler.jobs import purge_expired_codes

    scheduler_logger.info(
        f"Scheduling 'purge_expired_codes' job to run every {interval_seconds} seconds"
    )
    scheduler.add_job(
        purge_expired_codes,
        trigger=IntervalTrigger(seconds=interval_seconds, timezone=timezone.utc),
        replace_existing=True,
        id="purge_expired_codes_job",
        misfire_grace_time=interval_seconds,
        coalesce=True,
    )
    scheduler_logger.info("'purge_expired_codes' job scheduled successfully.")


def schedule_sweep_stale_sessions_job(interval_seconds: int = 300) -> None:
    """
    Schedule the sweep_stale_sessions job to run at specified intervals.
    """
    from app.infrastructure.scheduler.jobs import sweep_stale_sessions

    scheduler_logger.info(
        f"Scheduling 'sweep_stale_sessions' job to run every {interval_seconds} seconds"
    )
    scheduler.add_job(
        sweep_stale_sessions,
        trigger=IntervalTrigger(seconds=interval_seconds, timezone=timezone.utc),
        replace_existing=True,
        id="sweep_stale_sessions_job",
        misfire_grace_time=interval_seconds,
        coalesce=True,
        kwargs={"retention_seconds": settings.DESKTOP_SESSION_RETENTION_SECONDS},
    )
    scheduler_logger.info("'sweep_stale_sessions' job scheduled successfully.")


def schedule_prune_rate_limit_windows_job(interval_seconds: int = 3600) -> None:
    """
    Schedule the prune_rate_limit_windows job to run at specified intervals.
    """
    from app.infrastructure.scheduler.jobs import prune_rate_limit_windows

    scheduler_logger.info(
        f"Scheduling 'prune_rate_limit_windows' job to run every {interval_seconds} seconds"
    )
    scheduler.add_job(
        prune_rate_limit_windows,
        trigger=IntervalTrigger(seconds=interval_seconds, timezone=timezone.utc),
        replace_existing=True,
        id="prune_rate_limit_windows_job",
        misfire_grace_time=60 * 5,  # 5 minutes grace time
        coalesce=True,
        kwargs={"older_than_seconds": settings.RATE_LIMIT_PRUNE_AFTER_SECONDS},
    )
    scheduler_logger.info("'prune_rate_limit_windows' job scheduled successfully.")


def initialize_scheduler() -> None:
    """
    Initialize the scheduler by scheduling all required jobs.

    This function should be called during application startup to ensure
    that all scheduled tasks are registered and ready to run.
    """
    schedule_purge_expired_codes_job(
        interval_seconds=settings.CODE_SWEEP_INTERVAL_SECONDS
    )
    schedule_sweep_stale_sessions_job(
        interval_seconds=settings.SESSION_SWEEP_INTERVAL_SECONDS
    )
    schedule_prune_rate_limit_windows_job(
        interval_seconds=settings.RATE_LIMIT_PRUNE_INTERVAL_SECONDS
    )


async def main() -> None:
    """
    Main entry point for standalone scheduler execution.

    Initializes Redis when it backs the rate limiter, starts the scheduler,
    and runs until interrupted.
    """
    # Track shutdown state
    shutdown_event = asyncio.Event()

    def handle_shutdown(signum, frame):
        scheduler_logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    # Register signal handlers
    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    scheduler_logger.info("Starting standalone scheduler...")

    try:
        if settings.RATE_LIMIT_BACKEND == "redis":
            scheduler_logger.info("Initializing Redis service...")
            await RedisService.init(settings.REDIS_URL)
            scheduler_logger.info("Redis service initialized successfully.")

        # Start scheduler
        scheduler_logger.info("Starting scheduler...")
        scheduler.start()
        scheduler_logger.info("Scheduler started successfully. Waiting for jobs...")
        initialize_scheduler()  # Schedule jobs after starting the scheduler
        # Wait for shutdown signal
        await shutdown_event.wait()

    except Exception as e:
        scheduler_logger.exception(f"Scheduler error: {e}")
        raise

    finally:
        scheduler_logger.info("Shutting down scheduler...")

        if scheduler.running:
            scheduler.shutdown(wait=True)
            scheduler_logger.info("Scheduler stopped successfully.")

        await RedisService.aclose()

        scheduler_logger.info("Scheduler shutdown complete.")


if __name__ == "__main__":
    asyncio.run(main())
