"""
Test suite for scheduler initialization.

Run tests:
    pytest tests/infrastructure/scheduler/test_scheduler_main.py -v
"""

from unittest.mock import patch

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.infrastructure.scheduler.main import (
    initialize_scheduler,
    schedule_prune_rate_limit_windows_job,
    schedule_purge_expired_codes_job,
    schedule_sweep_stale_sessions_job,
    scheduler,
)


class TestScheduler:
    """Test suite for scheduler instance."""

    def test_scheduler_is_async_io_scheduler(self):
        assert isinstance(scheduler, AsyncIOScheduler)

    def test_scheduler_has_utc_timezone(self):
        assert str(scheduler.timezone) == "UTC"


class TestScheduleJobs:

    def test_purge_expired_codes_job(self):
        from app.infrastructure.scheduler.jobs import purge_expired_codes

        with patch.object(scheduler, "add_job") as mock_add_job:
            schedule_purge_expired_codes_job(interval_seconds=30)

        args, kwargs = mock_add_job.call_args
        assert args[0] is purge_expired_codes
        assert kwargs["id"] == "purge_expired_codes_job"
        assert kwargs["replace_existing"] is True
        assert kwargs["coalesce"] is True
        assert isinstance(kwargs["trigger"], IntervalTrigger)
        assert kwargs["trigger"].interval.total_seconds() == 30

    def test_sweep_stale_sessions_job(self):
        from app.core.config import settings
        from app.infrastructure.scheduler.jobs import sweep_stale_sessions

        with patch.object(scheduler, "add_job") as mock_add_job:
            schedule_sweep_stale_sessions_job(interval_seconds=300)

        args, kwargs = mock_add_job.call_args
        assert args[0] is sweep_stale_sessions
        assert kwargs["id"] == "sweep_stale_sessions_job"
        assert kwargs["kwargs"] == {
            "retention_seconds": settings.DESKTOP_SESSION_RETENTION_SECONDS
        }

    def test_prune_rate_limit_windows_job(self):
        from app.core.config import settings
        from app.infrastructure.scheduler.jobs import prune_rate_limit_windows

        with patch.object(scheduler, "add_job") as mock_add_job:
            schedule_prune_rate_limit_windows_job(interval_seconds=3600)

        args, kwargs = mock_add_job.call_args
        assert args[0] is prune_rate_limit_windows
        assert kwargs["id"] == "prune_rate_limit_windows_job"
        assert kwargs["kwargs"] == {
            "older_than_seconds": settings.RATE_LIMIT_PRUNE_AFTER_SECONDS
        }

    def test_initialize_scheduler_registers_every_job(self):
        with patch.object(scheduler, "add_job") as mock_add_job:
            initialize_scheduler()

        job_ids = {call.kwargs["id"] for call in mock_add_job.call_args_list}
        assert job_ids == {
            "purge_expired_codes_job",
            "sweep_stale_sessions_job",
            "prune_rate_limit_windows_job",
        }
