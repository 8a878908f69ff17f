from app.infrastructure.scheduler.jobs import (
    prune_rate_limit_windows,
    purge_expired_codes,
    sweep_stale_sessions,
)
from app.infrastructure.scheduler.main import scheduler, initialize_scheduler

__all__ = [
    "scheduler",
    "purge_expired_codes",
    "sweep_stale_sessions",
    "prune_rate_limit_windows",
    "initialize_scheduler",
]
