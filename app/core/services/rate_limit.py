"""
Rate limiting service with configurable backends.

This module provides fixed-window, per-user, per-endpoint rate limiting with
a shared SQL backend (default), a Redis backend and an in-memory backend for
single-instance deployments. Every admission is a single atomic operation in
the backing store, so any number of service instances agree on the count.

Failures of the backing store (errors or timeouts) fail closed: the request
is denied and told to retry after RATE_LIMIT_FAILURE_RETRY_SECONDS.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from functools import lru_cache
import math
from typing import Any, Callable, Literal

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import rate_limit_logger, settings
from app.core.db import AsyncSessionLocal
from app.core.db.crud import rate_limit_window_db
from app.core.db.models import RateLimitWindow
from app.core.exceptions.types import (
    DatabaseException,
    RateLimitExceededException,
    StorageUnavailableException,
)
from app.core.services.redis_service import RedisService
from app.core.utils import as_utc, utc_now

BackendName = Literal["database", "redis", "memory"]

RATE_LIMIT_KEY_PREFIX = "rate_limit:user:"


@dataclass
class RateLimitResult:
    """
    Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed.
        remaining: Number of remaining requests in the current window.
        limit: The maximum number of requests allowed.
        reset_at: When the rate limit window resets.
        retry_after: Seconds until the client can retry (only if not allowed).
        current: Requests admitted in the current window.
    """

    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime
    retry_after: int | None = None
    current: int = 0


def _seconds_until(moment: datetime, now: datetime) -> int:
    return max(1, math.ceil((moment - now).total_seconds()))


def build_result(
    count: int,
    window_start: datetime,
    allowed: bool,
    limit: int,
    window: int,
    now: datetime,
) -> RateLimitResult:
    """Translate a window's state after an admission into a RateLimitResult."""
    reset_at = as_utc(window_start) + timedelta(seconds=window)  # type: ignore[operator]
    if allowed:
        return RateLimitResult(
            allowed=True,
            remaining=max(0, limit - count),
            limit=limit,
            reset_at=reset_at,
            current=count,
        )
    return RateLimitResult(
        allowed=False,
        remaining=0,
        limit=limit,
        reset_at=reset_at,
        retry_after=_seconds_until(reset_at, now),
        current=count,
    )


def format_rate_limit_key(user_id: str, endpoint: str) -> str:
    """
    Format a rate limit key with consistent structure.

    Example:
        >>> format_rate_limit_key("42", "heartbeat")
        'rate_limit:user:42:heartbeat'
    """
    return f"{RATE_LIMIT_KEY_PREFIX}{user_id}:{endpoint}"


@dataclass
class WindowSnapshot:
    """
    Stored state of one (user, endpoint) window.

    `violations` counts denied requests; it is kept for monitoring and never
    influences admission.
    """

    user_id: str
    endpoint: str
    window_start: datetime
    request_count: int
    limit: int
    violations: int = 0
    updated_at: datetime | None = None


@dataclass
class EndpointUsage:
    endpoint: str
    requests: int = 0
    blocked: int = 0


@dataclass
class RateLimitOverview:
    """Totals across every stored window."""

    total_requests: int
    blocked_requests: int
    tracked_windows: int
    tracked_users: int
    top_endpoints: list[EndpointUsage] = field(default_factory=list)
    recent_violations: list[WindowSnapshot] = field(default_factory=list)


def describe_window(
    snapshot: WindowSnapshot | None, limit: int, window: int, now: datetime
) -> RateLimitResult:
    """Report what the next admission would see, without counting a request."""
    if snapshot is None or as_utc(snapshot.window_start) <= now - timedelta(  # type: ignore[operator]
        seconds=window
    ):
        return RateLimitResult(
            allowed=True,
            remaining=limit,
            limit=limit,
            reset_at=now + timedelta(seconds=window),
        )
    count = snapshot.request_count
    return build_result(count, snapshot.window_start, count < limit, limit, window, now)


def most_recent_first(snapshots: list[WindowSnapshot]) -> list[WindowSnapshot]:
    oldest = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(snapshots, key=lambda s: s.updated_at or oldest, reverse=True)


class RateLimitBackend(ABC):
    """
    Abstract base class for rate limit backends.

    Implementations must make `admit` a single atomic read-modify-write.
    """

    @abstractmethod
    async def admit(
        self, user_id: str, endpoint: str, limit: int, window: int, now: datetime
    ) -> RateLimitResult:
        """
        Record one request and decide whether it is admitted.

        Args:
            user_id: The identity being limited.
            endpoint: The logical endpoint name.
            limit: Maximum requests allowed in the window.
            window: Time window in seconds.
            now: The request time.

        Returns:
            RateLimitResult with the check outcome.
        """

    @abstractmethod
    async def get_window(self, user_id: str, endpoint: str) -> WindowSnapshot | None:
        """Read one stored window without recording a request."""

    @abstractmethod
    async def list_windows(self, user_id: str | None = None) -> list[WindowSnapshot]:
        """List stored windows, most recently updated first."""

    @abstractmethod
    async def reset(self, user_id: str, endpoint: str | None = None) -> int:
        """Forget one window, or all of a user's windows. Returns windows removed."""

    @abstractmethod
    async def prune(self, started_before: datetime) -> int:
        """Remove windows that started before the given time."""


class DatabaseBackend(RateLimitBackend):
    """
    SQL backend keyed by (user_id, endpoint) in `rate_limit_windows`.

    Each admission is one INSERT ... ON CONFLICT DO UPDATE statement in its
    own short transaction.
    """

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal
    ):
        self._session_factory = session_factory

    @staticmethod
    def _snapshot(record: RateLimitWindow) -> WindowSnapshot:
        return WindowSnapshot(
            user_id=record.user_id,
            endpoint=record.endpoint,
            window_start=as_utc(record.window_start),  # type: ignore[arg-type]
            request_count=record.request_count,
            limit=record.request_limit,
            violations=record.violation_count,
            updated_at=as_utc(record.updated_at),
        )

    async def admit(
        self, user_id: str, endpoint: str, limit: int, window: int, now: datetime
    ) -> RateLimitResult:
        async with self._session_factory.begin() as session:
            row = await rate_limit_window_db.admit(
                session,
                user_id=user_id,
                endpoint=endpoint,
                limit=limit,
                window_seconds=window,
                now=now,
                commit_self=False,
            )
        return build_result(
            row.request_count, row.window_start, bool(row.last_allowed), limit, window, now
        )

    async def get_window(self, user_id: str, endpoint: str) -> WindowSnapshot | None:
        async with self._session_factory() as session:
            record = await rate_limit_window_db.get_window(session, user_id, endpoint)
        return self._snapshot(record) if record is not None else None

    async def list_windows(self, user_id: str | None = None) -> list[WindowSnapshot]:
        async with self._session_factory() as session:
            records = await rate_limit_window_db.list_windows(session, user_id)
        return [self._snapshot(record) for record in records]

    async def reset(self, user_id: str, endpoint: str | None = None) -> int:
        async with self._session_factory.begin() as session:
            return await rate_limit_window_db.reset(
                session, user_id, endpoint, commit_self=False
            )

    async def prune(self, started_before: datetime) -> int:
        async with self._session_factory.begin() as session:
            return await rate_limit_window_db.prune(
                session, started_before, commit_self=False
            )


class RedisBackend(RateLimitBackend):
    """
    Redis-based rate limit backend.

    Each window is a hash (`window_start` and `updated_at` in ms, `count`,
    `limit`, `violations`, `allowed`) updated by a Lua script, so the
    reset / increment / deny decision runs atomically on the server. Keys
    expire with their window.
    """

    # Returns: [count, window_start_ms, allowed]
    _ADMIT_SCRIPT = """
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local limit = tonumber(ARGV[3])
    local start = tonumber(redis.call('HGET', KEYS[1], 'window_start'))
    local count = tonumber(redis.call('HGET', KEYS[1], 'count'))
    redis.call('HSET', KEYS[1], 'limit', limit, 'updated_at', now)
    if start == nil or count == nil or now - start >= window then
        redis.call('HSET', KEYS[1], 'window_start', now, 'count', 1, 'allowed', 1)
        redis.call('PEXPIRE', KEYS[1], window)
        return {1, now, 1}
    end
    if count < limit then
        count = redis.call('HINCRBY', KEYS[1], 'count', 1)
        redis.call('HSET', KEYS[1], 'allowed', 1)
        return {count, start, 1}
    end
    redis.call('HINCRBY', KEYS[1], 'violations', 1)
    redis.call('HSET', KEYS[1], 'allowed', 0)
    return {count, start, 0}
    """

    @staticmethod
    def _to_ms(moment: datetime) -> int:
        return int(moment.timestamp() * 1000)

    @staticmethod
    def _from_ms(value: Any) -> datetime:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)

    def _snapshot(
        self, user_id: str, endpoint: str, values: dict[str, str]
    ) -> WindowSnapshot:
        return WindowSnapshot(
            user_id=user_id,
            endpoint=endpoint,
            window_start=self._from_ms(values["window_start"]),
            request_count=int(values.get("count", 0)),
            limit=int(values.get("limit", 0)),
            violations=int(values.get("violations", 0)),
            updated_at=(
                self._from_ms(values["updated_at"]) if "updated_at" in values else None
            ),
        )

    @staticmethod
    def _unavailable(action: str) -> StorageUnavailableException:
        return StorageUnavailableException(
            f"Redis unavailable while {action}",
            retry_after=settings.RATE_LIMIT_FAILURE_RETRY_SECONDS,
        )

    async def admit(
        self, user_id: str, endpoint: str, limit: int, window: int, now: datetime
    ) -> RateLimitResult:
        key = format_rate_limit_key(user_id, endpoint)
        reply = await RedisService.eval(
            self._ADMIT_SCRIPT,
            keys=[key],
            args=[self._to_ms(now), window * 1000, limit],
        )
        if reply is None:
            raise self._unavailable(f"admitting {key}")
        count, window_start_ms, allowed = reply
        return build_result(
            int(count), self._from_ms(window_start_ms), bool(int(allowed)), limit, window, now
        )

    async def get_window(self, user_id: str, endpoint: str) -> WindowSnapshot | None:
        key = format_rate_limit_key(user_id, endpoint)
        values = await RedisService.hgetall(key)
        if values is None:
            raise self._unavailable(f"reading {key}")
        if "window_start" not in values:
            return None
        return self._snapshot(user_id, endpoint, values)

    async def list_windows(self, user_id: str | None = None) -> list[WindowSnapshot]:
        pattern = format_rate_limit_key(user_id if user_id is not None else "*", "*")
        keys = await RedisService.scan_keys(pattern)
        if keys is None:
            raise self._unavailable(f"scanning {pattern}")

        snapshots = []
        for key in keys:
            # Endpoints may contain ':'; user ids do not
            owner, _, endpoint = key.removeprefix(RATE_LIMIT_KEY_PREFIX).partition(":")
            values = await RedisService.hgetall(key)
            if values is None:
                raise self._unavailable(f"reading {key}")
            if "window_start" in values:
                snapshots.append(self._snapshot(owner, endpoint, values))
        return most_recent_first(snapshots)

    async def reset(self, user_id: str, endpoint: str | None = None) -> int:
        if endpoint is not None:
            deleted = await RedisService.delete(format_rate_limit_key(user_id, endpoint))
            return 1 if deleted else 0
        return await RedisService.delete_pattern(format_rate_limit_key(user_id, "*"))

    async def prune(self, started_before: datetime) -> int:
        # Keys expire with their window
        return 0


class MemoryBackend(RateLimitBackend):
    """
    In-memory rate limit backend.

    Only correct for a single-instance deployment: counts are neither shared
    between processes nor kept across restarts.
    """

    def __init__(self):
        self._store: dict[tuple[str, str], WindowSnapshot] = {}
        self._lock = asyncio.Lock()

    async def admit(
        self, user_id: str, endpoint: str, limit: int, window: int, now: datetime
    ) -> RateLimitResult:
        key = (user_id, endpoint)
        async with self._lock:
            entry = self._store.get(key)
            if entry is None or entry.window_start <= now - timedelta(seconds=window):
                entry = WindowSnapshot(
                    user_id=user_id,
                    endpoint=endpoint,
                    window_start=now,
                    request_count=1,
                    limit=limit,
                    violations=entry.violations if entry else 0,
                    updated_at=now,
                )
                allowed = True
            elif entry.request_count < limit:
                entry = replace(
                    entry, request_count=entry.request_count + 1, limit=limit, updated_at=now
                )
                allowed = True
            else:
                entry = replace(
                    entry, violations=entry.violations + 1, limit=limit, updated_at=now
                )
                allowed = False
            self._store[key] = entry

        return build_result(
            entry.request_count, entry.window_start, allowed, limit, window, now
        )

    async def get_window(self, user_id: str, endpoint: str) -> WindowSnapshot | None:
        return self._store.get((user_id, endpoint))

    async def list_windows(self, user_id: str | None = None) -> list[WindowSnapshot]:
        return most_recent_first(
            [
                entry
                for entry in self._store.values()
                if user_id is None or entry.user_id == user_id
            ]
        )

    async def reset(self, user_id: str, endpoint: str | None = None) -> int:
        async with self._lock:
            keys = [
                key
                for key in self._store
                if key[0] == user_id and (endpoint is None or key[1] == endpoint)
            ]
            for key in keys:
                del self._store[key]
        return len(keys)

    async def prune(self, started_before: datetime) -> int:
        async with self._lock:
            stale = [
                key
                for key, entry in self._store.items()
                if entry.window_start < started_before
            ]
            for key in stale:
                del self._store[key]
        return len(stale)


def _create_backend(name: BackendName) -> RateLimitBackend:
    if name == "redis":
        return RedisBackend()
    if name == "memory":
        rate_limit_logger.warning(
            "Using in-memory rate limit backend: limits are per process and only "
            "correct for a single-instance deployment"
        )
        return MemoryBackend()
    return DatabaseBackend()


class RateLimiter:
    """
    Fixed-window rate limiter with configurable backend.

    Args:
        backend: A backend instance or name ("database", "redis" or "memory").
                 If None, uses settings.RATE_LIMIT_BACKEND.
        clock: Returns the current UTC time. Defaults to utc_now.
        timeout: Seconds to wait for the backend before failing closed.

    Example:
        >>> limiter = RateLimiter(backend="memory")
        >>> result = await limiter.admit("user-1", "heartbeat", limit=150, window=3600)
        >>> if not result.allowed:
        ...     raise RateLimitExceededException(retry_after=result.retry_after)
    """

    def __init__(
        self,
        backend: RateLimitBackend | BackendName | None = None,
        clock: Callable[[], datetime] = utc_now,
        timeout: float | None = None,
    ):
        if backend is None:
            backend = settings.RATE_LIMIT_BACKEND
        if isinstance(backend, str):
            backend = _create_backend(backend)

        self._backend: RateLimitBackend = backend
        self._clock = clock
        self._timeout = (
            timeout if timeout is not None else settings.STORE_OPERATION_TIMEOUT_SECONDS
        )

        rate_limit_logger.debug(
            f"RateLimiter initialized with {type(backend).__name__}"
        )

    @property
    def backend(self) -> RateLimitBackend:
        return self._backend

    def _denied_on_failure(self, limit: int, now: datetime) -> RateLimitResult:
        retry_after = settings.RATE_LIMIT_FAILURE_RETRY_SECONDS
        return RateLimitResult(
            allowed=False,
            remaining=0,
            limit=limit,
            reset_at=now + timedelta(seconds=retry_after),
            retry_after=retry_after,
        )

    async def admit(
        self,
        user_id: str,
        endpoint: str,
        limit: int | None = None,
        window: int | None = None,
    ) -> RateLimitResult:
        """
        Record a request and decide whether it is admitted.

        Args:
            user_id: The identity being limited.
            endpoint: The logical endpoint name.
            limit: Maximum requests allowed. Defaults to settings.RATE_LIMIT_DEFAULT_REQUESTS.
            window: Time window in seconds. Defaults to settings.RATE_LIMIT_DEFAULT_WINDOW.

        Returns:
            RateLimitResult with the check outcome. Store failures produce a
            denial rather than an exception.
        """
        _limit = limit if limit is not None else settings.RATE_LIMIT_DEFAULT_REQUESTS
        _window = window if window is not None else settings.RATE_LIMIT_DEFAULT_WINDOW
        now = self._clock()

        try:
            result = await asyncio.wait_for(
                self._backend.admit(user_id, endpoint, _limit, _window, now),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            rate_limit_logger.error(
                f"Rate limit store timed out for user {user_id} on {endpoint}; denying"
            )
            return self._denied_on_failure(_limit, now)
        except (DatabaseException, StorageUnavailableException) as e:
            rate_limit_logger.error(
                f"Rate limit store failed for user {user_id} on {endpoint}; denying: {e}"
            )
            return self._denied_on_failure(_limit, now)

        if result.allowed:
            rate_limit_logger.debug(
                f"Rate limit check passed for user {user_id} on {endpoint}, "
                f"remaining: {result.remaining}"
            )
        else:
            rate_limit_logger.warning(
                f"Rate limit exceeded for user {user_id} on {endpoint}, "
                f"resets at {result.reset_at.isoformat()}"
            )
        return result

    async def get_status(
        self,
        user_id: str,
        endpoint: str,
        limit: int | None = None,
        window: int | None = None,
    ) -> RateLimitResult:
        """Report the current window for a user and endpoint without counting a request."""
        _limit = limit if limit is not None else settings.RATE_LIMIT_DEFAULT_REQUESTS
        _window = window if window is not None else settings.RATE_LIMIT_DEFAULT_WINDOW
        snapshot = await self._backend.get_window(user_id, endpoint)
        return describe_window(snapshot, _limit, _window, self._clock())

    def describe(
        self, snapshot: WindowSnapshot, window: int | None = None
    ) -> RateLimitResult:
        """Status of a listed window under the limit it was last admitted with."""
        _window = window if window is not None else settings.RATE_LIMIT_DEFAULT_WINDOW
        return describe_window(snapshot, snapshot.limit, _window, self._clock())

    async def list_windows(self, user_id: str | None = None) -> list[WindowSnapshot]:
        """Stored windows, most recently updated first, optionally for one user."""
        return await self._backend.list_windows(user_id)

    async def overview(self, top: int = 5) -> RateLimitOverview:
        """
        Summarise every stored window for operators.

        Args:
            top: How many endpoints and recent violations to report.

        Returns:
            Request and violation totals, the busiest endpoints and the windows
            that most recently denied a request.
        """
        windows = await self.list_windows()

        usage: dict[str, EndpointUsage] = {}
        for snapshot in windows:
            entry = usage.setdefault(snapshot.endpoint, EndpointUsage(snapshot.endpoint))
            entry.requests += snapshot.request_count
            entry.blocked += snapshot.violations

        return RateLimitOverview(
            total_requests=sum(s.request_count for s in windows),
            blocked_requests=sum(s.violations for s in windows),
            tracked_windows=len(windows),
            tracked_users=len({s.user_id for s in windows}),
            top_endpoints=sorted(
                usage.values(), key=lambda u: (-u.requests, u.endpoint)
            )[:top],
            recent_violations=[s for s in windows if s.violations > 0][:top],
        )

    async def reset(self, user_id: str, endpoint: str | None = None) -> int:
        """
        Reset the rate limit for one endpoint, or every endpoint, of a user.

        Returns:
            Number of windows removed.
        """
        removed = await self._backend.reset(user_id, endpoint)
        rate_limit_logger.info(
            f"Rate limit reset for user {user_id} on {endpoint or 'all endpoints'}: "
            f"{removed} window(s) removed"
        )
        return removed

    async def prune_stale(self, older_than: int | None = None) -> int:
        """
        Remove windows that started more than `older_than` seconds ago.

        Args:
            older_than: Age in seconds. Defaults to settings.RATE_LIMIT_PRUNE_AFTER_SECONDS.

        Returns:
            Number of windows removed.
        """
        age = older_than if older_than is not None else settings.RATE_LIMIT_PRUNE_AFTER_SECONDS
        return await self._backend.prune(self._clock() - timedelta(seconds=age))


def ensure_allowed(result: RateLimitResult) -> RateLimitResult:
    """
    Raise RateLimitExceededException for a denied result; return it otherwise.
    """
    if not result.allowed:
        raise RateLimitExceededException(
            retry_after=result.retry_after,
            reset_at=result.reset_at,
            limit=result.limit,
        )
    return result


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter built from settings."""
    return RateLimiter()


def rate_limit_by_user(
    endpoint: str,
    identity: Callable,
    limit: int | None = None,
    window: int | None = None,
) -> Callable:
    """
    Create a FastAPI dependency for per-user, per-endpoint rate limiting.

    The dependency resolves the caller through `identity` (any dependency
    returning an object with an `id`), then admits the request or raises
    RateLimitExceededException carrying the exact reset time.

    Args:
        endpoint: Logical endpoint name used as part of the window key.
        identity: Dependency that returns the authenticated user.
        limit: Maximum requests allowed. Defaults to settings.RATE_LIMIT_DEFAULT_REQUESTS.
        window: Time window in seconds. Defaults to settings.RATE_LIMIT_DEFAULT_WINDOW.

    Returns:
        A FastAPI dependency function.

    Example:
        >>> @router.post("/heartbeat")
        >>> async def heartbeat(
        ...     rate_limit: RateLimitResult = Depends(
        ...         rate_limit_by_user("heartbeat", get_current_user, limit=150)
        ...     )
        ... ):
        ...     return {"remaining": rate_limit.remaining}
    """

    async def dependency(
        user: Any = Depends(identity),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> RateLimitResult:
        result = await limiter.admit(str(user.id), endpoint, limit, window)
        return ensure_allowed(result)

    return dependency


__all__ = [
    "RateLimitResult",
    "WindowSnapshot",
    "EndpointUsage",
    "RateLimitOverview",
    "RateLimitBackend",
    "DatabaseBackend",
    "MemoryBackend",
    "RedisBackend",
    "RateLimiter",
    "build_result",
    "describe_window",
    "ensure_allowed",
    "format_rate_limit_key",
    "get_rate_limiter",
    "rate_limit_by_user",
]
