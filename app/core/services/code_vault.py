"""
Code vault for the desktop sign-in handshake.

A signed-in browser user is issued a short-lived, single-use code which the
desktop client redeems for a token pair. Codes live in the shared SQL store,
so any instance can redeem a code issued by any other, and redemption is a
single conditional UPDATE: however many requests race on one code, exactly
one of them consumes it.

Example usage:
    from app.core.services.code_vault import CodeVault

    vault = CodeVault()
    code = await vault.issue(identity)
    result = await vault.redeem(code)
    if result.status is RedeemStatus.REDEEMED:
        ...
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import auth_logger, settings
from app.core.db import AsyncSessionLocal
from app.core.db.crud import one_time_code_db
from app.core.enums import RedeemStatus, UserRole
from app.core.exceptions.types import StorageUnavailableException
from app.core.services.token_issuer import Identity
from app.core.utils import (
    as_utc,
    generate_one_time_code,
    hash_one_time_code,
    mask_code,
    utc_now,
)

R = TypeVar("R")

# Strong references to scheduled purge tasks so they are not garbage collected
_purge_tasks: set[asyncio.Task] = set()


@dataclass(frozen=True)
class RedeemResult:
    """Outcome of a redemption; `identity` is set only when the code was redeemed."""

    status: RedeemStatus
    identity: Identity | None = None

    @property
    def redeemed(self) -> bool:
        return self.status is RedeemStatus.REDEEMED


@dataclass(frozen=True)
class CodeInfo:
    """Read-only view of a stored code."""

    user_id: UUID
    email: str
    role: UserRole
    issued_at: datetime
    expires_at: datetime
    consumed: bool
    consumed_at: datetime | None


class CodeVault:
    """
    Issue, redeem and purge one-time codes.

    Args:
        session_factory: Creates sessions on the shared store.
        expiry: Code lifetime. Defaults to settings.ONE_TIME_CODE_EXPIRY_MINUTES.
        purge_delay: Seconds after redemption before the record is deleted.
            None disables the delayed purge (the periodic sweep still runs).
        clock: Returns the current UTC time.
        timeout: Seconds to wait for a store operation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        expiry: timedelta | None = None,
        purge_delay: float | None = settings.ONE_TIME_CODE_PURGE_DELAY_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self.expiry = expiry or timedelta(minutes=settings.ONE_TIME_CODE_EXPIRY_MINUTES)
        self.purge_delay = purge_delay
        self._clock = clock
        self._timeout = (
            timeout if timeout is not None else settings.STORE_OPERATION_TIMEOUT_SECONDS
        )

    async def _bounded(self, operation: Awaitable[R], action: str) -> R:
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            auth_logger.error(f"Code vault timed out while trying to {action}")
            raise StorageUnavailableException() from e

    async def issue(self, identity: Identity) -> str:
        """
        Mint a new code for an identity.

        Args:
            identity: The signed-in user the code vouches for.

        Returns:
            The plain code (64 hex characters). Only its hash is stored.

        Raises:
            StorageUnavailableException: If the store times out or no unique
                code could be stored.
            DatabaseException: If the store fails.
        """
        for attempt in range(1, settings.ONE_TIME_CODE_MAX_ISSUE_ATTEMPTS + 1):
            code = generate_one_time_code()
            now = self._clock()
            data: dict[str, Any] = {
                "code_hash": hash_one_time_code(code),
                "user_id": UUID(identity.user_id),
                "email": identity.email,
                "role": UserRole(identity.role),
                "issued_at": now,
                "expires_at": now + self.expiry,
                "consumed": False,
                "created_at": now,
                "updated_at": now,
            }

            inserted_id = await self._bounded(self._insert(data), "issue a code")
            if inserted_id is not None:
                auth_logger.info(
                    f"Issued one-time code {mask_code(code)} for user {identity.email}, "
                    f"expires in {int(self.expiry.total_seconds())}s"
                )
                return code

            auth_logger.warning(
                f"One-time code collision on attempt {attempt}; generating a new code"
            )

        raise StorageUnavailableException("Could not issue a unique code. Please retry.")

    async def _insert(self, data: dict[str, Any]) -> UUID | None:
        async with self._session_factory.begin() as session:
            return await one_time_code_db.insert_if_absent(
                session, data, commit_self=False
            )

    async def redeem(self, code: str) -> RedeemResult:
        """
        Consume a code exactly once.

        The consume is a conditional UPDATE (`consumed = false AND expires_at >= now`).
        Only when it matches nothing is the record re-read, to classify the
        failure as not found, expired (the record is then deleted) or consumed.

        Args:
            code: The plain code presented by the desktop client.

        Returns:
            RedeemResult with the status and, on success, the identity.

        Raises:
            StorageUnavailableException: If the store times out.
            DatabaseException: If the store fails.
        """
        code_hash = hash_one_time_code(code)
        now = self._clock()

        result = await self._bounded(self._redeem(code_hash, now), "redeem a code")

        if result.redeemed:
            auth_logger.info(
                f"One-time code {mask_code(code)} redeemed for user {result.identity.email}"  # type: ignore[union-attr]
            )
            self._schedule_purge(code_hash)
        else:
            auth_logger.warning(
                f"One-time code {mask_code(code)} rejected: {result.status.value}"
            )
        return result

    async def _redeem(self, code_hash: str, now: datetime) -> RedeemResult:
        async with self._session_factory.begin() as session:
            row = await one_time_code_db.consume(
                session, code_hash, now, commit_self=False
            )
            if row is not None:
                return RedeemResult(
                    status=RedeemStatus.REDEEMED,
                    identity=Identity(
                        user_id=str(row.user_id), email=row.email, role=row.role
                    ),
                )

            record = await one_time_code_db.get_by_hash(session, code_hash)
            if record is None:
                return RedeemResult(status=RedeemStatus.NOT_FOUND)

            if now > as_utc(record.expires_at):  # type: ignore[operator]
                await one_time_code_db.delete_by_conditions(
                    session,
                    [one_time_code_db.model.code_hash == code_hash],
                    commit_self=False,
                )
                return RedeemResult(status=RedeemStatus.EXPIRED)

            return RedeemResult(status=RedeemStatus.CONSUMED)

    def _schedule_purge(self, code_hash: str) -> None:
        if self.purge_delay is None:
            return
        task = asyncio.create_task(self._purge_after_delay(code_hash))
        _purge_tasks.add(task)
        task.add_done_callback(_purge_tasks.discard)

    async def _purge_after_delay(self, code_hash: str) -> None:
        await asyncio.sleep(self.purge_delay)  # type: ignore[arg-type]
        try:
            async with self._session_factory.begin() as session:
                await one_time_code_db.delete_by_conditions(
                    session,
                    [
                        one_time_code_db.model.code_hash == code_hash,
                        one_time_code_db.model.consumed.is_(True),
                    ],
                    commit_self=False,
                )
        except Exception as e:
            # The periodic sweep removes anything left behind
            auth_logger.warning(f"Delayed purge of consumed code failed: {e}")

    async def get_code_info(self, code: str) -> CodeInfo | None:
        """
        Look up a code without consuming it.

        Returns:
            The stored code's details, or None if it does not exist.
        """
        async with self._session_factory() as session:
            record = await self._bounded(
                one_time_code_db.get_by_hash(session, hash_one_time_code(code)),
                "look up a code",
            )
        if record is None:
            return None
        return CodeInfo(
            user_id=record.user_id,
            email=record.email,
            role=record.role,
            issued_at=as_utc(record.issued_at),  # type: ignore[arg-type]
            expires_at=as_utc(record.expires_at),  # type: ignore[arg-type]
            consumed=record.consumed,
            consumed_at=as_utc(record.consumed_at),
        )

    async def purge_expired(self) -> int:
        """
        Delete expired codes and consumed codes past the purge delay.

        Returns:
            The number of codes deleted.
        """
        now = self._clock()
        grace = timedelta(seconds=self.purge_delay or 0)
        async with self._session_factory.begin() as session:
            deleted = await one_time_code_db.purge(
                session, now=now, consumed_before=now - grace, commit_self=False
            )
        return deleted


def get_code_vault() -> CodeVault:
    return CodeVault()


__all__ = ["CodeInfo", "CodeVault", "RedeemResult", "get_code_vault"]
