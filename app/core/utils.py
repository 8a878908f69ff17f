"""
Utility functions shared across the application.

This module provides:
- Clock helpers (timezone-aware UTC "now", normalising naive store values)
- One-time code generation, hashing and log masking
- Human readable session durations
- Client IP extraction from proxy headers
"""

from datetime import datetime, timezone
import hashlib
import secrets

from fastapi import Request

from app.core.config import settings, utils_logger

# 32 random bytes, rendered as 64 hex characters
ONE_TIME_CODE_BYTES = 32

# Longest textual IPv6 address (IPv4-mapped form)
MAX_IP_ADDRESS_LENGTH = 45


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """
    Normalise a datetime read back from the store to timezone-aware UTC.

    Some drivers (SQLite) return naive datetimes for `DateTime(timezone=True)`
    columns; those values were written as UTC and are tagged as such.

    Args:
        value: The datetime to normalise. Can be None.

    Returns:
        The datetime in UTC, or None if the input was None.

    Examples:
        >>> as_utc(datetime(2024, 1, 1, 12, 0))
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_one_time_code() -> str:
    """
    Generate an opaque, unguessable one-time code.

    Returns:
        A 64 character hex string carrying 256 bits of randomness.
    """
    return secrets.token_hex(ONE_TIME_CODE_BYTES)


def hash_one_time_code(code: str) -> str:
    """
    Hash a one-time code for storage and lookup.

    Codes are high-entropy random values, so a plain SHA-256 digest is enough
    to keep the stored value useless to someone reading the table.

    Args:
        code: The plain one-time code.

    Returns:
        The SHA-256 hex digest (64 characters).
    """
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def mask_code(code: str | None) -> str:
    """
    Mask a one-time code for logging purposes, showing only its first 8 characters.

    Examples:
        >>> mask_code("0123456789abcdef")
        '01234567...'
        >>> mask_code(None)
        '<none>'
    """
    if not code:
        return "<none>"
    return f"{code[:8]}..."


def build_desktop_redirect_uri(code: str) -> str:
    """
    Build the deep link that hands a one-time code to the desktop client.

    Examples:
        >>> build_desktop_redirect_uri("abc")
        'phishguard://auth?code=abc'
    """
    return f"{settings.DESKTOP_URI_SCHEME}://auth?code={code}"


def format_session_duration(started_at: datetime, last_seen: datetime) -> str:
    """
    Format how long a desktop session has been alive.

    Args:
        started_at: When the session was first registered.
        last_seen: The most recent heartbeat.

    Returns:
        "Xd Yh" for sessions of a day or more, "Xh Ym" for an hour or more,
        otherwise "Xm".

    Examples:
        >>> start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        >>> format_session_duration(start, datetime(2024, 1, 3, 5, tzinfo=timezone.utc))
        '2d 5h'
        >>> format_session_duration(start, datetime(2024, 1, 1, 1, 5, tzinfo=timezone.utc))
        '1h 5m'
        >>> format_session_duration(start, datetime(2024, 1, 1, 0, 7, tzinfo=timezone.utc))
        '7m'
    """
    elapsed_seconds = (as_utc(last_seen) - as_utc(started_at)).total_seconds()  # type: ignore[operator]
    minutes = max(0, int(elapsed_seconds // 60))
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    return f"{minutes}m"


def get_client_ip(request: Request) -> str | None:
    """
    Extract the originating client IP address from a request.

    Prefers the first entry of `X-Forwarded-For`, then `X-Real-IP`, then the
    socket peer address. The result is truncated to the longest valid textual
    IP address.

    Args:
        request: The incoming request.

    Returns:
        The client IP address, or None if it cannot be determined.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()
    else:
        ip_address = request.headers.get("x-real-ip")
        if not ip_address and request.client:
            ip_address = request.client.host

    if not ip_address:
        utils_logger.debug("Client IP could not be determined from request")
        return None

    return ip_address[:MAX_IP_ADDRESS_LENGTH]


__all__ = [
    "utc_now",
    "as_utc",
    "generate_one_time_code",
    "hash_one_time_code",
    "mask_code",
    "build_desktop_redirect_uri",
    "format_session_duration",
    "get_client_ip",
]
