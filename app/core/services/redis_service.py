"""
Redis service for the optional Redis rate-limit backend.

This module provides a singleton Redis client for async operations. Every
operation logs and swallows connection errors, returning None/False so the
caller decides how to degrade.
"""

from __future__ import annotations

from typing import Any

from redis.asyncio import Redis

from app.core.config import redis_logger, settings


class RedisService:
    """
    Singleton Redis service for async Redis operations.

    Attributes:
        _client: The async Redis client instance.
        _url: The Redis connection URL.

    Example:
        >>> await RedisService.init("redis://localhost:6379/0")
        >>> values = await RedisService.hgetall("rate_limit:user:42:heartbeat")
        >>> await RedisService.aclose()
    """

    _client: Redis | None = None
    _url: str = settings.REDIS_URL

    @classmethod
    async def init(cls, url: str | None = None) -> None:
        """
        Initialize the Redis service with the given URL.

        This method creates an async Redis client connection. If a client
        already exists, it will be closed before creating a new one.

        Args:
            url: The Redis connection URL. If None, uses settings.REDIS_URL.
        """
        if url is not None:
            cls._url = url

        await cls.aclose()

        try:
            cls._client = Redis.from_url(
                cls._url,
                encoding="utf-8",
                decode_responses=False,  # We handle decoding manually
            )
            redis_logger.info(f"Redis client initialized with URL: {cls._url}")
        except Exception as e:
            redis_logger.error(f"Failed to initialize Redis client: {str(e)}")
            raise

    @classmethod
    async def aclose(cls) -> None:
        """
        Close the Redis client connection.

        Safe to call even if the client is not initialized.
        """
        if cls._client is not None:
            try:
                await cls._client.aclose()
                redis_logger.info("Redis client closed successfully")
            except Exception as e:
                redis_logger.warning(f"Error closing Redis client: {str(e)}")
            finally:
                cls._client = None

    @classmethod
    def is_connected(cls) -> bool:
        """
        Check if the Redis client is initialized.

        Returns:
            bool: True if client is initialized, False otherwise.
        """
        return cls._client is not None

    @classmethod
    def _client_for(cls, operation: str) -> Redis | None:
        if cls._client is None:
            redis_logger.warning(
                f"Redis {operation} attempted but client not initialized"
            )
        return cls._client

    @classmethod
    async def ping(cls) -> bool:
        """Return True if the server answers PING."""
        client = cls._client_for("ping")
        if client is None:
            return False

        try:
            result = await client.ping()  # type: ignore[misc]
            redis_logger.debug("Redis ping successful")
            return bool(result)
        except Exception as e:
            redis_logger.error(f"Redis ping failed: {str(e)}")
            return False

    @classmethod
    async def delete(cls, *keys: str) -> bool:
        """
        Delete one or more keys from Redis.

        Returns:
            bool: True if at least one key was deleted, False otherwise or on error.
        """
        client = cls._client_for(f"delete({keys})")
        if client is None:
            return False

        try:
            deleted = await client.delete(*keys) > 0
            redis_logger.debug(f"Redis delete({keys}) result: {deleted}")
            return deleted
        except Exception as e:
            redis_logger.error(f"Redis delete({keys}) failed: {str(e)}")
            return False

    @classmethod
    async def delete_pattern(cls, pattern: str) -> int:
        """
        Delete all keys matching a pattern.

        Walks the keyspace with SCAN in batches of 100 rather than KEYS.

        Args:
            pattern: The pattern to match (e.g., "rate_limit:user:42:*").

        Returns:
            int: Number of keys deleted.
        """
        client = cls._client_for(f"delete_pattern({pattern})")
        if client is None:
            return 0

        deleted_count = 0
        cursor = 0
        try:
            while True:
                cursor, keys = await client.scan(cursor=cursor, match=pattern, count=100)
                if keys:
                    deleted_count += await client.delete(*keys)
                if cursor == 0:
                    break
        except Exception as e:
            redis_logger.error(f"Redis delete_pattern({pattern}) failed: {str(e)}")
            return 0

        redis_logger.debug(f"Redis delete_pattern({pattern}) deleted {deleted_count} keys")
        return deleted_count

    @classmethod
    async def scan_keys(cls, pattern: str) -> list[str] | None:
        """
        List the keys matching a pattern, using SCAN in batches of 100.

        Returns:
            The matching keys (in no particular order), None on error.
        """
        client = cls._client_for(f"scan_keys({pattern})")
        if client is None:
            return None

        found: list[str] = []
        cursor = 0
        try:
            while True:
                cursor, keys = await client.scan(cursor=cursor, match=pattern, count=100)
                found.extend(cls._decode(key) for key in keys)
                if cursor == 0:
                    break
        except Exception as e:
            redis_logger.error(f"Redis scan_keys({pattern}) failed: {str(e)}")
            return None
        return found

    @staticmethod
    def _decode(value: Any) -> Any:
        return value.decode("utf-8") if isinstance(value, bytes) else value

    @classmethod
    async def hgetall(cls, key: str) -> dict[str, str] | None:
        """
        Get all fields from a hash.

        Returns:
            Dict of field -> value (empty if the key does not exist), None on error.
        """
        client = cls._client_for(f"hgetall({key})")
        if client is None:
            return None

        try:
            result = await client.hgetall(key)  # type: ignore[misc]
        except Exception as e:
            redis_logger.error(f"Redis hgetall({key}) failed: {str(e)}")
            return None
        return {cls._decode(k): cls._decode(v) for k, v in (result or {}).items()}

    @classmethod
    async def eval(
        cls, script: str, keys: list[str], args: list[Any]
    ) -> list[Any] | None:
        """
        Run a Lua script atomically on the server.

        Args:
            script: The Lua source.
            keys: Values bound to KEYS.
            args: Values bound to ARGV (sent as strings).

        Returns:
            The script's (list) reply, or None if Redis is unavailable.
        """
        client = cls._client_for(f"eval({keys})")
        if client is None:
            return None

        try:
            result = await client.eval(  # type: ignore[misc]
                script, len(keys), *keys, *[str(a) for a in args]
            )
        except Exception as e:
            redis_logger.error(f"Redis eval({keys}) failed: {str(e)}")
            return None
        redis_logger.debug(f"Redis eval({keys}) result: {result}")
        return list(result)


__all__ = ["RedisService"]
