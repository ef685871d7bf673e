"""
Redis service for sessions, lockout counters and distributed locks.

This module provides a singleton async Redis client. Every data method is
best-effort: it logs and returns a neutral value when Redis is unreachable,
because the state kept here can be lost without corrupting durable data.
The lock methods are the exception and let connection errors propagate,
so callers can tell "lock held elsewhere" apart from "lock store down".
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar

from redis.asyncio import Redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockError, RedisError

from app.core.config import redis_logger, settings

R = TypeVar("R")


def _decode(value: bytes | str | None) -> str | None:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class RedisService:
    """
    Singleton Redis service for async Redis operations.

    Attributes:
        _client: The async Redis client instance.
        _url: The Redis connection URL.

    Example:
        >>> await RedisService.init("redis://localhost:6379/0")
        >>> await RedisService.set("session:abc", "{...}", ttl=60)
        >>> value = await RedisService.get("session:abc")
        >>> await RedisService.aclose()
    """

    _client: Redis | None = None
    _url: str = settings.REDIS_URL

    @classmethod
    async def init(cls, url: str | None = None) -> None:
        """
        Initialize the Redis service with the given URL.

        Any existing client is closed first.

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
                decode_responses=False,  # Decoded in _decode
            )
            redis_logger.info("Redis client initialized")
        except Exception as e:
            redis_logger.error(f"Failed to initialize Redis client: {str(e)}")
            raise

    @classmethod
    async def aclose(cls) -> None:
        """Close the Redis client. Safe to call when not initialized."""
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
        return cls._client is not None

    @classmethod
    async def _best_effort(
        cls,
        op: str,
        key: Any,
        call: Callable[[Redis], Awaitable[R]],
        default: R,
    ) -> R:
        """Run `call` on the client, or log and return `default`."""
        if cls._client is None:
            redis_logger.warning(
                f"Redis {op}({key}) attempted but client not initialized"
            )
            return default
        try:
            return await call(cls._client)
        except Exception as e:
            redis_logger.error(f"Redis {op}({key}) failed: {str(e)}")
            return default

    @classmethod
    async def ping(cls) -> bool:
        async def _ping(client: Redis) -> bool:
            return bool(await client.ping())  # type: ignore[misc]

        return await cls._best_effort("ping", "", _ping, False)

    # =========================================================================
    # Strings and counters
    # =========================================================================

    @classmethod
    async def get(cls, key: str) -> str | None:
        """
        Get a value by key.

        Returns:
            The value as a string, None if missing or on error.
        """

        async def _get(client: Redis) -> str | None:
            return _decode(await client.get(key))

        return await cls._best_effort("get", key, _get, None)

    @classmethod
    async def set(
        cls,
        key: str,
        value: str,
        ttl: int | None = None,
        nx: bool = False,
    ) -> bool:
        """
        Set a value.

        Args:
            key: The key to set.
            value: The value to store.
            ttl: Optional time-to-live in seconds.
            nx: Only set the key if it does not already exist.

        Returns:
            bool: True if the value was written.
        """

        async def _set(client: Redis) -> bool:
            result = await client.set(key, value, ex=ttl, nx=nx)
            redis_logger.debug(f"Redis set({key}) result: {result}, TTL: {ttl}")
            return bool(result)

        return await cls._best_effort("set", key, _set, False)

    @classmethod
    async def incr(cls, key: str, ttl: int | None = None) -> int | None:
        """
        Increment a counter, creating it at 1. None on failure.

        With `ttl`, INCR and EXPIRE NX go out in one MULTI/EXEC, so a new
        counter never exists without a TTL and later increments keep the
        first expiry.
        """

        async def _incr(client: Redis) -> int | None:
            if ttl is None:
                return await client.incr(key)
            async with client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, ttl, nx=True)
                count, _ = await pipe.execute()
            return count

        return await cls._best_effort("incr", key, _incr, None)

    @classmethod
    async def delete(cls, *keys: str) -> int:
        """Delete keys. Returns how many existed (0 on error)."""
        if not keys:
            return 0

        async def _delete(client: Redis) -> int:
            return await client.delete(*keys)

        return await cls._best_effort("delete", keys, _delete, 0)

    # =========================================================================
    # Sets (per-trainer session indexes)
    # =========================================================================

    @classmethod
    async def sadd(cls, key: str, *members: str, ttl: int | None = None) -> int | None:
        """Add members to a set, optionally refreshing the set's TTL."""

        async def _sadd(client: Redis) -> int:
            added = await client.sadd(key, *members)  # type: ignore[misc]
            if ttl is not None:
                await client.expire(key, ttl)
            return added

        return await cls._best_effort("sadd", key, _sadd, None)

    @classmethod
    async def srem(cls, key: str, *members: str) -> int | None:
        async def _srem(client: Redis) -> int:
            return await client.srem(key, *members)  # type: ignore[misc]

        return await cls._best_effort("srem", key, _srem, None)

    @classmethod
    async def smembers(cls, key: str) -> set[str] | None:
        """All members of a set, or None on error."""

        async def _smembers(client: Redis) -> set[str]:
            result = await client.smembers(key)  # type: ignore[misc]
            return {m for m in map(_decode, result) if m is not None}

        return await cls._best_effort("smembers", key, _smembers, None)

    # =========================================================================
    # Distributed locks
    # =========================================================================

    @classmethod
    async def acquire_lock(
        cls,
        name: str,
        ttl: float,
        wait: float,
    ) -> Lock | None:
        """
        Acquire a distributed lock, blocking up to `wait` seconds.

        Uses redis-py's native lock (SET NX PX plus a Lua release script),
        so waiting and acquiring are one step and no other caller can take
        the lock in between. The lock expires after `ttl` seconds if its
        holder never releases it.

        Args:
            name: Lock key.
            ttl: Seconds before the lock expires on its own.
            wait: Maximum seconds to wait for the current holder.

        Returns:
            The held Lock, or None if it could not be acquired within `wait`.

        Raises:
            RedisError: If Redis is not initialized or unreachable.
        """
        if cls._client is None:
            redis_logger.warning(
                f"Redis lock({name}) attempted but client not initialized"
            )
            raise RedisError("Redis client not initialized")

        lock = cls._client.lock(
            name,
            timeout=ttl,
            sleep=0.1,
            blocking=True,
            blocking_timeout=wait,
            thread_local=False,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            redis_logger.error(f"Redis lock({name}) acquire failed: {str(e)}")
            raise

        if not acquired:
            redis_logger.info(f"Redis lock({name}) not acquired within {wait}s")
            return None
        redis_logger.debug(f"Redis lock({name}) acquired, TTL: {ttl}s")
        return lock

    @classmethod
    async def release_lock(cls, lock: Lock) -> bool:
        """
        Release a lock obtained from acquire_lock.

        A lock that already expired (and may now belong to someone else) is
        left alone.

        Returns:
            bool: True if this call released the lock.
        """
        try:
            await lock.release()
            return True
        except LockError as e:
            redis_logger.warning(f"Redis lock({lock.name}) release skipped: {str(e)}")
            return False
        except RedisError as e:
            redis_logger.error(f"Redis lock({lock.name}) release failed: {str(e)}")
            return False


__all__ = ["RedisService"]
