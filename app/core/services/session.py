"""
Cache-resident sessions and the per-session refresh lock.

Sessions are disposable: losing Redis costs users a re-login at worst,
and nothing here may turn a successful token rotation into a failure.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator
from uuid import UUID, uuid4

from pydantic import ValidationError
from redis.asyncio.lock import Lock
from redis.exceptions import RedisError

from app.core.config import auth_logger, settings
from app.core.exceptions.types import RateLimitExceededException
from app.core.schemas.auth import ClientMeta, SessionRecord
from app.core.services.redis_service import RedisService


class SessionManager:
    """
    Create, read, touch and drop SessionRecords, and serialize refreshes.

    Keys:
        ``session:{session_id}``: SessionRecord JSON, TTL SESSION_TTL_SECONDS.
        ``trainer_sessions:{trainer_id}``: set of that trainer's session ids.
        ``lock:refresh:{session_id}``: refresh lock, TTL REFRESH_LOCK_TTL_SECONDS.
    """

    SESSION_KEY = "session:{session_id}"
    TRAINER_SESSIONS_KEY = "trainer_sessions:{trainer_id}"
    REFRESH_LOCK_KEY = "lock:refresh:{session_id}"

    @classmethod
    def _session_key(cls, session_id: str) -> str:
        return cls.SESSION_KEY.format(session_id=session_id)

    @classmethod
    def _trainer_sessions_key(cls, trainer_id: UUID) -> str:
        return cls.TRAINER_SESSIONS_KEY.format(trainer_id=trainer_id)

    @classmethod
    async def create_session(
        cls,
        trainer_id: UUID,
        role: str = settings.TOKEN_ROLE,
        meta: ClientMeta | None = None,
    ) -> str:
        """
        Create a session and return its id.

        The id is returned even if Redis rejects the write, since the
        issued tokens are valid without a cached session.

        Args:
            trainer_id: The session owner.
            role: Role claim carried by the session.
            meta: Client user agent / IP.

        Returns:
            str: The new session id.
        """
        now = datetime.now(timezone.utc)
        record = SessionRecord(
            session_id=str(uuid4()),
            trainer_id=trainer_id,
            role=role,
            created_at=now,
            last_activity_at=now,
            user_agent=meta.user_agent if meta else None,
            ip_address=meta.ip_address if meta else None,
        )
        stored = await RedisService.set(
            cls._session_key(record.session_id),
            record.model_dump_json(),
            ttl=settings.SESSION_TTL_SECONDS,
        )
        if stored:
            await RedisService.sadd(
                cls._trainer_sessions_key(trainer_id),
                record.session_id,
                ttl=settings.SESSION_TTL_SECONDS,
            )
        else:
            auth_logger.warning(
                f"Session {record.session_id} for trainer {trainer_id} not cached"
            )
        return record.session_id

    @classmethod
    async def get_session(cls, session_id: str) -> SessionRecord | None:
        raw = await RedisService.get(cls._session_key(session_id))
        if raw is None:
            return None
        try:
            return SessionRecord.model_validate_json(raw)
        except ValidationError as e:
            auth_logger.warning(f"Dropping unreadable session {session_id}: {e}")
            await RedisService.delete(cls._session_key(session_id))
            return None

    @classmethod
    async def touch_session(cls, session_id: str) -> bool:
        """
        Bump last activity and extend the TTL.

        Returns:
            bool: False if the session is missing or Redis failed.
        """
        record = await cls.get_session(session_id)
        if record is None:
            return False
        record.last_activity_at = datetime.now(timezone.utc)
        return await RedisService.set(
            cls._session_key(session_id),
            record.model_dump_json(),
            ttl=settings.SESSION_TTL_SECONDS,
        )

    @classmethod
    async def delete_session(cls, session_id: str) -> None:
        record = await cls.get_session(session_id)
        await RedisService.delete(cls._session_key(session_id))
        if record is not None:
            await RedisService.srem(
                cls._trainer_sessions_key(record.trainer_id), session_id
            )

    @classmethod
    async def delete_all_sessions(cls, trainer_id: UUID) -> int:
        """Drop every cached session of a trainer. Returns sessions removed."""
        set_key = cls._trainer_sessions_key(trainer_id)
        session_ids = await RedisService.smembers(set_key) or set()
        removed = await RedisService.delete(
            *(cls._session_key(sid) for sid in session_ids)
        )
        await RedisService.delete(set_key)
        return removed

    @classmethod
    @asynccontextmanager
    async def refresh_lock(cls, session_id: str) -> AsyncIterator[bool]:
        """
        Hold the refresh lock of a session for the duration of the block.

        Waits up to REFRESH_LOCK_WAIT_SECONDS for a concurrent refresh of the
        same session to finish. The lock expires by itself after
        REFRESH_LOCK_TTL_SECONDS and is always released on exit.

        If Redis itself is down, the block runs without the lock (yielding
        False): the refresh token row lock still prevents a double rotation.

        Raises:
            RateLimitExceededException: The lock stayed held for the whole wait.

        Example:
            >>> async with SessionManager.refresh_lock(session_id):
            ...     ...  # rotate
        """
        name = cls.REFRESH_LOCK_KEY.format(session_id=session_id)
        lock: Lock | None = None
        store_down = False
        try:
            lock = await RedisService.acquire_lock(
                name,
                ttl=settings.REFRESH_LOCK_TTL_SECONDS,
                wait=settings.REFRESH_LOCK_WAIT_SECONDS,
            )
        except RedisError as e:
            store_down = True
            auth_logger.warning(
                f"Refresh lock unavailable for session {session_id}, "
                f"continuing under row lock only: {e}"
            )

        if lock is None and not store_down:
            raise RateLimitExceededException(
                "Token refresh already in progress. Please retry.",
                retry_after=1,
            )

        try:
            yield lock is not None
        finally:
            if lock is not None:
                await RedisService.release_lock(lock)


__all__ = ["SessionManager"]
