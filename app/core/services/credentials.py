"""
Password hashing and brute-force lockout.

Failed-attempt counters live in Redis so every service instance sees the
same count. Keys:

- ``lockout:attempts:{trainer_id}``: consecutive failures, expiring after
  LOCKOUT_ATTEMPT_WINDOW_MINUTES of inactivity.
- ``lockout:until:{trainer_id}``: ISO timestamp of the lock expiry, with a
  TTL equal to the lock duration.

If Redis is unreachable the counters degrade to "never locked". Losing
them costs brute-force protection for the outage, never a legitimate login.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from anyio.to_thread import run_sync

from app.core.config import auth_logger, settings
from app.core.services.redis_service import RedisService
from app.core.utils import hash_password, verify_password


@dataclass(frozen=True)
class LockoutStatus:
    locked: bool
    locked_until: datetime | None = None

    @property
    def retry_after(self) -> int:
        """Whole seconds until the lock lifts (0 when not locked)."""
        if not self.locked or self.locked_until is None:
            return 0
        remaining = (self.locked_until - CredentialStore._now()).total_seconds()
        return max(1, int(remaining + 0.999))


class CredentialStore:
    """
    Password hashing plus the failed-login counter of each trainer.

    Example:
        >>> password_hash = await CredentialStore.hash_password("s3cret!pass")
        >>> await CredentialStore.verify_password("s3cret!pass", password_hash)
        True
        >>> await CredentialStore.record_failed_attempt(trainer.id)
        >>> await CredentialStore.remaining_attempts(trainer.id)
        4
    """

    ATTEMPTS_KEY = "lockout:attempts:{trainer_id}"
    LOCKED_UNTIL_KEY = "lockout:until:{trainer_id}"

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    @classmethod
    def _attempts_key(cls, trainer_id: UUID) -> str:
        return cls.ATTEMPTS_KEY.format(trainer_id=trainer_id)

    @classmethod
    def _locked_until_key(cls, trainer_id: UUID) -> str:
        return cls.LOCKED_UNTIL_KEY.format(trainer_id=trainer_id)

    # =========================================================================
    # Hashing
    # =========================================================================

    @staticmethod
    async def hash_password(password: str) -> str:
        """bcrypt hash at the configured cost, computed off the event loop."""
        return await run_sync(hash_password, password)

    @staticmethod
    async def verify_password(password: str, password_hash: str | None) -> bool:
        return await run_sync(verify_password, password, password_hash)

    # =========================================================================
    # Lockout
    # =========================================================================

    @classmethod
    async def is_locked(cls, trainer_id: UUID) -> LockoutStatus:
        raw = await RedisService.get(cls._locked_until_key(trainer_id))
        if raw is None:
            return LockoutStatus(locked=False)

        try:
            locked_until = datetime.fromisoformat(raw)
        except ValueError:
            auth_logger.warning(f"Discarding malformed lockout value for {trainer_id}")
            await RedisService.delete(cls._locked_until_key(trainer_id))
            return LockoutStatus(locked=False)

        if locked_until <= cls._now():
            return LockoutStatus(locked=False)
        return LockoutStatus(locked=True, locked_until=locked_until)

    @classmethod
    async def record_failed_attempt(cls, trainer_id: UUID) -> LockoutStatus:
        """
        Count one wrong-password attempt, locking the account at the threshold.

        Reaching LOCKOUT_MAX_ATTEMPTS consecutive failures locks the account
        for LOCKOUT_DURATION_MINUTES and resets the counter, so the first
        failure after the lock lifts starts again from one.

        Args:
            trainer_id: The trainer who failed to authenticate.

        Returns:
            LockoutStatus: The lock state after this attempt.
        """
        attempts_key = cls._attempts_key(trainer_id)
        count = await RedisService.incr(
            attempts_key, ttl=settings.LOCKOUT_ATTEMPT_WINDOW_MINUTES * 60
        )
        if count is None:
            auth_logger.warning(
                f"Failed attempt for trainer {trainer_id} not counted: Redis unavailable"
            )
            return LockoutStatus(locked=False)

        if count < settings.LOCKOUT_MAX_ATTEMPTS:
            return LockoutStatus(locked=False)

        duration = timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES)
        locked_until = cls._now() + duration
        await RedisService.set(
            cls._locked_until_key(trainer_id),
            locked_until.isoformat(),
            ttl=int(duration.total_seconds()),
        )
        await RedisService.delete(attempts_key)
        auth_logger.warning(
            f"Trainer {trainer_id} locked until {locked_until.isoformat()} "
            f"after {count} failed attempts"
        )
        return LockoutStatus(locked=True, locked_until=locked_until)

    @classmethod
    async def clear_failed_attempts(cls, trainer_id: UUID) -> None:
        await RedisService.delete(
            cls._attempts_key(trainer_id), cls._locked_until_key(trainer_id)
        )

    @classmethod
    async def remaining_attempts(cls, trainer_id: UUID) -> int:
        """Failures left before lockout; 0 while locked."""
        if (await cls.is_locked(trainer_id)).locked:
            return 0
        raw = await RedisService.get(cls._attempts_key(trainer_id))
        count = int(raw) if raw is not None else 0
        return max(0, settings.LOCKOUT_MAX_ATTEMPTS - count)


__all__ = ["CredentialStore", "LockoutStatus"]
