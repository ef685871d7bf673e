from datetime import datetime, timedelta, timezone

from app.core.config import scheduler_logger
from app.core.db import AsyncSessionLocal
from app.core.db.crud import otp_record_db, refresh_token_db


async def cleanup_refresh_tokens(retain_revoked_days: int = 7) -> None:
    """
    Periodic task to permanently delete expired refresh tokens and tokens
    revoked more than `retain_revoked_days` ago.

    Args:
        retain_revoked_days (int): How long revoked tokens stay queryable.
    """
    async with AsyncSessionLocal.begin() as session:
        scheduler_logger.info(
            f"Starting cleanup of refresh tokens (revoked retention: {retain_revoked_days} days)"
        )
        deleted_count = await refresh_token_db.cleanup_expired(
            session, retain_revoked_days=retain_revoked_days, commit_self=False
        )
        scheduler_logger.info(
            f"Completed cleanup of refresh tokens. Deleted {deleted_count} record(s)."
        )


async def cleanup_expired_otps(grace_minutes: int = 60) -> None:
    """
    Periodic task to delete one-time codes that expired more than
    `grace_minutes` ago and were never verified.
    """
    cutoff_time = datetime.now(timezone.utc) - timedelta(minutes=grace_minutes)
    async with AsyncSessionLocal.begin() as session:
        scheduler_logger.info(
            f"Starting cleanup of expired OTP records (cutoff: {cutoff_time})"
        )
        deleted_count = await otp_record_db.delete_expired(
            session, older_than=cutoff_time, commit_self=False
        )
        scheduler_logger.info(
            f"Completed cleanup of expired OTP records. Deleted {deleted_count} record(s)."
        )
