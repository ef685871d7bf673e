"""
Periodic housekeeping for the trainer auth service.

Two jobs keep the token and OTP tables small: a nightly purge of dead
refresh tokens and a frequent sweep of expired OTP records. Jobs persist in
a Postgres-backed job store so a restart does not lose their schedule.

The scheduler runs inside the API process when ENABLE_SCHEDULER is set, or
standalone:
    python -m app.infrastructure.scheduler.main
"""

import asyncio
import logging
import signal
from datetime import timezone
from typing import Any, Callable

from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import scheduler_logger, settings
from app.core.db import dispose_db

JOBSTORE = "cleanups"

logging.getLogger("apscheduler").setLevel(logging.INFO)


def _sync_database_url() -> str:
    """DATABASE_URL with the asyncpg driver removed from the scheme.

    The job store uses a synchronous engine. Everything after "://" is
    left untouched so percent-encoded credentials survive.
    """
    scheme, rest = settings.DATABASE_URL.split("://", 1)
    return f"{scheme.replace('+asyncpg', '')}://{rest}"


scheduler = AsyncIOScheduler(
    jobstores={
        JOBSTORE: SQLAlchemyJobStore(
            url=_sync_database_url(),
            tablename="scheduler_cleanup_jobs",
        ),
    },
    timezone=timezone.utc,
)


def _register(
    func: Callable[..., Any],
    trigger: BaseTrigger,
    grace_seconds: int,
    kwargs: dict[str, Any] | None = None,
) -> None:
    job_id = f"{func.__name__}_job"
    scheduler.add_job(
        func,
        trigger=trigger,
        replace_existing=True,
        id=job_id,
        jobstore=JOBSTORE,
        misfire_grace_time=grace_seconds,
        kwargs=kwargs or {},
    )
    scheduler_logger.info(f"Registered '{job_id}' ({trigger})")


def schedule_cleanup_refresh_tokens_job(retain_revoked_days: int = 7) -> None:
    """Purge expired and long-revoked refresh tokens daily at 03:00 UTC."""
    from app.infrastructure.scheduler.jobs import cleanup_refresh_tokens

    _register(
        cleanup_refresh_tokens,
        CronTrigger(hour=3, minute=0, timezone=timezone.utc),
        grace_seconds=3600,
        kwargs={"retain_revoked_days": retain_revoked_days},
    )


def schedule_cleanup_expired_otps_job(interval_minutes: int = 30) -> None:
    from app.infrastructure.scheduler.jobs import cleanup_expired_otps

    _register(
        cleanup_expired_otps,
        IntervalTrigger(minutes=interval_minutes, timezone=timezone.utc),
        grace_seconds=300,
    )


def initialize_scheduler() -> None:
    """Register every periodic job. Call after `scheduler.start()`."""
    schedule_cleanup_refresh_tokens_job(
        retain_revoked_days=settings.REFRESH_TOKEN_RETENTION_DAYS
    )
    schedule_cleanup_expired_otps_job()


async def main() -> None:
    """Run the scheduler until SIGINT or SIGTERM arrives."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    scheduler_logger.info("Starting standalone scheduler")
    scheduler.start()
    try:
        initialize_scheduler()
        await stop.wait()
        scheduler_logger.info("Stop signal received")
    finally:
        if scheduler.running:
            scheduler.shutdown(wait=True)
        await dispose_db()
        scheduler_logger.info("Scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
