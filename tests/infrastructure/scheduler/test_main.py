"""
Test suite for scheduler configuration and job registration.

Run tests:
    pytest tests/infrastructure/scheduler/test_main.py -v
"""

from unittest.mock import patch

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.infrastructure.scheduler.jobs import (
    cleanup_expired_otps,
    cleanup_refresh_tokens,
)
from app.infrastructure.scheduler.main import (
    _sync_database_url,
    initialize_scheduler,
    schedule_cleanup_expired_otps_job,
    schedule_cleanup_refresh_tokens_job,
    scheduler,
)


class TestScheduler:
    def test_scheduler_is_async_io_scheduler(self):
        assert isinstance(scheduler, AsyncIOScheduler)

    def test_scheduler_has_utc_timezone(self):
        assert str(scheduler.timezone) == "UTC"

    def test_sync_database_url_drops_async_driver(self):
        with patch(
            "app.infrastructure.scheduler.main.settings.DATABASE_URL",
            "postgresql+asyncpg://u:p%40ss@db:5432/auth",
        ):
            assert _sync_database_url() == "postgresql://u:p%40ss@db:5432/auth"


class TestJobRegistration:
    def test_refresh_token_cleanup_runs_daily(self):
        with patch.object(scheduler, "add_job") as add_job:
            schedule_cleanup_refresh_tokens_job(retain_revoked_days=7)

        args, kwargs = add_job.call_args
        assert args[0] is cleanup_refresh_tokens
        assert isinstance(kwargs["trigger"], CronTrigger)
        assert kwargs["id"] == "cleanup_refresh_tokens_job"
        assert kwargs["kwargs"] == {"retain_revoked_days": 7}
        assert kwargs["replace_existing"] is True

    def test_otp_cleanup_runs_on_interval(self):
        with patch.object(scheduler, "add_job") as add_job:
            schedule_cleanup_expired_otps_job(interval_minutes=15)

        args, kwargs = add_job.call_args
        assert args[0] is cleanup_expired_otps
        assert isinstance(kwargs["trigger"], IntervalTrigger)
        assert kwargs["jobstore"] == "cleanups"

    def test_initialize_registers_both_jobs(self):
        with patch.object(scheduler, "add_job") as add_job:
            initialize_scheduler()

        ids = {c.kwargs["id"] for c in add_job.call_args_list}
        assert ids == {"cleanup_refresh_tokens_job", "cleanup_expired_otps_job"}
