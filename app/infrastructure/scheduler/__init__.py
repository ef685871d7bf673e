from app.infrastructure.scheduler.jobs import (
    cleanup_expired_otps,
    cleanup_refresh_tokens,
)
from app.infrastructure.scheduler.main import (
    initialize_scheduler,
    schedule_cleanup_expired_otps_job,
    schedule_cleanup_refresh_tokens_job,
    scheduler,
)

__all__ = [
    "scheduler",
    "cleanup_expired_otps",
    "cleanup_refresh_tokens",
    "initialize_scheduler",
    "schedule_cleanup_expired_otps_job",
    "schedule_cleanup_refresh_tokens_job",
]
