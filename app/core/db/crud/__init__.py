from app.core.db.crud.base import BaseDB
from app.core.db.crud.otp import OTPRecordDB
from app.core.db.crud.refresh_token import RefreshTokenDB
from app.core.db.crud.trainer import TrainerDB

# Global CRUD instances - use these instead of creating new instances
trainer_db = TrainerDB()
otp_record_db = OTPRecordDB()
refresh_token_db = RefreshTokenDB()

__all__ = [
    # Classes (for type hints and subclassing)
    "BaseDB",
    "OTPRecordDB",
    "RefreshTokenDB",
    "TrainerDB",
    # Global instances (for actual usage)
    "trainer_db",
    "otp_record_db",
    "refresh_token_db",
]
