from app.core.db.models.otp import OTPRecord
from app.core.db.models.refresh_token import RefreshToken
from app.core.db.models.trainer import Trainer

__all__ = [
    "OTPRecord",
    "RefreshToken",
    "Trainer",
]
