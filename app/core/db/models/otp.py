"""
One-time code records for email and phone verification.

"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db.models.base import BaseModel
from app.core.enums import OTPChannel


class OTPRecord(BaseModel):
    """
    The single pending one-time code for a (subject, channel) pair.

    Only the HMAC-SHA256 of the code is stored. Issuing a new code
    overwrites the existing row; a successful verification deletes it.

    Attributes:
        subject_id: Trainer id for the email channel, normalized phone
            number for the phone channel.
        channel: Delivery channel.
        code_hash: HMAC-SHA256 hex digest of the code.
        expires_at: When the code stops being accepted.
        attempt_count: Failed verification attempts so far.
    """

    __tablename__ = "otp_records"
    __table_args__ = (
        UniqueConstraint(
            "subject_id", "channel", name="uq_otp_records_subject_channel"
        ),
    )

    subject_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    channel: Mapped[OTPChannel] = mapped_column(
        Enum(OTPChannel, native_enum=False, name="otp_channel"),
        nullable=False,
    )

    code_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    attempt_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= datetime.now(timezone.utc)


__all__ = ["OTPRecord"]
