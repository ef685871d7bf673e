"""
One-time code issuance and verification for the email and phone channels.

Example usage:
    from app.core.services.otp import OTPService

    await OTPService.issue(session, str(trainer.id), OTPChannel.EMAIL, trainer.email)
    await OTPService.verify(session, str(trainer.id), OTPChannel.EMAIL, "123456")
"""

from datetime import datetime, timedelta, timezone

from fastapi import status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import otp_logger, settings
from app.core.db.crud import otp_record_db
from app.core.enums import OTPChannel
from app.core.exceptions.types import (
    AppException,
    OTPExpiredException,
    OTPInvalidException,
    OTPNotFoundException,
    TooManyAttemptsException,
    ValidationException,
)
from app.core.services.brevo import BrevoService
from app.core.services.msg91 import MSG91Service
from app.core.utils import (
    generate_otp_code,
    hmac_hash_otp,
    hmac_verify_otp,
    mask_otp,
    sanitize_otp_input,
)


_EMAIL_SUBJECT = "Your verification code"
_EMAIL_HTML = (
    "<p>Your verification code is <strong>{code}</strong>.</p>"
    "<p>It expires in {minutes} minutes. If you did not request it, "
    "you can ignore this email.</p>"
)
_EMAIL_TEXT = (
    "Your verification code is {code}. It expires in {minutes} minutes."
)


class OTPService:
    """
    Single-use numeric codes, stored only as HMACs.

    There is at most one pending code per (subject_id, channel). The
    subject is the trainer id for email codes and the normalized phone
    number for phone codes, so a phone code can be issued before any
    trainer owns the number.
    """

    @classmethod
    async def issue(
        cls,
        session: AsyncSession,
        subject_id: str,
        channel: OTPChannel,
        destination: str,
    ) -> None:
        """
        Generate a code, store its hash and send it.

        Re-issuing replaces the pending record and resets its attempt
        counter. The record is committed before dispatch so a delivered
        code is always verifiable.

        Args:
            session: The database session.
            subject_id: Trainer id (email) or normalized phone (phone).
            channel: Delivery channel.
            destination: Email address or phone number to send to.
        """
        code = generate_otp_code(settings.OTP_LENGTH)
        expires_at = datetime.now(timezone.utc) + timedelta(
            minutes=settings.OTP_EXPIRY_MINUTES
        )
        await otp_record_db.replace(
            session,
            subject_id=subject_id,
            channel=channel,
            code_hash=hmac_hash_otp(code),
            expires_at=expires_at,
            commit_self=False,
        )
        await session.commit()

        await cls._dispatch(channel, destination, code)
        otp_logger.info(f"OTP issued: subject={subject_id}, channel={channel.value}")

    @classmethod
    async def _dispatch(cls, channel: OTPChannel, destination: str, code: str) -> None:
        if channel == OTPChannel.PHONE:
            await MSG91Service.send_otp(destination, code)
            return

        if not BrevoService.is_configured():
            if settings.is_production:
                raise AppException(
                    message="Email provider not configured",
                    status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE,
                )
            otp_logger.info(
                f"[dev] Brevo not configured; OTP {mask_otp(code)} for {destination}"
            )
            return

        minutes = settings.OTP_EXPIRY_MINUTES
        await BrevoService.send_transactional_email(
            to_email=destination,
            subject=_EMAIL_SUBJECT,
            html_content=_EMAIL_HTML.format(code=code, minutes=minutes),
            text_content=_EMAIL_TEXT.format(code=code, minutes=minutes),
        )

    @classmethod
    async def verify(
        cls,
        session: AsyncSession,
        subject_id: str,
        channel: OTPChannel,
        code: str,
    ) -> None:
        """
        Check a submitted code and consume the pending record.

        Checks run in a fixed order: record exists, attempts left, not
        expired, code matches. An expired record is deleted; a mismatch
        counts one attempt. Every outcome is committed before raising.

        The record is row-locked until the caller's transaction ends, and
        both the attempt increment and the final delete are conditional
        writes whose row counts are checked, so concurrent verifications
        cannot consume one code twice or count past OTP_MAX_ATTEMPTS.

        Raises:
            ValidationException: The code is not 4-8 digits.
            OTPNotFoundException: No pending code.
            TooManyAttemptsException: MAX_ATTEMPTS mismatches already.
            OTPExpiredException: The code expired.
            OTPInvalidException: The code does not match.
        """
        try:
            cleaned = sanitize_otp_input(code)
        except ValueError as e:
            raise ValidationException(str(e)) from e

        record = await otp_record_db.get_for_subject(
            session, subject_id, channel, for_update=True
        )
        if record is None:
            raise OTPNotFoundException()

        if record.attempt_count >= settings.OTP_MAX_ATTEMPTS:
            otp_logger.warning(
                f"OTP attempts exhausted: subject={subject_id}, channel={channel.value}"
            )
            raise TooManyAttemptsException()

        if record.is_expired:
            await otp_record_db.delete_for_subject(
                session, subject_id, channel, commit_self=False
            )
            await session.commit()
            raise OTPExpiredException()

        if not hmac_verify_otp(cleaned, record.code_hash):
            counted = await otp_record_db.increment_attempts(
                session,
                subject_id,
                channel,
                max_attempts=settings.OTP_MAX_ATTEMPTS,
                commit_self=False,
            )
            await session.commit()
            if not counted:
                # A concurrent guess used the last attempt first
                raise TooManyAttemptsException()
            otp_logger.warning(
                f"OTP mismatch: subject={subject_id}, channel={channel.value}, "
                f"attempt={record.attempt_count + 1}"
            )
            raise OTPInvalidException()

        deleted = await otp_record_db.delete_for_subject(
            session, subject_id, channel, commit_self=False
        )
        if deleted != 1:
            # Consumed by a concurrent verification
            raise OTPNotFoundException()
        otp_logger.info(f"OTP verified: subject={subject_id}, channel={channel.value}")

    @classmethod
    async def discard(
        cls,
        session: AsyncSession,
        subject_id: str,
        channel: OTPChannel,
    ) -> None:
        """Drop any pending code without checking it."""
        await otp_record_db.delete_for_subject(
            session, subject_id, channel, commit_self=False
        )


__all__ = ["OTPService"]
