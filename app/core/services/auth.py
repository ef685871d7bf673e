"""
Authentication service for trainers.

This module provides the operations an HTTP layer exposes:
- Email registration with OTP verification
- Email/password login with shared brute-force lockout
- Phone OTP sign-in (request, verify, provider-side retry)
- Google sign-in (native ID token or web authorization code)
- Refresh token rotation, logout and logout-everywhere
- Password change and OTP-based password reset
- Contact (email/phone) changes

Example usage:
    from app.core.services.auth import AuthService

    result = await AuthService.register(
        session=db_session,
        email="trainer@example.com",
        password="SecurePassword123!",
    )
    await AuthService.verify_email_otp(db_session, "trainer@example.com", "123456")

    auth = await AuthService.login(
        session=db_session,
        email="trainer@example.com",
        password="SecurePassword123!",
    )
    rotated = await AuthService.refresh(db_session, auth.tokens.refresh_token)
"""

import re
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import auth_logger, settings
from app.core.db.crud import otp_record_db, trainer_db
from app.core.db.models import Trainer
from app.core.enums import AuthProvider, IdentityDecision, OTPChannel, PhoneOTPRetryType
from app.core.exceptions.types import (
    AccountLockedException,
    AuthenticationException,
    ConflictException,
    ForbiddenException,
    InvalidCredentialsException,
    NotFoundException,
    OAuthException,
    OTPNotFoundException,
    ValidationException,
)
from app.core.schemas.auth import (
    ActiveSession,
    AuthResult,
    ClientMeta,
    RegistrationResult,
    TrainerProfile,
)
from app.core.services.credentials import CredentialStore
from app.core.services.identity import IdentityResolver
from app.core.services.msg91 import MSG91Service
from app.core.services.oauth import GoogleOAuthService, OAuthStateManager
from app.core.services.oauth.base import OAuthUserInfo
from app.core.services.otp import OTPService
from app.core.services.retry import as_service_unavailable, read_with_retry
from app.core.services.session import SessionManager
from app.core.services.tokens import TokenRotator
from app.core.utils import normalize_email, normalize_phone


__all__ = ["AuthService"]


MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
_USERNAME_RE = re.compile(r"^[a-z0-9_.]{3,50}$")


class AuthService:
    """
    Centralized authentication service.

    Every method takes the caller's database session and returns a typed
    payload or raises an AppException subclass. Store reads on the hot
    paths go through the retry policy; writes are single attempts.
    """

    # =========================================================================
    # Input validation
    # =========================================================================

    @staticmethod
    def _email(email: str | None) -> str:
        try:
            cleaned = normalize_email(email)
        except ValueError as e:
            raise ValidationException("Invalid email address.") from e
        if cleaned is None:
            raise ValidationException("Email is required.")
        return cleaned

    @staticmethod
    def _phone(phone: str | None) -> str:
        try:
            cleaned = normalize_phone(phone)
        except ValueError as e:
            raise ValidationException(str(e)) from e
        if cleaned is None:
            raise ValidationException("Phone number is required.")
        return cleaned

    @staticmethod
    def _password(password: str | None) -> str:
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationException(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
            )
        if len(password) > MAX_PASSWORD_LENGTH:
            raise ValidationException(
                f"Password must be at most {MAX_PASSWORD_LENGTH} characters."
            )
        return password

    @staticmethod
    def _username(username: str | None) -> str | None:
        if username is None:
            return None
        cleaned = username.strip().lower()
        if not _USERNAME_RE.match(cleaned):
            raise ValidationException(
                "Username must be 3-50 characters of letters, digits, '_' or '.'."
            )
        return cleaned

    @classmethod
    async def _get_trainer(cls, session: AsyncSession, trainer_id: UUID) -> Trainer:
        trainer = await read_with_retry(
            session, lambda: trainer_db.get_by_id(session, trainer_id)
        )
        if trainer is None:
            raise NotFoundException("Trainer not found.")
        return trainer

    # =========================================================================
    # Session start
    # =========================================================================

    @classmethod
    async def _start_session(
        cls,
        session: AsyncSession,
        trainer: Trainer,
        provider: AuthProvider,
        meta: ClientMeta | None = None,
        decision: IdentityDecision | None = None,
    ) -> AuthResult:
        """
        Issue and persist a token pair and open a cached session.

        The refresh record and the login stamp are committed together.
        """
        session_id = await SessionManager.create_session(
            trainer.id, settings.TOKEN_ROLE, meta
        )
        issued = TokenRotator.issue_tokens(trainer, session_id)
        try:
            await TokenRotator.persist_refresh_token(
                session,
                trainer.id,
                issued.refresh_token_hash,
                issued.pair.refresh_expires_at,
                meta,
            )
            trainer = (
                await trainer_db.update(
                    session,
                    trainer.id,
                    {
                        "last_login_at": datetime.now(timezone.utc),
                        "auth_provider": provider,
                    },
                    commit_self=False,
                )
                or trainer
            )
            await session.commit()
        except Exception as e:
            await session.rollback()
            await SessionManager.delete_session(session_id)
            mapped = as_service_unavailable(e)
            if mapped is e:
                raise
            raise mapped from e

        auth_logger.info(f"Trainer signed in: id={trainer.id}, provider={provider.value}")
        return AuthResult(
            tokens=issued.pair,
            trainer=TrainerProfile.model_validate(trainer),
            session_id=session_id,
            identity_decision=decision,
        )

    # =========================================================================
    # Email registration
    # =========================================================================

    @classmethod
    async def register(
        cls,
        session: AsyncSession,
        email: str,
        password: str,
        username: str | None = None,
        phone: str | None = None,
    ) -> RegistrationResult:
        """
        Register a trainer with email and password and send an email code.

        Registering again with an unverified email re-sends the code
        instead of failing.

        Raises:
            ValidationException: Malformed email, phone, username or password.
            ConflictException: Email already verified elsewhere, username
                taken, or phone committed to another trainer.
        """
        email = cls._email(email)
        password = cls._password(password)
        username = cls._username(username)
        normalized_phone = cls._phone(phone) if phone else None

        existing = await read_with_retry(
            session, lambda: trainer_db.get_by_email(session, email)
        )
        if existing is not None:
            if existing.is_email_verified:
                auth_logger.warning("Registration refused: email already verified")
                raise ConflictException("Email already registered.")
            await OTPService.issue(session, str(existing.id), OTPChannel.EMAIL, email)
            return RegistrationResult(trainer_id=existing.id, email=email)

        if username is not None:
            taken = await read_with_retry(
                session, lambda: trainer_db.get_by_username(session, username)
            )
            if taken is not None:
                raise ConflictException("Username already taken.")

        password_hash = await CredentialStore.hash_password(password)
        trainer, _ = await IdentityResolver.resolve_or_create(
            session,
            email=email,
            phone=normalized_phone,
            defaults={
                "password_hash": password_hash,
                "username": username,
                "auth_provider": AuthProvider.PASSWORD,
            },
        )

        await OTPService.issue(session, str(trainer.id), OTPChannel.EMAIL, email)
        auth_logger.info(f"Trainer registered: id={trainer.id}")
        return RegistrationResult(trainer_id=trainer.id, email=email)

    @classmethod
    async def resend_email_otp(cls, session: AsyncSession, email: str) -> None:
        email = cls._email(email)
        trainer = await read_with_retry(
            session, lambda: trainer_db.get_by_email(session, email)
        )
        if trainer is None:
            raise NotFoundException("Account not found.")
        if trainer.is_email_verified:
            raise ValidationException("Email already verified.")
        await OTPService.issue(session, str(trainer.id), OTPChannel.EMAIL, email)

    @classmethod
    async def verify_email_otp(
        cls, session: AsyncSession, email: str, code: str
    ) -> TrainerProfile:
        """
        Confirm control of an email address.

        An already-verified email consumes any stale code and succeeds.

        Raises:
            NotFoundException: Unknown email.
            OTPNotFoundException, TooManyAttemptsException,
            OTPExpiredException, OTPInvalidException: see OTPService.verify.
        """
        email = cls._email(email)
        trainer = await read_with_retry(
            session, lambda: trainer_db.get_by_email(session, email)
        )
        if trainer is None:
            raise NotFoundException("Account not found.")

        if trainer.is_email_verified:
            await OTPService.discard(session, str(trainer.id), OTPChannel.EMAIL)
            await session.commit()
            return TrainerProfile.model_validate(trainer)

        await OTPService.verify(session, str(trainer.id), OTPChannel.EMAIL, code)
        trainer = (
            await trainer_db.update(
                session, trainer.id, {"is_email_verified": True}, commit_self=False
            )
            or trainer
        )
        await session.commit()
        auth_logger.info(f"Email verified: trainer={trainer.id}")
        return TrainerProfile.model_validate(trainer)

    # =========================================================================
    # Password login
    # =========================================================================

    @classmethod
    async def login(
        cls,
        session: AsyncSession,
        email: str,
        password: str,
        meta: ClientMeta | None = None,
    ) -> AuthResult:
        """
        Sign in with email and password.

        Raises:
            InvalidCredentialsException: Unknown email or wrong password,
                with the remaining attempts in `details`.
            AccountLockedException: Locked now, or locked by this attempt.
            ForbiddenException: Email not verified yet.
        """
        try:
            email = cls._email(email)
        except ValidationException:
            raise InvalidCredentialsException()

        trainer = await read_with_retry(
            session, lambda: trainer_db.get_by_email(session, email)
        )
        if trainer is None:
            auth_logger.warning("Login failed: unknown email")
            raise InvalidCredentialsException()

        status = await CredentialStore.is_locked(trainer.id)
        if status.locked:
            assert status.locked_until is not None
            auth_logger.warning(f"Login refused: trainer {trainer.id} is locked")
            raise AccountLockedException(status.locked_until, status.retry_after)

        if trainer.password_hash is None:
            raise AuthenticationException(
                "This account has no password. Sign in with Google or a phone code."
            )

        if not await CredentialStore.verify_password(password, trainer.password_hash):
            status = await CredentialStore.record_failed_attempt(trainer.id)
            if status.locked:
                assert status.locked_until is not None
                raise AccountLockedException(status.locked_until, status.retry_after)
            remaining = await CredentialStore.remaining_attempts(trainer.id)
            auth_logger.warning(
                f"Login failed: wrong password for trainer {trainer.id}, "
                f"remaining={remaining}"
            )
            raise InvalidCredentialsException(remaining_attempts=remaining)

        if not trainer.is_email_verified:
            raise ForbiddenException(
                "Email not verified. Please verify your email to continue."
            )

        await CredentialStore.clear_failed_attempts(trainer.id)
        return await cls._start_session(session, trainer, AuthProvider.PASSWORD, meta)

    # =========================================================================
    # Phone OTP
    # =========================================================================

    @classmethod
    async def request_phone_otp(cls, session: AsyncSession, phone: str) -> None:
        phone = cls._phone(phone)
        await OTPService.issue(session, phone, OTPChannel.PHONE, phone)

    @classmethod
    async def retry_phone_otp(
        cls,
        session: AsyncSession,
        phone: str,
        retry_type: PhoneOTPRetryType = PhoneOTPRetryType.TEXT,
    ) -> None:
        """
        Re-deliver the pending phone code by text or voice.

        Raises:
            OTPNotFoundException: No pending code for the phone.
        """
        phone = cls._phone(phone)
        record = await read_with_retry(
            session,
            lambda: otp_record_db.get_for_subject(session, phone, OTPChannel.PHONE),
        )
        if record is None or record.is_expired:
            raise OTPNotFoundException()
        await MSG91Service.retry_otp(phone, retry_type)

    @classmethod
    async def verify_phone_otp(
        cls,
        session: AsyncSession,
        phone: str,
        code: str,
        meta: ClientMeta | None = None,
    ) -> AuthResult:
        """
        Sign in with a phone code, creating the trainer on first use.

        The phone is marked verified on the resolved trainer.
        """
        phone = cls._phone(phone)
        await OTPService.verify(session, phone, OTPChannel.PHONE, code)
        await session.commit()

        trainer, decision = await IdentityResolver.resolve_or_create(
            session,
            phone=phone,
            defaults={
                "auth_provider": AuthProvider.PHONE_OTP,
                "is_phone_verified": True,
            },
            commit_self=False,
        )
        trainer = (
            await trainer_db.update(
                session, trainer.id, {"is_phone_verified": True}, commit_self=False
            )
            or trainer
        )
        return await cls._start_session(
            session, trainer, AuthProvider.PHONE_OTP, meta, decision
        )

    # =========================================================================
    # Google sign-in
    # =========================================================================

    @classmethod
    def get_external_authorization_url(
        cls, redirect_uri: str, code_challenge: str | None = None
    ) -> tuple[str, str]:
        """
        Build the Google authorization URL for the web flow.

        Returns:
            tuple: (authorization_url, signed_state)
        """
        state = OAuthStateManager.encode_state(redirect_uri)
        url = GoogleOAuthService.get_authorization_url(
            redirect_uri, state, code_challenge=code_challenge
        )
        return url, state

    @classmethod
    async def authenticate_with_external_provider(
        cls,
        session: AsyncSession,
        id_token: str | None = None,
        code: str | None = None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
        state: str | None = None,
        meta: ClientMeta | None = None,
    ) -> AuthResult:
        """
        Sign in with Google.

        Native clients post the ID token from the platform SDK; web clients
        post the authorization code (plus PKCE verifier and state) from the
        redirect. The trainer is resolved by Google subject, then email,
        and the subject is linked on first use.

        Raises:
            ValidationException: Neither an ID token nor a code was given.
            OAuthException: Invalid state, token or code, or an
                unverified Google email.
            ConflictException: The email or subject belong to different
                trainers.
        """
        if id_token:
            provider = AuthProvider.OAUTH_NATIVE
            user_info = await GoogleOAuthService.verify_id_token(id_token)
        elif code and redirect_uri:
            provider = AuthProvider.OAUTH_WEB
            if state is not None:
                decoded = OAuthStateManager.decode_state(state)
                if decoded is None or (
                    decoded.redirect_uri and decoded.redirect_uri != redirect_uri
                ):
                    raise OAuthException("Invalid or expired OAuth state.")
            tokens = await GoogleOAuthService.exchange_code_for_tokens(
                code, redirect_uri, code_verifier=code_verifier
            )
            user_info = await GoogleOAuthService.get_user_info(tokens)
        else:
            raise ValidationException(
                "Provide an ID token, or an authorization code with its redirect URI."
            )

        return await cls._sign_in_external(session, user_info, provider, meta)

    @classmethod
    async def _sign_in_external(
        cls,
        session: AsyncSession,
        user_info: OAuthUserInfo,
        provider: AuthProvider,
        meta: ClientMeta | None,
    ) -> AuthResult:
        email = None
        if user_info.email:
            email = cls._email(user_info.email)
            if not user_info.email_verified:
                raise OAuthException("Google account email is not verified.")

        trainer, decision = await IdentityResolver.resolve_or_create(
            session,
            email=email,
            external_subject=user_info.provider_user_id,
            defaults={
                "auth_provider": provider,
                "is_email_verified": email is not None,
            },
            commit_self=False,
        )

        updates: dict = {}
        if trainer.google_id is None:
            updates["google_id"] = user_info.provider_user_id
        if email is not None and trainer.email is None:
            updates["email"] = email
        if email is not None and trainer.email in (None, email):
            updates["is_email_verified"] = True
        if updates:
            trainer = (
                await trainer_db.update(session, trainer.id, updates, commit_self=False)
                or trainer
            )
            auth_logger.info(f"Google identity linked: trainer={trainer.id}")

        return await cls._start_session(session, trainer, provider, meta, decision)

    # =========================================================================
    # Tokens
    # =========================================================================

    @classmethod
    async def refresh(
        cls,
        session: AsyncSession,
        refresh_token: str,
        session_id: str | None = None,
        meta: ClientMeta | None = None,
    ) -> AuthResult:
        return await TokenRotator.refresh(session, refresh_token, session_id, meta)

    @classmethod
    async def logout(
        cls,
        session: AsyncSession,
        refresh_token: str,
        session_id: str | None = None,
    ) -> bool:
        revoked = await TokenRotator.logout(session, refresh_token)
        if session_id:
            await SessionManager.delete_session(session_id)
        return revoked

    @classmethod
    async def logout_all(cls, session: AsyncSession, trainer_id: UUID) -> int:
        """Revoke every refresh token and drop every cached session."""
        count = await TokenRotator.logout_all(session, trainer_id)
        await SessionManager.delete_all_sessions(trainer_id)
        return count

    @classmethod
    async def get_active_sessions(
        cls, session: AsyncSession, trainer_id: UUID
    ) -> list[ActiveSession]:
        return await TokenRotator.get_active_sessions(session, trainer_id)

    # =========================================================================
    # Passwords
    # =========================================================================

    @classmethod
    async def change_password(
        cls,
        session: AsyncSession,
        trainer_id: UUID,
        current_password: str,
        new_password: str,
    ) -> None:
        """
        Change a password and sign the trainer out everywhere.

        Raises:
            AuthenticationException: The account has no password.
            InvalidCredentialsException: `current_password` is wrong.
            ValidationException: The new password is too short, too long
                or unchanged.
        """
        trainer = await cls._get_trainer(session, trainer_id)
        if trainer.password_hash is None:
            raise AuthenticationException(
                "Cannot change password. This account has no password set."
            )
        if not await CredentialStore.verify_password(
            current_password, trainer.password_hash
        ):
            auth_logger.warning(
                f"Password change failed: wrong current password for {trainer.id}"
            )
            raise InvalidCredentialsException("Current password is incorrect.")

        new_password = cls._password(new_password)
        if new_password == current_password:
            raise ValidationException("New password must differ from the current one.")

        new_hash = await CredentialStore.hash_password(new_password)
        await trainer_db.update(
            session, trainer.id, {"password_hash": new_hash}, commit_self=False
        )
        await TokenRotator.logout_all(session, trainer.id, commit_self=False)
        await session.commit()
        await SessionManager.delete_all_sessions(trainer.id)
        auth_logger.info(f"Password changed: trainer={trainer.id}")

    @classmethod
    async def request_password_reset(cls, session: AsyncSession, email: str) -> None:
        """Email a reset code. Unknown emails are ignored silently."""
        email = cls._email(email)
        trainer = await read_with_retry(
            session, lambda: trainer_db.get_by_email(session, email)
        )
        if trainer is None:
            auth_logger.info("Password reset requested for unknown email")
            return
        await OTPService.issue(session, str(trainer.id), OTPChannel.EMAIL, email)

    @classmethod
    async def reset_password(
        cls,
        session: AsyncSession,
        email: str,
        code: str,
        new_password: str,
    ) -> None:
        """
        Set a new password with an emailed code.

        Clears the lockout counter and signs the trainer out everywhere.
        """
        email = cls._email(email)
        new_password = cls._password(new_password)
        trainer = await read_with_retry(
            session, lambda: trainer_db.get_by_email(session, email)
        )
        if trainer is None:
            raise OTPNotFoundException()

        await OTPService.verify(session, str(trainer.id), OTPChannel.EMAIL, code)
        new_hash = await CredentialStore.hash_password(new_password)
        await trainer_db.update(
            session, trainer.id, {"password_hash": new_hash}, commit_self=False
        )
        await TokenRotator.logout_all(session, trainer.id, commit_self=False)
        await session.commit()

        await CredentialStore.clear_failed_attempts(trainer.id)
        await SessionManager.delete_all_sessions(trainer.id)
        auth_logger.info(f"Password reset: trainer={trainer.id}")

    # =========================================================================
    # Contact details
    # =========================================================================

    @classmethod
    async def update_contact(
        cls,
        session: AsyncSession,
        trainer_id: UUID,
        email: str | None = None,
        phone: str | None = None,
    ) -> TrainerProfile:
        """
        Change email and/or phone. A changed channel starts unverified; a
        new email gets a verification code.

        Raises:
            ValidationException: Nothing to change, or malformed input.
            ConflictException: The new email or phone is unavailable.
        """
        if email is None and phone is None:
            raise ValidationException("Provide an email or a phone number.")
        new_email = cls._email(email) if email is not None else None
        new_phone = cls._phone(phone) if phone is not None else None

        trainer = await cls._get_trainer(session, trainer_id)
        email_changed = new_email is not None and new_email != trainer.email
        trainer = await IdentityResolver.change_contact(
            session, trainer, email=new_email, phone=new_phone
        )
        if email_changed and new_email is not None:
            await OTPService.issue(session, str(trainer.id), OTPChannel.EMAIL, new_email)
        return TrainerProfile.model_validate(trainer)
