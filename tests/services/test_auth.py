"""
Test suite for AuthService flows.

Storage is replaced by the in-memory stores from conftest; codes are fixed
and delivery is mocked.

Run tests:
    pytest tests/services/test_auth.py -v
"""

from unittest.mock import AsyncMock, patch

import pytest

from app.core.config import settings
from app.core.enums import AuthProvider, IdentityDecision, OTPChannel
from app.core.exceptions.types import (
    AccountLockedException,
    AuthenticationException,
    ConflictException,
    ForbiddenException,
    InvalidCredentialsException,
    OAuthException,
    OTPNotFoundException,
    ValidationException,
)
from app.core.services.auth import AuthService
from app.core.services.credentials import CredentialStore
from app.core.services.oauth.base import OAuthUserInfo
from app.core.services.otp import OTPService


CODE = "123456"
PASSWORD = "correct-horse"


@pytest.fixture
def stores(trainer_store, token_store, otp_store):
    return trainer_store, token_store, otp_store


@pytest.fixture(autouse=True)
def fixed_code():
    with patch("app.core.services.otp.generate_otp_code", return_value=CODE):
        yield CODE


@pytest.fixture(autouse=True)
def dispatch():
    with patch.object(OTPService, "_dispatch", new=AsyncMock()) as mock_dispatch:
        yield mock_dispatch


@pytest.fixture
async def verified_trainer(trainer_store, make_trainer):
    password_hash = await CredentialStore.hash_password(PASSWORD)
    return trainer_store.add(
        make_trainer(
            email="a@x.com", password_hash=password_hash, is_email_verified=True
        )
    )


class TestRegistration:
    async def test_register_sends_email_code(self, mock_session, stores, dispatch):
        trainer_store, _, otp_store = stores

        result = await AuthService.register(
            mock_session, "  A@X.com ", PASSWORD, username="Coach_1"
        )

        trainer = trainer_store.trainers[result.trainer_id]
        assert trainer.email == "a@x.com"
        assert trainer.username == "coach_1"
        assert trainer.is_email_verified is False
        assert trainer.password_hash != PASSWORD
        assert (str(trainer.id), OTPChannel.EMAIL) in otp_store.records
        dispatch.assert_awaited_once_with(OTPChannel.EMAIL, "a@x.com", CODE)

    async def test_reregistering_unverified_email_resends(self, mock_session, stores):
        first = await AuthService.register(mock_session, "a@x.com", PASSWORD)
        second = await AuthService.register(mock_session, "a@x.com", PASSWORD)
        assert first.trainer_id == second.trainer_id

    async def test_verified_email_conflicts(
        self, mock_session, stores, verified_trainer
    ):
        with pytest.raises(ConflictException):
            await AuthService.register(mock_session, "a@x.com", PASSWORD)

    async def test_username_taken(self, mock_session, stores, make_trainer):
        trainer_store, _, _ = stores
        trainer_store.add(make_trainer(email="b@x.com", username="coach"))
        with pytest.raises(ConflictException):
            await AuthService.register(
                mock_session, "a@x.com", PASSWORD, username="coach"
            )

    @pytest.mark.parametrize(
        "email,password",
        [("not-an-email", PASSWORD), ("a@x.com", "short"), ("a@x.com", "x" * 129)],
    )
    async def test_invalid_input(self, mock_session, stores, email, password):
        with pytest.raises(ValidationException):
            await AuthService.register(mock_session, email, password)

    async def test_verify_email(self, mock_session, stores):
        result = await AuthService.register(mock_session, "a@x.com", PASSWORD)

        profile = await AuthService.verify_email_otp(mock_session, "a@x.com", CODE)

        assert profile.id == result.trainer_id
        assert profile.is_email_verified is True

    async def test_verify_already_verified_email(
        self, mock_session, stores, verified_trainer
    ):
        profile = await AuthService.verify_email_otp(mock_session, "a@x.com", "999999")
        assert profile.is_email_verified is True


class TestLogin:
    async def test_success(self, mock_session, stores, verified_trainer):
        _, token_store, _ = stores

        result = await AuthService.login(mock_session, "a@x.com", PASSWORD)

        assert result.trainer.id == verified_trainer.id
        assert result.trainer.auth_provider == AuthProvider.PASSWORD
        assert verified_trainer.last_login_at is not None
        assert len(token_store.records) == 1

    async def test_unknown_email(self, mock_session, stores):
        with pytest.raises(InvalidCredentialsException):
            await AuthService.login(mock_session, "nobody@x.com", PASSWORD)

    async def test_lockout_sequence(self, mock_session, stores, verified_trainer, fake_redis):
        max_attempts = settings.LOCKOUT_MAX_ATTEMPTS

        for remaining in range(max_attempts - 1, 0, -1):
            with pytest.raises(InvalidCredentialsException) as exc_info:
                await AuthService.login(mock_session, "a@x.com", "wrong-password")
            assert exc_info.value.remaining_attempts == remaining

        with pytest.raises(AccountLockedException) as locked:
            await AuthService.login(mock_session, "a@x.com", "wrong-password")
        assert locked.value.retry_after > 0

        # The correct password does not help while locked
        with pytest.raises(AccountLockedException):
            await AuthService.login(mock_session, "a@x.com", PASSWORD)

        await fake_redis.delete(CredentialStore._locked_until_key(verified_trainer.id))

        result = await AuthService.login(mock_session, "a@x.com", PASSWORD)
        assert result.trainer.id == verified_trainer.id
        assert (
            await CredentialStore.remaining_attempts(verified_trainer.id)
            == max_attempts
        )

    async def test_unverified_email_is_forbidden(
        self, mock_session, stores, verified_trainer
    ):
        verified_trainer.is_email_verified = False
        with pytest.raises(ForbiddenException):
            await AuthService.login(mock_session, "a@x.com", PASSWORD)

    async def test_passwordless_account(self, mock_session, stores, make_trainer):
        trainer_store, _, _ = stores
        trainer_store.add(make_trainer(email="g@x.com", is_email_verified=True))
        with pytest.raises(AuthenticationException):
            await AuthService.login(mock_session, "g@x.com", PASSWORD)


class TestPhoneOTP:
    async def test_first_sign_in_creates_trainer(self, mock_session, stores, dispatch):
        trainer_store, _, _ = stores

        await AuthService.request_phone_otp(mock_session, "+91 98765-43210")
        dispatch.assert_awaited_once_with(OTPChannel.PHONE, "919876543210", CODE)

        result = await AuthService.verify_phone_otp(
            mock_session, "919876543210", CODE
        )

        assert result.identity_decision == IdentityDecision.CREATE_NEW
        trainer = trainer_store.trainers[result.trainer.id]
        assert trainer.phone == "919876543210"
        assert trainer.is_phone_verified is True
        assert trainer.auth_provider == AuthProvider.PHONE_OTP

    async def test_returning_phone_uses_existing(self, mock_session, stores, make_trainer):
        trainer_store, _, _ = stores
        holder = trainer_store.add(make_trainer(phone="919876543210"))

        await AuthService.request_phone_otp(mock_session, "919876543210")
        result = await AuthService.verify_phone_otp(mock_session, "919876543210", CODE)

        assert result.identity_decision == IdentityDecision.USE_EXISTING
        assert result.trainer.id == holder.id

    async def test_retry_without_pending_code(self, mock_session, stores):
        with pytest.raises(OTPNotFoundException):
            await AuthService.retry_phone_otp(mock_session, "919876543210")

    async def test_retry_with_pending_code(self, mock_session, stores):
        await AuthService.request_phone_otp(mock_session, "919876543210")
        with patch(
            "app.core.services.auth.MSG91Service.retry_otp", new=AsyncMock()
        ) as retry_otp:
            await AuthService.retry_phone_otp(mock_session, "919876543210")
        retry_otp.assert_awaited_once()

    async def test_invalid_phone(self, mock_session, stores):
        with pytest.raises(ValidationException):
            await AuthService.request_phone_otp(mock_session, "12")


class TestGoogleSignIn:
    @staticmethod
    def _claims(email_verified: bool = True) -> OAuthUserInfo:
        return OAuthUserInfo(
            provider="google",
            provider_user_id="google-sub-1",
            email="a@x.com",
            email_verified=email_verified,
        )

    async def test_native_token_links_existing_trainer(
        self, mock_session, stores, verified_trainer
    ):
        with patch(
            "app.core.services.auth.GoogleOAuthService.verify_id_token",
            new=AsyncMock(return_value=self._claims()),
        ):
            result = await AuthService.authenticate_with_external_provider(
                mock_session, id_token="token"
            )

        assert result.trainer.id == verified_trainer.id
        assert result.identity_decision == IdentityDecision.USE_EXISTING
        assert verified_trainer.google_id == "google-sub-1"
        assert result.trainer.auth_provider == AuthProvider.OAUTH_NATIVE

    async def test_native_token_creates_verified_trainer(self, mock_session, stores):
        with patch(
            "app.core.services.auth.GoogleOAuthService.verify_id_token",
            new=AsyncMock(return_value=self._claims()),
        ):
            result = await AuthService.authenticate_with_external_provider(
                mock_session, id_token="token"
            )

        assert result.identity_decision == IdentityDecision.CREATE_NEW
        assert result.trainer.is_email_verified is True

    async def test_unverified_google_email_is_refused(self, mock_session, stores):
        with patch(
            "app.core.services.auth.GoogleOAuthService.verify_id_token",
            new=AsyncMock(return_value=self._claims(email_verified=False)),
        ):
            with pytest.raises(OAuthException):
                await AuthService.authenticate_with_external_provider(
                    mock_session, id_token="token"
                )

    async def test_web_flow_rejects_bad_state(self, mock_session, stores):
        with pytest.raises(OAuthException):
            await AuthService.authenticate_with_external_provider(
                mock_session,
                code="auth-code",
                redirect_uri="https://app.example.com/cb",
                state="tampered",
            )

    async def test_web_flow_exchanges_code(self, mock_session, stores):
        url, state = AuthService.get_external_authorization_url(
            "https://app.example.com/cb"
        )
        assert state in url

        with patch(
            "app.core.services.auth.GoogleOAuthService.exchange_code_for_tokens",
            new=AsyncMock(return_value=object()),
        ) as exchange, patch(
            "app.core.services.auth.GoogleOAuthService.get_user_info",
            new=AsyncMock(return_value=self._claims()),
        ):
            result = await AuthService.authenticate_with_external_provider(
                mock_session,
                code="auth-code",
                redirect_uri="https://app.example.com/cb",
                code_verifier="v" * 43,
                state=state,
            )

        exchange.assert_awaited_once_with(
            "auth-code", "https://app.example.com/cb", code_verifier="v" * 43
        )
        assert result.trainer.auth_provider == AuthProvider.OAUTH_WEB

    async def test_nothing_presented(self, mock_session, stores):
        with pytest.raises(ValidationException):
            await AuthService.authenticate_with_external_provider(mock_session)


class TestPasswords:
    async def test_change_password_signs_out_everywhere(
        self, mock_session, stores, verified_trainer
    ):
        _, token_store, _ = stores
        await AuthService.login(mock_session, "a@x.com", PASSWORD)

        await AuthService.change_password(
            mock_session, verified_trainer.id, PASSWORD, "brand-new-pass"
        )

        assert all(r.revoked_at is not None for r in token_store.records.values())
        assert await CredentialStore.verify_password(
            "brand-new-pass", verified_trainer.password_hash
        )

    async def test_change_password_wrong_current(
        self, mock_session, stores, verified_trainer
    ):
        with pytest.raises(InvalidCredentialsException):
            await AuthService.change_password(
                mock_session, verified_trainer.id, "nope-nope", "brand-new-pass"
            )

    async def test_change_password_unchanged(self, mock_session, stores, verified_trainer):
        with pytest.raises(ValidationException):
            await AuthService.change_password(
                mock_session, verified_trainer.id, PASSWORD, PASSWORD
            )

    async def test_reset_password(self, mock_session, stores, verified_trainer):
        for _ in range(2):
            await CredentialStore.record_failed_attempt(verified_trainer.id)

        await AuthService.request_password_reset(mock_session, "a@x.com")
        await AuthService.reset_password(mock_session, "a@x.com", CODE, "brand-new-pass")

        assert await CredentialStore.verify_password(
            "brand-new-pass", verified_trainer.password_hash
        )
        assert (
            await CredentialStore.remaining_attempts(verified_trainer.id)
            == settings.LOCKOUT_MAX_ATTEMPTS
        )

    async def test_reset_request_for_unknown_email_is_silent(
        self, mock_session, stores, dispatch
    ):
        await AuthService.request_password_reset(mock_session, "nobody@x.com")
        dispatch.assert_not_awaited()

    async def test_reset_for_unknown_email(self, mock_session, stores):
        with pytest.raises(OTPNotFoundException):
            await AuthService.reset_password(
                mock_session, "nobody@x.com", CODE, "brand-new-pass"
            )


class TestUpdateContact:
    async def test_requires_a_change(self, mock_session, stores, verified_trainer):
        with pytest.raises(ValidationException):
            await AuthService.update_contact(mock_session, verified_trainer.id)

    async def test_new_email_is_unverified_and_gets_code(
        self, mock_session, stores, verified_trainer, dispatch
    ):
        profile = await AuthService.update_contact(
            mock_session, verified_trainer.id, email="new@x.com"
        )

        assert profile.email == "new@x.com"
        assert profile.is_email_verified is False
        dispatch.assert_awaited_once_with(OTPChannel.EMAIL, "new@x.com", CODE)

    async def test_new_phone(self, mock_session, stores, verified_trainer, dispatch):
        profile = await AuthService.update_contact(
            mock_session, verified_trainer.id, phone="+91 98765 43210"
        )

        assert profile.phone == "919876543210"
        assert profile.is_phone_verified is False
        dispatch.assert_not_awaited()


class TestLogout:
    async def test_logout_all_drops_tokens_and_sessions(
        self, mock_session, stores, verified_trainer
    ):
        first = await AuthService.login(mock_session, "a@x.com", PASSWORD)
        await AuthService.login(mock_session, "a@x.com", PASSWORD)

        assert await AuthService.logout_all(mock_session, verified_trainer.id) == 2
        assert await AuthService.get_active_sessions(mock_session, verified_trainer.id) == []
        with pytest.raises(AuthenticationException):
            await AuthService.refresh(mock_session, first.tokens.refresh_token)
