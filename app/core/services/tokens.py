"""
Access/refresh token issuance and rotation.

Example usage:
    from app.core.services.tokens import TokenRotator

    issued = TokenRotator.issue_tokens(trainer, session_id)
    await TokenRotator.persist_refresh_token(
        session, trainer.id, issued.refresh_token_hash, issued.pair.refresh_expires_at
    )
    await session.commit()

    result = await TokenRotator.refresh(session, issued.pair.refresh_token)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import auth_logger, settings
from app.core.db.crud import refresh_token_db, trainer_db
from app.core.db.models import RefreshToken, Trainer
from app.core.enums import TokenType
from app.core.exceptions.types import AuthenticationException, TokenReuseException
from app.core.schemas.auth import (
    ActiveSession,
    AuthResult,
    ClientMeta,
    TokenPair,
    TrainerProfile,
)
from app.core.services.retry import as_service_unavailable, read_with_retry
from app.core.services.session import SessionManager
from app.core.utils import create_jwt_token, decode_jwt_token, hash_token


@dataclass
class IssuedTokens:
    """A signed pair plus the hash under which its refresh token is stored."""

    pair: TokenPair
    refresh_token_hash: str


class TokenRotator:
    """
    Issues token pairs and rotates refresh tokens.

    A refresh token lineage moves Active -> RotatedAway through `refresh`,
    Active -> Revoked through `logout` / `logout_all`, and expires by time.
    Rotation always stores the successor before revoking the predecessor,
    inside one transaction, under both the session's distributed lock and
    a row lock on the predecessor.
    """

    # =========================================================================
    # Issuance
    # =========================================================================

    @classmethod
    def issue_tokens(cls, trainer: Trainer, session_id: str) -> IssuedTokens:
        """
        Sign an access/refresh pair for a trainer. Touches no storage.

        Both tokens carry the trainer id (`sub`), role and session id
        (`sid`); the access token also carries the contact claims.
        """
        access_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        refresh_expires = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

        access_token = create_jwt_token(
            data={
                "sub": str(trainer.id),
                "role": settings.TOKEN_ROLE,
                "sid": session_id,
                "email": trainer.email,
                "phone": trainer.phone,
                "type": TokenType.ACCESS.value,
            },
            secret=settings.JWT_SECRET_KEY,
            expires_delta=access_expires,
        )
        refresh_token = create_jwt_token(
            data={
                "sub": str(trainer.id),
                "role": settings.TOKEN_ROLE,
                "sid": session_id,
                "type": TokenType.REFRESH.value,
            },
            secret=settings.JWT_REFRESH_SECRET_KEY,
            expires_delta=refresh_expires,
        )

        pair = TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            refresh_expires_at=datetime.now(timezone.utc) + refresh_expires,
            expires_in=int(access_expires.total_seconds()),
        )
        return IssuedTokens(pair=pair, refresh_token_hash=hash_token(refresh_token))

    @classmethod
    async def persist_refresh_token(
        cls,
        session: AsyncSession,
        trainer_id: UUID,
        token_hash: str,
        expires_at: datetime,
        meta: ClientMeta | None = None,
        commit_self: bool = False,
    ) -> RefreshToken:
        """
        Store a new live refresh token record.

        The trainer's oldest live tokens beyond MAX_REFRESH_TOKENS_PER_TRAINER
        are revoked in the same transaction.

        Args:
            session: The database session.
            trainer_id: Owner of the token.
            token_hash: SHA256 of the refresh token.
            expires_at: Refresh token expiry.
            meta: Client user agent / IP.
            commit_self: Commit after writing. Defaults to False so callers
                can group this with their own writes.
        """
        record = await refresh_token_db.create(
            session,
            data={
                "trainer_id": trainer_id,
                "token_hash": token_hash,
                "expires_at": expires_at,
                "user_agent": meta.user_agent if meta else None,
                "ip_address": meta.ip_address if meta else None,
            },
            commit_self=False,
        )
        trimmed = await refresh_token_db.revoke_oldest_beyond(
            session,
            trainer_id,
            keep=settings.MAX_REFRESH_TOKENS_PER_TRAINER,
            commit_self=False,
        )
        if trimmed:
            auth_logger.info(
                f"Revoked {trimmed} oldest refresh token(s) for trainer {trainer_id}"
            )
        if commit_self:
            await session.commit()
        return record

    # =========================================================================
    # Rotation
    # =========================================================================

    @classmethod
    async def refresh(
        cls,
        session: AsyncSession,
        refresh_token: str,
        session_id: str | None = None,
        meta: ClientMeta | None = None,
    ) -> AuthResult:
        """
        Rotate a refresh token.

        1. Verify the token's signature, expiry and type.
        2. Hold the session's refresh lock (waits up to
           REFRESH_LOCK_WAIT_SECONDS for a concurrent rotation).
        3. In one transaction: row-lock the stored record, reject it if
           unknown, revoked or expired, store the successor, then revoke it.
        4. Bump the cached session; failures there are only logged.

        Args:
            session: The database session.
            refresh_token: The refresh token presented by the client.
            session_id: Session to rotate under. Defaults to the token's
                `sid` claim; a new session is created if neither exists.
            meta: Client user agent / IP for the successor record.

        Returns:
            AuthResult: The new pair, the trainer and the session id.

        Raises:
            AuthenticationException: Bad, unknown, revoked or expired token.
            TokenReuseException: The token was rotated moments ago and a
                newer one exists; the client should use that one.
            RateLimitExceededException: Another rotation of the same session
                held the lock for the whole wait.
            ServiceUnavailableException: The store stayed unreachable.
        """
        claims = decode_jwt_token(
            refresh_token,
            settings.JWT_REFRESH_SECRET_KEY,
            expected_type=TokenType.REFRESH.value,
        )
        if claims is None or not claims.get("sub"):
            raise AuthenticationException("Invalid or expired refresh token")

        try:
            trainer_id = UUID(str(claims["sub"]))
        except ValueError:
            raise AuthenticationException("Invalid or expired refresh token")

        trainer = await read_with_retry(
            session, lambda: trainer_db.get_by_id(session, trainer_id)
        )
        if trainer is None:
            auth_logger.warning(f"Refresh for unknown trainer {trainer_id}")
            raise AuthenticationException("Invalid or expired refresh token")

        session_id = session_id or claims.get("sid")
        if not session_id or await SessionManager.get_session(session_id) is None:
            session_id = await SessionManager.create_session(
                trainer.id, settings.TOKEN_ROLE, meta
            )

        token_hash = hash_token(refresh_token)
        async with SessionManager.refresh_lock(session_id):
            issued = await cls._rotate(session, trainer, token_hash, session_id, meta)

        if not await SessionManager.touch_session(session_id):
            auth_logger.warning(
                f"Session {session_id} not refreshed in cache after rotation"
            )

        auth_logger.info(f"Refresh token rotated: trainer={trainer.id}")
        return AuthResult(
            tokens=issued.pair,
            trainer=TrainerProfile.model_validate(trainer),
            session_id=session_id,
        )

    @classmethod
    async def _rotate(
        cls,
        session: AsyncSession,
        trainer: Trainer,
        token_hash: str,
        session_id: str,
        meta: ClientMeta | None,
    ) -> IssuedTokens:
        """The single transactional attempt of a rotation. Never retried."""
        try:
            stored = await refresh_token_db.get_by_token_hash(
                session, token_hash, for_update=True
            )
            if stored is None or stored.trainer_id != trainer.id:
                raise AuthenticationException("Invalid or expired refresh token")

            if stored.revoked_at is not None:
                await cls._raise_for_revoked(session, stored)

            if stored.is_expired:
                raise AuthenticationException("Refresh token expired")

            issued = cls.issue_tokens(trainer, session_id)
            # Successor first: the trainer is never left without a live token
            await cls.persist_refresh_token(
                session,
                trainer.id,
                issued.refresh_token_hash,
                issued.pair.refresh_expires_at,
                meta,
            )
            await refresh_token_db.revoke(
                session,
                token_hash,
                replaced_by=issued.refresh_token_hash,
                commit_self=False,
            )
            await session.commit()
            return issued
        except Exception as e:
            await session.rollback()
            mapped = as_service_unavailable(e)
            if mapped is e:
                raise
            auth_logger.error(f"Refresh rotation failed on store error: {e}")
            raise mapped from e

    @classmethod
    async def _raise_for_revoked(
        cls, session: AsyncSession, stored: RefreshToken
    ) -> None:
        assert stored.revoked_at is not None
        grace = timedelta(seconds=settings.REFRESH_REUSE_GRACE_SECONDS)
        if stored.revoked_at >= datetime.now(timezone.utc) - grace:
            # Only a rotation links a successor; logout leaves none
            successor = await refresh_token_db.get_live_successor(session, stored)
            if successor is not None:
                auth_logger.info(
                    f"Rotated-away refresh token replayed within grace window: "
                    f"trainer={stored.trainer_id}"
                )
                raise TokenReuseException()

        auth_logger.warning(f"Revoked refresh token presented: trainer={stored.trainer_id}")
        raise AuthenticationException("Refresh token revoked")

    # =========================================================================
    # Revocation
    # =========================================================================

    @classmethod
    async def logout(
        cls, session: AsyncSession, refresh_token: str, commit_self: bool = True
    ) -> bool:
        """
        Revoke exactly one refresh token.

        Returns:
            bool: True if a live token was revoked.
        """
        revoked = await refresh_token_db.revoke(
            session, hash_token(refresh_token), commit_self=commit_self
        )
        if revoked:
            auth_logger.info("Refresh token revoked")
        else:
            auth_logger.warning("Refresh token revocation failed: token not found")
        return revoked

    @classmethod
    async def logout_all(
        cls, session: AsyncSession, trainer_id: UUID, commit_self: bool = True
    ) -> int:
        """Revoke every live refresh token of a trainer. Returns the count."""
        count = await refresh_token_db.revoke_all_for_trainer(
            session, trainer_id, commit_self=commit_self
        )
        auth_logger.info(f"All tokens revoked: trainer_id={trainer_id}, count={count}")
        return count

    @classmethod
    async def get_active_sessions(
        cls, session: AsyncSession, trainer_id: UUID
    ) -> list[ActiveSession]:
        tokens = await read_with_retry(
            session,
            lambda: refresh_token_db.get_active_tokens_for_trainer(session, trainer_id),
        )
        return [ActiveSession.model_validate(token) for token in tokens]


__all__ = ["IssuedTokens", "TokenRotator"]
