"""
CRUD operations for RefreshToken model.

- Looking up tokens by hash, optionally under a row lock
- Following a rotated token to its live successor for reuse detection
- Revoking single tokens or every token of a trainer
- Trimming and cleaning up old tokens
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.crud.base import BaseDB
from app.core.db.models.refresh_token import RefreshToken
from app.core.exceptions.types import DatabaseException


class RefreshTokenDB(BaseDB[RefreshToken]):
    """
    Database operations for RefreshToken model.

    Example:
        >>> db = RefreshTokenDB()
        >>> token = await db.get_by_token_hash(session, "abc123...", for_update=True)
    """

    def __init__(self):
        super().__init__(model=RefreshToken)

    def _live_conditions(self, trainer_id: UUID) -> list:
        now = datetime.now(timezone.utc)
        return [
            self.model.trainer_id == trainer_id,
            self.model.revoked_at == None,  # noqa: E711
            self.model.expires_at > now,
        ]

    async def get_by_token_hash(
        self,
        session: AsyncSession,
        token_hash: str,
        for_update: bool = False,
    ) -> RefreshToken | None:
        """
        Find a refresh token by its hash, revoked or not.

        Args:
            session: The database session.
            token_hash: The SHA256 hash of the refresh token.
            for_update: Row-lock the record until the transaction ends.

        Returns:
            The RefreshToken if found, None otherwise.
        """
        return await self.get_one_by_conditions(
            session,
            [self.model.token_hash == token_hash],
            for_update=for_update,
        )

    async def get_live_successor(
        self,
        session: AsyncSession,
        stored: RefreshToken,
    ) -> RefreshToken | None:
        """
        The still-live token that replaced `stored` in a rotation, if any.

        A token revoked by logout has no successor, so this tells a token
        that was just rotated away from one that was logged out.
        """
        if stored.replaced_by_hash is None:
            return None
        return await self.get_one_by_conditions(
            session,
            [
                *self._live_conditions(stored.trainer_id),
                self.model.token_hash == stored.replaced_by_hash,
            ],
        )

    async def revoke(
        self,
        session: AsyncSession,
        token_hash: str,
        replaced_by: str | None = None,
        commit_self: bool = True,
    ) -> bool:
        """
        Revoke a refresh token by its hash.

        Args:
            session: The database session.
            token_hash: The SHA256 hash of the token to revoke.
            replaced_by: Hash of the successor when revoking for rotation.
            commit_self: Whether to commit the transaction.

        Returns:
            True if a live token was revoked, False otherwise.
        """
        now = datetime.now(timezone.utc)
        count = await self.update_by_conditions(
            session,
            [
                self.model.token_hash == token_hash,
                self.model.revoked_at == None,  # noqa: E711
            ],
            {"revoked_at": now, "updated_at": now, "replaced_by_hash": replaced_by},
            commit_self=commit_self,
        )
        return count > 0

    async def revoke_all_for_trainer(
        self,
        session: AsyncSession,
        trainer_id: UUID,
        commit_self: bool = True,
    ) -> int:
        """
        Revoke all refresh tokens for a trainer (sign out all devices).

        Returns:
            The number of tokens that were revoked.
        """
        now = datetime.now(timezone.utc)
        return await self.update_by_conditions(
            session,
            [
                self.model.trainer_id == trainer_id,
                self.model.revoked_at == None,  # noqa: E711
            ],
            {"revoked_at": now, "updated_at": now},
            commit_self=commit_self,
        )

    async def get_active_tokens_for_trainer(
        self,
        session: AsyncSession,
        trainer_id: UUID,
    ) -> list[RefreshToken]:
        """Live tokens for a trainer, newest first."""
        tokens = await self.get_by_conditions(
            session,
            self._live_conditions(trainer_id),
            order_by=[self.model.created_at.desc()],
        )
        return list(tokens)

    async def revoke_oldest_beyond(
        self,
        session: AsyncSession,
        trainer_id: UUID,
        keep: int,
        commit_self: bool = True,
    ) -> int:
        """
        Revoke the trainer's oldest live tokens so at most `keep` remain live.

        Args:
            session: The database session.
            trainer_id: The trainer whose tokens are trimmed.
            keep: Number of newest live tokens to leave untouched.
            commit_self: Whether to commit the transaction.

        Returns:
            The number of tokens revoked.
        """
        now = datetime.now(timezone.utc)
        keep_ids = (
            select(self.model.id)
            .where(and_(*self._live_conditions(trainer_id)))
            .order_by(self.model.created_at.desc())
            .limit(keep)
        )
        try:
            stmt = (
                update(self.model)
                .where(
                    and_(
                        *self._live_conditions(trainer_id),
                        self.model.id.not_in(keep_ids),
                    )
                )
                .values(revoked_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)

            if commit_self:
                await session.commit()
            else:
                await session.flush()

            return result.rowcount  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error trimming refresh tokens for trainer {trainer_id}: {str(e)}"
            ) from e

    async def cleanup_expired(
        self,
        session: AsyncSession,
        retain_revoked_days: int = 7,
        commit_self: bool = True,
    ) -> int:
        """
        Permanently delete expired tokens and tokens revoked long ago.

        Recently revoked tokens are kept so reuse detection and audits can
        still see them.

        Args:
            session: The database session.
            retain_revoked_days: Keep revoked tokens for this many days.
            commit_self: Whether to commit the transaction.

        Returns:
            The number of tokens deleted.
        """
        now = datetime.now(timezone.utc)
        revoked_cutoff = now - timedelta(days=retain_revoked_days)
        try:
            stmt = delete(self.model).where(
                or_(
                    self.model.expires_at < now,
                    self.model.revoked_at < revoked_cutoff,
                )
            )
            result = await session.execute(stmt)

            if commit_self:
                await session.commit()
            else:
                await session.flush()

            return result.rowcount  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error cleaning up refresh tokens: {str(e)}") from e
