"""
CRUD operations for OTPRecord model.

"""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.crud.base import BaseDB
from app.core.db.models.otp import OTPRecord
from app.core.enums import OTPChannel


class OTPRecordDB(BaseDB[OTPRecord]):
    """
    Storage for the one pending code per (subject, channel).
    """

    def __init__(self):
        super().__init__(model=OTPRecord)

    async def get_for_subject(
        self,
        session: AsyncSession,
        subject_id: str,
        channel: OTPChannel,
        for_update: bool = False,
    ) -> OTPRecord | None:
        """The pending record, row-locked when `for_update` is set."""
        return await self.get_one_by_conditions(
            session,
            [self.model.subject_id == subject_id, self.model.channel == channel],
            for_update=for_update,
        )

    async def replace(
        self,
        session: AsyncSession,
        subject_id: str,
        channel: OTPChannel,
        code_hash: str,
        expires_at: datetime,
        commit_self: bool = True,
    ) -> OTPRecord:
        """
        Store a fresh code for the subject, overwriting any pending one.

        The attempt counter starts again from zero.

        Args:
            session: The database session.
            subject_id: Trainer id or normalized phone number.
            channel: Delivery channel.
            code_hash: HMAC of the new code.
            expires_at: Expiry of the new code.
            commit_self: Whether to commit after the upsert.

        Returns:
            The stored record.
        """
        return await self.upsert(
            session,
            data={
                "subject_id": subject_id,
                "channel": channel,
                "code_hash": code_hash,
                "expires_at": expires_at,
                "attempt_count": 0,
                "schema_version": 1,
            },
            unique_fields=["subject_id", "channel"],
            commit_self=commit_self,
        )

    async def increment_attempts(
        self,
        session: AsyncSession,
        subject_id: str,
        channel: OTPChannel,
        max_attempts: int,
        commit_self: bool = True,
    ) -> int:
        """
        Atomically add one to the attempt counter while it is below
        `max_attempts`.

        Returns:
            1 if the attempt was counted, 0 if the record is gone or the
            limit was already reached.
        """
        return await self.update_by_conditions(
            session,
            [
                self.model.subject_id == subject_id,
                self.model.channel == channel,
                self.model.attempt_count < max_attempts,
            ],
            {"attempt_count": self.model.attempt_count + 1},
            commit_self=commit_self,
        )

    async def delete_for_subject(
        self,
        session: AsyncSession,
        subject_id: str,
        channel: OTPChannel,
        commit_self: bool = True,
    ) -> int:
        return await self.delete_by_conditions(
            session,
            [self.model.subject_id == subject_id, self.model.channel == channel],
            commit_self=commit_self,
        )

    async def delete_expired(
        self,
        session: AsyncSession,
        older_than: datetime,
        commit_self: bool = True,
    ) -> int:
        """Delete records whose code expired before `older_than`."""
        return await self.delete_by_conditions(
            session,
            [self.model.expires_at < older_than],
            commit_self=commit_self,
        )
