"""
CRUD operations for the Trainer model.

"""

from typing import Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.crud.base import BaseDB
from app.core.db.models.trainer import Trainer


class TrainerDB(BaseDB[Trainer]):
    """
    Lookups by each identity channel plus ordered row locking.

    Callers normalize email (lower-case) and phone (digits only) before
    calling these methods.
    """

    def __init__(self):
        super().__init__(model=Trainer)

    async def get_by_email(
        self, session: AsyncSession, email: str, for_update: bool = False
    ) -> Trainer | None:
        return await self.get_one_by_conditions(
            session,
            [self.model.email == email],
            for_update=for_update,
        )

    async def get_by_phone(
        self, session: AsyncSession, phone: str, for_update: bool = False
    ) -> Trainer | None:
        return await self.get_one_by_conditions(
            session,
            [self.model.phone == phone],
            for_update=for_update,
        )

    async def get_by_google_id(
        self, session: AsyncSession, google_id: str
    ) -> Trainer | None:
        return await self.get_one_by_conditions(
            session,
            [self.model.google_id == google_id],
        )

    async def get_by_username(
        self, session: AsyncSession, username: str
    ) -> Trainer | None:
        return await self.get_one_by_conditions(
            session,
            [self.model.username == username],
        )

    async def lock_many(
        self, session: AsyncSession, trainer_ids: list[UUID]
    ) -> Sequence[Trainer]:
        """
        Row-lock several trainers for the rest of the current transaction.

        Locks are taken in ascending id order so two transactions locking
        the same pair cannot deadlock.

        Args:
            session: The database session (inside a transaction).
            trainer_ids: Ids of the trainers to lock.

        Returns:
            The locked trainers, ordered by id, with freshly loaded columns.
        """
        return await self.get_by_conditions(
            session,
            [self.model.id.in_(sorted(set(trainer_ids)))],
            order_by=[self.model.id],
            for_update=True,
        )
