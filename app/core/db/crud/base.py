from datetime import datetime, timezone
from typing import Any, Generic, Sequence, Type, TypeVar
from uuid import UUID

from sqlalchemy import SQLColumnExpression, and_
from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql import Select

from app.core.exceptions.types import DatabaseException

T = TypeVar("T")


class BaseDB(Generic[T]):
    """
    Generic async CRUD over one mapped model.

    Every write takes `commit_self`: True commits immediately, False only
    flushes so the caller can group several writes in one transaction.
    Driver errors surface as DatabaseException with the original
    SQLAlchemy error chained as `__cause__`, so callers can still tell an
    IntegrityError (uniqueness race) from a dropped connection.
    """

    def __init__(self, model: Type[T]):
        self.model = model

    @property
    def _name(self) -> str:
        return self.model.__name__  # type: ignore[attr-defined]

    @staticmethod
    async def _finish(session: AsyncSession, commit_self: bool) -> None:
        if commit_self:
            await session.commit()
        else:
            await session.flush()

    @staticmethod
    def _locked(stmt: Select, for_update: bool) -> Select:
        # populate_existing so a locked re-read replaces stale identity-map state
        if for_update:
            return stmt.with_for_update().execution_options(populate_existing=True)
        return stmt

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_by_id(
        self,
        session: AsyncSession,
        id: UUID,
        options: list[Any] = [],
        for_update: bool = False,
    ) -> T | None:
        """
        Fetch one row by primary key.

        Args:
            session: The database session.
            id: Primary key.
            options: Loader options (selectinload, ...).
            for_update: Hold a row lock until the transaction ends.

        Raises:
            DatabaseException: The query failed.
        """
        stmt = select(self.model).options(*options).where(
            getattr(self.model, "id") == id
        )
        try:
            result = await session.execute(self._locked(stmt, for_update))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error retrieving {self._name} {id}: {e}") from e

    async def get_by_conditions(
        self,
        session: AsyncSession,
        conditions: Sequence[SQLColumnExpression],
        order_by: list[Any] | None = None,
        limit: int | None = None,
        options: list[Any] = [],
        for_update: bool = False,
    ) -> Sequence[T]:
        """Fetch every row matching all `conditions`."""
        stmt = select(self.model).options(*options).where(and_(*conditions))
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            result = await session.execute(self._locked(stmt, for_update))
            return result.scalars().all()
        except (SQLAlchemyError, ValueError) as e:
            raise DatabaseException(f"Error listing {self._name}: {e}") from e

    async def get_one_by_conditions(
        self,
        session: AsyncSession,
        conditions: Sequence[SQLColumnExpression],
        options: list[Any] = [],
        for_update: bool = False,
    ) -> T | None:
        """Fetch the first row matching all `conditions`, or None."""
        stmt = select(self.model).options(*options).where(and_(*conditions))
        try:
            result = await session.execute(self._locked(stmt, for_update))
            return result.scalars().first()
        except (SQLAlchemyError, ValueError) as e:
            raise DatabaseException(f"Error retrieving {self._name}: {e}") from e

    # =========================================================================
    # Writes
    # =========================================================================

    async def create(
        self,
        session: AsyncSession,
        data: dict,
        commit_self: bool = True,
    ) -> T:
        """
        Insert a new row built from `data` and return it refreshed.

        Raises:
            DatabaseException: The insert failed; a unique-constraint
                violation is chained as IntegrityError.
        """
        try:
            obj = self.model(**data)
            session.add(obj)
            await self._finish(session, commit_self)
            await session.refresh(obj)
            return obj
        except (SQLAlchemyError, ValueError) as e:
            raise DatabaseException(f"Error creating {self._name}: {e}") from e

    async def update(
        self, session: AsyncSession, id: UUID, updates: dict, commit_self: bool = True
    ) -> T | None:
        """
        Apply `updates` to one row and return it, or None if it is gone.

        Uses UPDATE ... RETURNING, so the returned instance reflects the
        stored values.
        """
        stmt = (
            sa_update(self.model)
            .where(self.model.id == id)  # type: ignore[attr-defined]
            .values(**updates)
            .returning(self.model)
            .execution_options(populate_existing=True)
        )
        try:
            result = await session.execute(stmt)
            obj = result.scalar_one_or_none()
            await self._finish(session, commit_self)
            return obj
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error updating {self._name} {id}: {e}") from e

    async def update_by_conditions(
        self,
        session: AsyncSession,
        conditions: list[SQLColumnExpression],
        updates: dict,
        commit_self: bool = True,
    ) -> int:
        """Apply `updates` to every matching row. Returns the row count."""
        stmt = sa_update(self.model).where(and_(*conditions)).values(**updates)
        try:
            result = await session.execute(stmt)
            await self._finish(session, commit_self)
            return result.rowcount  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error updating {self._name}: {e}") from e

    async def delete_by_conditions(
        self,
        session: AsyncSession,
        conditions: list[SQLColumnExpression],
        commit_self: bool = True,
    ) -> int:
        """Hard-delete every matching row. Returns the row count."""
        stmt = sa_delete(self.model).where(and_(*conditions))
        try:
            result = await session.execute(stmt)
            await self._finish(session, commit_self)
            return result.rowcount  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error deleting {self._name}: {e}") from e

    async def upsert(
        self,
        session: AsyncSession,
        data: dict[str, Any],
        unique_fields: list[str],
        commit_self: bool = True,
    ) -> T:
        """
        INSERT ... ON CONFLICT (unique_fields) DO UPDATE.

        On conflict every column except the key, `id` and `created_at` is
        overwritten, so a replaced row looks freshly written.

        Raises:
            ValueError: A unique field is missing from `data`.
            DatabaseException: The statement failed.
        """
        missing = [f for f in unique_fields if f not in data]
        if missing:
            raise ValueError(f"Upsert data is missing unique field(s): {missing}")

        now = datetime.now(timezone.utc)
        values = {k: v for k, v in data.items() if k != "id"}
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)
        keep = {"id", "created_at", *unique_fields}
        overwrite = {k: v for k, v in values.items() if k not in keep}
        overwrite["updated_at"] = now

        stmt = (
            pg_insert(self.model)
            .values(**values)
            .on_conflict_do_update(index_elements=unique_fields, set_=overwrite)
            .returning(self.model)
            .execution_options(populate_existing=True)
        )
        try:
            result = await session.execute(stmt)
            instance = result.scalar_one()
            await self._finish(session, commit_self)
            return instance
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error upserting {self._name}: {e}") from e
