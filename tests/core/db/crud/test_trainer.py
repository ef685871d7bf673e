"""
Test suite for Trainer CRUD operations.

Run all tests:
    pytest tests/core/db/crud/test_trainer.py -v
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from sqlalchemy.dialects import postgresql

from app.core.db.crud.trainer import TrainerDB


class TestLockMany:
    async def test_locks_in_ascending_id_order(self, mock_session):
        result = MagicMock()
        result.scalars.return_value.all.return_value = []
        mock_session.execute = AsyncMock(return_value=result)
        first, second = sorted([uuid4(), uuid4()])

        await TrainerDB().lock_many(mock_session, [second, first, second])

        stmt = mock_session.execute.await_args.args[0]
        compiled = stmt.compile(dialect=postgresql.dialect())
        sql = str(compiled)
        assert "ORDER BY trainers.id" in sql
        assert sql.endswith("FOR UPDATE")
        assert stmt.get_execution_options()["populate_existing"] is True
        in_values = [v for v in compiled.params.values() if isinstance(v, list)]
        assert in_values == [[first, second]]
