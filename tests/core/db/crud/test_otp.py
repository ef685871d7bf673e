"""
Test suite for OTPRecord CRUD operations.

Run all tests:
    pytest tests/core/db/crud/test_otp.py -v
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.dialects import postgresql

from app.core.db.crud.otp import OTPRecordDB
from app.core.enums import OTPChannel


def _compiled(session):
    stmt = session.execute.await_args.args[0]
    return stmt.compile(dialect=postgresql.dialect())


def _result(rowcount: int = 1) -> MagicMock:
    result = MagicMock()
    result.rowcount = rowcount
    result.scalars.return_value.first.return_value = None
    return result


class TestOTPRecordDB:
    async def test_verification_read_locks_the_pending_code(self, mock_session):
        mock_session.execute = AsyncMock(return_value=_result())

        await OTPRecordDB().get_for_subject(
            mock_session, "919876543210", OTPChannel.PHONE, for_update=True
        )

        sql = str(_compiled(mock_session))
        assert "otp_records.subject_id = " in sql
        assert "otp_records.channel = " in sql
        assert sql.endswith("FOR UPDATE")

    async def test_increment_is_one_conditional_update(self, mock_session):
        mock_session.execute = AsyncMock(return_value=_result(rowcount=1))

        counted = await OTPRecordDB().increment_attempts(
            mock_session,
            "919876543210",
            OTPChannel.PHONE,
            max_attempts=5,
            commit_self=False,
        )

        assert counted == 1
        compiled = _compiled(mock_session)
        sql = str(compiled)
        assert "attempt_count=(otp_records.attempt_count + " in sql
        assert "otp_records.attempt_count < " in sql
        assert 5 in compiled.params.values()
        mock_session.flush.assert_awaited_once()
        mock_session.commit.assert_not_awaited()

    async def test_exhausted_counter_is_not_incremented(self, mock_session):
        mock_session.execute = AsyncMock(return_value=_result(rowcount=0))

        counted = await OTPRecordDB().increment_attempts(
            mock_session, "919876543210", OTPChannel.PHONE, max_attempts=5
        )

        assert counted == 0

    async def test_delete_expired(self, mock_session):
        mock_session.execute = AsyncMock(return_value=_result(rowcount=4))
        cutoff = datetime.now(timezone.utc)

        assert await OTPRecordDB().delete_expired(mock_session, cutoff) == 4

        compiled = _compiled(mock_session)
        assert str(compiled).startswith("DELETE FROM otp_records")
        assert cutoff in compiled.params.values()
