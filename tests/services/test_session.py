"""
Test suite for SessionManager.

Run tests:
    pytest tests/services/test_session.py -v
"""

import asyncio
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from redis.exceptions import RedisError

from app.core.exceptions.types import RateLimitExceededException
from app.core.schemas.auth import ClientMeta
from app.core.services.session import SessionManager


class TestSessionLifecycle:
    async def test_create_and_get_session(self):
        trainer_id = uuid4()
        meta = ClientMeta(user_agent="pytest", ip_address="127.0.0.1")

        session_id = await SessionManager.create_session(trainer_id, "trainer", meta)
        record = await SessionManager.get_session(session_id)

        assert record is not None
        assert record.trainer_id == trainer_id
        assert record.role == "trainer"
        assert record.user_agent == "pytest"
        assert record.schema_version == 1

    async def test_create_session_survives_cache_outage(self):
        with patch(
            "app.core.services.session.RedisService.set",
            new=AsyncMock(return_value=False),
        ):
            session_id = await SessionManager.create_session(uuid4())
        assert session_id
        assert await SessionManager.get_session(session_id) is None

    async def test_touch_updates_last_activity(self):
        session_id = await SessionManager.create_session(uuid4())
        before = await SessionManager.get_session(session_id)
        assert before is not None

        assert await SessionManager.touch_session(session_id) is True

        after = await SessionManager.get_session(session_id)
        assert after is not None
        assert after.last_activity_at >= before.last_activity_at

    async def test_touch_missing_session(self):
        assert await SessionManager.touch_session("missing") is False

    async def test_unreadable_session_is_dropped(self, fake_redis):
        await fake_redis.set(SessionManager._session_key("broken"), "{not json")
        assert await SessionManager.get_session("broken") is None
        assert await fake_redis.get(SessionManager._session_key("broken")) is None

    async def test_delete_session(self):
        trainer_id = uuid4()
        session_id = await SessionManager.create_session(trainer_id)

        await SessionManager.delete_session(session_id)

        assert await SessionManager.get_session(session_id) is None

    async def test_delete_all_sessions(self):
        trainer_id = uuid4()
        other_trainer = uuid4()
        first = await SessionManager.create_session(trainer_id)
        second = await SessionManager.create_session(trainer_id)
        untouched = await SessionManager.create_session(other_trainer)

        removed = await SessionManager.delete_all_sessions(trainer_id)

        assert removed == 2
        assert await SessionManager.get_session(first) is None
        assert await SessionManager.get_session(second) is None
        assert await SessionManager.get_session(untouched) is not None


class TestRefreshLock:
    async def test_lock_is_released_after_block(self):
        async with SessionManager.refresh_lock("s1") as held:
            assert held is True
        async with SessionManager.refresh_lock("s1") as held:
            assert held is True

    async def test_lock_is_released_on_error(self):
        with pytest.raises(ValueError):
            async with SessionManager.refresh_lock("s1"):
                raise ValueError("boom")
        async with SessionManager.refresh_lock("s1") as held:
            assert held is True

    async def test_contended_lock_raises_rate_limit(self):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with SessionManager.refresh_lock("s1"):
                entered.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await entered.wait()
        with patch("app.core.services.session.settings.REFRESH_LOCK_WAIT_SECONDS", 0.05):
            with pytest.raises(RateLimitExceededException) as exc_info:
                async with SessionManager.refresh_lock("s1"):
                    pass
        release.set()
        await task

        assert exc_info.value.retry_after == 1

    async def test_waiter_proceeds_once_holder_finishes(self):
        order: list[str] = []

        async def rotate(label: str, hold: float):
            async with SessionManager.refresh_lock("s1"):
                order.append(f"{label}-in")
                await asyncio.sleep(hold)
                order.append(f"{label}-out")

        with patch("app.core.services.session.settings.REFRESH_LOCK_WAIT_SECONDS", 1.0):
            await asyncio.gather(rotate("a", 0.05), rotate("b", 0))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    async def test_store_outage_runs_without_lock(self):
        with patch(
            "app.core.services.session.RedisService.acquire_lock",
            new=AsyncMock(side_effect=RedisError("down")),
        ):
            async with SessionManager.refresh_lock("s1") as held:
                assert held is False
