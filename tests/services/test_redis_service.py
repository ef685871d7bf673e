"""
Test suite for RedisService.

- Initialization and cleanup
- Best-effort data methods on a mocked client
- Lock acquisition and release

Run tests:
    pytest tests/services/test_redis_service.py -v
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError, RedisError

from app.core.services.redis_service import RedisService


@pytest.fixture
def mock_client():
    """Replace the in-memory store with a MagicMock client."""
    client = MagicMock()
    for name in ("get", "set", "incr", "expire", "delete", "ping"):
        setattr(client, name, AsyncMock())
    client.aclose = AsyncMock()
    RedisService._client = client
    yield client
    RedisService._client = None


class TestRedisServiceInit:
    async def test_init_creates_client(self):
        RedisService._client = None
        fake = MagicMock()
        fake.aclose = AsyncMock()
        with patch(
            "app.core.services.redis_service.Redis.from_url", return_value=fake
        ) as from_url:
            await RedisService.init("redis://cache:6379/1")

        from_url.assert_called_once()
        assert from_url.call_args.args[0] == "redis://cache:6379/1"
        assert RedisService.is_connected() is True

    async def test_aclose_is_safe_when_not_initialized(self):
        RedisService._client = None
        await RedisService.aclose()
        assert RedisService.is_connected() is False

    async def test_aclose_swallows_close_errors(self, mock_client):
        mock_client.aclose.side_effect = RedisConnectionError("gone")
        await RedisService.aclose()
        assert RedisService._client is None


class TestUninitialized:
    @pytest.fixture(autouse=True)
    def no_client(self):
        RedisService._client = None

    async def test_neutral_values(self):
        assert await RedisService.get("k") is None
        assert await RedisService.set("k", "v") is False
        assert await RedisService.incr("k") is None
        assert await RedisService.delete("k") == 0
        assert await RedisService.ping() is False

    async def test_lock_raises(self):
        with pytest.raises(RedisError):
            await RedisService.acquire_lock("lock", ttl=5, wait=0.1)


class TestDataMethods:
    async def test_get_decodes_bytes(self, mock_client):
        mock_client.get.return_value = b"value"
        assert await RedisService.get("k") == "value"

    async def test_set_passes_ttl_and_nx(self, mock_client):
        mock_client.set.return_value = True

        assert await RedisService.set("k", "v", ttl=30, nx=True) is True

        mock_client.set.assert_awaited_once_with("k", "v", ex=30, nx=True)

    async def test_errors_return_neutral_values(self, mock_client):
        mock_client.get.side_effect = RedisConnectionError("down")
        mock_client.incr.side_effect = RedisConnectionError("down")
        mock_client.set.side_effect = RedisConnectionError("down")

        assert await RedisService.get("k") is None
        assert await RedisService.incr("k") is None
        assert await RedisService.set("k", "v") is False

    async def test_delete_without_keys(self, mock_client):
        assert await RedisService.delete() == 0
        mock_client.delete.assert_not_awaited()

    async def test_incr_with_ttl_runs_one_transaction(self, fake_redis):
        assert await RedisService.incr("attempts", ttl=60) == 1
        deadline = fake_redis.expiry["attempts"]

        assert await RedisService.incr("attempts", ttl=60) == 2

        assert fake_redis.executed_pipelines == [["incr", "expire"], ["incr", "expire"]]
        assert fake_redis.expiry["attempts"] == deadline

    async def test_incr_with_ttl_failure_is_neutral(self, mock_client):
        mock_client.pipeline.side_effect = RedisConnectionError("down")
        assert await RedisService.incr("attempts", ttl=60) is None

    async def test_sets_round_trip_on_store(self):
        await RedisService.sadd("members", "a", "b", ttl=60)
        await RedisService.srem("members", "a")
        assert await RedisService.smembers("members") == {"b"}


class TestLocks:
    async def test_acquire_and_release(self):
        lock = await RedisService.acquire_lock("lock:1", ttl=5, wait=0.1)
        assert lock is not None
        assert await RedisService.acquire_lock("lock:1", ttl=5, wait=0.01) is None
        assert await RedisService.release_lock(lock) is True
        assert await RedisService.acquire_lock("lock:1", ttl=5, wait=0.01) is not None

    async def test_release_of_lost_lock_is_skipped(self):
        lock = MagicMock()
        lock.name = "lock:1"
        lock.release = AsyncMock(side_effect=LockError("not owned"))
        assert await RedisService.release_lock(lock) is False

    async def test_acquire_propagates_store_errors(self, mock_client):
        lock = MagicMock()
        lock.acquire = AsyncMock(side_effect=RedisConnectionError("down"))
        mock_client.lock = MagicMock(return_value=lock)

        with pytest.raises(RedisConnectionError):
            await RedisService.acquire_lock("lock:1", ttl=5, wait=0.1)
