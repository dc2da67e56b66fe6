"""
Key-Value Backend Tests.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from history_engine.exceptions import PersistenceError
from history_engine.kv import InMemoryKeyValueStore, RedisKeyValueStore


class TestInMemoryKeyValueStore:
    """Tests for InMemoryKeyValueStore."""

    @pytest.mark.asyncio
    async def test_get_set_delete(self):
        kv = InMemoryKeyValueStore()

        assert await kv.set("a", b"1") is True
        assert await kv.get("a") == b"1"
        assert await kv.delete("a") is True
        assert await kv.delete("a") is False
        assert await kv.get("a") is None

    @pytest.mark.asyncio
    async def test_ttl_expiry(self):
        now = [0.0]
        kv = InMemoryKeyValueStore(clock=lambda: now[0])
        await kv.set("short", b"x", ttl=10)
        await kv.set("forever", b"y")

        now[0] = 11.0

        assert await kv.get("short") is None
        assert await kv.get("forever") == b"y"

    @pytest.mark.asyncio
    async def test_bytes_only(self):
        with pytest.raises(TypeError):
            await InMemoryKeyValueStore().set("a", "text")

    @pytest.mark.asyncio
    async def test_scan(self):
        kv = InMemoryKeyValueStore()
        await kv.set("history:BTC:v1:backup:2", b"")
        await kv.set("history:BTC:v1:backup:1", b"")
        await kv.set("history:ETH:v1:backup:1", b"")

        assert await kv.scan("history:BTC:v1:backup:*") == [
            "history:BTC:v1:backup:1",
            "history:BTC:v1:backup:2",
        ]

    @pytest.mark.asyncio
    async def test_write_tracking(self):
        kv = InMemoryKeyValueStore()
        await kv.set("a", b"1")
        await kv.set("a", b"2")

        assert kv.write_count == 2
        assert kv.written_keys == ["a", "a"]
        assert len(kv) == 1

    @pytest.mark.asyncio
    async def test_append_capped(self):
        kv = InMemoryKeyValueStore()
        for i in range(5):
            await kv.append_capped("log", str(i).encode(), 3)

        assert await kv.read_list("log") == [b"2", b"3", b"4"]
        assert await kv.read_list("missing") == []
        assert await kv.scan("lo*") == ["log"]
        assert await kv.delete("log") is True
        assert await kv.read_list("log") == []


class TestRedisKeyValueStore:
    """Tests for RedisKeyValueStore with a mocked client."""

    @pytest.mark.asyncio
    async def test_set_without_ttl(self):
        client = MagicMock()
        client.set = AsyncMock(return_value=True)
        kv = RedisKeyValueStore(client=client)

        assert await kv.set("history:BTC:v1:meta", b"{}") is True
        client.set.assert_awaited_once_with("history:BTC:v1:meta", b"{}", ex=None)

    @pytest.mark.asyncio
    async def test_get_and_delete(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=b"data")
        client.delete = AsyncMock(return_value=1)
        kv = RedisKeyValueStore(client=client)

        assert await kv.get("k") == b"data"
        assert await kv.delete("k") is True

    @pytest.mark.asyncio
    async def test_errors_become_persistence_errors(self):
        client = MagicMock()
        client.get = AsyncMock(side_effect=RedisConnectionError("refused"))
        kv = RedisKeyValueStore(client=client)

        with pytest.raises(PersistenceError) as exc_info:
            await kv.get("history:BTC:v1:meta")

        assert exc_info.value.key == "history:BTC:v1:meta"

    @pytest.mark.asyncio
    async def test_scan_decodes_keys(self):
        async def scan_iter(match=None):
            for key in (b"history:BTC:v1:backup:2", b"history:BTC:v1:backup:1"):
                yield key

        client = MagicMock()
        client.scan_iter = scan_iter
        kv = RedisKeyValueStore(client=client)

        assert await kv.scan("history:BTC:v1:backup:*") == [
            "history:BTC:v1:backup:1",
            "history:BTC:v1:backup:2",
        ]

    @pytest.mark.asyncio
    async def test_append_capped_is_one_transaction(self):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[4, True])
        client = MagicMock()
        client.pipeline.return_value.__aenter__.return_value = pipe
        kv = RedisKeyValueStore(client=client)

        await kv.append_capped("logs:history_updates", b"{}", 3)

        client.pipeline.assert_called_once_with(transaction=True)
        pipe.rpush.assert_called_once_with("logs:history_updates", b"{}")
        pipe.ltrim.assert_called_once_with("logs:history_updates", -3, -1)
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_read_list(self):
        client = MagicMock()
        client.lrange = AsyncMock(return_value=[b"a", b"b"])
        kv = RedisKeyValueStore(client=client)

        assert await kv.read_list("logs:history_updates") == [b"a", b"b"]
        client.lrange.assert_awaited_once_with("logs:history_updates", 0, -1)

    @pytest.mark.asyncio
    async def test_close(self):
        client = MagicMock()
        client.aclose = AsyncMock()

        await RedisKeyValueStore(client=client).close()

        client.aclose.assert_awaited_once()
