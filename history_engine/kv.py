"""
History Engine - Key-value backends.

Byte-oriented get/set/delete service with optional TTL. History
records are always written without a TTL.
"""

import fnmatch
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from history_engine.exceptions import PersistenceError


logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Async byte key-value contract used by SeriesStore."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Value for key, or None when absent or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> bool:
        """Store value; ttl in seconds, None for no expiry."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key; True when something was removed."""
        pass

    @abstractmethod
    async def scan(self, pattern: str) -> list[str]:
        """Keys matching a glob-style pattern."""
        pass

    @abstractmethod
    async def append_capped(self, key: str, value: bytes, max_entries: int) -> None:
        """Append to the list at key and keep only the newest max_entries, atomically."""
        pass

    @abstractmethod
    async def read_list(self, key: str) -> list[bytes]:
        """Entries of the list at key, oldest first."""
        pass

    async def close(self) -> None:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local store.

    Tracks the number of physical writes so idempotency can be
    asserted in tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._data: dict[str, tuple[bytes, Optional[float]]] = {}
        self._lists: dict[str, list[bytes]] = {}
        self._clock = clock
        self.write_count = 0
        self.written_keys: list[str] = []

    def _expired(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return True
        expires_at = entry[1]
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return True
        return False

    async def get(self, key: str) -> Optional[bytes]:
        if self._expired(key):
            return None
        return self._data[key][0]

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> bool:
        if not isinstance(value, (bytes, bytearray)):
            raise TypeError(f"value for {key} must be bytes, got {type(value).__name__}")
        expires_at = self._clock() + ttl if ttl else None
        self._data[key] = (bytes(value), expires_at)
        self.write_count += 1
        self.written_keys.append(key)
        return True

    async def delete(self, key: str) -> bool:
        if self._lists.pop(key, None) is not None:
            return True
        if self._expired(key):
            return False
        del self._data[key]
        return True

    async def scan(self, pattern: str) -> list[str]:
        keys = [key for key in list(self._data) if not self._expired(key)] + list(self._lists)
        return sorted(key for key in keys if fnmatch.fnmatchcase(key, pattern))

    async def append_capped(self, key: str, value: bytes, max_entries: int) -> None:
        entries = self._lists.setdefault(key, [])
        entries.append(bytes(value))
        del entries[:-max_entries]
        self.write_count += 1
        self.written_keys.append(key)

    async def read_list(self, key: str) -> list[bytes]:
        return list(self._lists.get(key, []))

    def __len__(self) -> int:
        return len(self._data) + len(self._lists)


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store using redis.asyncio."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        client: Optional[aioredis.Redis] = None,
    ) -> None:
        self._client = client or aioredis.Redis.from_url(url)

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise PersistenceError(f"Redis GET failed: {e}", key=key, original_error=e)

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> bool:
        try:
            result = await self._client.set(key, value, ex=ttl if ttl else None)
            return bool(result)
        except RedisError as e:
            raise PersistenceError(f"Redis SET failed: {e}", key=key, original_error=e)

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(key))
        except RedisError as e:
            raise PersistenceError(f"Redis DEL failed: {e}", key=key, original_error=e)

    async def scan(self, pattern: str) -> list[str]:
        try:
            keys = [
                key.decode("utf-8") if isinstance(key, bytes) else key
                async for key in self._client.scan_iter(match=pattern)
            ]
            return sorted(keys)
        except RedisError as e:
            raise PersistenceError(f"Redis SCAN failed: {e}", key=pattern, original_error=e)

    async def append_capped(self, key: str, value: bytes, max_entries: int) -> None:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.rpush(key, value)
                pipe.ltrim(key, -max_entries, -1)
                await pipe.execute()
        except RedisError as e:
            raise PersistenceError(f"Redis RPUSH failed: {e}", key=key, original_error=e)

    async def read_list(self, key: str) -> list[bytes]:
        try:
            return await self._client.lrange(key, 0, -1)
        except RedisError as e:
            raise PersistenceError(f"Redis LRANGE failed: {e}", key=key, original_error=e)

    async def close(self) -> None:
        await self._client.aclose()
