"""Key-value store port used for the token blacklist, rate counters and caches.

Policy code (session gate, rate limiter, caches) depends only on the
KeyValueStore interface. RedisKeyValueStore is the production backend;
InMemoryKeyValueStore backs tests and single-process development.
"""

import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import lru_cache

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from wellmesh.core.redis import get_redis

# INCR and the first-creation EXPIRE must happen atomically, otherwise two
# concurrent requests can both observe a stale count.
INCREMENT_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if redis.call('TTL', KEYS[1]) == -1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return current
"""

SCAN_BATCH_SIZE = 500


class StoreUnavailableError(Exception):
    """The key-value store could not complete an operation."""

    pass


class KeyValueStore(ABC):
    """Abstract key-value store with per-key expiry. Values are strings."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value for ``key``, or None if missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store ``value``; expire it after ``ttl_seconds`` when given."""

    @abstractmethod
    async def increment(self, key: str, ttl_seconds: int) -> int:
        """Atomically add one to ``key`` and return the new value.

        A key created by this call expires after ``ttl_seconds``; the expiry of
        an existing key is left untouched.
        """

    @abstractmethod
    async def ttl(self, key: str) -> int | None:
        """Seconds until ``key`` expires, or None if missing or persistent."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete ``keys`` and return how many existed."""

    @abstractmethod
    async def delete_by_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix`` and return the count."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the store answers."""


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (RedisError, OSError) as e:
        raise StoreUnavailableError(f"{operation} failed: {e}") from e


def _glob_escape(value: str) -> str:
    for char in ("\\", "*", "?", "[", "]"):
        value = value.replace(char, "\\" + char)
    return value


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store. Expects a client created with decode_responses=True."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis
        self._increment_script = redis.register_script(INCREMENT_SCRIPT)

    async def get(self, key: str) -> str | None:
        with _translate_errors("GET"):
            return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with _translate_errors("SET"):
            await self._redis.set(key, str(value), ex=ttl_seconds)

    async def increment(self, key: str, ttl_seconds: int) -> int:
        with _translate_errors("INCR"):
            result = await self._increment_script(keys=[key], args=[ttl_seconds])
        return int(result)

    async def ttl(self, key: str) -> int | None:
        with _translate_errors("TTL"):
            remaining = await self._redis.ttl(key)
        # -2: no such key, -1: no expiry
        return remaining if remaining >= 0 else None

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with _translate_errors("DEL"):
            return int(await self._redis.delete(*keys))

    async def delete_by_prefix(self, prefix: str) -> int:
        removed = 0
        batch: list[str] = []
        with _translate_errors("SCAN"):
            async for key in self._redis.scan_iter(
                match=f"{_glob_escape(prefix)}*", count=SCAN_BATCH_SIZE
            ):
                batch.append(key)
                if len(batch) >= SCAN_BATCH_SIZE:
                    removed += int(await self._redis.delete(*batch))
                    batch = []
            if batch:
                removed += int(await self._redis.delete(*batch))
        return removed

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError):
            return False


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store with lazy expiry.

    ``clock`` returns seconds and can be replaced to move time forward in tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live_entry(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        return self._clock() + ttl_seconds if ttl_seconds is not None else None

    async def get(self, key: str) -> str | None:
        entry = self._live_entry(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self._data[key] = (str(value), self._expiry(ttl_seconds))

    async def increment(self, key: str, ttl_seconds: int) -> int:
        entry = self._live_entry(key)
        if entry is None:
            self._data[key] = ("1", self._expiry(ttl_seconds))
            return 1
        value, expires_at = entry
        try:
            count = int(value) + 1
        except ValueError as e:
            raise StoreUnavailableError(f"INCR failed: value of {key!r} is not an integer") from e
        if expires_at is None:
            expires_at = self._expiry(ttl_seconds)
        self._data[key] = (str(count), expires_at)
        return count

    async def ttl(self, key: str) -> int | None:
        entry = self._live_entry(key)
        if entry is None or entry[1] is None:
            return None
        return max(0, math.ceil(entry[1] - self._clock()))

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live_entry(key) is not None:
                del self._data[key]
                removed += 1
        return removed

    async def delete_by_prefix(self, prefix: str) -> int:
        matching = [key for key in list(self._data) if key.startswith(prefix)]
        return await self.delete(*matching)

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        self._data.clear()


@lru_cache
def get_kv_store() -> KeyValueStore:
    """Dependency returning the process-wide key-value store."""
    return RedisKeyValueStore(get_redis())
