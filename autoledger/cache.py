"""Key/value cache for account balances: Redis when configured, otherwise in-process."""

import logging
import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis

log = logging.getLogger("autoledger.cache")

DEFAULT_TTL_SECONDS = 86400


def balance_key(account_id: str) -> str:
    """Cache key holding the balance of an account."""
    return f"balance:{account_id}"


class BalanceCache(Protocol):
    """Cache contract: get, set with expiry, delete."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None: ...

    async def delete(self, key: str) -> None: ...


class NullCache:
    """Cache that is never populated; every lookup misses."""

    async def get(self, key: str) -> str | None:
        return None

    async def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        return None

    async def delete(self, key: str) -> None:
        return None


class MemoryCache:
    """In-process cache with per-entry expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache:
    """Balance cache shared across invocations, kept in Redis."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        """Build a cache from a redis:// URL. No connection is made until first use."""
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        if ttl_seconds > 0:
            await self._client.set(key, value, ex=ttl_seconds)
        else:
            await self._client.set(key, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        """Release the connection pool."""
        await self._client.aclose()
        log.debug("Redis cache closed")
