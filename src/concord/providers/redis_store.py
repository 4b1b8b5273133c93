"""Redis-backed key-value store.

Persists the moderation term list snapshot and the duplicate-fingerprint
history across restarts. Uses the redis-py async client for connection
pooling.
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import TYPE_CHECKING, cast

import redis.asyncio as redis

if TYPE_CHECKING:
    from redis.asyncio import Redis

DEFAULT_PREFIX = "concord:kv:"


def create_redis_client(url: str) -> Redis:
    """Create a pooled Redis client returning str values."""
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
    )


class RedisKeyValueStore:
    """KeyValueStore over Redis strings.

    Keys are namespaced with ``prefix`` so several applications can share a
    Redis database.
    """

    def __init__(self, client: Redis, prefix: str = DEFAULT_PREFIX, ttl: int | None = None):
        self.client = client
        self.prefix = prefix
        self.ttl = ttl

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> str | None:
        value = await self.client.get(self._key(key))
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else cast(str, value)

    async def set(self, key: str, value: str) -> None:
        if self.ttl:
            await self.client.setex(self._key(key), self.ttl, value)
        else:
            await self.client.set(self._key(key), value)

    async def remove(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def health_check(self) -> bool:
        """Check Redis connectivity."""
        try:
            await cast(Awaitable[bool], self.client.ping())
            return True
        except Exception:
            return False

    async def close(self) -> None:
        """Close Redis connections."""
        await self.client.aclose()
