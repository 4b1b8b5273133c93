"""Remote data provider and persistent store adapters.

The core depends only on the protocols in ``base``; adapters:
- HttpRemoteProvider: PostgREST-style HTTP service (httpx)
- RedisKeyValueStore: Redis strings (redis-py asyncio)
- InMemoryKeyValueStore: dict, for development and tests
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from concord.providers.base import KeyValueStore, RemoteDataProvider
from concord.providers.http import HttpRemoteProvider
from concord.providers.memory import InMemoryKeyValueStore
from concord.providers.redis_store import RedisKeyValueStore, create_redis_client

if TYPE_CHECKING:
    from concord.config import Settings


def create_store(settings: Settings) -> KeyValueStore:
    """Create a key-value store based on configuration."""
    backend = settings.kv_backend.lower()

    if backend in {"memory", "inmemory", "in_memory"}:
        return InMemoryKeyValueStore()

    if backend == "redis":
        return RedisKeyValueStore(
            create_redis_client(settings.redis_url), prefix=settings.kv_key_prefix
        )

    raise ValueError("Unsupported kv_backend. Supported values: memory, redis.")


__all__ = [
    "RemoteDataProvider",
    "KeyValueStore",
    "HttpRemoteProvider",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "create_redis_client",
    "create_store",
]
