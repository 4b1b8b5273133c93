"""Tests for key-value store adapters."""

from unittest.mock import AsyncMock

import pytest

from concord.config import Settings
from concord.providers import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    create_store,
)


class TestInMemoryKeyValueStore:
    async def test_set_get_remove(self) -> None:
        store = InMemoryKeyValueStore()

        await store.set("k", "v")
        assert await store.get("k") == "v"

        await store.remove("k")
        assert await store.get("k") is None
        await store.remove("k")

    async def test_initial_contents(self) -> None:
        store = InMemoryKeyValueStore({"a": "1"})
        assert await store.get("a") == "1"
        assert len(store) == 1

    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryKeyValueStore(), KeyValueStore)


class TestRedisKeyValueStore:
    """Test Redis adapter against a mocked client."""

    @pytest.fixture
    def client(self) -> AsyncMock:
        return AsyncMock()

    async def test_keys_are_prefixed(self, client: AsyncMock) -> None:
        store = RedisKeyValueStore(client, prefix="app:")
        client.get.return_value = "payload"

        assert await store.get("sensitive_words_cache") == "payload"
        client.get.assert_awaited_once_with("app:sensitive_words_cache")

    async def test_bytes_are_decoded(self, client: AsyncMock) -> None:
        client.get.return_value = b"payload"
        assert await RedisKeyValueStore(client).get("k") == "payload"

    async def test_missing_key(self, client: AsyncMock) -> None:
        client.get.return_value = None
        assert await RedisKeyValueStore(client).get("k") is None

    async def test_set_without_ttl(self, client: AsyncMock) -> None:
        await RedisKeyValueStore(client, prefix="p:").set("k", "v")
        client.set.assert_awaited_once_with("p:k", "v")

    async def test_set_with_ttl(self, client: AsyncMock) -> None:
        await RedisKeyValueStore(client, prefix="p:", ttl=60).set("k", "v")
        client.setex.assert_awaited_once_with("p:k", 60, "v")

    async def test_remove(self, client: AsyncMock) -> None:
        await RedisKeyValueStore(client, prefix="p:").remove("k")
        client.delete.assert_awaited_once_with("p:k")

    async def test_health_check(self, client: AsyncMock) -> None:
        store = RedisKeyValueStore(client)
        assert await store.health_check() is True

        client.ping.side_effect = ConnectionError("down")
        assert await store.health_check() is False

    async def test_close(self, client: AsyncMock) -> None:
        await RedisKeyValueStore(client).close()
        client.aclose.assert_awaited_once()


class TestCreateStore:
    def test_memory_backend(self) -> None:
        assert isinstance(create_store(Settings(kv_backend="memory")), InMemoryKeyValueStore)

    def test_redis_backend(self) -> None:
        store = create_store(Settings(kv_backend="redis", kv_key_prefix="x:"))

        assert isinstance(store, RedisKeyValueStore)
        assert store.prefix == "x:"

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError):
            create_store(Settings(kv_backend="sqlite"))
