"""Tests for stream cursor persistence."""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from redis_trigger_feed.errors import CacheError
from redis_trigger_feed.listeners.cursor import (
    CursorCache,
    InMemoryCursorCache,
    NullCursorCache,
    RedisCursorCache,
    build_cursor_cache,
)


class TestInMemoryCursorCache:
    """Tests for the in-memory cursor cache."""

    @pytest.mark.asyncio
    async def test_absent_cursor_is_none(self):
        cache = InMemoryCursorCache()
        assert await cache.get("trigger-1") is None

    @pytest.mark.asyncio
    async def test_set_then_get(self):
        cache = InMemoryCursorCache()
        await cache.set("trigger-1", "1526985054069-0")
        assert await cache.get("trigger-1") == "1526985054069-0"

    @pytest.mark.asyncio
    async def test_delete_absent_is_tolerated(self):
        cache = InMemoryCursorCache()
        await cache.delete("trigger-1")
        assert await cache.get("trigger-1") is None


class TestNullCursorCache:
    """Tests for the no-op cursor cache."""

    @pytest.mark.asyncio
    async def test_stores_nothing(self):
        cache = NullCursorCache()
        await cache.set("trigger-1", "1-0")
        assert await cache.get("trigger-1") is None
        await cache.delete("trigger-1")


class TestRedisCursorCache:
    """Tests for the Redis cursor cache, against fakeredis."""

    @pytest.fixture
    def cache(self, redis_client) -> RedisCursorCache:
        return RedisCursorCache(redis_client)

    @pytest.mark.asyncio
    async def test_absent_cursor_is_none(self, cache):
        assert await cache.get("trigger-1") is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, cache):
        await cache.set("trigger-1", "1526985054069-0")
        assert await cache.get("trigger-1") == "1526985054069-0"

    @pytest.mark.asyncio
    async def test_set_is_idempotent(self, cache, redis_client):
        """Setting the same value twice leaves exactly that value stored."""
        await cache.set("trigger-1", "1-0")
        await cache.set("trigger-1", "1-0")

        assert await cache.get("trigger-1") == "1-0"
        assert await redis_client.keys("*") == ["trigger-1"]

    @pytest.mark.asyncio
    async def test_set_overwrites(self, cache):
        await cache.set("trigger-1", "1-0")
        await cache.set("trigger-1", "2-0")
        assert await cache.get("trigger-1") == "2-0"

    @pytest.mark.asyncio
    async def test_delete(self, cache):
        await cache.set("trigger-1", "1-0")
        await cache.delete("trigger-1")
        assert await cache.get("trigger-1") is None

    @pytest.mark.asyncio
    async def test_delete_absent_is_tolerated(self, cache):
        await cache.delete("never-set")
        assert await cache.get("never-set") is None

    @pytest.mark.asyncio
    async def test_triggers_are_independent(self, cache):
        await cache.set("trigger-1", "1-0")
        await cache.set("trigger-2", "2-0")

        await cache.delete("trigger-1")

        assert await cache.get("trigger-1") is None
        assert await cache.get("trigger-2") == "2-0"

    @pytest.mark.asyncio
    async def test_trigger_id_is_the_key_by_default(self, cache, redis_client):
        await cache.set("trigger-1", "1-0")
        assert await redis_client.get("trigger-1") == "1-0"

    @pytest.mark.asyncio
    async def test_key_prefix(self, redis_client):
        cache = RedisCursorCache(redis_client, key_prefix="cursor:")
        await cache.set("trigger-1", "1-0")

        assert await redis_client.get("cursor:trigger-1") == "1-0"
        assert await redis_client.get("trigger-1") is None

    @pytest.mark.asyncio
    async def test_redis_failures_become_cache_errors(self):
        """Transport failures surface as CacheError with the original cause."""
        client = AsyncMock()
        failure = RedisConnectionError("Connection refused")
        client.get.side_effect = failure
        client.set.side_effect = failure
        client.delete.side_effect = failure
        cache = RedisCursorCache(client)

        for call in (cache.get("t"), cache.set("t", "1-0"), cache.delete("t")):
            with pytest.raises(CacheError) as exc_info:
                await call
            assert exc_info.value.__cause__ is failure


class TestBuildCursorCache:
    """Tests for choosing the cursor cache strategy."""

    def test_no_url_gives_null_cache(self):
        assert isinstance(build_cursor_cache(None), NullCursorCache)
        assert isinstance(build_cursor_cache(""), NullCursorCache)

    def test_url_gives_redis_cache(self):
        cache = build_cursor_cache("redis://localhost:6379/0", key_prefix="cursor:")

        assert isinstance(cache, RedisCursorCache)
        assert isinstance(cache, CursorCache)
        assert cache.key_prefix == "cursor:"
