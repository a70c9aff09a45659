"""Cursor persistence for stream listeners.

A cursor cache remembers, per trigger, the id of the last stream entry that
was delivered successfully, so that a restarted listener resumes after it
instead of only seeing new entries.
"""

from abc import ABC, abstractmethod

import redis.asyncio as redis
import structlog

from redis_trigger_feed.errors import CacheError

logger = structlog.get_logger(__name__)


class CursorCache(ABC):
    """Abstract base class for stream cursor persistence.

    All operations are keyed by trigger id. Implementations must tolerate
    absent keys in get() and delete(), and set() must simply overwrite.
    """

    @abstractmethod
    async def get(self, trigger_id: str) -> str | None:
        """Get the last persisted entry id for a trigger.

        Args:
            trigger_id: Unique identifier for the trigger

        Returns:
            The stored stream entry id, or None if nothing is stored
        """
        ...

    @abstractmethod
    async def set(self, trigger_id: str, entry_id: str) -> None:
        """Store the last delivered entry id for a trigger.

        Args:
            trigger_id: Unique identifier for the trigger
            entry_id: Stream entry id in ``<millis>-<sequence>`` form
        """
        ...

    @abstractmethod
    async def delete(self, trigger_id: str) -> None:
        """Remove the stored entry id for a trigger, if any.

        Args:
            trigger_id: Unique identifier for the trigger
        """
        ...

    async def close(self) -> None:
        """Release resources held by the cache."""
        return None


class NullCursorCache(CursorCache):
    """Cursor cache that stores nothing.

    Used when no cache is configured: every listener starts from new entries only.
    """

    async def get(self, trigger_id: str) -> str | None:
        return None

    async def set(self, trigger_id: str, entry_id: str) -> None:
        return None

    async def delete(self, trigger_id: str) -> None:
        return None


class InMemoryCursorCache(CursorCache):
    """In-memory cursor cache for testing.

    Cursors are kept in a dictionary and do not survive process restarts.

    Example:
        >>> cache = InMemoryCursorCache()
        >>> await cache.set("trigger-1", "1526985054069-0")
        >>> await cache.get("trigger-1")
        '1526985054069-0'
    """

    def __init__(self) -> None:
        self._cursors: dict[str, str] = {}

    async def get(self, trigger_id: str) -> str | None:
        entry_id = self._cursors.get(trigger_id)
        logger.debug(
            "cursor_retrieved",
            trigger_id=trigger_id,
            entry_id=entry_id,
            store_type="in_memory",
        )
        return entry_id

    async def set(self, trigger_id: str, entry_id: str) -> None:
        self._cursors[trigger_id] = entry_id
        logger.debug(
            "cursor_updated",
            trigger_id=trigger_id,
            entry_id=entry_id,
            store_type="in_memory",
        )

    async def delete(self, trigger_id: str) -> None:
        self._cursors.pop(trigger_id, None)
        logger.debug("cursor_deleted", trigger_id=trigger_id, store_type="in_memory")


class RedisCursorCache(CursorCache):
    """Cursor cache backed by plain Redis string keys.

    The key for a trigger is ``{key_prefix}{trigger_id}``. With the default
    empty prefix the trigger id itself is the key. Several processes may share
    one cache; concurrent writers race and the last write wins.

    Example:
        >>> cache = RedisCursorCache.from_url("redis://localhost:6379/0")
        >>> await cache.set("trigger-1", "1526985054069-0")
        >>> await cache.get("trigger-1")
        '1526985054069-0'
    """

    def __init__(self, client: redis.Redis, key_prefix: str = ""):
        """Initialize the cache.

        Args:
            client: Redis client created with ``decode_responses=True``
            key_prefix: Prefix prepended to every trigger id
        """
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "") -> "RedisCursorCache":
        """Create a cache with its own client for ``url``."""
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        logger.info("redis_cursor_cache_initialized", key_prefix=key_prefix)
        return cls(client, key_prefix=key_prefix)

    def _key(self, trigger_id: str) -> str:
        return f"{self.key_prefix}{trigger_id}"

    async def get(self, trigger_id: str) -> str | None:
        try:
            entry_id = await self.client.get(self._key(trigger_id))
        except redis.RedisError as e:
            logger.error("cursor_get_failed", trigger_id=trigger_id, error=str(e))
            raise CacheError(f"Failed to read cursor for trigger {trigger_id}: {e}") from e

        if isinstance(entry_id, bytes):
            entry_id = entry_id.decode("utf-8")

        logger.debug(
            "cursor_retrieved",
            trigger_id=trigger_id,
            entry_id=entry_id,
            store_type="redis",
        )
        return entry_id

    async def set(self, trigger_id: str, entry_id: str) -> None:
        try:
            await self.client.set(self._key(trigger_id), entry_id)
        except redis.RedisError as e:
            logger.error(
                "cursor_set_failed",
                trigger_id=trigger_id,
                entry_id=entry_id,
                error=str(e),
            )
            raise CacheError(f"Failed to store cursor for trigger {trigger_id}: {e}") from e

        logger.debug("cursor_updated", trigger_id=trigger_id, entry_id=entry_id, store_type="redis")

    async def delete(self, trigger_id: str) -> None:
        try:
            await self.client.delete(self._key(trigger_id))
        except redis.RedisError as e:
            logger.error("cursor_delete_failed", trigger_id=trigger_id, error=str(e))
            raise CacheError(f"Failed to delete cursor for trigger {trigger_id}: {e}") from e

        logger.debug("cursor_deleted", trigger_id=trigger_id, store_type="redis")

    async def close(self) -> None:
        await self.client.aclose()


def build_cursor_cache(url: str | None, key_prefix: str = "") -> CursorCache:
    """Choose the cursor cache strategy once, from configuration.

    Args:
        url: Redis URL for cursor persistence, or None to disable persistence
        key_prefix: Prefix for cursor keys

    Returns:
        RedisCursorCache when a URL is given, otherwise NullCursorCache
    """
    if url:
        return RedisCursorCache.from_url(url, key_prefix=key_prefix)
    logger.info("cursor_persistence_disabled")
    return NullCursorCache()
