"""Stream listener: a blocking XREAD loop with cursor tracking.

The listener reads one stream key from a cursor, relays every entry to the
trigger one at a time, and advances (and optionally persists) the cursor only
after each relay has succeeded. Delivery is therefore at-least-once: entries
relayed after the last cursor write are relayed again after a restart.
"""

import asyncio
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as redis
import structlog

from redis_trigger_feed.errors import CacheError, DeliveryError, FeedConnectionError, FeedError
from redis_trigger_feed.listeners.base import ErrorChannel, Event, Relay
from redis_trigger_feed.listeners.cursor import CursorCache, NullCursorCache

logger = structlog.get_logger(__name__)

# XREAD id meaning "only entries added after this read was issued".
NEW_ENTRIES_ONLY = "$"


@dataclass(frozen=True)
class StreamEntry:
    """One entry read from a Redis stream.

    Attributes:
        stream: Stream key the entry belongs to
        entry_id: Entry id in ``<millis>-<sequence>`` form
        message: Field/value mapping of the entry
    """

    stream: str
    entry_id: str
    message: dict[str, Any] = field(default_factory=dict)

    def to_event(self) -> Event:
        """Return the trigger event payload for this entry."""
        return {"stream": self.stream, "entry_id": self.entry_id, "message": self.message}


def merge_fields(fields: Sequence[Any] | Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge a flat alternating key/value sequence into a mapping.

    Element 2i is a key and element 2i+1 its value. A mapping (as returned by
    redis-py, which pairs fields itself) is copied unchanged.

    Example:
        >>> merge_fields(["name", "Sara", "surname", "OConnor"])
        {'name': 'Sara', 'surname': 'OConnor'}
    """
    if not fields:
        return {}
    if isinstance(fields, Mapping):
        return dict(fields)
    return dict(zip(fields[0::2], fields[1::2]))


def results_to_entries(results: Any) -> list[StreamEntry]:
    """Flatten an XREAD reply into entries, preserving reply order.

    Accepts both the RESP2 shape ``[[stream, [[id, fields], ...]], ...]`` and
    the RESP3 shape ``{stream: [[id, fields], ...]}``.
    """
    if not results:
        return []

    pairs = results.items() if isinstance(results, Mapping) else results
    entries = []
    for stream, stream_entries in pairs:
        for entry_id, fields in stream_entries:
            entries.append(
                StreamEntry(stream=stream, entry_id=entry_id, message=merge_fields(fields))
            )
    return entries


class StreamListener:
    """Relays entries of one Redis stream to a trigger.

    On start() the listener looks up the cursor persisted for its trigger and
    falls back to ``$`` (new entries only). It then runs a single task that
    repeatedly issues ``XREAD BLOCK block_ms STREAMS <stream> <cursor>`` and
    relays each returned entry strictly in order. After each successful relay
    the cursor moves to that entry's id and is written to the cursor cache.

    Faults end the loop and are reported once on the error channel:
    a failed XREAD as FeedConnectionError, a failed relay as DeliveryError and
    a failed cursor write as CacheError. Remaining entries of the batch are
    not relayed.

    stop() is cooperative: it clears the active flag and removes the
    persisted cursor, but an XREAD already blocking on the server is left to
    return on its own (or to fail when the connection is released).

    Example:
        >>> listener = StreamListener(client, "orders", relay, "trigger-1", cache=cache)
        >>> await listener.start()
        >>> await listener.stop()
    """

    def __init__(
        self,
        client: redis.Redis,
        stream: str,
        relay: Relay,
        trigger_id: str,
        cache: CursorCache | None = None,
        errors: ErrorChannel | None = None,
        block_ms: int = 0,
    ):
        """Initialize the listener.

        Args:
            client: Redis client owned by this listener
            stream: Stream key to read
            relay: Callback forwarding each entry's event to the trigger
            trigger_id: Trigger this listener feeds, also the cursor cache key
            cache: Cursor persistence strategy (no persistence if omitted)
            errors: Error channel to report faults on (a new one is created if omitted)
            block_ms: XREAD block timeout in milliseconds, 0 waits until data arrives
        """
        if block_ms < 0:
            raise ValueError(f"block_ms must be >= 0, got {block_ms}")

        self.client = client
        self.stream = stream
        self.relay = relay
        self.trigger_id = trigger_id
        self.cache = cache or NullCursorCache()
        self.errors = errors or ErrorChannel(trigger_id)
        self.block_ms = block_ms
        self.cursor = NEW_ENTRIES_ONLY
        self.active = False
        self._started = False
        self._task: asyncio.Task[None] | None = None
        self._logger = logger.bind(trigger_id=trigger_id, stream=stream)

    async def start(self) -> None:
        """Load the starting cursor and spawn the read loop.

        Raises:
            CacheError: If the persisted cursor cannot be read
            RuntimeError: If the listener was already started
        """
        if self._started:
            raise RuntimeError("StreamListener cannot be restarted")
        self._started = True

        stored = await self._cache_call("get", self.cache.get(self.trigger_id))
        self.cursor = stored or NEW_ENTRIES_ONLY
        self.active = True

        self._logger.info("stream_subscription_started", cursor=self.cursor, resumed=bool(stored))
        self._task = asyncio.create_task(self._run(), name=f"stream-listener-{self.trigger_id}")

    async def stop(self) -> None:
        """Stop scheduling reads and delete the persisted cursor.

        Raises:
            CacheError: If the persisted cursor cannot be deleted
        """
        was_active = self.active
        self.active = False
        self._logger.info("stream_subscription_stopping", cursor=self.cursor, was_active=was_active)
        await self._cache_call("delete", self.cache.delete(self.trigger_id))

    async def _run(self) -> None:
        """Read loop; runs until stopped or until the first fault."""
        while self.active:
            self._logger.debug("stream_read_waiting", cursor=self.cursor)
            try:
                results = await self.client.xread(
                    {self.stream: self.cursor}, block=self.block_ms
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self.active:
                    self._logger.debug("stream_read_closed_after_stop", error=str(e))
                    return
                error = FeedConnectionError(
                    f"Failed to read stream {self.stream} for trigger {self.trigger_id}: {e}"
                )
                error.__cause__ = e
                await self.errors.emit(error)
                return

            if results:
                entries = results_to_entries(results)
                self._logger.debug("stream_batch_received", count=len(entries), cursor=self.cursor)
                try:
                    await self._deliver(entries)
                except FeedError as error:
                    await self.errors.emit(error)
                    return
            else:
                self._logger.debug("stream_read_timeout", cursor=self.cursor)

            # Yield before the next read so other listeners get scheduled.
            await asyncio.sleep(0)

        self._logger.info("stream_subscription_finished", cursor=self.cursor)

    async def _deliver(self, entries: list[StreamEntry]) -> None:
        """Relay a batch in order, advancing and persisting the cursor after each entry.

        Raises:
            DeliveryError: If the relay fails; the remaining entries are skipped
            CacheError: If persisting the cursor fails
        """
        for entry in entries:
            if not self.active:
                self._logger.debug(
                    "stream_batch_abandoned_after_stop", next_entry_id=entry.entry_id
                )
                return

            self._logger.debug("stream_entry_received", entry_id=entry.entry_id)
            try:
                await self.relay(entry.to_event())
            except Exception as e:
                self._logger.error("stream_relay_failed", entry_id=entry.entry_id, error=str(e))
                raise DeliveryError(
                    f"Failed to fire trigger {self.trigger_id} for entry "
                    f"{self.stream}#{entry.entry_id}: {e}"
                ) from e

            self.cursor = entry.entry_id
            # stop() has already deleted the cursor; writing it back would resurrect it.
            if self.active:
                await self._cache_call("set", self.cache.set(self.trigger_id, entry.entry_id))

    async def _cache_call(self, operation: str, call: Awaitable[Any]) -> Any:
        """Await a cursor cache operation, normalising failures to CacheError."""
        try:
            return await call
        except CacheError:
            raise
        except Exception as e:
            raise CacheError(
                f"Cursor cache {operation} failed for trigger {self.trigger_id}: {e}"
            ) from e
