"""Registry of active trigger listeners.

The registry owns one listener and one Redis connection per trigger id. It
is the only place that reacts to listener faults, and it does so by asking
the trigger manager to disable the trigger; nothing is retried.
"""

import inspect
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as redis
import structlog
from redis.asyncio.client import PubSub

from redis_trigger_feed.errors import FeedError
from redis_trigger_feed.listeners.base import ErrorChannel, Event, Listener, Relay
from redis_trigger_feed.listeners.channel import ChannelListener
from redis_trigger_feed.listeners.cursor import CursorCache, NullCursorCache
from redis_trigger_feed.listeners.stream import StreamListener
from redis_trigger_feed.transport.client import open_connection, release_connection
from redis_trigger_feed.transport.details import SubscriptionMode, TriggerDetails

logger = structlog.get_logger(__name__)

ConnectionFactory = Callable[[TriggerDetails], redis.Redis]
ConnectionRelease = Callable[[redis.Redis], Awaitable[None]]


class TriggerManager(Protocol):
    """Protocol for the collaborator that owns triggers.

    Methods may be synchronous or asynchronous.
    """

    def fire_trigger(self, trigger_id: str, event: Event) -> Any:
        """Fire a trigger with the event built from a received message."""
        ...

    def disable_trigger(self, trigger_id: str, status: int | None, reason: str) -> Any:
        """Disable a trigger after a fault in its listener."""
        ...


@dataclass
class Registration:
    """Resources held for one registered trigger."""

    details: TriggerDetails
    client: redis.Redis
    listener: Listener
    errors: ErrorChannel
    pubsub: PubSub | None = None


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class FeedRegistry:
    """Creates, supersedes and tears down trigger listeners.

    At most one listener exists per trigger id: adding an id that is already
    registered removes the previous listener first. add() and remove() must
    not be called concurrently for the same id.

    Example:
        >>> registry = FeedRegistry(trigger_manager, cursor_cache=InMemoryCursorCache())
        >>> details = TriggerDetails(url="redis://localhost:6379", stream="orders")
        >>> await registry.add("trigger-1", details)
        >>> await registry.remove("trigger-1")
    """

    def __init__(
        self,
        trigger_manager: TriggerManager,
        cursor_cache: CursorCache | None = None,
        connection_factory: ConnectionFactory = open_connection,
        connection_release: ConnectionRelease = release_connection,
        stream_block_ms: int = 0,
    ):
        """Initialize the registry.

        Args:
            trigger_manager: Collaborator that fires and disables triggers
            cursor_cache: Stream cursor persistence (no persistence if omitted)
            connection_factory: Creates the Redis client for a trigger
            connection_release: Closes a client created by connection_factory
            stream_block_ms: XREAD block timeout passed to stream listeners
        """
        self.trigger_manager = trigger_manager
        self.cursor_cache = cursor_cache or NullCursorCache()
        self.connection_factory = connection_factory
        self.connection_release = connection_release
        self.stream_block_ms = stream_block_ms
        self._registrations: dict[str, Registration] = {}

    def __contains__(self, trigger_id: object) -> bool:
        return trigger_id in self._registrations

    def __len__(self) -> int:
        return len(self._registrations)

    def trigger_ids(self) -> Iterator[str]:
        """Iterate over registered trigger ids."""
        return iter(list(self._registrations))

    def get(self, trigger_id: str) -> Registration | None:
        """Return the registration for a trigger id, if any."""
        return self._registrations.get(trigger_id)

    async def add(self, trigger_id: str, details: TriggerDetails) -> None:
        """Start a listener for a trigger, replacing any existing one.

        Args:
            trigger_id: Unique trigger identifier
            details: Validated connection and subscription details

        Raises:
            FeedError: If the listener cannot be started; nothing is registered
                and the connection is released
        """
        log = logger.bind(trigger_id=trigger_id)
        log.debug("add_called", url=details.url, mode=details.mode.value, target=details.target)

        if trigger_id in self._registrations:
            log.info("trigger_superseded")
            await self.remove(trigger_id)

        client = self.connection_factory(details)
        log.info("connection_opened", url=details.url)

        errors = ErrorChannel(trigger_id)
        errors.subscribe(self._disable_handler(trigger_id))
        relay = self._relay_for(trigger_id)

        pubsub: PubSub | None = None
        listener: Listener
        if details.mode is SubscriptionMode.STREAM:
            listener = StreamListener(
                client,
                details.target,
                relay,
                trigger_id,
                cache=self.cursor_cache,
                errors=errors,
                block_ms=self.stream_block_ms,
            )
        else:
            pubsub = client.pubsub()
            listener = ChannelListener(
                pubsub,
                details.target,
                details.mode is SubscriptionMode.PATTERN,
                relay,
                trigger_id,
                errors=errors,
            )

        registration = Registration(
            details=details, client=client, listener=listener, errors=errors, pubsub=pubsub
        )

        try:
            await listener.start()
        except Exception as e:
            log.error("listener_start_failed", target=details.target, error=str(e))
            await self._release(registration)
            raise

        self._registrations[trigger_id] = registration
        log.info("listener_started", mode=details.mode.value, target=details.target)

    async def remove(self, trigger_id: str) -> None:
        """Stop a trigger's listener and release its connection.

        Unknown trigger ids are ignored.

        Args:
            trigger_id: Unique trigger identifier

        Raises:
            CacheError: If the stream cursor cannot be deleted; the connection
                is still released and the trigger is no longer registered
        """
        log = logger.bind(trigger_id=trigger_id)
        log.debug("remove_called")

        registration = self._registrations.pop(trigger_id, None)
        if registration is None:
            log.debug("remove_unknown_trigger")
            return

        # Relays still in flight must not disable a later registration for this id.
        registration.errors.close()
        try:
            await registration.listener.stop()
        finally:
            await self._release(registration)

        log.info("listener_removed", target=registration.details.target)

    async def close(self) -> None:
        """Remove every registered trigger."""
        for trigger_id in self.trigger_ids():
            await self.remove(trigger_id)

    def _relay_for(self, trigger_id: str) -> Relay:
        """Build the relay callback that fires one trigger."""
        log = logger.bind(trigger_id=trigger_id)

        async def relay(event: Event) -> Any:
            log.debug("firing_trigger", payload=event)
            return await _resolve(self.trigger_manager.fire_trigger(trigger_id, event))

        return relay

    def _disable_handler(self, trigger_id: str) -> Callable[[FeedError], Awaitable[None]]:
        """Build the error channel handler that disables one trigger."""
        log = logger.bind(trigger_id=trigger_id)

        async def disable(error: FeedError) -> None:
            log.error("disabling_trigger", error_type=type(error).__name__, error=str(error))
            await _resolve(self.trigger_manager.disable_trigger(trigger_id, None, str(error)))

        return disable

    async def _release(self, registration: Registration) -> None:
        try:
            if registration.pubsub is not None:
                await registration.pubsub.aclose()
        finally:
            await self.connection_release(registration.client)
