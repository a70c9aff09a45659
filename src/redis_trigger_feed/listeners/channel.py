"""Pub/sub listener for one exact channel or one channel pattern."""

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog
from redis.asyncio.client import PubSub

from redis_trigger_feed.errors import DeliveryError, FeedConnectionError
from redis_trigger_feed.listeners.base import ErrorChannel, Event, Relay

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ChannelMessage:
    """A message received on a pub/sub channel.

    Attributes:
        channel: Channel the message was published on
        message: Message payload
    """

    channel: str
    message: Any

    def to_event(self) -> Event:
        """Return the trigger event payload for this message."""
        return {"channel": self.channel, "message": self.message}


class ChannelListener:
    """Relays messages from one pub/sub subscription to a trigger.

    The listener issues SUBSCRIBE (or PSUBSCRIBE when ``is_pattern`` is set)
    and start() returns once Redis confirms the subscription for that exact
    channel or pattern. Every matching message is then relayed in its own
    task, in the order Redis delivers them. There is no internal queue, so
    relays of consecutive messages may overlap.

    A failed relay is reported on the error channel and the listener keeps
    running; deciding what to do about it is up to the error handlers.

    Example:
        >>> async def relay(event):
        ...     print(event)
        >>> listener = ChannelListener(client.pubsub(), "orders", False, relay, "trigger-1")
        >>> await listener.start()
        >>> await listener.stop()
    """

    def __init__(
        self,
        pubsub: PubSub,
        channel: str,
        is_pattern: bool,
        relay: Relay,
        trigger_id: str,
        errors: ErrorChannel | None = None,
    ):
        """Initialize the listener.

        Args:
            pubsub: Pub/sub connection owned by this listener
            channel: Channel name, or glob-style pattern when is_pattern is True
            is_pattern: Subscribe with PSUBSCRIBE instead of SUBSCRIBE
            relay: Callback forwarding each received event to the trigger
            trigger_id: Trigger this listener feeds
            errors: Error channel to report faults on (a new one is created if omitted)
        """
        self.pubsub = pubsub
        self.channel = channel
        self.is_pattern = is_pattern
        self.relay = relay
        self.trigger_id = trigger_id
        self.errors = errors or ErrorChannel(trigger_id)
        self.subscribed = False
        self._stopped = False
        self._confirmed: asyncio.Future[None] | None = None
        self._reader: asyncio.Task[None] | None = None
        self._relays: set[asyncio.Task[None]] = set()
        self._logger = logger.bind(trigger_id=trigger_id, channel=channel, is_pattern=is_pattern)

    @property
    def _subscribe_type(self) -> str:
        return "psubscribe" if self.is_pattern else "subscribe"

    @property
    def _message_type(self) -> str:
        return "pmessage" if self.is_pattern else "message"

    async def start(self) -> None:
        """Subscribe and wait for Redis to confirm the subscription.

        Raises:
            FeedConnectionError: If the subscription cannot be issued or confirmed
            RuntimeError: If the listener was already started
        """
        if self._reader is not None or self._stopped:
            raise RuntimeError("ChannelListener cannot be restarted")

        self._logger.info("channel_subscription_requested")
        self._confirmed = asyncio.get_running_loop().create_future()

        try:
            if self.is_pattern:
                await self.pubsub.psubscribe(self.channel)
            else:
                await self.pubsub.subscribe(self.channel)
        except Exception as e:
            raise FeedConnectionError(
                f"Failed to {self._subscribe_type} to {self.channel} "
                f"for trigger {self.trigger_id}: {e}"
            ) from e

        self._reader = asyncio.create_task(
            self._read_messages(), name=f"channel-listener-{self.trigger_id}"
        )
        await self._confirmed

    async def stop(self) -> None:
        """Unsubscribe without waiting for the confirmation.

        Relays already in flight are left to complete.
        """
        if self._stopped:
            return
        self._stopped = True
        self._logger.info("channel_subscription_stopping", in_flight=len(self._relays))

        try:
            if self.is_pattern:
                await self.pubsub.punsubscribe(self.channel)
            else:
                await self.pubsub.unsubscribe(self.channel)
        except Exception as e:
            # The connection is released right after stop(), so a dead link here is expected.
            self._logger.warning("channel_unsubscribe_failed", error=str(e))

    async def _read_messages(self) -> None:
        """Consume the pub/sub connection until it is unsubscribed or fails."""
        assert self._confirmed is not None
        try:
            async for message in self.pubsub.listen():
                self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = FeedConnectionError(
                f"Pub/sub connection failed for trigger {self.trigger_id}: {e}"
            )
            error.__cause__ = e
            if not self._confirmed.done():
                self._confirmed.set_exception(error)
            elif self._stopped:
                self._logger.debug("channel_reader_closed_after_stop", error=str(e))
            else:
                await self.errors.emit(error)
        finally:
            if not self._confirmed.done():
                self._confirmed.set_exception(
                    FeedConnectionError(
                        f"Subscription to {self.channel} ended before it was confirmed"
                    )
                )
            self._logger.debug("channel_reader_finished")

    def _dispatch(self, message: dict[str, Any]) -> None:
        """Route one pub/sub reply: confirmations, unsubscribes and data messages."""
        assert self._confirmed is not None
        message_type = message.get("type")

        if message_type == self._subscribe_type and message.get("channel") == self.channel:
            self.subscribed = True
            self._logger.debug("channel_subscription_confirmed")
            if not self._confirmed.done():
                self._confirmed.set_result(None)
            return

        if message_type in ("unsubscribe", "punsubscribe"):
            self.subscribed = False
            self._logger.info(
                "channel_subscription_stopped", remaining_subscriptions=message.get("data")
            )
            return

        if message_type != self._message_type:
            return
        if self.is_pattern and message.get("pattern") != self.channel:
            return
        if not self.is_pattern and message.get("channel") != self.channel:
            return

        received = ChannelMessage(channel=message["channel"], message=message["data"])
        self._logger.info("channel_message_received", received_on=received.channel)

        task = asyncio.create_task(self._relay_message(received))
        self._relays.add(task)
        task.add_done_callback(self._relays.discard)

    async def _relay_message(self, received: ChannelMessage) -> None:
        """Fire the trigger for one message and report a failure on the error channel."""
        try:
            await self.relay(received.to_event())
        except Exception as e:
            self._logger.error(
                "channel_relay_failed", received_on=received.channel, error=str(e)
            )
            error = DeliveryError(
                f"Failed to fire trigger {self.trigger_id} for message on {received.channel}: {e}"
            )
            error.__cause__ = e
            await self.errors.emit(error)
            return

        self._logger.debug("channel_trigger_fired", received_on=received.channel)
