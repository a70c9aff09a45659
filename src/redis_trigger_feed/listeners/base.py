"""Shared listener plumbing: relay callbacks and the per-listener error channel."""

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import structlog

from redis_trigger_feed.errors import FeedError

logger = structlog.get_logger(__name__)

Event = dict[str, Any]

# Forwards one received event to the trigger manager; raising means the delivery failed.
Relay = Callable[[Event], Awaitable[Any]]


class ErrorHandler(Protocol):
    """Protocol for error channel handlers.

    Handlers can be either synchronous or asynchronous functions that
    accept the FeedError describing a listener fault.
    """

    def __call__(self, error: FeedError) -> None | Awaitable[None]:
        """Handle a listener fault.

        Args:
            error: The fault, with the original exception as ``__cause__``
        """
        ...


class ErrorChannel:
    """Explicit error channel owned by one listener.

    Every runtime fault of the listener is emitted here exactly once. Handlers
    are registered with subscribe(), normally before the listener starts.

    Example:
        >>> errors = ErrorChannel(trigger_id="trigger-1")
        >>> errors.subscribe(lambda err: print(f"disabled: {err}"))
    """

    def __init__(self, trigger_id: str) -> None:
        self.trigger_id = trigger_id
        self._handlers: list[ErrorHandler] = []
        self.closed = False

    def subscribe(self, handler: ErrorHandler) -> None:
        """Register a handler for subsequent errors."""
        self._handlers.append(handler)

    def close(self) -> None:
        """Stop delivering errors; later emits are logged and dropped."""
        self.closed = True

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def emit(self, error: FeedError) -> None:
        """Deliver an error to every handler.

        A failing handler is logged and does not prevent the remaining
        handlers from running.

        Args:
            error: The fault to report
        """
        if self.closed:
            logger.info(
                "listener_error_after_close",
                trigger_id=self.trigger_id,
                error_type=type(error).__name__,
                error=str(error),
            )
            return

        logger.error(
            "listener_error",
            trigger_id=self.trigger_id,
            error_type=type(error).__name__,
            error=str(error),
            handlers=len(self._handlers),
        )

        for handler in list(self._handlers):
            try:
                result = handler(error)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "error_handler_failed",
                    trigger_id=self.trigger_id,
                    error=str(e),
                    exc_info=True,
                )


class Listener(Protocol):
    """Common surface of channel and stream listeners."""

    trigger_id: str
    errors: ErrorChannel

    async def start(self) -> None: ...

    async def stop(self) -> None: ...
