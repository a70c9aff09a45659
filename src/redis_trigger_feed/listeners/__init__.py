"""Listeners that relay Redis pub/sub messages and stream entries to triggers."""

from redis_trigger_feed.listeners.base import ErrorChannel, ErrorHandler, Event, Listener, Relay
from redis_trigger_feed.listeners.channel import ChannelListener, ChannelMessage
from redis_trigger_feed.listeners.cursor import (
    CursorCache,
    InMemoryCursorCache,
    NullCursorCache,
    RedisCursorCache,
    build_cursor_cache,
)
from redis_trigger_feed.listeners.stream import (
    NEW_ENTRIES_ONLY,
    StreamEntry,
    StreamListener,
    merge_fields,
    results_to_entries,
)

__all__ = [
    "ErrorChannel",
    "ErrorHandler",
    "Event",
    "Listener",
    "Relay",
    "ChannelListener",
    "ChannelMessage",
    "CursorCache",
    "InMemoryCursorCache",
    "NullCursorCache",
    "RedisCursorCache",
    "build_cursor_cache",
    "NEW_ENTRIES_ONLY",
    "StreamEntry",
    "StreamListener",
    "merge_fields",
    "results_to_entries",
]
