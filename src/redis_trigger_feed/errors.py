"""Exception types for the trigger feed.

Configuration problems are raised to the caller before any listener starts.
Every other fault happens while a listener is running and is reported once on
that listener's error channel, where the registry turns it into a trigger
disable call.
"""

ERROR_PREFIX = "redis trigger feed"


class FeedError(Exception):
    """Base exception for trigger feed errors."""

    pass


class ConfigurationError(FeedError):
    """Raised when trigger parameters are rejected before a listener starts."""

    pass


class FeedConnectionError(FeedError):
    """Raised when the Redis connection fails while a listener is active."""

    pass


class DeliveryError(FeedError):
    """Raised when firing a trigger for a received message fails."""

    pass


class CacheError(FeedError):
    """Raised when reading, writing or deleting a persisted cursor fails."""

    pass


def format_client_error(err: BaseException) -> str:
    """Format a Redis client error for display to the trigger owner.

    Args:
        err: The error raised by the Redis client

    Returns:
        Message in the form ``redis trigger feed: client error => (code: ..., message: ...)``
    """
    message = str(err) or "unknown"
    code = getattr(err, "code", None) or "unknown"
    return f"{ERROR_PREFIX}: client error => (code: {code}, message: {message})"
