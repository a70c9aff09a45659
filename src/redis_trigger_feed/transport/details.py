"""Validated trigger connection details."""

from dataclasses import dataclass
from enum import Enum


class SubscriptionMode(str, Enum):
    """How a trigger consumes Redis."""

    CHANNEL = "channel"
    PATTERN = "pattern"
    STREAM = "stream"


@dataclass(frozen=True)
class TriggerDetails:
    """Connection target and subscription for one trigger.

    Exactly one of ``subscribe``, ``psubscribe`` and ``stream`` is set.

    Attributes:
        url: Redis connection URL
        subscribe: Exact channel name
        psubscribe: Glob-style channel pattern
        stream: Stream key
        cert: PEM encoded CA certificate for TLS connections

    Example:
        >>> details = TriggerDetails(url="redis://localhost:6379", stream="orders")
        >>> details.mode
        <SubscriptionMode.STREAM: 'stream'>
    """

    url: str
    subscribe: str | None = None
    psubscribe: str | None = None
    stream: str | None = None
    cert: str | None = None

    def __post_init__(self) -> None:
        """Check that exactly one subscription target is present.

        Raises:
            ValueError: If zero or several of subscribe, psubscribe and stream are set
        """
        targets = [t for t in (self.subscribe, self.psubscribe, self.stream) if t is not None]
        if len(targets) != 1:
            raise ValueError(
                "TriggerDetails needs exactly one of subscribe, psubscribe or stream, "
                f"got {len(targets)}"
            )

    @property
    def mode(self) -> SubscriptionMode:
        """Subscription mode derived from which target is set."""
        if self.stream is not None:
            return SubscriptionMode.STREAM
        if self.psubscribe is not None:
            return SubscriptionMode.PATTERN
        return SubscriptionMode.CHANNEL

    @property
    def target(self) -> str:
        """Channel name, channel pattern or stream key."""
        for target in (self.subscribe, self.psubscribe, self.stream):
            if target is not None:
                return target
        raise AssertionError("unreachable: validated in __post_init__")

    def to_dict(self) -> dict[str, str]:
        """Return the populated fields as a dictionary."""
        fields = {
            "url": self.url,
            "subscribe": self.subscribe,
            "psubscribe": self.psubscribe,
            "stream": self.stream,
            "cert": self.cert,
        }
        return {key: value for key, value in fields.items() if value is not None}
