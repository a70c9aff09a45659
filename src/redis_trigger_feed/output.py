"""Output formatting utilities for the CLI."""

import json
import sys
from typing import Any

from redis_trigger_feed.transport.details import TriggerDetails


def print_json(data: Any) -> None:
    """Print a value as a single JSON line on stdout."""
    print(json.dumps(data, default=str), flush=True)


def print_details(details: TriggerDetails) -> None:
    """Print validated trigger details, without the certificate body.

    Args:
        details: Validated trigger details
    """
    data: dict[str, Any] = details.to_dict()
    data.pop("cert", None)
    data["mode"] = details.mode.value
    data["tls"] = details.cert is not None
    print(json.dumps(data, indent=2))


def print_fired_event(trigger_id: str, event: dict[str, Any]) -> None:
    """Print one fired trigger event as a JSON line.

    Args:
        trigger_id: Trigger that was fired
        event: Event payload relayed by the listener
    """
    print_json({"trigger_id": trigger_id, "event": event})


def print_disabled(trigger_id: str, reason: str) -> None:
    """Report a disabled trigger on stderr."""
    print(f"Trigger {trigger_id} disabled: {reason}", file=sys.stderr, flush=True)
