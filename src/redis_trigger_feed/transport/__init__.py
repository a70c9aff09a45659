"""Redis connection details, validation and client lifecycle."""

from redis_trigger_feed.transport.client import (
    check_connection,
    connection_options,
    open_connection,
    release_connection,
)
from redis_trigger_feed.transport.details import SubscriptionMode, TriggerDetails
from redis_trigger_feed.transport.validate import decode_cert, parse_params, validate_params

__all__ = [
    "SubscriptionMode",
    "TriggerDetails",
    "check_connection",
    "connection_options",
    "open_connection",
    "release_connection",
    "decode_cert",
    "parse_params",
    "validate_params",
]
