"""Redis connection handling for trigger listeners.

Each trigger gets its own client: pub/sub connections cannot issue other
commands and a stream listener holds its connection inside a blocking XREAD.
"""

from typing import Any
from urllib.parse import urlsplit, urlunsplit

import redis.asyncio as redis
import structlog

from redis_trigger_feed.transport.details import TriggerDetails

logger = structlog.get_logger(__name__)


def _tls_url(url: str) -> str:
    """Switch a plain ``redis://`` URL to ``rediss://`` so TLS options apply."""
    parts = urlsplit(url)
    if parts.scheme == "redis":
        return urlunsplit(parts._replace(scheme="rediss"))
    return url


def connection_options(details: TriggerDetails) -> tuple[str, dict[str, Any]]:
    """Build the URL and keyword options for a client connection.

    Args:
        details: Validated trigger details

    Returns:
        Tuple of (url, keyword arguments for ``redis.asyncio.from_url``)
    """
    options: dict[str, Any] = {"encoding": "utf-8", "decode_responses": True}
    url = details.url

    if details.cert:
        url = _tls_url(url)
        options["ssl_ca_data"] = details.cert

    return url, options


def open_connection(details: TriggerDetails) -> redis.Redis:
    """Create a Redis client for one trigger.

    The client connects lazily on its first command.

    Args:
        details: Validated trigger details

    Returns:
        A new ``redis.asyncio.Redis`` client
    """
    url, options = connection_options(details)
    return redis.from_url(url, **options)


async def release_connection(client: redis.Redis) -> None:
    """Close a trigger's client and disconnect its pool, including in-use connections."""
    await client.aclose()


async def check_connection(details: TriggerDetails) -> None:
    """Verify that the Redis server described by ``details`` is reachable.

    Args:
        details: Trigger details to probe

    Raises:
        redis.RedisError: If the server cannot be reached or rejects PING
    """
    client = open_connection(details)
    try:
        await client.ping()
        logger.debug("connection_check_passed", url=details.url, tls=bool(details.cert))
    finally:
        await release_connection(client)
