"""Validation of raw trigger parameters.

Parameters arrive as a plain mapping (for example from a trigger definition
or the command line). Validation checks their shape, decodes an optional CA
certificate and probes the server before a listener is ever created.
"""

import base64
import binascii
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog

from redis_trigger_feed.errors import ERROR_PREFIX, ConfigurationError, format_client_error
from redis_trigger_feed.transport.client import check_connection
from redis_trigger_feed.transport.details import TriggerDetails

logger = structlog.get_logger(__name__)

VALID_CERT_FORMATS = ("utf-8", "base64")
SUBSCRIPTION_PARAMS = ("stream", "subscribe", "psubscribe")

ConnectionCheck = Callable[[TriggerDetails], Awaitable[None]]


def decode_cert(cert: str, cert_format: str = "utf-8") -> str:
    """Decode a certificate parameter into PEM text.

    Args:
        cert: Certificate as provided by the caller
        cert_format: ``utf-8`` for plain text or ``base64`` for base64 encoded text

    Returns:
        The certificate as a string

    Raises:
        ConfigurationError: If the format is unsupported or the payload does not decode
    """
    if cert_format not in VALID_CERT_FORMATS:
        raise ConfigurationError(f"{ERROR_PREFIX}: cert_format parameter must be utf-8 or base64")

    if cert_format == "utf-8":
        return cert

    try:
        # Tools such as base64(1) wrap lines at 76 columns.
        return base64.b64decode("".join(cert.split()), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ConfigurationError(f"{ERROR_PREFIX}: cert parameter is not valid base64") from e


def parse_params(params: Mapping[str, Any]) -> TriggerDetails:
    """Check the shape of raw trigger parameters without touching the network.

    Args:
        params: Raw parameters with ``url``, one of ``subscribe``/``psubscribe``/``stream``,
            and optionally ``cert`` and ``cert_format``

    Returns:
        Validated TriggerDetails

    Raises:
        ConfigurationError: If a parameter is missing, duplicated or malformed
    """
    if "url" not in params:
        raise ConfigurationError(f"{ERROR_PREFIX}: missing url parameter")

    present = [name for name in SUBSCRIPTION_PARAMS if name in params]
    if not present:
        raise ConfigurationError(
            f"{ERROR_PREFIX}: missing subscribe, psubscribe or stream parameter"
        )
    if len(present) > 1:
        raise ConfigurationError(
            f"{ERROR_PREFIX}: cannot have more than one of subscribe, psubscribe "
            "and stream parameters"
        )

    cert = None
    if "cert" in params:
        cert = decode_cert(params["cert"], params.get("cert_format") or "utf-8")

    name = present[0]
    return TriggerDetails(url=params["url"], cert=cert, **{name: params[name]})


async def validate_params(
    params: Mapping[str, Any],
    check: ConnectionCheck = check_connection,
) -> TriggerDetails:
    """Validate raw trigger parameters and probe the Redis server.

    Args:
        params: Raw trigger parameters (see parse_params)
        check: Liveness probe, defaults to a PING over a fresh connection

    Returns:
        Validated TriggerDetails, safe to pass to FeedRegistry.add()

    Raises:
        ConfigurationError: If the parameters are invalid or the server is unreachable
    """
    details = parse_params(params)

    try:
        await check(details)
    except Exception as e:
        logger.warning("connection_check_failed", url=details.url, error=str(e))
        raise ConfigurationError(format_client_error(e)) from e

    logger.debug("trigger_params_validated", url=details.url, mode=details.mode.value)
    return details
