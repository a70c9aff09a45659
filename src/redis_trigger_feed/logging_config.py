"""Logging setup for the trigger feed.

Wires structlog into the standard logging module so that log records from
this package and from redis-py share one handler, level and format.
"""

import logging
import sys

import structlog

from redis_trigger_feed.config import LoggingConfig


def configure_logging(config: LoggingConfig) -> None:
    """Configure structlog and the root logger.

    Args:
        config: Logging configuration (level and json/text format)
    """
    level = getattr(logging, config.log_level.upper())

    renderer: structlog.types.Processor
    if config.log_format.lower() == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
