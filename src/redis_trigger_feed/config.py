"""Configuration management for the trigger feed.

This module handles loading and validating configuration from environment
variables. It provides type-safe configuration for the cursor cache, the
stream read loop, and logging.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class FeedConfig:
    """Configuration for trigger listeners.

    Attributes:
        cursor_cache_url: Redis URL used to persist stream cursors (None disables persistence)
        cursor_key_prefix: Prefix prepended to trigger ids when storing cursors
        stream_block_ms: XREAD block timeout in milliseconds (0 blocks until data arrives)

    Example:
        >>> config = FeedConfig(
        ...     cursor_cache_url="redis://localhost:6379/0",
        ...     cursor_key_prefix="",
        ...     stream_block_ms=0,
        ... )
    """

    cursor_cache_url: str | None
    cursor_key_prefix: str
    stream_block_ms: int

    def __post_init__(self) -> None:
        """Validate feed configuration after initialization.

        Raises:
            ValueError: If the cache URL is blank or the block timeout is negative
        """
        if self.cursor_cache_url is not None and not self.cursor_cache_url.strip():
            raise ValueError("Cursor cache URL cannot be empty")
        if self.stream_block_ms < 0:
            raise ValueError(f"stream_block_ms must be >= 0, got {self.stream_block_ms}")


@dataclass(frozen=True)
class LoggingConfig:
    """Configuration for logging.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format (json, text)

    Example:
        >>> config = LoggingConfig(log_level="INFO", log_format="json")
    """

    log_level: str
    log_format: str

    def __post_init__(self) -> None:
        """Validate logging configuration after initialization.

        Raises:
            ValueError: If log_level or log_format is invalid
        """
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got {self.log_level}")

        valid_formats = {"json", "text"}
        if self.log_format.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of {valid_formats}, got {self.log_format}")


@dataclass(frozen=True)
class Config:
    """Complete configuration for the trigger feed.

    Attributes:
        feed: Listener and cursor cache configuration
        logging: Logging configuration
    """

    feed: FeedConfig
    logging: LoggingConfig


def load_config(env_file: str | None = None) -> Config:
    """Load configuration from environment variables.

    Args:
        env_file: Optional path to .env file to load (default: .env in current directory)

    Returns:
        Complete Config object with all sub-configurations

    Raises:
        ValueError: If environment variables are invalid

    Environment Variables:
        Feed:
            - REDIS: Redis URL for cursor persistence (default: unset, no persistence)
            - CURSOR_KEY_PREFIX: Prefix for cursor keys (default: empty)
            - STREAM_BLOCK_MS: XREAD block timeout in ms (default: 0)

        Logging:
            - LOG_LEVEL: Logging level (default: INFO)
            - LOG_FORMAT: Log format (default: json)
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    feed = FeedConfig(
        cursor_cache_url=os.getenv("REDIS") or None,
        cursor_key_prefix=os.getenv("CURSOR_KEY_PREFIX", ""),
        stream_block_ms=_get_int_env("STREAM_BLOCK_MS", 0),
    )

    logging = LoggingConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("LOG_FORMAT", "json").lower(),
    )

    return Config(feed=feed, logging=logging)


def _get_int_env(var_name: str, default: int) -> int:
    """Read an integer environment variable.

    Raises:
        ValueError: If the variable is set but is not an integer
    """
    value = os.getenv(var_name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{var_name} must be an integer, got {value!r}") from None
