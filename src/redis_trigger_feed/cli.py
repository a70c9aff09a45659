"""Command-line interface for the trigger feed.

This module provides a CLI for validating trigger parameters against a Redis
server and for running a single trigger listener that prints every event it
would fire.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

import structlog

from redis_trigger_feed.config import Config, load_config
from redis_trigger_feed.errors import ConfigurationError, FeedError
from redis_trigger_feed.listeners import Event, build_cursor_cache
from redis_trigger_feed.logging_config import configure_logging
from redis_trigger_feed.output import print_details, print_disabled, print_fired_event
from redis_trigger_feed.registry import FeedRegistry
from redis_trigger_feed.transport import validate_params

logger = structlog.get_logger(__name__)


class PrintingTriggerManager:
    """Trigger manager that prints fired events and records disables.

    Used by the ``listen`` command in place of a real trigger service.
    """

    def __init__(self) -> None:
        self.disabled = asyncio.Event()
        self.reason: str | None = None

    def fire_trigger(self, trigger_id: str, event: Event) -> None:
        print_fired_event(trigger_id, event)

    def disable_trigger(self, trigger_id: str, status: int | None, reason: str) -> None:
        print_disabled(trigger_id, reason)
        self.reason = reason
        self.disabled.set()


def _add_trigger_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the trigger parameter options shared by all commands."""
    parser.add_argument("--url", type=str, required=True, help="Redis connection URL")

    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--subscribe", type=str, metavar="CHANNEL", help="Exact channel name")
    target.add_argument("--psubscribe", type=str, metavar="PATTERN", help="Channel pattern")
    target.add_argument("--stream", type=str, metavar="KEY", help="Stream key")

    parser.add_argument("--cert", type=str, metavar="FILE", help="CA certificate file for TLS")
    parser.add_argument(
        "--cert-format",
        type=str,
        choices=["utf-8", "base64"],
        default="utf-8",
        help="Encoding of the certificate file (default: utf-8)",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured argument parser with all subcommands
    """
    parser = argparse.ArgumentParser(
        prog="redis-trigger-feed",
        description="Fire triggers from Redis pub/sub channels and streams",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file (.env format)",
        metavar="FILE",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    validate_parser = subparsers.add_parser(
        "validate", help="Validate trigger parameters and check the Redis connection"
    )
    _add_trigger_arguments(validate_parser)

    listen_parser = subparsers.add_parser(
        "listen", help="Run one trigger listener and print the events it fires"
    )
    _add_trigger_arguments(listen_parser)
    listen_parser.add_argument(
        "--trigger-id",
        type=str,
        default="cli",
        help="Trigger id used for logging and cursor persistence (default: cli)",
    )

    return parser


def params_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Build raw trigger parameters from parsed arguments.

    Raises:
        ConfigurationError: If the certificate file cannot be read
    """
    params: dict[str, Any] = {"url": args.url}
    for name in ("subscribe", "psubscribe", "stream"):
        value = getattr(args, name)
        if value is not None:
            params[name] = value

    if args.cert:
        try:
            params["cert"] = Path(args.cert).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read certificate file {args.cert}: {e}") from e
        params["cert_format"] = args.cert_format

    return params


def cmd_validate(args: argparse.Namespace, config: Config) -> int:
    """Handle the 'validate' command.

    Returns:
        Exit code (0 for valid parameters, 1 otherwise)
    """
    try:
        details = asyncio.run(validate_params(params_from_args(args)))
    except ConfigurationError as e:
        print(f"Invalid trigger parameters: {e}", file=sys.stderr)
        return 1

    print_details(details)
    return 0


async def run_listener(
    trigger_id: str,
    params: dict[str, Any],
    config: Config,
    trigger_manager: PrintingTriggerManager,
) -> str | None:
    """Run one listener until its trigger is disabled.

    Returns:
        The reason the trigger was disabled
    """
    details = await validate_params(params)
    cache = build_cursor_cache(config.feed.cursor_cache_url, config.feed.cursor_key_prefix)
    registry = FeedRegistry(
        trigger_manager,
        cursor_cache=cache,
        stream_block_ms=config.feed.stream_block_ms,
    )

    try:
        await registry.add(trigger_id, details)
        await trigger_manager.disabled.wait()
        return trigger_manager.reason
    finally:
        await registry.close()
        await cache.close()


def cmd_listen(args: argparse.Namespace, config: Config) -> int:
    """Handle the 'listen' command.

    Returns:
        Exit code (1 when the trigger was disabled or could not start, 130 on Ctrl-C)
    """
    trigger_manager = PrintingTriggerManager()
    try:
        asyncio.run(run_listener(args.trigger_id, params_from_args(args), config, trigger_manager))
    except ConfigurationError as e:
        print(f"Invalid trigger parameters: {e}", file=sys.stderr)
        return 1
    except FeedError as e:
        print(f"Listener failed: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("listener_interrupted", trigger_id=args.trigger_id)
        return 130

    return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        argv: Command-line arguments (default: sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    configure_logging(config.logging)

    if args.command == "validate":
        return cmd_validate(args, config)
    elif args.command == "listen":
        return cmd_listen(args, config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
