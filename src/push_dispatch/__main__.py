"""Application entry point and CLI for push-dispatch.

This module parses command-line arguments, loads configuration, sets up
logging, wires the token registry, gateway plugin, and dispatch engine
together, runs one subcommand, and prints its result as JSON on stdout.

Architecture:
- No gateway-specific code (the gateway is selected by plugin identifier)
- Diagnostics go to stderr through logging; stdout carries only JSON
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import NoReturn

from push_dispatch.core.config import (
    ConfigurationError,
    EnvironmentVariableError,
    MainConfig,
    load_main_config,
)
from push_dispatch.core.dispatcher import DispatchEngine
from push_dispatch.core.retry import CircuitBreaker, RetryingGateway, RetryPolicy
from push_dispatch.core.service import NotificationService
from push_dispatch.core.sqlite_registry import SQLiteTokenRegistry
from push_dispatch.core.throttle import TokenBucketThrottle
from push_dispatch.exceptions import RequestValidationError, TokenNotFoundError
from push_dispatch.plugins import GatewayLoader, PluginLoaderError
from push_dispatch.types import DeliveryGateway, DeviceToken, DispatchResult, TokenRegistry
from push_dispatch.utils.logging import configure_logging

__all__ = ["async_main", "build_engine", "build_gateway", "main", "parse_arguments"]

# Default configuration path
DEFAULT_CONFIG_PATH: Path = Path("config/push-dispatch.yaml")

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 1
EXIT_TOKEN_NOT_FOUND = 2

_DISPATCH_COMMANDS: frozenset[str] = frozenset(
    {
        "notify",
        "notify-platform",
        "notify-device",
        "send-data",
        "broadcast",
        "topic",
        "subscribe",
        "unsubscribe",
    }
)


def parse_key_value(raw: str) -> tuple[str, str]:
    """Parse a ``KEY=VALUE`` data argument.

    Example:
        >>> parse_key_value("order_id=42")
        ('order_id', '42')
    """
    key, separator, value = raw.partition("=")
    if not separator or not key:
        msg = f"expected KEY=VALUE, got {raw!r}"
        raise argparse.ArgumentTypeError(msg)
    return key, value


def _add_visible_options(parser: argparse.ArgumentParser) -> None:
    _ = parser.add_argument("--title", required=True, help="Notification title")
    _ = parser.add_argument("--body", required=True, help="Notification body")
    _add_data_option(parser, required=False)


def _add_data_option(parser: argparse.ArgumentParser, *, required: bool) -> None:
    _ = parser.add_argument(
        "--data",
        type=parse_key_value,
        action="append",
        default=None,
        required=required,
        help="Data payload entry (repeatable)",
        metavar="KEY=VALUE",
    )


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the push-dispatch application.

    Args:
        argv: Argument list (defaults to ``sys.argv[1:]``)

    Returns:
        Parsed arguments namespace; ``command`` names the subcommand
    """
    parser = argparse.ArgumentParser(
        prog="push-dispatch",
        description="Manage device push tokens and dispatch push notifications",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  push-dispatch register user-1 <token> android
  push-dispatch notify user-1 --title "Hi" --body "there"
  push-dispatch --dry-run broadcast --title "Maintenance" --body "Tonight at 22:00"
  push-dispatch send-data user-1 --data sync=1
        """,
    )

    _ = parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to main configuration file (default: {DEFAULT_CONFIG_PATH})",
        metavar="PATH",
    )
    _ = parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry-run mode: resolve and build notifications without sending (overrides config)",
    )
    _ = parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration",
        metavar="LEVEL",
    )
    _ = parser.add_argument(
        "--no-syslog",
        action="store_true",
        help="Disable syslog integration (useful for development)",
    )
    _ = parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds after which no further chunks are started",
        metavar="SECONDS",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    register = subparsers.add_parser("register", help="Register a device token")
    _ = register.add_argument("recipient_id")
    _ = register.add_argument("token")
    _ = register.add_argument("platform", help="android, ios, or web")

    remove = subparsers.add_parser("remove", help="Remove a device token owned by a recipient")
    _ = remove.add_argument("recipient_id")
    _ = remove.add_argument("token")

    list_tokens = subparsers.add_parser("list", help="List a recipient's device tokens")
    _ = list_tokens.add_argument("recipient_id")

    notify = subparsers.add_parser("notify", help="Notify every active device of a recipient")
    _ = notify.add_argument("recipient_id")
    _add_visible_options(notify)

    notify_platform = subparsers.add_parser(
        "notify-platform", help="Notify a recipient's devices on one platform"
    )
    _ = notify_platform.add_argument("recipient_id")
    _ = notify_platform.add_argument("platform", help="android, ios, or web")
    _add_visible_options(notify_platform)
    _ = notify_platform.add_argument("--icon", default=None, help="Web notification icon URL")
    _ = notify_platform.add_argument("--link", default=None, help="Web notification click-through link")

    notify_device = subparsers.add_parser("notify-device", help="Notify one registered device token")
    _ = notify_device.add_argument("token")
    _add_visible_options(notify_device)

    send_data = subparsers.add_parser("send-data", help="Send a silent data message to a recipient")
    _ = send_data.add_argument("recipient_id")
    _add_data_option(send_data, required=True)

    broadcast = subparsers.add_parser("broadcast", help="Notify every active device token")
    _add_visible_options(broadcast)

    topic = subparsers.add_parser("topic", help="Notify every device subscribed to a topic")
    _ = topic.add_argument("topic")
    _add_visible_options(topic)

    subscribe = subparsers.add_parser("subscribe", help="Subscribe a recipient's devices to a topic")
    _ = subscribe.add_argument("recipient_id")
    _ = subscribe.add_argument("topic")

    unsubscribe = subparsers.add_parser("unsubscribe", help="Unsubscribe a recipient's devices from a topic")
    _ = unsubscribe.add_argument("recipient_id")
    _ = unsubscribe.add_argument("topic")

    prune = subparsers.add_parser("prune", help="Delete inactive tokens not updated recently")
    _ = prune.add_argument(
        "--older-than-days",
        type=float,
        default=30.0,
        help="Age threshold in days (default: 30)",
        metavar="DAYS",
    )

    return parser.parse_args(argv)


def build_gateway(config: MainConfig, *, loader: GatewayLoader | None = None) -> DeliveryGateway:
    """Load the configured gateway plugin and apply the retry policy layer."""
    gateway = (loader or GatewayLoader()).load(config.gateway.provider, config.gateway.config_file)
    retry = config.dispatch.retry
    if retry.max_attempts == 1 and not retry.circuit_breaker_enabled:
        return gateway

    breaker = (
        CircuitBreaker(retry.failure_threshold, retry.recovery_timeout_seconds)
        if retry.circuit_breaker_enabled
        else None
    )
    policy = RetryPolicy(
        max_attempts=retry.max_attempts,
        backoff_factor=retry.backoff_factor,
        jitter=retry.jitter,
    )
    return RetryingGateway(gateway, policy=policy, circuit_breaker=breaker)


def build_engine(config: MainConfig, registry: TokenRegistry, gateway: DeliveryGateway) -> DispatchEngine:
    """Create the dispatch engine from the ``dispatch`` configuration section."""
    settings = config.dispatch
    throttle = (
        TokenBucketThrottle(settings.rate_limit_per_second, burst=settings.rate_limit_burst)
        if settings.rate_limit_per_second is not None
        else None
    )
    return DispatchEngine(
        registry,
        gateway,
        batch_size=settings.batch_size,
        max_concurrency=settings.max_concurrency,
        throttle=throttle,
        chunk_timeout_seconds=settings.chunk_timeout_seconds,
        dispatch_timeout_seconds=settings.dispatch_timeout_seconds,
        dry_run_enabled=config.application.dry_run,
    )


def _open_registry(config: MainConfig) -> SQLiteTokenRegistry:
    database_path = config.registry.database_path
    return SQLiteTokenRegistry(
        database_path if database_path == ":memory:" else Path(database_path),
        page_size=config.registry.page_size,
    )


def _token_to_dict(record: DeviceToken) -> dict[str, object]:
    return {
        "recipient_id": record.recipient_id,
        "token": record.token,
        "platform": str(record.platform),
        "active": record.active,
        "created_at": record.created_at.isoformat(),
        "updated_at": record.updated_at.isoformat(),
    }


def _data_arg(args: argparse.Namespace) -> dict[str, str] | None:
    pairs: list[tuple[str, str]] | None = args.data  # pyright: ignore[reportAny]  # argparse boundary
    return dict(pairs) if pairs else None


async def run_command(
    service: NotificationService,
    args: argparse.Namespace,
    *,
    cancel_event: asyncio.Event | None = None,
) -> dict[str, object]:
    """Execute one parsed subcommand and return its JSON-serializable result."""
    command: str = args.command  # pyright: ignore[reportAny]  # argparse boundary
    timeout: float | None = args.timeout  # pyright: ignore[reportAny]  # argparse boundary
    result: DispatchResult

    match command:
        case "register":
            record = service.register_token(
                args.recipient_id,  # pyright: ignore[reportAny]
                args.token,  # pyright: ignore[reportAny]
                args.platform,  # pyright: ignore[reportAny]
            )
            return {"registered": _token_to_dict(record)}
        case "remove":
            service.remove_token(args.recipient_id, args.token)  # pyright: ignore[reportAny]
            return {"removed": True}
        case "list":
            records = service.list_tokens(args.recipient_id)  # pyright: ignore[reportAny]
            return {"tokens": [_token_to_dict(record) for record in records]}
        case "prune":
            removed = service.prune_inactive(args.older_than_days)  # pyright: ignore[reportAny]
            return {"pruned": removed}
        case "notify":
            result = await service.notify_recipient(
                args.recipient_id,  # pyright: ignore[reportAny]
                args.title,  # pyright: ignore[reportAny]
                args.body,  # pyright: ignore[reportAny]
                _data_arg(args),
                cancel_event=cancel_event,
                timeout=timeout,
            )
        case "notify-platform":
            result = await service.notify_by_platform(
                args.recipient_id,  # pyright: ignore[reportAny]
                args.platform,  # pyright: ignore[reportAny]
                args.title,  # pyright: ignore[reportAny]
                args.body,  # pyright: ignore[reportAny]
                _data_arg(args),
                icon=args.icon,  # pyright: ignore[reportAny]
                link=args.link,  # pyright: ignore[reportAny]
                cancel_event=cancel_event,
                timeout=timeout,
            )
        case "notify-device":
            result = await service.notify_device(
                args.token,  # pyright: ignore[reportAny]
                args.title,  # pyright: ignore[reportAny]
                args.body,  # pyright: ignore[reportAny]
                _data_arg(args),
                cancel_event=cancel_event,
                timeout=timeout,
            )
        case "send-data":
            result = await service.send_data_only(
                args.recipient_id,  # pyright: ignore[reportAny]
                _data_arg(args) or {},
                cancel_event=cancel_event,
                timeout=timeout,
            )
        case "broadcast":
            result = await service.broadcast(
                args.title,  # pyright: ignore[reportAny]
                args.body,  # pyright: ignore[reportAny]
                _data_arg(args),
                cancel_event=cancel_event,
                timeout=timeout,
            )
        case "topic":
            result = await service.notify_topic(
                args.topic,  # pyright: ignore[reportAny]
                args.title,  # pyright: ignore[reportAny]
                args.body,  # pyright: ignore[reportAny]
                _data_arg(args),
                cancel_event=cancel_event,
                timeout=timeout,
            )
        case "subscribe":
            result = await service.subscribe_recipient(
                args.recipient_id,  # pyright: ignore[reportAny]
                args.topic,  # pyright: ignore[reportAny]
                cancel_event=cancel_event,
                timeout=timeout,
            )
        case "unsubscribe":
            result = await service.unsubscribe_recipient(
                args.recipient_id,  # pyright: ignore[reportAny]
                args.topic,  # pyright: ignore[reportAny]
                cancel_event=cancel_event,
                timeout=timeout,
            )
        case _:
            msg = f"Unknown command: {command}"
            raise RequestValidationError(msg)

    return result.to_dict()


async def async_main(
    args: argparse.Namespace,
    *,
    gateway: DeliveryGateway | None = None,
) -> dict[str, object]:
    """Async main function: load configuration, wire components, run one command.

    Args:
        args: Parsed command-line arguments
        gateway: Pre-built gateway (skips plugin loading; used by tests)

    Returns:
        JSON-serializable command result

    Raises:
        ConfigurationError: If configuration is invalid
        PluginLoaderError: If the gateway plugin cannot be loaded
        RequestValidationError: If command arguments are invalid
        TokenNotFoundError: If a removal targets a token the recipient does not own
    """
    config_path: Path = args.config  # pyright: ignore[reportAny]  # argparse boundary
    dry_run: bool = args.dry_run  # pyright: ignore[reportAny]  # argparse boundary
    log_level: str | None = args.log_level  # pyright: ignore[reportAny]  # argparse boundary
    no_syslog: bool = args.no_syslog  # pyright: ignore[reportAny]  # argparse boundary

    config = load_main_config(config_path)

    if dry_run:
        config.application.dry_run = True
    if log_level is not None:
        config.application.log_level = log_level

    configure_logging(
        log_level=config.application.log_level,
        enable_syslog=not no_syslog and config.application.syslog_enabled,
        enable_console=True,
    )
    logger = logging.getLogger(__name__)
    logger.info(
        "Configuration loaded",
        extra={"config_path": str(config_path), "dry_run": config.application.dry_run},
    )

    delivery_gateway = gateway or build_gateway(config)
    registry = _open_registry(config)
    try:
        service = NotificationService(registry, build_engine(config, registry, delivery_gateway))
        if args.command not in _DISPATCH_COMMANDS:  # pyright: ignore[reportAny]  # argparse boundary
            return await run_command(service, args)

        cancel_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def request_cancel() -> None:
            if not cancel_event.is_set():
                logger.info("Shutdown signal received, no further chunks will be started")
                cancel_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, request_cancel)
        try:
            return await run_command(service, args, cancel_event=cancel_event)
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                _ = loop.remove_signal_handler(sig)
    finally:
        registry.close()


def main(argv: Sequence[str] | None = None) -> NoReturn:
    """Main entry point for the push-dispatch CLI.

    Exit Codes:
        0: Command completed (dispatch results are reported in the JSON output)
        1: Configuration, plugin, validation, or unexpected runtime error
        2: Token not registered for the given recipient
    """
    args = parse_arguments(argv)

    try:
        output = asyncio.run(async_main(args))

    except ConfigurationError as exc:
        print(f"Configuration error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except EnvironmentVariableError as exc:
        print(f"Environment variable error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except PluginLoaderError as exc:
        print(f"Gateway plugin error: {exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except RequestValidationError as exc:
        print(f"Invalid request: {exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except TokenNotFoundError as exc:
        print(f"Not found: {exc}", file=sys.stderr)
        sys.exit(EXIT_TOKEN_NOT_FOUND)

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(EXIT_RUNTIME_ERROR)

    except Exception as exc:
        print(f"Unexpected error: {exc}", file=sys.stderr)
        logging.exception("Unexpected error during command execution")
        sys.exit(EXIT_RUNTIME_ERROR)

    print(json.dumps(output, indent=2, sort_keys=True))
    sys.exit(EXIT_SUCCESS)


if __name__ == "__main__":
    main()
