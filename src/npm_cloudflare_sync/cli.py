"""
Command-line interface for the NPM to Cloudflare sync service.

This module provides the process entry point with commands for:
- run: Start the sync daemon (default)
- config: Show the effective configuration

Configuration comes from environment variables, optionally loaded from a
.env file. Exit codes: 0 on graceful shutdown, 1 on configuration errors,
monitor halts and unhandled failures.
"""

import argparse
import asyncio
import os
import signal
import sys
from typing import Mapping, Optional

from dotenv import load_dotenv

from . import __version__
from .config import CloudflareConfig, LoggingConfig, NPMConfig, SyncConfig
from .enums import LogLevel
from .exceptions import ConfigurationError, SyncError
from .orchestrator import SyncOrchestrator
from .sync_logger import StructuredLogger

COMPONENT = "Main"

REQUIRED_VARIABLES = [
    "CF_API_TOKEN",
    "CF_EMAIL",
    "NPM_API_URL",
    "NPM_EMAIL",
    "NPM_PASSWORD",
]

OPTIONAL_VARIABLES = [
    "CHECK_INTERVAL",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "AUTO_CREATE_ROOT_RECORDS",
]

MASKED_VARIABLES = {"CF_API_TOKEN", "NPM_PASSWORD"}

DEFAULT_CHECK_INTERVAL_MS = 10000

LOG_FORMATS = ["text", "json", "both"]


def validate_log_level(value: Optional[str]) -> Optional[str]:
    """
    Normalize a log level name.

    Returns:
        The lower-cased level, or None if it is not a known level
    """
    normalized = (value or "").strip().lower()
    if normalized in {level.value for level in LogLevel}:
        return normalized
    return None


def _parse_check_interval(raw: Optional[str]) -> float:
    """Convert CHECK_INTERVAL (milliseconds) to seconds."""
    if raw is None or raw.strip() == "":
        return DEFAULT_CHECK_INTERVAL_MS / 1000
    try:
        interval_ms = int(raw.strip())
    except ValueError:
        raise ConfigurationError(
            code="invalid_check_interval",
            message=f"CHECK_INTERVAL must be an integer number of milliseconds, got {raw!r}",
        )
    if interval_ms <= 0:
        raise ConfigurationError(
            code="invalid_check_interval",
            message=f"CHECK_INTERVAL must be positive, got {interval_ms}",
        )
    return interval_ms / 1000


def load_config_from_env(
    environ: Optional[Mapping[str, str]] = None,
    env_file: Optional[str] = None,
    warnings: Optional[list[str]] = None,
) -> SyncConfig:
    """
    Build the service configuration from environment variables.

    Args:
        environ: Variables to read (defaults to os.environ after loading .env)
        env_file: Path of a .env file; variables already set are not overridden
        warnings: Optional list that collects non-fatal configuration warnings

    Returns:
        SyncConfig

    Raises:
        ConfigurationError: If required variables are missing or a value is invalid
    """
    if environ is None:
        load_dotenv(env_file, override=False)
        environ = os.environ

    missing = [name for name in REQUIRED_VARIABLES if not environ.get(name)]
    if missing:
        raise ConfigurationError(
            code="missing_variables",
            message=f"Missing required environment variables: {', '.join(missing)}",
            details={
                "missing_fields": missing,
                "hint": "Please check your .env file and ensure all required variables are set",
            },
        )

    raw_level = environ.get("LOG_LEVEL") or "info"
    level = validate_log_level(raw_level)
    if level is None:
        if warnings is not None:
            warnings.append(f'Invalid log level "{raw_level}", defaulting to "info"')
        level = "info"

    output_format = (environ.get("LOG_FORMAT") or "text").strip().lower()
    if output_format not in LOG_FORMATS:
        if warnings is not None:
            warnings.append(f'Invalid log format "{output_format}", defaulting to "text"')
        output_format = "text"

    return SyncConfig(
        cloudflare=CloudflareConfig(
            api_token=environ["CF_API_TOKEN"],
            email=environ["CF_EMAIL"],
        ),
        npm=NPMConfig(
            api_url=environ["NPM_API_URL"].rstrip("/"),
            email=environ["NPM_EMAIL"],
            password=environ["NPM_PASSWORD"],
        ),
        check_interval_seconds=_parse_check_interval(environ.get("CHECK_INTERVAL")),
        auto_create_root_records=(
            (environ.get("AUTO_CREATE_ROOT_RECORDS") or "").strip().lower() == "true"
        ),
        logging=LoggingConfig(level=level, output_format=output_format),
    )


def describe_environment(environ: Mapping[str, str]) -> dict:
    """Summarize the relevant variables with secret values masked."""
    variables = {}
    for name in REQUIRED_VARIABLES + OPTIONAL_VARIABLES:
        value = environ.get(name)
        if name in MASKED_VARIABLES and value:
            value = StructuredLogger.MASK_VALUE
        variables[name] = {"exists": bool(value), "value": value}
    return variables


def describe_config(config: SyncConfig) -> dict:
    """Effective configuration with secrets masked."""
    return {
        "cloudflare": {
            "email": config.cloudflare.email,
            "api_token": StructuredLogger.MASK_VALUE if config.cloudflare.api_token else None,
            "base_url": config.cloudflare.base_url,
        },
        "npm": {
            "api_url": config.npm.api_url,
            "email": config.npm.email,
            "password": StructuredLogger.MASK_VALUE if config.npm.password else None,
        },
        "check_interval_seconds": config.check_interval_seconds,
        "auto_create_root_records": config.auto_create_root_records,
        "log_level": config.logging.level,
        "log_format": config.logging.output_format,
    }


def _apply_overrides(config: SyncConfig, args: argparse.Namespace) -> None:
    if args.log_level:
        config.logging.level = args.log_level
    if args.log_format:
        config.logging.output_format = args.log_format


async def run_service(
    config: SyncConfig,
    logger: StructuredLogger,
    stop_event: Optional[asyncio.Event] = None,
) -> int:
    """
    Run the sync daemon until a termination signal or a monitor halt.

    Args:
        config: Service configuration
        logger: Logger shared by all components
        stop_event: Event that triggers graceful shutdown (created if omitted)

    Returns:
        Exit code
    """
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # No signal handlers outside the main thread or on Windows loops
            pass

    try:
        async with SyncOrchestrator.from_config(config, logger=logger) as orchestrator:
            return await orchestrator.run(stop_event)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' command."""
    warnings: list[str] = []
    try:
        config = load_config_from_env(env_file=args.env_file, warnings=warnings)
    except ConfigurationError as e:
        logger = StructuredLogger(level=args.log_level or "info")
        logger.error(COMPONENT, e.message, e.details)
        logger.error(COMPONENT, "Invalid configuration. Exiting...")
        return 1

    _apply_overrides(config, args)
    logger = StructuredLogger(
        level=config.logging.level,
        output_format=config.logging.output_format,
    )
    for warning in warnings:
        logger.warn(COMPONENT, warning)
    logger.info(COMPONENT, "Environment Configuration", {
        "source": args.env_file or "environment",
        "variables": describe_environment(os.environ),
    })

    try:
        return asyncio.run(run_service(config, logger))
    except KeyboardInterrupt:
        logger.info(COMPONENT, "Shutting down gracefully...")
        return 0
    except SyncError as e:
        logger.error(COMPONENT, f"Fatal error: {e.message}", e.to_dict())
        return 1
    except Exception as e:
        logger.error(COMPONENT, "Fatal error", {
            "error": str(e),
            "error_type": type(e).__name__,
        })
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    warnings: list[str] = []
    try:
        config = load_config_from_env(env_file=args.env_file, warnings=warnings)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    _apply_overrides(config, args)
    for warning in warnings:
        print(f"Warning: {warning}", file=sys.stderr)

    if args.action == "show":
        summary = describe_config(config)
        print("Configuration from environment:")
        print(f"  Cloudflare email: {summary['cloudflare']['email']}")
        print(f"  Cloudflare API token: {summary['cloudflare']['api_token']}")
        print(f"  NPM API URL: {summary['npm']['api_url']}")
        print(f"  NPM email: {summary['npm']['email']}")
        print(f"  NPM password: {summary['npm']['password']}")
        print(f"  Check interval: {summary['check_interval_seconds']}s")
        print(f"  Auto-create root records: {summary['auto_create_root_records']}")
        print(f"  Log level: {summary['log_level']}")
        print(f"  Log format: {summary['log_format']}")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="npm-cloudflare-sync",
        description="Sync Nginx Proxy Manager hosts to Cloudflare DNS with dynamic root records",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--env-file", "-e",
        help="Path to a .env file (default: .env in the working directory)",
    )
    parser.add_argument(
        "--log-level", "-l",
        choices=[level.value for level in LogLevel],
        help="Override LOG_LEVEL",
    )
    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        help="Override LOG_FORMAT",
    )
    parser.set_defaults(func=cmd_run)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'run' command
    run_parser = subparsers.add_parser(
        "run",
        help="Start the sync daemon (default)",
    )
    run_parser.set_defaults(func=cmd_run)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show"],
        help="Configuration action",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
