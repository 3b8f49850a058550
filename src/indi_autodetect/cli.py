"""CLI entry point for indi-autodetect.

Provides the ``indi-autodetect`` console script with subcommands:

- ``run``: Run the daemon: detection, indiserver supervision, REST
  dashboard, optionally MCP over stdio
- ``scan``: One USB scan, JSON on stdout
- ``detect``: One equipment detection pass, JSON on stdout
- ``kb stats|update|lookup VID:PID``: Knowledge base queries
- ``drivers installed|available|search QUERY``: Driver queries

Usage::

    # Daemon with dashboard on all interfaces
    indi-autodetect run --dashboard-host 0.0.0.0

    # Daemon as an MCP server for an AI client
    indi-autodetect run --mcp

    # What is plugged in, and what would be loaded?
    indi-autodetect detect

    indi-autodetect kb lookup 03c3:294a

Settings come from ``INDI_AUTODETECT_*`` environment variables; flags
override them.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from indi_autodetect import __version__
from indi_autodetect.config import AppConfig
from indi_autodetect.errors import IndiAutodetectError
from indi_autodetect.observability import configure_logging, get_logger
from indi_autodetect.services import ServiceContainer

logger = get_logger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _parse_usb_id(value: str) -> tuple[str, str]:
    """Split ``VID:PID`` into lower-case hex parts.

    Raises:
        ValueError: If the value is not two 4-digit hex ids.

    Example:
        >>> _parse_usb_id("03C3:294A")
        ('03c3', '294a')
    """
    parts = value.strip().lower().split(":")
    if len(parts) != 2 or not all(
        len(part) == 4 and all(c in "0123456789abcdef" for c in part) for part in parts
    ):
        raise ValueError(f"Expected VID:PID like 03c3:294a, got {value!r}")
    return parts[0], parts[1]


# =============================================================================
# Commands
# =============================================================================


async def _scan(services: ServiceContainer, args: argparse.Namespace) -> int:
    devices = await services.scanner.list_devices()
    if devices is None:
        print("lsusb failed; is usbutils installed?", file=sys.stderr)
        return 1
    _print_json({"count": len(devices), "devices": [d.to_dict() for d in devices]})
    return 0


async def _detect(services: ServiceContainer, args: argparse.Namespace) -> int:
    await services.knowledge_base.initialize()
    devices = await services.detector.detect_all(force=True)
    _print_json({"count": len(devices), "devices": [d.to_dict() for d in devices]})
    return 0


async def _kb(services: ServiceContainer, args: argparse.Namespace) -> int:
    kb = services.knowledge_base
    if args.kb_command == "update":
        await kb.force_update()
        _print_json(kb.get_statistics())
        return 0

    await kb.initialize()
    if args.kb_command == "stats":
        _print_json(kb.get_statistics())
        return 0

    vendor, product = _parse_usb_id(args.usb_id)
    entry = kb.find_by_usb_id(vendor, product)
    if entry is None:
        print(f"No knowledge base entry for {vendor}:{product}", file=sys.stderr)
        return 1
    _print_json(entry.to_dict())
    return 0


async def _drivers(services: ServiceContainer, args: argparse.Namespace) -> int:
    resolver = services.resolver
    if args.drivers_command == "installed":
        _print_json(resolver.get_installed_drivers())
    elif args.drivers_command == "available":
        _print_json(await resolver.get_available_drivers())
    else:
        _print_json(await resolver.search_drivers(args.query))
    return 0


_COMMANDS: dict[str, Callable[[ServiceContainer, argparse.Namespace], Awaitable[int]]] = {
    "scan": _scan,
    "detect": _detect,
    "kb": _kb,
    "drivers": _drivers,
}


# =============================================================================
# Arguments
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="indi-autodetect",
        description=(
            "INDI Autodetect - USB equipment detection, driver installation "
            "and indiserver supervision"
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--data-dir", type=str, default=None, help="Data directory")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default INFO)",
    )
    parser.add_argument("--log-json", action="store_true", help="NDJSON log output")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the daemon")
    run_parser.add_argument(
        "--mcp", action="store_true", help="Also serve MCP over stdio"
    )
    run_parser.add_argument(
        "--port", type=int, default=None, help="indiserver port (default 7624)"
    )
    run_parser.add_argument(
        "--startup-driver",
        action="append",
        default=None,
        dest="startup_drivers",
        help="Driver always loaded (repeatable)",
    )
    run_parser.add_argument(
        "--dashboard-host",
        type=str,
        default=None,
        help="REST dashboard host (default 127.0.0.1, 'none' disables)",
    )
    run_parser.add_argument(
        "--dashboard-port", type=int, default=None, help="REST dashboard port"
    )
    run_parser.add_argument(
        "--no-sudo", action="store_true", help="Run apt-get without sudo"
    )

    subparsers.add_parser("scan", help="Scan USB devices once")
    subparsers.add_parser("detect", help="Detect equipment once")

    kb_parser = subparsers.add_parser("kb", help="Equipment knowledge base")
    kb_sub = kb_parser.add_subparsers(dest="kb_command", required=True)
    kb_sub.add_parser("stats", help="Entry counts")
    kb_sub.add_parser("update", help="Refresh from the upstream catalog")
    lookup = kb_sub.add_parser("lookup", help="Look up a USB id")
    lookup.add_argument("usb_id", help="VID:PID, e.g. 03c3:294a")

    drivers_parser = subparsers.add_parser("drivers", help="INDI drivers")
    drivers_sub = drivers_parser.add_subparsers(dest="drivers_command", required=True)
    drivers_sub.add_parser("installed", help="Installed driver executables")
    drivers_sub.add_parser("available", help="Drivers in the upstream catalog")
    search = drivers_sub.add_parser("search", help="Search the upstream catalog")
    search.add_argument("query")

    return parser


def build_config(args: argparse.Namespace) -> AppConfig:
    """Environment configuration with command-line overrides applied."""
    config = AppConfig.from_env()
    if args.data_dir:
        config.data_dir = Path(args.data_dir).expanduser()
    if args.log_level:
        config.log_level = args.log_level
    if args.log_json:
        config.log_json = True

    if args.command == "run":
        if args.port is not None:
            config.supervisor.port = args.port
        if args.startup_drivers:
            config.coordinator.startup_drivers = list(args.startup_drivers)
        if args.dashboard_host is not None:
            host = args.dashboard_host
            config.dashboard.host = None if host.lower() == "none" else host
        if args.dashboard_port is not None:
            config.dashboard.port = args.dashboard_port
        if args.no_sudo:
            config.resolver.use_sudo = False
    return config


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code: 0 success, 1 command failure, 2 usage error,
        130 interrupted.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    configure_logging(level=config.log_level, json_format=config.log_json, force=True)

    try:
        if args.command == "run":
            from indi_autodetect.server import run_daemon

            asyncio.run(run_daemon(config, mcp=args.mcp))
            return 0

        services = ServiceContainer.build(config)
        return asyncio.run(_COMMANDS[args.command](services, args))
    except KeyboardInterrupt:
        return 130
    except (IndiAutodetectError, ValueError) as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
