"""Daemon and MCP server entry points.

The daemon builds the service container, starts detection and the
control-server supervisor, and serves the REST dashboard with uvicorn on
the same event loop. With ``mcp=True`` the MCP protocol runs over stdio
alongside it; the process then lives as long as the MCP client keeps
stdin open.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

import uvicorn
from mcp.server import Server
from mcp.server.stdio import stdio_server

from indi_autodetect import tools
from indi_autodetect.config import AppConfig
from indi_autodetect.observability import configure_logging, get_logger
from indi_autodetect.services import ServiceContainer
from indi_autodetect.web.app import create_app

logger = get_logger(__name__)

SERVER_NAME = "indi-autodetect"


def create_server(services: ServiceContainer) -> Server:
    """Create the MCP server with every equipment and server tool registered.

    Example:
        >>> server = create_server(services)
        >>> # Tools: list_equipment, auto_setup_equipment, restart_server, ...
    """
    server = Server(SERVER_NAME)
    tools.register(server, services)
    return server


def create_dashboard(services: ServiceContainer) -> uvicorn.Server | None:
    """uvicorn server for the REST app, or None when the dashboard is disabled."""
    dashboard = services.config.dashboard
    if not dashboard.host:
        return None
    config = uvicorn.Config(
        create_app(services),
        host=dashboard.host,
        port=dashboard.port,
        log_level=dashboard.log_level,
    )
    return uvicorn.Server(config)


async def _serve_mcp(services: ServiceContainer) -> None:
    server = create_server(services)
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


async def _wait_for_termination() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, stop.set)
    try:
        await stop.wait()
    finally:
        loop.remove_signal_handler(signal.SIGTERM)


async def run_daemon(
    config: AppConfig,
    mcp: bool = False,
    services: ServiceContainer | None = None,
) -> None:
    """Run services, the dashboard and optionally MCP until told to stop.

    Args:
        config: Complete configuration.
        mcp: Serve MCP over stdio; the daemon exits when stdin closes.
        services: Prebuilt container, built from ``config`` by default.

    Raises:
        ServerStartError: If the control server cannot be started.
    """
    services = services or ServiceContainer.build(config)
    try:
        await services.start()
    except Exception:
        await services.shutdown()
        raise

    dashboard = create_dashboard(services)
    dashboard_task: asyncio.Task[None] | None = None
    if dashboard is not None:
        dashboard_task = asyncio.create_task(dashboard.serve())
        logger.info(
            "Dashboard started",
            url=f"http://{config.dashboard.host}:{config.dashboard.port}",
        )

    try:
        if mcp:
            await _serve_mcp(services)
        elif dashboard_task is not None:
            await dashboard_task
        else:
            await _wait_for_termination()
    finally:
        if dashboard is not None and dashboard_task is not None:
            dashboard.should_exit = True
            try:
                await dashboard_task
            except Exception:  # noqa: BLE001
                logger.exception("Dashboard shutdown failed")
        await services.shutdown()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Arguments for ``python -m indi_autodetect.server`` (MCP over stdio)."""
    parser = argparse.ArgumentParser(
        description="INDI Autodetect MCP server - equipment detection and indiserver control"
    )
    parser.add_argument(
        "--dashboard-host",
        type=str,
        default=None,
        help="Host to run the REST dashboard on (e.g. 127.0.0.1); omit to disable",
    )
    parser.add_argument(
        "--dashboard-port",
        type=int,
        default=None,
        help="Port to run the REST dashboard on (default 8080)",
    )
    parser.add_argument(
        "--dashboard-log-level",
        type=str,
        choices=["critical", "error", "warning", "info", "debug"],
        default="warning",
        help="Log level for the dashboard server (default: warning)",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Directory for the equipment database cache",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run the MCP server over stdio with all background services.

    Example:
        >>> # MCP client config:
        >>> # "command": "python", "args": ["-m", "indi_autodetect.server"]
    """
    args = parse_args(argv)
    config = AppConfig.from_env()
    config.dashboard.host = args.dashboard_host
    if args.dashboard_port is not None:
        config.dashboard.port = args.dashboard_port
    config.dashboard.log_level = args.dashboard_log_level
    if args.data_dir:
        config.data_dir = Path(args.data_dir).expanduser()

    configure_logging(level=config.log_level, json_format=config.log_json, force=True)
    logger.info("Starting MCP server")
    try:
        asyncio.run(run_daemon(config, mcp=True))
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
