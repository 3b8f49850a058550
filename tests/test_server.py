"""Tests for the daemon and MCP server assembly."""

import asyncio

import pytest
import uvicorn
from mcp.server import Server

from indi_autodetect.errors import ServerStartError
from indi_autodetect.server import (
    SERVER_NAME,
    create_dashboard,
    create_server,
    parse_args,
    run_daemon,
)
from tests.fakes import LSUSB_ZWO, make_executable
from tests.helpers import wait_until


class TestAssembly:
    def test_create_server(self, services):
        server = create_server(services)
        assert isinstance(server, Server)
        assert server.name == SERVER_NAME

    def test_dashboard_disabled_without_host(self, services):
        assert create_dashboard(services) is None

    def test_dashboard_bound_to_configured_address(self, services, app_config):
        app_config.dashboard.host = "127.0.0.1"
        app_config.dashboard.port = 18080

        dashboard = create_dashboard(services)

        assert isinstance(dashboard, uvicorn.Server)
        assert dashboard.config.host == "127.0.0.1"
        assert dashboard.config.port == 18080

    def test_parse_args(self):
        args = parse_args(["--dashboard-host", "0.0.0.0", "--dashboard-port", "9000"])
        assert args.dashboard_host == "0.0.0.0"
        assert args.dashboard_port == 9000
        assert args.dashboard_log_level == "warning"
        assert parse_args([]).dashboard_host is None


class TestRunDaemon:
    @pytest.mark.asyncio
    async def test_cancel_shuts_services_down(self, services, app_config):
        """Verifies the daemon releases everything when cancelled.

        Arrangement:
        Container wired with fakes; dashboard and MCP disabled.

        Action:
        Runs the daemon as a task, waits for startup, cancels it.

        Assertion Strategy:
        - Services were started while the task ran.
        - After cancellation nothing is left running.

        Testing Principle:
        Ctrl-C or a service manager stop leaves no indiserver behind.
        """
        task = asyncio.create_task(run_daemon(app_config, services=services))
        await wait_until(lambda: services.is_started)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not services.is_started
        assert not services.coordinator.is_running
        assert not services.monitor.is_monitoring

    @pytest.mark.asyncio
    async def test_start_failure_is_raised_after_cleanup(
        self, services, app_config, listening_runner, launcher, bin_dir
    ):
        make_executable(bin_dir, "indi_asi_ccd")
        listening_runner.set("lsusb", stdout=LSUSB_ZWO)
        launcher.error = OSError("exec format error")

        with pytest.raises(ServerStartError):
            await run_daemon(app_config, services=services)

        assert not services.is_started
        assert not services.scanner.is_running
