"""Tests for the orchestration coordinator (scanner + supervisor)."""

import pytest

from indi_autodetect.errors import ServerStartError
from indi_autodetect.events import EventType
from tests.fakes import LSUSB_ZWO, make_executable
from tests.helpers import wait_until


def record(bus, *events):
    received = []
    for event in events:
        bus.subscribe(event, lambda p, e=event: received.append((e, p)))
    return received


@pytest.fixture
def drivers(bin_dir):
    return {
        name: str(make_executable(bin_dir, name))
        for name in ("indi_asi_ccd", "indi_simulator_telescope")
    }


class TestStart:
    """Tests for OrchestrationCoordinator.start."""

    @pytest.mark.asyncio
    async def test_nothing_plugged_starts_without_server(self, services, launcher):
        events = record(services.events, EventType.SYSTEM_STARTED)

        await services.coordinator.start()
        await services.coordinator.start()

        assert services.coordinator.is_running
        assert services.scanner.is_running
        assert launcher.launches == []
        assert events == [(EventType.SYSTEM_STARTED, {"drivers": []})]
        await services.coordinator.stop()

    @pytest.mark.asyncio
    async def test_startup_and_detected_drivers(
        self, services, app_config, listening_runner, launcher, drivers
    ):
        """Verifies the first server start loads configured and detected drivers.

        Arrangement:
        - A startup driver configured.
        - lsusb lists a ZWO camera with indi_asi_ccd installed.
        - Hot-plug restarts disabled so only the start is observed.

        Action:
        coordinator.start().

        Assertion Strategy:
        - One launch with both driver paths, startup driver first.
        - The resolver's running set follows server_started.

        Testing Principle:
        Equipment plugged before boot is available without a hot-plug.
        """
        app_config.coordinator.startup_drivers = ["indi_simulator_telescope"]
        app_config.scanner.auto_restart = False
        listening_runner.set("lsusb", stdout=LSUSB_ZWO)

        await services.coordinator.start()

        assert launcher.launches == [
            [
                "indiserver", "-p", "7624", "-v",
                drivers["indi_simulator_telescope"],
                drivers["indi_asi_ccd"],
            ]
        ]
        assert services.resolver.list_running_drivers() == [
            "indi_asi_ccd",
            "indi_simulator_telescope",
        ]
        await services.coordinator.stop()
        assert services.resolver.list_running_drivers() == []

    @pytest.mark.asyncio
    async def test_server_failure_stops_scanner(
        self, services, listening_runner, launcher, drivers
    ):
        launcher.error = OSError("exec format error")
        listening_runner.set("lsusb", stdout=LSUSB_ZWO)
        errors = record(services.events, EventType.SYSTEM_ERROR)

        with pytest.raises(ServerStartError):
            await services.coordinator.start()

        assert not services.coordinator.is_running
        assert not services.scanner.is_running
        assert isinstance(errors[0][1], ServerStartError)


class TestHotPlug:
    """Tests for restart requests coming from the scanner."""

    @pytest.mark.asyncio
    async def test_plugged_camera_starts_server(
        self, services, listening_runner, launcher, drivers
    ):
        """Verifies a hot-plugged camera ends up loaded.

        Arrangement:
        System running with nothing plugged, so no server.

        Action:
        lsusb starts listing a ZWO camera and the scanner scans.

        Assertion Strategy:
        - The server is started with indi_asi_ccd.
        - server_restarted is published once with the drivers.
        - device_added is forwarded on the system bus.
        - The restart counter and timestamp move.

        Testing Principle:
        Plugging equipment in needs no user action.
        """
        await services.coordinator.start()
        events = record(
            services.events, EventType.SERVER_RESTARTED, EventType.DEVICE_ADDED
        )

        listening_runner.set("lsusb", stdout=LSUSB_ZWO)
        await services.scanner.scan_now()
        await wait_until(lambda: services.coordinator.total_restarts == 1)

        assert launcher.launches[-1][-1] == drivers["indi_asi_ccd"]
        assert [e for e, _ in events] == [
            EventType.DEVICE_ADDED,
            EventType.SERVER_RESTARTED,
        ]
        assert events[1][1] == {"drivers": ["indi_asi_ccd"]}
        assert services.coordinator.last_restart is not None
        await services.coordinator.stop()

    @pytest.mark.asyncio
    async def test_running_server_is_restarted(
        self, services, app_config, listening_runner, launcher, drivers
    ):
        app_config.coordinator.startup_drivers = ["indi_simulator_telescope"]
        await services.coordinator.start()
        assert len(launcher.launches) == 1
        restarted = record(services.events, EventType.SERVER_RESTARTED)

        listening_runner.set("lsusb", stdout=LSUSB_ZWO)
        await services.scanner.scan_now()
        await wait_until(lambda: services.coordinator.total_restarts == 1)

        assert len(launcher.launches) == 2
        assert restarted == [
            (
                EventType.SERVER_RESTARTED,
                {"drivers": ["indi_simulator_telescope", "indi_asi_ccd"]},
            )
        ]
        await services.coordinator.stop()

    @pytest.mark.asyncio
    async def test_failed_restart_is_reported(
        self, services, listening_runner, launcher, drivers
    ):
        await services.coordinator.start()
        errors = record(services.events, EventType.SYSTEM_ERROR)
        launcher.error = OSError("no such file")

        listening_runner.set("lsusb", stdout=LSUSB_ZWO)
        await services.scanner.scan_now()
        await wait_until(lambda: errors)

        assert isinstance(errors[0][1], ServerStartError)
        assert services.coordinator.total_restarts == 0
        assert services.coordinator.is_running
        await services.coordinator.stop()


class TestControl:
    @pytest.mark.asyncio
    async def test_stop_order_and_event(self, services, app_config, launcher, drivers):
        app_config.coordinator.startup_drivers = ["indi_simulator_telescope"]
        await services.coordinator.start()
        events = record(
            services.events, EventType.SERVER_STOPPED, EventType.SYSTEM_STOPPED
        )

        await services.coordinator.stop()
        await services.coordinator.stop()

        assert [e for e, _ in events] == [
            EventType.SERVER_STOPPED,
            EventType.SYSTEM_STOPPED,
        ]
        assert not services.scanner.is_running
        assert not services.supervisor.is_running

    @pytest.mark.asyncio
    async def test_force_restart_and_driver_delegation(
        self, services, app_config, launcher, drivers
    ):
        app_config.coordinator.startup_drivers = ["indi_simulator_telescope"]
        app_config.coordinator.restart_pause = 0
        await services.coordinator.start()

        await services.coordinator.force_restart()
        assert services.coordinator.total_restarts == 1
        assert len(launcher.launches) == 2

        await services.coordinator.add_driver("indi_asi_ccd")
        assert services.supervisor.get_current_drivers() == [
            "indi_simulator_telescope",
            "indi_asi_ccd",
        ]
        await services.coordinator.remove_driver("indi_simulator_telescope")
        assert services.supervisor.get_current_drivers() == ["indi_asi_ccd"]

        await services.coordinator.restart()
        assert services.coordinator.is_running
        await services.coordinator.cleanup()
        assert not services.supervisor.is_running

    @pytest.mark.asyncio
    async def test_ignored_restart_is_not_counted(
        self, services, app_config, launcher, drivers
    ):
        app_config.coordinator.startup_drivers = ["indi_simulator_telescope"]
        await services.coordinator.start()
        restarted = record(services.events, EventType.SERVER_RESTARTED)
        services.supervisor._restarting = True

        await services.coordinator.force_restart()

        assert services.coordinator.total_restarts == 0
        assert services.coordinator.last_restart is None
        assert restarted == []
        assert len(launcher.launches) == 1
        services.supervisor._restarting = False
        await services.coordinator.stop()


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_shapes(self, services, app_config, listening_runner, drivers):
        app_config.scanner.auto_restart = False
        listening_runner.set("lsusb", stdout=LSUSB_ZWO)
        listening_runner.set("journalctl", stdout="indiserver: ready\n")
        await services.coordinator.start()

        status = await services.coordinator.get_status()
        assert set(status) == {"isRunning", "usbDetector", "indiServer", "systemStats"}
        assert status["isRunning"] is True
        assert status["usbDetector"]["totalDevices"] == 1
        assert status["systemStats"]["uptimeMs"] >= 0

        detailed = await services.coordinator.get_detailed_stats()
        assert detailed["usbDevices"][0]["id"] == "03c3:294a"
        assert "operations" in detailed
        assert "loadedDrivers" in detailed

        diagnostics = await services.coordinator.get_diagnostics()
        assert diagnostics["installedDrivers"] == [
            "indi_asi_ccd",
            "indi_simulator_telescope",
        ]
        assert diagnostics["installedDriverCount"] == 2
        assert diagnostics["driversToLoad"] == ["indi_asi_ccd"]
        assert diagnostics["recentLogs"] == ["indiserver: ready"]
        await services.coordinator.stop()
