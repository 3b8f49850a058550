"""Orchestration coordinator.

Glues the USB scanner to the control-server supervisor: hot-plug restart
requests become supervisor restarts, and the combined state is exposed
for the REST and MCP surfaces.

Event flow::

    UsbScanner ──restart_requested──► coordinator ──restart/start──► supervisor
        │                                 ▲                              │
        └── device_added/removed ─────────┴──── server_* ────────────────┘
                                          │
                               coordinator.events (all re-emitted)
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any

from indi_autodetect.config import CoordinatorConfig
from indi_autodetect.devices.types import utc_now
from indi_autodetect.devices.usb_scanner import UsbScanner
from indi_autodetect.drivers.resolver import DriverResolver
from indi_autodetect.events import EventBus, EventType, Unsubscribe
from indi_autodetect.indi.supervisor import ControlServerSupervisor
from indi_autodetect.observability import OperationStats, get_logger

logger = get_logger(__name__)

SCANNER_EVENTS = (
    EventType.DEVICE_ADDED,
    EventType.DEVICE_REMOVED,
    EventType.RESTART_REQUESTED,
)

SUPERVISOR_EVENTS = (
    EventType.SERVER_STARTED,
    EventType.SERVER_STOPPED,
    EventType.SERVER_RESTARTED,
    EventType.SERVER_ERROR,
    EventType.SERVER_EXIT,
    EventType.SERVER_LOG,
)


class OrchestrationCoordinator:
    """Runs the scanner and the supervisor as one system."""

    def __init__(
        self,
        config: CoordinatorConfig,
        scanner: UsbScanner,
        supervisor: ControlServerSupervisor,
        resolver: DriverResolver,
        stats: OperationStats | None = None,
        events: EventBus | None = None,
    ) -> None:
        """Create a stopped coordinator.

        Args:
            config: Startup drivers and restart pause.
            scanner: USB hot-plug source.
            supervisor: indiserver owner.
            resolver: Installed/running driver queries for diagnostics.
            stats: Operation statistics included in detailed stats.
            events: Bus all component events are re-emitted on.
        """
        self._config = config
        self._scanner = scanner
        self._supervisor = supervisor
        self._resolver = resolver
        self._stats = stats or OperationStats()
        self.events = events or EventBus("coordinator")
        self._subscriptions: list[Unsubscribe] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._running = False
        self._started_at: float | None = None
        self._total_restarts = 0
        self._last_restart: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def total_restarts(self) -> int:
        return self._total_restarts

    @property
    def last_restart(self) -> datetime | None:
        return self._last_restart

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start scanning and, when any driver is wanted, the control server.

        Raises:
            ServerStartError: If the control server does not come up. The
                scanner is stopped again before the error propagates.
        """
        if self._running:
            logger.warning("System already running")
            return

        logger.info("Starting system")
        self._subscribe()
        try:
            await self._scanner.start()
            drivers = self._startup_drivers(self._scanner.get_drivers_to_load())
            if drivers:
                await self._supervisor.start(drivers)
            else:
                logger.info("No drivers to load, control server not started")
        except Exception as e:
            logger.error("System start failed", error=str(e))
            self.events.emit(EventType.SYSTEM_ERROR, e)
            await self._scanner.stop()
            self._release()
            raise

        self._running = True
        self._started_at = time.monotonic()
        logger.info("System started", drivers=self._supervisor.get_current_drivers())
        self.events.emit(
            EventType.SYSTEM_STARTED,
            {"drivers": self._supervisor.get_current_drivers()},
        )

    async def stop(self) -> None:
        """Stop the scanner first, then the control server."""
        if not self._running:
            return

        logger.info("Stopping system")
        self._running = False
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._scanner.stop()
        await self._supervisor.stop()
        self._release()
        self._started_at = None
        logger.info("System stopped")
        self.events.emit(EventType.SYSTEM_STOPPED, {})

    async def restart(self) -> None:
        await self.stop()
        await asyncio.sleep(self._config.restart_pause)
        await self.start()

    async def cleanup(self) -> None:
        """Stop, then always let the supervisor remove its leftovers."""
        try:
            await self.stop()
        finally:
            await self._supervisor.cleanup()
            self._release()

    def _subscribe(self) -> None:
        self._release()
        self._subscriptions = [
            self._scanner.events.forward(self.events, SCANNER_EVENTS),
            self._supervisor.events.forward(self.events, SUPERVISOR_EVENTS),
            self._scanner.events.subscribe(
                EventType.RESTART_REQUESTED, self._on_restart_requested
            ),
        ]

    def _release(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []

    def _startup_drivers(self, detected: list[str]) -> list[str]:
        drivers = list(self._config.startup_drivers)
        for driver in detected:
            if driver not in drivers:
                drivers.append(driver)
        return drivers

    # -------------------------------------------------------------------------
    # Restarts
    # -------------------------------------------------------------------------

    def _on_restart_requested(self, drivers: list[str]) -> None:
        task = asyncio.create_task(self._handle_restart_request(list(drivers)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle_restart_request(self, drivers: list[str]) -> None:
        try:
            await self._apply(self._startup_drivers(drivers))
        except Exception as e:
            logger.error("Restart after USB change failed", error=str(e))
            self.events.emit(EventType.SYSTEM_ERROR, e)

    async def _apply(self, drivers: list[str]) -> None:
        """Restart with ``drivers``, or start when the server is down.

        The supervisor's own ``server_restarted`` is forwarded; a start
        in place of a restart publishes one here instead. A restart the
        supervisor ignores because another is in progress is not counted.
        """
        if self._supervisor.is_running:
            applied = await self._supervisor.restart(drivers)
        else:
            applied = await self._supervisor.start(drivers)
            if applied:
                self.events.emit(EventType.SERVER_RESTARTED, {"drivers": drivers})
        if not applied:
            logger.info("Control server restart already in progress", drivers=drivers)
            return
        self._total_restarts += 1
        self._last_restart = utc_now()
        logger.info(
            "Control server restarted",
            drivers=drivers,
            total_restarts=self._total_restarts,
        )

    async def force_restart(self) -> None:
        """Recompute the driver set and restart the control server.

        Raises:
            ServerStartError: If the control server does not come up.
        """
        drivers = self._startup_drivers(self._scanner.get_drivers_to_load())
        logger.info("Forced control server restart", drivers=drivers)
        try:
            await self._apply(drivers)
        except Exception as e:
            self.events.emit(EventType.SYSTEM_ERROR, e)
            raise

    async def add_driver(self, driver: str) -> None:
        await self._supervisor.add_driver(driver)

    async def remove_driver(self, driver: str) -> None:
        await self._supervisor.remove_driver(driver)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def get_status(self) -> dict[str, Any]:
        server = await self._supervisor.get_status()
        return {
            "isRunning": self._running,
            "usbDetector": self._scanner.get_stats(),
            "indiServer": server.to_dict(),
            "systemStats": {
                "totalRestarts": self._total_restarts,
                "lastRestart": (
                    self._last_restart.isoformat() if self._last_restart else None
                ),
                "uptimeMs": (
                    (time.monotonic() - self._started_at) * 1000
                    if self._started_at is not None
                    else None
                ),
            },
        }

    async def get_detailed_stats(self) -> dict[str, Any]:
        status = await self.get_status()
        status["usbDevices"] = [
            device.to_dict() for device in self._scanner.get_current_devices()
        ]
        status["loadedDrivers"] = self._supervisor.get_current_drivers()
        status["operations"] = self._stats.to_dict()
        return status

    async def get_diagnostics(self) -> dict[str, Any]:
        installed = self._resolver.get_installed_drivers()
        server = await self._supervisor.get_status()
        return {
            "server": server.to_dict(),
            "retryCount": self._supervisor.retry_count,
            "installedDriverCount": len(installed),
            "installedDrivers": installed,
            "runningDrivers": self._resolver.list_running_drivers(),
            "recentLogs": await self._supervisor.get_recent_logs(20),
            "usbDevices": [
                device.to_dict() for device in self._scanner.get_current_devices()
            ],
            "driversToLoad": self._scanner.get_drivers_to_load(),
        }


__all__ = ["OrchestrationCoordinator"]
