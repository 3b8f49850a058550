"""Composition root.

Builds every component from an ``AppConfig``, wires the cross-component
subscriptions and owns startup/shutdown order. The REST app, the MCP
tools and the CLI all receive a ``ServiceContainer`` instead of reaching
for module globals.

Wiring:
    supervisor server_started   → resolver.mark_running(drivers)
    supervisor server_stopped   → resolver.mark_stopped()
    supervisor server_exit      → resolver.mark_stopped()
    any server_* change         → detector.invalidate_cache()
    coordinator + monitor events → container.events

Example:
    services = ServiceContainer.build(AppConfig.from_env())
    await services.start()
    ...
    await services.shutdown()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from indi_autodetect.config import AppConfig
from indi_autodetect.devices.detector import EquipmentDetector
from indi_autodetect.devices.knowledge_base import EquipmentKnowledgeBase
from indi_autodetect.devices.monitor import EquipmentMonitor
from indi_autodetect.devices.usb_scanner import UsbScanner
from indi_autodetect.drivers.catalog import CatalogSource, DriverCatalog
from indi_autodetect.drivers.process import (
    AsyncCommandRunner,
    CommandRunner,
    ProcessLauncher,
    SubprocessLauncher,
)
from indi_autodetect.drivers.resolver import DriverResolver
from indi_autodetect.drivers.serial import PortEnumerator, PySerialPortEnumerator
from indi_autodetect.events import EventBus, EventType, Unsubscribe
from indi_autodetect.indi.coordinator import OrchestrationCoordinator
from indi_autodetect.indi.properties import CliPropertyTransport, PropertyTransport
from indi_autodetect.indi.supervisor import ControlServerSupervisor
from indi_autodetect.observability import OperationStats, get_logger

logger = get_logger(__name__)

MONITOR_EVENTS = (
    EventType.EQUIPMENT_STATUS_CHANGED,
    EventType.AUTO_SETUP_COMPLETED,
)


@dataclass
class ServiceContainer:
    """All long-lived components of one running system."""

    config: AppConfig
    runner: CommandRunner
    stats: OperationStats
    catalog: CatalogSource | None
    resolver: DriverResolver
    knowledge_base: EquipmentKnowledgeBase
    scanner: UsbScanner
    supervisor: ControlServerSupervisor
    coordinator: OrchestrationCoordinator
    detector: EquipmentDetector
    monitor: EquipmentMonitor
    transport: PropertyTransport
    events: EventBus
    _subscriptions: list[Unsubscribe] = field(default_factory=list, repr=False)
    _started: bool = field(default=False, repr=False)

    @classmethod
    def build(
        cls,
        config: AppConfig,
        runner: CommandRunner | None = None,
        launcher: ProcessLauncher | None = None,
        catalog: CatalogSource | None = None,
        ports: PortEnumerator | None = None,
        transport: PropertyTransport | None = None,
    ) -> ServiceContainer:
        """Create and wire every component.

        Each keyword overrides the real OS or network seam, which is how
        tests and offline runs substitute fakes.

        Args:
            config: Complete configuration.
            runner: OS command runner. Defaults to ``AsyncCommandRunner``.
            launcher: indiserver launcher. Defaults to a subprocess launcher.
            catalog: Upstream driver catalog. Defaults to the GitHub client,
                or none when ``knowledge_base.remote_enabled`` is False.
            ports: Serial port enumerator. Defaults to pyserial.
            transport: INDI property transport. Defaults to the CLI tools
                against the supervised server.

        Returns:
            A container that is built but not started.
        """
        runner = runner or AsyncCommandRunner()
        stats = OperationStats()
        if catalog is None and config.knowledge_base.remote_enabled:
            catalog = DriverCatalog(config.catalog)

        resolver = DriverResolver(config.resolver, runner, catalog, stats)
        knowledge_base = EquipmentKnowledgeBase(
            config.knowledge_base, config.kb_cache_path, catalog
        )
        scanner = UsbScanner(config.scanner, runner, resolver)
        supervisor = ControlServerSupervisor(
            config.supervisor,
            resolver,
            runner,
            launcher or SubprocessLauncher(),
            stats,
        )
        coordinator = OrchestrationCoordinator(
            config.coordinator, scanner, supervisor, resolver, stats
        )
        detector = EquipmentDetector(
            config.detector,
            scanner,
            knowledge_base,
            resolver,
            ports=ports or PySerialPortEnumerator(),
            starter=supervisor,
        )
        monitor = EquipmentMonitor(config.monitor, detector, starter=supervisor)
        transport = transport or CliPropertyTransport(
            runner, host=config.supervisor.host, port=config.supervisor.port
        )

        services = cls(
            config=config,
            runner=runner,
            stats=stats,
            catalog=catalog,
            resolver=resolver,
            knowledge_base=knowledge_base,
            scanner=scanner,
            supervisor=supervisor,
            coordinator=coordinator,
            detector=detector,
            monitor=monitor,
            transport=transport,
            events=coordinator.events,
        )
        services._wire()
        return services

    def _wire(self) -> None:
        bus = self.supervisor.events
        self._subscriptions = [
            bus.subscribe(EventType.SERVER_STARTED, self._on_server_started),
            bus.subscribe(EventType.SERVER_STOPPED, self._on_server_down),
            bus.subscribe(EventType.SERVER_EXIT, self._on_server_down),
            self.monitor.events.forward(self.events, MONITOR_EVENTS),
        ]

    def _on_server_started(self, payload: dict[str, Any]) -> None:
        self.resolver.mark_stopped()
        self.resolver.mark_running(payload.get("drivers", []))
        self.detector.invalidate_cache()

    def _on_server_down(self, *_: Any) -> None:
        self.resolver.mark_stopped()
        self.detector.invalidate_cache()

    @property
    def is_started(self) -> bool:
        return self._started

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, monitor: bool = True) -> None:
        """Load the knowledge base, start the system and the monitor.

        Args:
            monitor: Also start the periodic equipment monitor.

        Raises:
            ServerStartError: If the control server does not come up.
        """
        if self._started:
            return
        self.config.data_dir.mkdir(parents=True, exist_ok=True)
        await self.knowledge_base.initialize()
        await self.coordinator.start()
        if monitor:
            await self.monitor.start_monitoring()
        self._started = True
        logger.info("Services started", data_dir=str(self.config.data_dir))

    async def shutdown(self) -> None:
        """Stop the monitor, then the system; releases every subscription."""
        try:
            await self.monitor.stop_monitoring()
        except Exception:  # noqa: BLE001
            logger.exception("Monitor shutdown failed")
        try:
            await self.coordinator.cleanup()
        except Exception:  # noqa: BLE001
            logger.exception("Coordinator shutdown failed")
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []
        self._started = False
        logger.info("Services shut down")


__all__ = ["ServiceContainer"]
