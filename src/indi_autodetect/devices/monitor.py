"""Equipment monitor.

Keeps the user-facing status map (one ``EquipmentStatus`` per device) in
sync with detection, publishes transitions, and runs automatic setup.

Every pass re-derives each device's state from its driver status, so a
device can move backwards (a driver uninstalled, the server stopped).
Events are only emitted for actual changes; an unchanged device just gets
its ``last_seen`` refreshed.

Example:
    monitor = EquipmentMonitor(MonitorConfig(), detector, starter=supervisor)
    monitor.events.subscribe(EventType.EQUIPMENT_STATUS_CHANGED, push_to_ui)
    await monitor.start_monitoring()
    result = await monitor.perform_auto_setup()
"""

from __future__ import annotations

import asyncio
from typing import Any

from indi_autodetect.config import MonitorConfig
from indi_autodetect.devices.detector import DriverStarter, EquipmentDetector
from indi_autodetect.devices.types import (
    DetectedDevice,
    DriverStatus,
    EquipmentState,
    EquipmentStatus,
    SetupResult,
    derive_state,
    utc_now,
)
from indi_autodetect.errors import (
    DeviceNotFoundError,
    DeviceNotInstallableError,
    IndiAutodetectError,
    SetupInProgressError,
)
from indi_autodetect.events import EventBus, EventType
from indi_autodetect.observability import LogContext, get_logger

logger = get_logger(__name__)


def _error_message(device: DetectedDevice, state: EquipmentState) -> str | None:
    if state is not EquipmentState.ERROR:
        return None
    if device.driver_name:
        return f"Driver {device.driver_name} is not available"
    return "No driver known for this device"


class EquipmentMonitor:
    """Periodic detection loop with a status map and auto-setup."""

    def __init__(
        self,
        config: MonitorConfig,
        detector: EquipmentDetector,
        starter: DriverStarter | None = None,
        events: EventBus | None = None,
    ) -> None:
        """Create a monitor that is not yet running.

        Args:
            config: Loop interval.
            detector: Detection and per-device setup.
            starter: Used to unload a driver in ``restart_device``.
            events: Bus to publish on. A private bus is created by default.
        """
        self._config = config
        self._detector = detector
        self._starter = starter
        self.events = events or EventBus("equipment-monitor")
        self._status: dict[str, EquipmentStatus] = {}
        self._task: asyncio.Task[None] | None = None
        self._monitoring = False
        self._setup_in_progress = False

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def is_setup_in_progress(self) -> bool:
        return self._setup_in_progress

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    async def start_monitoring(self) -> None:
        """Run one pass now, then every ``interval`` seconds."""
        if self._monitoring:
            logger.warning("Equipment monitoring already running")
            return
        self._monitoring = True
        logger.info("Equipment monitoring started", interval=self._config.interval)
        await self.run_pass()
        self._task = asyncio.create_task(self._loop())

    async def stop_monitoring(self) -> None:
        if not self._monitoring:
            return
        self._monitoring = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Equipment monitoring stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.interval)
            try:
                await self.run_pass()
            except Exception:
                logger.exception("Equipment monitoring pass failed")

    async def run_pass(self, force: bool = False) -> list[EquipmentStatus]:
        """Detect devices and reconcile the status map.

        Args:
            force: Bypass the detector cache.

        Returns:
            The status map after reconciliation.
        """
        devices = await self._detector.detect_all(force=force)
        now = utc_now()
        seen: set[str] = set()

        for device in devices:
            seen.add(device.id)
            current = self._status.get(device.id)
            if current is not None and current.status is EquipmentState.CONFIGURING:
                continue

            state = derive_state(device.driver_status)
            if current is None or current.status is not state:
                status = EquipmentStatus(
                    id=device.id,
                    status=state,
                    device=device,
                    last_seen=now,
                    error_message=_error_message(device, state),
                )
                self._status[device.id] = status
                self._publish(status)
            else:
                current.device = device
                current.last_seen = now

        for device_id, status in self._status.items():
            if device_id in seen:
                continue
            if status.status in (EquipmentState.DISCONNECTED, EquipmentState.CONFIGURING):
                continue
            status.status = EquipmentState.DISCONNECTED
            status.error_message = None
            self._publish(status)

        return self.get_equipment()

    async def scan_now(self) -> list[EquipmentStatus]:
        """Force a fresh detection and reconcile."""
        return await self.run_pass(force=True)

    def _publish(self, status: EquipmentStatus) -> None:
        logger.info(
            "Equipment status changed",
            device_id=status.id,
            status=status.status.value,
            device_name=status.device.name,
        )
        self.events.emit(EventType.EQUIPMENT_STATUS_CHANGED, status)

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    async def perform_auto_setup(self) -> SetupResult:
        """Set up every auto-installable device that is not running.

        Only one run may be in flight.

        Raises:
            SetupInProgressError: If a run is already in progress.
        """
        if self._setup_in_progress:
            raise SetupInProgressError()
        self._setup_in_progress = True
        try:
            with LogContext(operation="auto_setup"):
                devices = await self._detector.detect_all(force=True)
                candidates = [
                    device for device in devices
                    if device.auto_installable
                    and device.driver_status is not DriverStatus.RUNNING
                ]
                result = SetupResult(total_devices=len(candidates))
                logger.info("Automatic setup started", candidates=len(candidates))

                for device in candidates:
                    status = await self._setup(device)
                    result.devices.append(status)
                    if status.status is EquipmentState.CONNECTED:
                        result.configured += 1
                    else:
                        result.failed += 1
                        result.errors.append(
                            f"{device.name}: {status.error_message or 'setup failed'}"
                        )

                logger.info(
                    "Automatic setup completed",
                    configured=result.configured,
                    failed=result.failed,
                )
                self.events.emit(EventType.AUTO_SETUP_COMPLETED, result)
                return result
        finally:
            self._setup_in_progress = False

    async def _setup(self, device: DetectedDevice) -> EquipmentStatus:
        status = EquipmentStatus(
            id=device.id, status=EquipmentState.CONFIGURING, device=device
        )
        self._status[device.id] = status
        self._publish(status)

        error: str | None = None
        try:
            ok = await self._detector.setup_device(device)
        except IndiAutodetectError as e:
            ok = False
            error = str(e)
            logger.warning("Device setup raised", device_id=device.id, error=error)

        status.last_seen = utc_now()
        if ok:
            status.status = EquipmentState.CONNECTED
            status.error_message = None
        else:
            status.status = EquipmentState.ERROR
            status.error_message = error or "Automatic setup failed"
        self._publish(status)
        return status

    async def _find_device(self, device_id: str, force: bool = False) -> DetectedDevice:
        for device in await self._detector.detect_all(force=force):
            if device.id == device_id:
                return device
        known = self._status.get(device_id)
        if known is not None and not force:
            return known.device
        raise DeviceNotFoundError(device_id)

    async def setup_single_device(self, device_id: str) -> EquipmentStatus:
        """Set up one device by id.

        Raises:
            DeviceNotFoundError: If no device has this id.
            DeviceNotInstallableError: If the device is not auto-installable.
        """
        device = await self._find_device(device_id)
        if not device.auto_installable:
            raise DeviceNotInstallableError(device_id)
        return await self._setup(device)

    async def restart_device(self, device_id: str) -> EquipmentStatus:
        """Unload the device's driver, then set it up again.

        Raises:
            DeviceNotFoundError: If no device has this id.
            DeviceNotInstallableError: If the device is not auto-installable.
        """
        device = await self._find_device(device_id)
        if not device.auto_installable:
            raise DeviceNotInstallableError(device_id)

        if device.driver_name and self._starter is not None:
            await self._starter.remove_driver(device.driver_name)
        self._detector.invalidate_cache()
        refreshed = await self._find_device(device_id, force=True)
        return await self._setup(refreshed)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_equipment(self) -> list[EquipmentStatus]:
        return list(self._status.values())

    def get_equipment_status(self, device_id: str) -> EquipmentStatus | None:
        return self._status.get(device_id)

    def get_status_summary(self) -> dict[str, Any]:
        statuses = self.get_equipment()
        return {
            "totalCount": len(statuses),
            "connectedCount": sum(
                1 for s in statuses if s.status is EquipmentState.CONNECTED
            ),
            "isMonitoring": self._monitoring,
            "isSetupInProgress": self._setup_in_progress,
        }


__all__ = ["EquipmentMonitor"]
