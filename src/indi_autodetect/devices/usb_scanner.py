"""USB hot-plug scanner.

Polls ``lsusb``, keeps a snapshot of attached devices, and publishes the
difference between consecutive listings on its event bus:

- ``device_added`` / ``device_removed`` with a ``UsbDeviceEvent``.
- ``restart_requested`` with the list of drivers to load, debounced so a
  hub full of equipment plugged at once yields one restart.

A device "qualifies" for a restart when at least one installed driver
matches it. The scanner never touches the control server itself; the
orchestration coordinator subscribes to ``restart_requested``.

Example:
    scanner = UsbScanner(ScannerConfig(), runner, resolver)
    scanner.events.subscribe(EventType.DEVICE_ADDED, on_added)
    await scanner.start()
    ...
    await scanner.stop()
"""

from __future__ import annotations

import asyncio
import re
from collections import Counter
from typing import Any, Protocol

from indi_autodetect.config import ScannerConfig
from indi_autodetect.devices.brands import (
    detect_brand,
    extract_model,
    matching_drivers_by_description,
    matching_drivers_for_brand,
)
from indi_autodetect.devices.types import UsbDevice, UsbDeviceEvent
from indi_autodetect.drivers.process import CommandRunner
from indi_autodetect.errors import CommandError
from indi_autodetect.events import EventBus, EventType
from indi_autodetect.observability import get_logger

logger = get_logger(__name__)

LSUSB_LINE = re.compile(
    r"^Bus\s+(\d+)\s+Device\s+(\d+):\s+ID\s+([0-9a-fA-F]{4}):([0-9a-fA-F]{4})\s*(.*)$"
)
_MANUFACTURER = re.compile(r"iManufacturer\s+\d+\s+(.+)")
_PRODUCT = re.compile(r"iProduct\s+\d+\s+(.+)")

LSUSB_TIMEOUT = 10.0


class InstalledDrivers(Protocol):  # pragma: no cover
    """Anything that can list installed driver executables."""

    def get_installed_drivers(self) -> list[str]: ...


def parse_lsusb(output: str) -> list[UsbDevice]:
    """Parse plain ``lsusb`` output.

    Lines that do not look like a device line are skipped. Devices that
    share a ``vendor:product`` within the listing get a ``#bus-device``
    id suffix.

    Example:
        >>> devices = parse_lsusb(
        ...     "Bus 001 Device 004: ID 03c3:294a ZWO ASI294MC Pro\\n"
        ... )
        >>> devices[0].id
        '03c3:294a'
    """
    devices: list[UsbDevice] = []
    for line in output.splitlines():
        match = LSUSB_LINE.match(line.strip())
        if not match:
            continue
        bus, device, vendor_id, product_id, description = match.groups()
        devices.append(
            UsbDevice(
                bus=bus,
                device=device,
                vendor_id=vendor_id,
                product_id=product_id,
                description=description.strip(),
            )
        )

    counts = Counter(device.usb_key for device in devices)
    for device in devices:
        if counts[device.usb_key] > 1:
            device.id = f"{device.usb_key}#{device.bus}-{device.device}"
    return devices


def parse_lsusb_details(output: str) -> tuple[str | None, str | None]:
    """Extract ``(manufacturer, product)`` from ``lsusb -v`` output."""
    manufacturer = _MANUFACTURER.search(output)
    product = _PRODUCT.search(output)
    return (
        manufacturer.group(1).strip() if manufacturer else None,
        product.group(1).strip() if product else None,
    )


class UsbScanner:
    """Polls USB devices and publishes hot-plug events."""

    def __init__(
        self,
        config: ScannerConfig,
        runner: CommandRunner,
        drivers: InstalledDrivers,
        events: EventBus | None = None,
    ) -> None:
        """Create a stopped scanner.

        Args:
            config: Poll interval, debounce delay and feature switches.
            runner: Runs ``lsusb``.
            drivers: Source of installed driver names (the resolver).
            events: Bus to publish on. A private bus is created by default.
        """
        self._config = config
        self._runner = runner
        self._drivers = drivers
        self.events = events or EventBus("usb-scanner")
        self._devices: dict[str, UsbDevice] = {}
        self._details: dict[tuple[str, str, str], tuple[str | None, str | None]] = {}
        self._poll_task: asyncio.Task[None] | None = None
        self._restart_task: asyncio.Task[None] | None = None
        self._scan_lock = asyncio.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the initial scan, then poll in the background."""
        if self._running:
            logger.warning("USB scanner already running")
            return

        self._running = True
        logger.info("USB scanner starting", poll_interval=self._config.poll_interval)
        await self.scan_now()
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Cancel polling and any pending restart request, then forget devices."""
        if not self._running:
            return

        self._running = False
        for task in (self._poll_task, self._restart_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._poll_task = None
        self._restart_task = None
        self._devices.clear()
        self._details.clear()
        logger.info("USB scanner stopped")

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.poll_interval)
            try:
                await self.scan_now()
            except Exception:
                logger.exception("USB scan failed")

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    async def list_devices(self) -> list[UsbDevice] | None:
        """Read, parse and classify the current USB listing.

        Returns:
            Devices, or None when ``lsusb`` could not be run.
        """
        try:
            result = await self._runner.run("lsusb", timeout=LSUSB_TIMEOUT)
        except CommandError as e:
            logger.warning("lsusb failed", error=str(e))
            return None
        if not result.ok:
            logger.warning(
                "lsusb failed",
                returncode=result.returncode,
                stderr=result.stderr.strip()[-200:],
            )
            return None

        devices = parse_lsusb(result.stdout)
        installed = self._drivers.get_installed_drivers()
        for device in devices:
            if self._config.enrich:
                await self._enrich(device)
            self._classify(device, installed)
        return devices

    async def _enrich(self, device: UsbDevice) -> None:
        key = (device.bus, device.device, device.usb_key)
        if key not in self._details:
            try:
                result = await self._runner.run(
                    "lsusb", "-s", f"{device.bus}:{device.device}", "-v",
                    timeout=LSUSB_TIMEOUT,
                )
                self._details[key] = parse_lsusb_details(result.stdout)
            except CommandError as e:
                logger.debug("USB detail query failed", device_id=device.id, error=str(e))
                return
        device.manufacturer, device.product = self._details[key]

    def _classify(self, device: UsbDevice, installed: list[str]) -> None:
        brand = detect_brand(device)
        if brand is not None:
            device.brand = brand.name
            device.model = extract_model(device, brand)
            device.matching_drivers = matching_drivers_for_brand(brand, installed)
        else:
            device.matching_drivers = matching_drivers_by_description(
                device.description, installed
            )

    async def scan_now(self) -> list[UsbDevice]:
        """Scan once, publish the differences and return the snapshot.

        When ``lsusb`` fails the previous snapshot is kept unchanged.
        """
        async with self._scan_lock:
            devices = await self.list_devices()
            if devices is None:
                return self.get_current_devices()

            self._keep_ids(devices)
            current = {device.id: device for device in devices}
            added = [d for dev_id, d in current.items() if dev_id not in self._devices]
            removed = [d for dev_id, d in self._devices.items() if dev_id not in current]
            self._devices = current
            live_keys = {(d.bus, d.device, d.usb_key) for d in devices}
            self._details = {k: v for k, v in self._details.items() if k in live_keys}

            qualifying = False
            for device in added:
                logger.info(
                    "USB device added",
                    device_id=device.id,
                    description=device.description,
                    drivers=device.matching_drivers,
                )
                self.events.emit(
                    EventType.DEVICE_ADDED, UsbDeviceEvent("added", device)
                )
                qualifying = qualifying or bool(device.matching_drivers)
            for device in removed:
                logger.info(
                    "USB device removed",
                    device_id=device.id,
                    description=device.description,
                )
                self.events.emit(
                    EventType.DEVICE_REMOVED, UsbDeviceEvent("removed", device)
                )
                qualifying = qualifying or bool(device.matching_drivers)

            if qualifying and self._config.auto_restart:
                self._schedule_restart()

            return list(devices)

    def _keep_ids(self, devices: list[UsbDevice]) -> None:
        """Give devices already in the snapshot the id they had.

        Plugging in a twin of a tracked device only suffixes the newcomer,
        and unplugging one twin leaves the other's id alone.
        """
        known = {(d.bus, d.device, d.usb_key): d.id for d in self._devices.values()}
        taken: set[str] = set()
        fresh: list[UsbDevice] = []
        for device in devices:
            previous = known.get((device.bus, device.device, device.usb_key))
            if previous is None:
                fresh.append(device)
            else:
                device.id = previous
                taken.add(previous)
        for device in fresh:
            if device.id in taken:
                device.id = f"{device.usb_key}#{device.bus}-{device.device}"
            taken.add(device.id)

    # -------------------------------------------------------------------------
    # Debounced restart
    # -------------------------------------------------------------------------

    def _schedule_restart(self) -> None:
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()
        self._restart_task = asyncio.create_task(self._request_restart())

    async def _request_restart(self) -> None:
        await asyncio.sleep(self._config.restart_delay)
        drivers = self.get_drivers_to_load()
        if not drivers:
            logger.info("No drivers to load, restart not requested")
            return
        logger.info("Requesting control server restart", drivers=drivers)
        self.events.emit(EventType.RESTART_REQUESTED, drivers)

    @property
    def restart_pending(self) -> bool:
        return self._restart_task is not None and not self._restart_task.done()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_current_devices(self) -> list[UsbDevice]:
        return list(self._devices.values())

    def get_drivers_to_load(self) -> list[str]:
        """Union of matching drivers over the snapshot, in first-seen order."""
        drivers: list[str] = []
        for device in self._devices.values():
            for driver in device.matching_drivers:
                if driver not in drivers:
                    drivers.append(driver)
        return drivers

    def get_stats(self) -> dict[str, Any]:
        devices = self.get_current_devices()
        return {
            "totalDevices": len(devices),
            "devicesWithDrivers": sum(1 for d in devices if d.matching_drivers),
            "uniqueBrands": len({d.brand for d in devices if d.brand}),
            "isRunning": self._running,
        }


__all__ = [
    "LSUSB_LINE",
    "InstalledDrivers",
    "UsbScanner",
    "parse_lsusb",
    "parse_lsusb_details",
]
