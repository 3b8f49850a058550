"""Equipment detector.

Turns raw USB and serial listings into ``DetectedDevice`` records with a
type, a driver, a driver status and a confidence score:

====================  ==========  =====================================
Evidence              Confidence  Notes
====================  ==========  =====================================
Knowledge base match  95          type/driver/auto-install from the KB
Description keywords  60          never auto-installable
Nothing               20          type unknown
Serial port           30          placeholder until identified
====================  ==========  =====================================

Results are cached briefly because the monitor, the REST API and MCP
tools all ask for detection in quick succession.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Protocol

from indi_autodetect.config import DetectorConfig
from indi_autodetect.devices.types import (
    UNKNOWN,
    ConnectionType,
    DetectedDevice,
    DeviceType,
    DriverStatus,
    SerialInfo,
    UsbDevice,
    UsbInfo,
)
from indi_autodetect.errors import IndiAutodetectError
from indi_autodetect.observability import LogContext, get_logger

if TYPE_CHECKING:
    from indi_autodetect.devices.knowledge_base import EquipmentKnowledgeBase
    from indi_autodetect.devices.usb_scanner import UsbScanner
    from indi_autodetect.drivers.resolver import DriverResolver
    from indi_autodetect.drivers.serial import PortEnumerator

logger = get_logger(__name__)

KB_CONFIDENCE = 95
HEURISTIC_CONFIDENCE = 60
SERIAL_CONFIDENCE = 30
UNKNOWN_CONFIDENCE = 20

# Checked in order against the lower-cased description.
_KEYWORD_TYPES: tuple[tuple[tuple[str, ...], DeviceType], ...] = (
    (("camera", "cam"), DeviceType.CAMERA),
    (("mount", "telescope"), DeviceType.MOUNT),
    (("focuser", "focus"), DeviceType.FOCUSER),
    (("filter", "wheel"), DeviceType.FILTER_WHEEL),
)

GUIDE_INDICATORS: tuple[str, ...] = (
    "guide",
    "guider",
    "guidage",
    "120mm",
    "130mm",
    "174mm",
    "178mm",
    "290mm",
    "385mm",
    "462mm",
    "533mm",
    "585mm",
    "678mm",
    "715mm",
)


class DriverStarter(Protocol):  # pragma: no cover
    """Loads drivers into the running control server (the supervisor)."""

    async def add_driver(self, driver: str) -> None: ...

    async def remove_driver(self, driver: str) -> None: ...

    def is_driver_loaded(self, driver: str) -> bool: ...


def classify_description(description: str) -> DeviceType | None:
    """Keyword-based type guess, or None when no keyword matches.

    Example:
        >>> classify_description("USB2.0 Webcam")
        <DeviceType.CAMERA: 'camera'>
    """
    text = description.lower()
    for keywords, device_type in _KEYWORD_TYPES:
        if any(keyword in text for keyword in keywords):
            return device_type
    return None


def is_guide_camera(device: DetectedDevice) -> bool:
    """True if the name or model carries a typical guide-camera marker."""
    name = device.name.lower()
    model = device.model.lower()
    return any(marker in name or marker in model for marker in GUIDE_INDICATORS)


class EquipmentDetector:
    """Builds confidence-scored device records and sets devices up."""

    def __init__(
        self,
        config: DetectorConfig,
        scanner: UsbScanner,
        knowledge_base: EquipmentKnowledgeBase,
        resolver: DriverResolver,
        ports: PortEnumerator | None = None,
        starter: DriverStarter | None = None,
    ) -> None:
        """Create a detector.

        Args:
            config: Cache duration and sub-scan switches.
            scanner: Source of USB listings.
            knowledge_base: Equipment lookup.
            resolver: Driver status and installation.
            ports: Serial port enumerator. None skips the serial sub-scan.
            starter: Loads drivers into the control server. None makes
                ``setup_device`` stop after installation.
        """
        self._config = config
        self._scanner = scanner
        self._kb = knowledge_base
        self._resolver = resolver
        self._ports = ports
        self._starter = starter
        self._cache: list[DetectedDevice] | None = None
        self._cache_time = 0.0

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    async def detect_all(self, force: bool = False) -> list[DetectedDevice]:
        """Detect USB, serial and network devices, de-duplicated by id.

        Args:
            force: Ignore the short-lived result cache.

        Returns:
            Devices in discovery order (USB, then serial, then network).
        """
        now = time.monotonic()
        if (
            not force
            and self._cache is not None
            and now - self._cache_time < self._config.cache_duration
        ):
            return list(self._cache)

        devices: dict[str, DetectedDevice] = {}
        for transport, scan in (
            ("usb", self.detect_usb),
            ("serial", self.detect_serial),
            ("network", self.detect_network),
        ):
            try:
                found = await scan()
            except Exception:
                logger.exception("Detection sub-scan failed", transport=transport)
                found = []
            for device in found:
                devices.setdefault(device.id, device)

        result = list(devices.values())
        self._cache = result
        self._cache_time = time.monotonic()
        logger.debug("Detection complete", devices=len(result))
        return list(result)

    def invalidate_cache(self) -> None:
        self._cache = None

    async def _usb_listing(self) -> list[UsbDevice]:
        if self._scanner.is_running:
            return self._scanner.get_current_devices()
        return await self._scanner.list_devices() or []

    async def detect_usb(self) -> list[DetectedDevice]:
        """Classify every USB device currently attached."""
        return [await self.identify(usb) for usb in await self._usb_listing()]

    async def identify(self, usb: UsbDevice) -> DetectedDevice:
        """Build the detected record for one USB device.

        Knowledge base by id, then by description; otherwise description
        keywords; otherwise unknown.
        """
        entry = self._kb.find_by_usb_id(usb.vendor_id, usb.product_id)
        if entry is None and usb.description.strip():
            matches = self._kb.find_by_name(usb.description)
            entry = matches[0] if matches else None

        usb_info = UsbInfo(usb.vendor_id, usb.product_id, usb.bus, usb.device)
        if entry is not None:
            device = DetectedDevice(
                id=usb.id,
                name=entry.name,
                type=entry.type,
                manufacturer=entry.manufacturer,
                model=entry.model,
                connection=ConnectionType.USB,
                usb_info=usb_info,
                driver_name=entry.driver_name,
                package_name=entry.package_name or entry.driver_name,
                auto_installable=entry.auto_installable,
                confidence=KB_CONFIDENCE,
            )
        else:
            guessed = classify_description(usb.description)
            device = DetectedDevice(
                id=usb.id,
                name=usb.description or usb.product or UNKNOWN,
                type=guessed or DeviceType.UNKNOWN,
                manufacturer=usb.manufacturer or usb.brand or UNKNOWN,
                model=usb.model or usb.product or UNKNOWN,
                connection=ConnectionType.USB,
                usb_info=usb_info,
                auto_installable=False,
                confidence=HEURISTIC_CONFIDENCE if guessed else UNKNOWN_CONFIDENCE,
            )

        if (
            self._config.refine_guide_cameras
            and device.type is DeviceType.CAMERA
            and is_guide_camera(device)
        ):
            device.type = DeviceType.GUIDE_CAMERA

        if device.driver_name:
            device.driver_status = await self._resolver.driver_status(
                device.driver_name, installable=device.auto_installable
            )
        return device

    async def detect_serial(self) -> list[DetectedDevice]:
        """One unknown low-confidence device per serial port."""
        if self._ports is None or not self._config.scan_serial:
            return []
        devices = []
        for port in self._ports.comports():
            path = getattr(port, "device", None)
            if not path:
                continue
            description = getattr(port, "description", None) or ""
            devices.append(
                DetectedDevice(
                    id=f"serial:{path}",
                    name=description if description and description != "n/a" else path,
                    connection=ConnectionType.SERIAL,
                    serial_info=SerialInfo(path, self._config.serial_baud_rate),
                    confidence=SERIAL_CONFIDENCE,
                )
            )
        return devices

    async def detect_network(self) -> list[DetectedDevice]:
        """Network discovery hook. Nothing is discovered yet."""
        return []

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    async def setup_device(self, device: DetectedDevice) -> bool:
        """Install and load the driver for ``device``.

        found + auto-installable → install; installed → load into the
        control server. ``device.driver_status`` is updated along the way.

        Returns:
            True only if the device ends up running. Failures are logged
            and reported as False.
        """
        if device.driver_status is DriverStatus.RUNNING:
            return True
        if not device.driver_name:
            logger.info("No driver known for device", device_id=device.id)
            return False

        driver = device.driver_name
        with LogContext(device_id=device.id, driver=driver):
            if device.driver_status is DriverStatus.FOUND and device.auto_installable:
                try:
                    await self._resolver.install_driver(device.package_name or driver)
                except (IndiAutodetectError, ValueError) as e:
                    logger.warning("Driver installation failed", error=str(e))
                    return False
                device.driver_status = DriverStatus.INSTALLED
                self.invalidate_cache()

            if device.driver_status is not DriverStatus.INSTALLED:
                logger.info(
                    "Device cannot be set up automatically",
                    driver_status=device.driver_status.value,
                )
                return False

            if self._starter is None:
                return False
            try:
                await self._starter.add_driver(driver)
            except IndiAutodetectError as e:
                logger.warning("Driver start failed", error=str(e))
                return False

            self.invalidate_cache()
            if not self._starter.is_driver_loaded(driver):
                return False
            device.driver_status = DriverStatus.RUNNING
            logger.info("Device set up")
            return True

    async def setup_all_devices(self) -> dict[str, list[DetectedDevice]]:
        """Set up every auto-installable device that is not running yet."""
        success: list[DetectedDevice] = []
        failed: list[DetectedDevice] = []
        for device in await self.detect_all(force=True):
            if not device.auto_installable or device.driver_status is DriverStatus.RUNNING:
                continue
            if await self.setup_device(device):
                success.append(device)
            else:
                failed.append(device)
        return {"success": success, "failed": failed}


__all__ = [
    "GUIDE_INDICATORS",
    "DriverStarter",
    "EquipmentDetector",
    "classify_description",
    "is_guide_camera",
]
