"""Equipment type definitions.

Enums and records shared by the scanner, knowledge base, detector,
monitor and driver resolver. Kept in a separate module with no imports
from the rest of the package so every layer can depend on it without
circular imports.

Types defined here:
- DeviceType, ConnectionType, DriverStatus, EquipmentState: enums
- UsbDevice, UsbDeviceEvent: raw scanner records
- UsbInfo, SerialInfo, DetectedDevice: detector output
- EquipmentStatus, SetupResult: monitor state
- EquipmentEntry: knowledge base entry
- ControlServerStatus: supervisor snapshot

All records expose ``to_dict()`` with camelCase keys for the REST and MCP
surfaces.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

UNKNOWN = "Unknown"


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


# =============================================================================
# Enums
# =============================================================================


class DeviceType(str, Enum):
    """Equipment category."""

    MOUNT = "mount"
    CAMERA = "camera"
    GUIDE_CAMERA = "guide-camera"
    FOCUSER = "focuser"
    FILTER_WHEEL = "filter-wheel"
    DOME = "dome"
    WEATHER = "weather"
    AUX = "aux"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> DeviceType:
        """Convert a stored string, mapping unrecognized values to UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class ConnectionType(str, Enum):
    """How a device is attached."""

    USB = "usb"
    SERIAL = "serial"
    NETWORK = "network"


class DriverStatus(str, Enum):
    """Where a device's driver stands on this machine.

    NOT_FOUND: no driver known, or known but not obtainable.
    FOUND: driver known and installable, not yet installed.
    INSTALLED: driver executable present.
    RUNNING: driver loaded in the control server.
    """

    NOT_FOUND = "not-found"
    FOUND = "found"
    INSTALLED = "installed"
    RUNNING = "running"


class EquipmentState(str, Enum):
    """User-facing equipment state maintained by the monitor."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"
    CONFIGURING = "configuring"


def derive_state(driver_status: DriverStatus) -> EquipmentState:
    """Map a driver status onto the equipment state shown to users.

    running → connected; installed or found → disconnected;
    not-found → error. CONFIGURING is never derived.

    Example:
        >>> derive_state(DriverStatus.RUNNING)
        <EquipmentState.CONNECTED: 'connected'>
    """
    if driver_status is DriverStatus.RUNNING:
        return EquipmentState.CONNECTED
    if driver_status in (DriverStatus.INSTALLED, DriverStatus.FOUND):
        return EquipmentState.DISCONNECTED
    return EquipmentState.ERROR


# =============================================================================
# USB scanner records
# =============================================================================


@dataclass
class UsbDevice:
    """One line of ``lsusb`` output, enriched.

    Attributes:
        bus: Bus number as printed ("001").
        device: Device number as printed ("004").
        vendor_id: Lower-case 4-digit hex vendor id.
        product_id: Lower-case 4-digit hex product id.
        description: Trailing text of the lsusb line.
        manufacturer: iManufacturer string from ``lsusb -v``.
        product: iProduct string from ``lsusb -v``.
        brand: Matched brand name.
        model: Model extracted for the brand.
        matching_drivers: Installed drivers that fit this device.
        id: Identity key. Defaults to ``vendor:product``; the scanner adds
            a ``#bus-device`` suffix for identical devices in one listing.
    """

    bus: str
    device: str
    vendor_id: str
    product_id: str
    description: str = ""
    manufacturer: str | None = None
    product: str | None = None
    brand: str | None = None
    model: str | None = None
    matching_drivers: list[str] = field(default_factory=list)
    id: str = ""

    def __post_init__(self) -> None:
        self.vendor_id = self.vendor_id.lower()
        self.product_id = self.product_id.lower()
        if not self.id:
            self.id = f"{self.vendor_id}:{self.product_id}"

    @property
    def usb_key(self) -> str:
        """``vendor:product`` without any disambiguating suffix."""
        return f"{self.vendor_id}:{self.product_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bus": self.bus,
            "device": self.device,
            "vendorId": self.vendor_id,
            "productId": self.product_id,
            "description": self.description,
            "manufacturer": self.manufacturer,
            "product": self.product,
            "brand": self.brand,
            "model": self.model,
            "matchingDrivers": list(self.matching_drivers),
        }


@dataclass
class UsbDeviceEvent:
    """Payload of ``device_added`` / ``device_removed``."""

    action: str  # "added" | "removed"
    device: UsbDevice
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "device": self.device.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# Detector records
# =============================================================================


@dataclass
class UsbInfo:
    vendor_id: str
    product_id: str
    bus: str | None = None
    device: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "vendorId": self.vendor_id,
            "productId": self.product_id,
            "bus": self.bus,
            "device": self.device,
        }


@dataclass
class SerialInfo:
    port: str
    baud_rate: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"port": self.port, "baudRate": self.baud_rate}


@dataclass
class DetectedDevice:
    """A device the detector identified, with a confidence score.

    Attributes:
        id: Stable identity (``vendor:product`` or ``serial:<port>``).
        name: Display name.
        type: Equipment category.
        manufacturer: Manufacturer name.
        model: Model name.
        connection: Attachment type.
        usb_info: USB coordinates for USB devices.
        serial_info: Port details for serial devices.
        driver_name: INDI driver package, when known.
        package_name: Package providing the driver, when known.
        driver_status: Driver state on this machine.
        auto_installable: Driver can be installed unattended.
        confidence: 0-100 identification confidence. Values outside the
            range are clamped.
    """

    id: str
    name: str = UNKNOWN
    type: DeviceType = DeviceType.UNKNOWN
    manufacturer: str = UNKNOWN
    model: str = UNKNOWN
    connection: ConnectionType = ConnectionType.USB
    usb_info: UsbInfo | None = None
    serial_info: SerialInfo | None = None
    driver_name: str | None = None
    package_name: str | None = None
    driver_status: DriverStatus = DriverStatus.NOT_FOUND
    auto_installable: bool = False
    confidence: int = 0

    def __post_init__(self) -> None:
        self.confidence = max(0, min(100, int(self.confidence)))
        self.name = self.name or UNKNOWN
        self.manufacturer = self.manufacturer or UNKNOWN
        self.model = self.model or UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "connection": self.connection.value,
            "usbInfo": self.usb_info.to_dict() if self.usb_info else None,
            "serialInfo": self.serial_info.to_dict() if self.serial_info else None,
            "driverName": self.driver_name,
            "packageName": self.package_name,
            "driverStatus": self.driver_status.value,
            "autoInstallable": self.auto_installable,
            "confidence": self.confidence,
        }


# =============================================================================
# Monitor records
# =============================================================================


@dataclass
class EquipmentStatus:
    """Monitor's view of one device."""

    id: str
    status: EquipmentState
    device: DetectedDevice
    last_seen: datetime = field(default_factory=utc_now)
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "lastSeen": self.last_seen.isoformat(),
            "errorMessage": self.error_message,
            "device": self.device.to_dict(),
        }


@dataclass
class SetupResult:
    """Outcome of one auto-setup run."""

    total_devices: int = 0
    configured: int = 0
    failed: int = 0
    devices: list[EquipmentStatus] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalDevices": self.total_devices,
            "configured": self.configured,
            "failed": self.failed,
            "devices": [status.to_dict() for status in self.devices],
            "errors": list(self.errors),
        }


# =============================================================================
# Knowledge base entry
# =============================================================================


@dataclass
class EquipmentEntry:
    """Knowledge base record describing one product or product family.

    Keys in the database are ``vvvv:pppp``, ``vvvv:*`` (whole vendor) or
    ``generic:<driver>`` (catalog-only driver without USB ids).
    """

    name: str
    type: DeviceType
    manufacturer: str
    model: str
    driver_name: str
    package_name: str | None = None
    auto_installable: bool = False
    aliases: list[str] = field(default_factory=list)
    description: str | None = None
    category: str = ""
    last_updated: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "driverName": self.driver_name,
            "packageName": self.package_name,
            "autoInstallable": self.auto_installable,
            "aliases": list(self.aliases),
            "description": self.description,
            "category": self.category,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EquipmentEntry:
        """Rebuild an entry from its ``to_dict`` form.

        Raises:
            KeyError: If a required key is missing.
        """
        return cls(
            name=data["name"],
            type=DeviceType.parse(data.get("type")),
            manufacturer=data.get("manufacturer") or UNKNOWN,
            model=data.get("model") or UNKNOWN,
            driver_name=data["driverName"],
            package_name=data.get("packageName"),
            auto_installable=bool(data.get("autoInstallable", False)),
            aliases=list(data.get("aliases") or []),
            description=data.get("description"),
            category=data.get("category") or "",
            last_updated=data.get("lastUpdated") or "",
        )


# =============================================================================
# Control server snapshot
# =============================================================================


@dataclass
class ControlServerStatus:
    """Point-in-time indiserver status."""

    running: bool
    pid: int | None = None
    uptime_ms: float | None = None
    loaded_drivers: list[str] = field(default_factory=list)
    connected_clients: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "pid": self.pid,
            "uptimeMs": self.uptime_ms,
            "loadedDrivers": list(self.loaded_drivers),
            "connectedClients": self.connected_clients,
        }


__all__ = [
    "UNKNOWN",
    "ConnectionType",
    "ControlServerStatus",
    "DetectedDevice",
    "DeviceType",
    "DriverStatus",
    "EquipmentEntry",
    "EquipmentState",
    "EquipmentStatus",
    "SerialInfo",
    "SetupResult",
    "UsbDevice",
    "UsbDeviceEvent",
    "UsbInfo",
    "derive_state",
    "utc_now",
]
