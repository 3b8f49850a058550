"""Equipment discovery: USB scanning, knowledge base, detection, monitoring.

Types are imported first; the driver layer depends on them.
"""

from indi_autodetect.devices.types import (
    ConnectionType,
    ControlServerStatus,
    DetectedDevice,
    DeviceType,
    DriverStatus,
    EquipmentEntry,
    EquipmentState,
    EquipmentStatus,
    SerialInfo,
    SetupResult,
    UsbDevice,
    UsbDeviceEvent,
    UsbInfo,
    derive_state,
)
from indi_autodetect.devices.brands import KNOWN_BRANDS, BrandInfo, detect_brand
from indi_autodetect.devices.knowledge_base import EquipmentKnowledgeBase
from indi_autodetect.devices.usb_scanner import UsbScanner, parse_lsusb
from indi_autodetect.devices.detector import DriverStarter, EquipmentDetector
from indi_autodetect.devices.monitor import EquipmentMonitor

__all__ = [
    # Types
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
    # Brands
    "KNOWN_BRANDS",
    "BrandInfo",
    "detect_brand",
    # Components
    "EquipmentKnowledgeBase",
    "UsbScanner",
    "parse_lsusb",
    "DriverStarter",
    "EquipmentDetector",
    "EquipmentMonitor",
]
