"""MCP tools for equipment discovery and setup."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from mcp.types import Tool

if TYPE_CHECKING:
    from indi_autodetect.services import ServiceContainer

_DEVICE_ID = {
    "type": "object",
    "properties": {
        "device_id": {
            "type": "string",
            "description": (
                "Device id as returned by list_equipment "
                "(e.g. '03c3:294a' or 'serial:/dev/ttyUSB0')"
            ),
        },
    },
    "required": ["device_id"],
}

_NO_ARGS: dict[str, Any] = {"type": "object", "properties": {}, "required": []}

# Tool definitions
TOOLS = [
    Tool(
        name="list_equipment",
        description=(
            "List detected astronomy equipment with type, driver, driver status "
            "and identification confidence"
        ),
        inputSchema=_NO_ARGS,
    ),
    Tool(
        name="get_equipment_status",
        description="Get the monitored status of one device, or a summary of all",
        inputSchema={
            "type": "object",
            "properties": {
                "device_id": {
                    "type": "string",
                    "description": "Device id; omit for the summary",
                },
            },
            "required": [],
        },
    ),
    Tool(
        name="scan_equipment",
        description="Force a fresh USB/serial detection pass and return the results",
        inputSchema=_NO_ARGS,
    ),
    Tool(
        name="auto_setup_equipment",
        description=(
            "Install and load drivers for every auto-installable device "
            "that is not running yet"
        ),
        inputSchema=_NO_ARGS,
    ),
    Tool(
        name="setup_device",
        description="Install and load the driver for one device",
        inputSchema=_DEVICE_ID,
    ),
    Tool(
        name="restart_device",
        description="Unload and reload the driver for one device",
        inputSchema=_DEVICE_ID,
    ),
    Tool(
        name="list_usb_devices",
        description="List raw USB devices with brand, model and matching drivers",
        inputSchema=_NO_ARGS,
    ),
    Tool(
        name="get_knowledge_base_stats",
        description="Equipment knowledge base statistics (entries by type and manufacturer)",
        inputSchema=_NO_ARGS,
    ),
]


async def _list_equipment(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    devices = await services.detector.detect_all()
    return {
        "count": len(devices),
        "devices": [device.to_dict() for device in devices],
    }


async def _get_equipment_status(
    services: ServiceContainer, arguments: dict[str, Any]
) -> Any:
    device_id = arguments.get("device_id")
    if not device_id:
        return {
            "summary": services.monitor.get_status_summary(),
            "equipment": [s.to_dict() for s in services.monitor.get_equipment()],
        }
    status = services.monitor.get_equipment_status(device_id)
    if status is None:
        return {"error": f"Device '{device_id}' not found"}
    return status.to_dict()


async def _scan_equipment(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    await services.scanner.scan_now()
    statuses = await services.monitor.scan_now()
    return {
        "count": len(statuses),
        "equipment": [status.to_dict() for status in statuses],
    }


async def _auto_setup(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    result = await services.monitor.perform_auto_setup()
    return result.to_dict()


async def _setup_device(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    status = await services.monitor.setup_single_device(arguments["device_id"])
    return status.to_dict()


async def _restart_device(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    status = await services.monitor.restart_device(arguments["device_id"])
    return status.to_dict()


async def _list_usb_devices(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    if services.scanner.is_running:
        devices = services.scanner.get_current_devices()
    else:
        devices = await services.scanner.list_devices() or []
    return {
        "count": len(devices),
        "devices": [device.to_dict() for device in devices],
    }


async def _kb_stats(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    return services.knowledge_base.get_statistics()


HANDLERS: dict[str, Callable[[ServiceContainer, dict[str, Any]], Awaitable[Any]]] = {
    "list_equipment": _list_equipment,
    "get_equipment_status": _get_equipment_status,
    "scan_equipment": _scan_equipment,
    "auto_setup_equipment": _auto_setup,
    "setup_device": _setup_device,
    "restart_device": _restart_device,
    "list_usb_devices": _list_usb_devices,
    "get_knowledge_base_stats": _kb_stats,
}

__all__ = ["HANDLERS", "TOOLS"]
