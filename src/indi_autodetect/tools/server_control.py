"""MCP tools for the INDI control server and driver management."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from mcp.types import Tool

from indi_autodetect.observability import get_logger

if TYPE_CHECKING:
    from indi_autodetect.services import ServiceContainer

logger = get_logger(__name__)

_DRIVER = {
    "type": "object",
    "properties": {
        "driver": {
            "type": "string",
            "description": "Driver executable or package name (e.g. 'indi_asi_ccd')",
        },
    },
    "required": ["driver"],
}

# Tool definitions
TOOLS = [
    Tool(
        name="get_server_status",
        description=(
            "Get indiserver status: running, pid, uptime, loaded drivers "
            "and connected clients"
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    Tool(
        name="restart_server",
        description="Restart indiserver with the drivers for the attached equipment",
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    Tool(
        name="add_driver",
        description="Load a driver into indiserver (starts the server if stopped)",
        inputSchema=_DRIVER,
    ),
    Tool(
        name="remove_driver",
        description="Unload a driver from indiserver",
        inputSchema=_DRIVER,
    ),
    Tool(
        name="search_drivers",
        description="Search the upstream INDI driver catalog by substring",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Case-insensitive substring, e.g. 'asi'",
                },
            },
            "required": ["query"],
        },
    ),
]


async def _get_server_status(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    status = await services.supervisor.get_status()
    return status.to_dict()


async def _restart_server(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    logger.info("Server restart requested by tool")
    await services.coordinator.force_restart()
    return {
        "success": True,
        "drivers": services.supervisor.get_current_drivers(),
    }


async def _add_driver(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    driver = arguments["driver"]
    logger.info("Driver load requested by tool", driver=driver)
    await services.coordinator.add_driver(driver)
    return {
        "success": services.supervisor.is_driver_loaded(driver),
        "drivers": services.supervisor.get_current_drivers(),
    }


async def _remove_driver(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    driver = arguments["driver"]
    logger.info("Driver unload requested by tool", driver=driver)
    await services.coordinator.remove_driver(driver)
    return {
        "success": not services.supervisor.is_driver_loaded(driver),
        "drivers": services.supervisor.get_current_drivers(),
    }


async def _search_drivers(services: ServiceContainer, arguments: dict[str, Any]) -> Any:
    query = arguments["query"]
    matches = await services.resolver.search_drivers(query)
    installed = set(services.resolver.get_installed_drivers())
    return {
        "query": query,
        "count": len(matches),
        "drivers": matches,
        "installed": sorted(
            name for name in installed if query.strip().lower() in name.lower()
        ),
    }


HANDLERS: dict[str, Callable[[ServiceContainer, dict[str, Any]], Awaitable[Any]]] = {
    "get_server_status": _get_server_status,
    "restart_server": _restart_server,
    "add_driver": _add_driver,
    "remove_driver": _remove_driver,
    "search_drivers": _search_drivers,
}

__all__ = ["HANDLERS", "TOOLS"]
