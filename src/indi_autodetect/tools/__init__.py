"""MCP tool registration.

Tool modules declare ``TOOLS`` (schemas) and ``HANDLERS`` (name → coroutine
taking the service container and the arguments). ``register`` installs a
single list/call handler pair on the server covering all modules.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from indi_autodetect.errors import IndiAutodetectError
from indi_autodetect.observability import LogContext, get_logger
from indi_autodetect.tools import equipment, server_control

if TYPE_CHECKING:
    from indi_autodetect.services import ServiceContainer

logger = get_logger(__name__)

TOOLS: list[Tool] = [*equipment.TOOLS, *server_control.TOOLS]
HANDLERS = {**equipment.HANDLERS, **server_control.HANDLERS}


def _text(payload: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


async def dispatch(
    services: ServiceContainer, name: str, arguments: dict[str, Any] | None
) -> list[TextContent]:
    """Run tool ``name`` and render its result as JSON text.

    Domain errors and invalid arguments become ``{"error": ...}`` results
    so the calling agent can read them; anything else propagates.
    """
    handler = HANDLERS.get(name)
    if handler is None:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]
    with LogContext(tool=name):
        try:
            result = await handler(services, dict(arguments or {}))
        except (IndiAutodetectError, KeyError, ValueError) as e:
            logger.warning("Tool failed", error=str(e))
            return _text({"error": str(e), "type": type(e).__name__})
    return _text(result)


def register(server: Server, services: ServiceContainer) -> None:
    """Register every equipment and server tool with the MCP server.

    Args:
        server: MCP Server instance.
        services: Container the tools operate on.

    Example:
        >>> server = Server("indi-autodetect")
        >>> register(server, services)
    """

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        return await dispatch(services, name, arguments)


__all__ = ["HANDLERS", "TOOLS", "dispatch", "register"]
