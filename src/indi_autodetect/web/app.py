"""FastAPI REST application for equipment and control-server management.

All endpoints return JSON. Domain errors map to status codes:

=========================  ======
Exception                  Status
=========================  ======
DeviceNotFoundError        404
DeviceNotInstallableError  400
SetupInProgressError       409
other IndiAutodetectError  500
=========================  ======

Error bodies are ``{"error": message}``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from indi_autodetect import __version__
from indi_autodetect.errors import (
    DeviceNotFoundError,
    DeviceNotInstallableError,
    IndiAutodetectError,
    SetupInProgressError,
)
from indi_autodetect.observability import get_logger

if TYPE_CHECKING:
    from indi_autodetect.services import ServiceContainer

logger = get_logger(__name__)


class DriverRequest(BaseModel):
    driver: str = Field(min_length=1, description="Driver executable or package name")


_ERROR_STATUS: tuple[tuple[type[Exception], int], ...] = (
    (DeviceNotFoundError, 404),
    (DeviceNotInstallableError, 400),
    (SetupInProgressError, 409),
)


def error_status(exc: Exception) -> int:
    """HTTP status for a domain exception.

    Example:
        >>> error_status(SetupInProgressError())
        409
    """
    for exc_type, status in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


def create_app(services: ServiceContainer, manage_lifecycle: bool = False) -> FastAPI:
    """Create the REST application bound to ``services``.

    Args:
        services: Container every endpoint operates on.
        manage_lifecycle: Start the services on application startup and
            shut them down on exit. The daemon starts services itself and
            leaves this False.

    Returns:
        Configured FastAPI application.

    Example:
        >>> app = create_app(ServiceContainer.build(AppConfig()))
        >>> uvicorn.run(app, host="127.0.0.1", port=8080)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if manage_lifecycle:
            logger.info("Starting services from web application")
            await services.start()
        yield
        if manage_lifecycle:
            logger.info("Shutting down services from web application")
            await services.shutdown()

    app = FastAPI(
        title="INDI Autodetect",
        description="USB equipment detection and INDI server management",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(IndiAutodetectError)
    async def domain_error(request: Request, exc: IndiAutodetectError) -> JSONResponse:
        status = error_status(exc)
        if status >= 500:
            logger.error("Request failed", path=request.url.path, error=str(exc))
        return JSONResponse({"error": str(exc)}, status_code=status)

    @app.exception_handler(ValueError)
    async def value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.get("/")
    async def index() -> dict[str, Any]:
        return {
            "name": "indi-autodetect",
            "version": __version__,
            "running": services.coordinator.is_running,
        }

    # -------------------------------------------------------------------------
    # System and control server
    # -------------------------------------------------------------------------

    @app.get("/api/status")
    async def api_status() -> dict[str, Any]:
        return await services.coordinator.get_status()

    @app.get("/api/stats")
    async def api_stats() -> dict[str, Any]:
        return await services.coordinator.get_detailed_stats()

    @app.get("/api/diagnostics")
    async def api_diagnostics() -> dict[str, Any]:
        return await services.coordinator.get_diagnostics()

    @app.post("/api/system/start")
    async def api_system_start() -> dict[str, Any]:
        await services.coordinator.start()
        return {"success": True, "status": await services.coordinator.get_status()}

    @app.post("/api/system/stop")
    async def api_system_stop() -> dict[str, Any]:
        await services.coordinator.stop()
        return {"success": True, "status": await services.coordinator.get_status()}

    @app.post("/api/system/restart")
    async def api_system_restart() -> dict[str, Any]:
        await services.coordinator.restart()
        return {"success": True, "status": await services.coordinator.get_status()}

    @app.post("/api/server/restart")
    async def api_server_restart() -> dict[str, Any]:
        await services.coordinator.force_restart()
        return {"success": True, "drivers": services.supervisor.get_current_drivers()}

    @app.get("/api/server/logs")
    async def api_server_logs(lines: int = Query(50, ge=1, le=1000)) -> dict[str, Any]:
        return {"lines": await services.supervisor.get_recent_logs(lines)}

    # -------------------------------------------------------------------------
    # USB and drivers
    # -------------------------------------------------------------------------

    @app.get("/api/usb/devices")
    async def api_usb_devices() -> dict[str, Any]:
        if services.scanner.is_running:
            devices = services.scanner.get_current_devices()
        else:
            devices = await services.scanner.list_devices() or []
        return {"count": len(devices), "devices": [d.to_dict() for d in devices]}

    @app.post("/api/usb/scan")
    async def api_usb_scan() -> dict[str, Any]:
        devices = await services.scanner.scan_now()
        return {"count": len(devices), "devices": [d.to_dict() for d in devices]}

    @app.get("/api/drivers")
    async def api_drivers() -> dict[str, Any]:
        return {
            "installed": services.resolver.get_installed_drivers(),
            "running": services.resolver.list_running_drivers(),
            "available": await services.resolver.get_available_drivers(),
        }

    @app.get("/api/drivers/search")
    async def api_drivers_search(q: str = Query(..., min_length=1)) -> dict[str, Any]:
        matches = await services.resolver.search_drivers(q)
        return {"query": q, "count": len(matches), "drivers": matches}

    @app.post("/api/drivers/add")
    async def api_drivers_add(body: DriverRequest) -> dict[str, Any]:
        await services.coordinator.add_driver(body.driver)
        return {
            "success": services.supervisor.is_driver_loaded(body.driver),
            "drivers": services.supervisor.get_current_drivers(),
        }

    @app.post("/api/drivers/remove")
    async def api_drivers_remove(body: DriverRequest) -> dict[str, Any]:
        await services.coordinator.remove_driver(body.driver)
        return {
            "success": not services.supervisor.is_driver_loaded(body.driver),
            "drivers": services.supervisor.get_current_drivers(),
        }

    # -------------------------------------------------------------------------
    # Equipment
    # -------------------------------------------------------------------------

    @app.get("/api/equipment")
    async def api_equipment() -> dict[str, Any]:
        equipment = services.monitor.get_equipment()
        return {
            "count": len(equipment),
            "equipment": [status.to_dict() for status in equipment],
        }

    @app.get("/api/equipment/status")
    async def api_equipment_status() -> dict[str, Any]:
        return services.monitor.get_status_summary()

    @app.get("/api/equipment/types")
    async def api_equipment_types() -> dict[str, Any]:
        return {"types": services.knowledge_base.get_types()}

    @app.get("/api/equipment/manufacturers")
    async def api_equipment_manufacturers() -> dict[str, Any]:
        return {"manufacturers": services.knowledge_base.get_manufacturers()}

    @app.post("/api/equipment/scan")
    async def api_equipment_scan() -> dict[str, Any]:
        statuses = await services.monitor.scan_now()
        return {
            "count": len(statuses),
            "equipment": [status.to_dict() for status in statuses],
        }

    @app.post("/api/equipment/auto-setup")
    async def api_equipment_auto_setup() -> dict[str, Any]:
        result = await services.monitor.perform_auto_setup()
        return result.to_dict()

    @app.post("/api/equipment/{device_id:path}/setup")
    async def api_equipment_setup(device_id: str) -> dict[str, Any]:
        status = await services.monitor.setup_single_device(device_id)
        return status.to_dict()

    @app.post("/api/equipment/{device_id:path}/restart")
    async def api_equipment_restart(device_id: str) -> dict[str, Any]:
        status = await services.monitor.restart_device(device_id)
        return status.to_dict()

    # -------------------------------------------------------------------------
    # Knowledge base
    # -------------------------------------------------------------------------

    @app.post("/api/database/update")
    async def api_database_update() -> dict[str, Any]:
        await services.knowledge_base.force_update()
        return {"success": True, "stats": services.knowledge_base.get_statistics()}

    @app.get("/api/database/stats")
    async def api_database_stats() -> dict[str, Any]:
        return services.knowledge_base.get_statistics()

    return app


__all__ = ["DriverRequest", "create_app", "error_status"]
