"""Integration tests for the REST application.

Uses FastAPI's TestClient against an application bound to a service
container wired with fakes; nothing is started, so every endpoint runs
against on-demand detection.
"""

import pytest
from fastapi.testclient import TestClient

from indi_autodetect import __version__
from indi_autodetect.errors import (
    CatalogError,
    DeviceNotFoundError,
    DeviceNotInstallableError,
    ServerStartError,
    SetupInProgressError,
)
from indi_autodetect.web.app import create_app, error_status
from tests.fakes import LSUSB_WEBCAM, LSUSB_ZWO, make_executable


@pytest.fixture
def client(services):
    """TestClient over the container from conftest."""
    return TestClient(create_app(services))


@pytest.mark.parametrize(
    ("exc", "status"),
    [
        (DeviceNotFoundError("x"), 404),
        (DeviceNotInstallableError("x"), 400),
        (SetupInProgressError(), 409),
        (CatalogError("offline"), 500),
        (ServerStartError("boom"), 500),
    ],
)
def test_error_status(exc, status):
    assert error_status(exc) == status


class TestSystemEndpoints:
    def test_index(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {
            "name": "indi-autodetect",
            "version": __version__,
            "running": False,
        }

    def test_status_shape(self, client):
        response = client.get("/api/status")
        assert response.status_code == 200
        body = response.json()
        assert body["isRunning"] is False
        assert body["indiServer"]["running"] is False
        assert body["usbDetector"]["totalDevices"] == 0

    def test_log_line_bounds(self, client, listening_runner):
        listening_runner.set("journalctl", stdout="a\nb\nc\n")

        response = client.get("/api/server/logs", params={"lines": 2})
        assert response.status_code == 200
        assert response.json() == {"lines": ["a", "b", "c"]}
        assert listening_runner.called("journalctl", "-n", "2")

        assert client.get("/api/server/logs", params={"lines": 0}).status_code == 422


class TestUsbAndDrivers:
    def test_usb_devices_on_demand(self, client, listening_runner):
        listening_runner.set("lsusb", stdout=LSUSB_ZWO)

        body = client.get("/api/usb/devices").json()

        assert body["count"] == 1
        assert body["devices"][0]["brand"] == "ZWO"

    def test_driver_listing(self, client, bin_dir):
        make_executable(bin_dir, "indi_asi_ccd")

        body = client.get("/api/drivers").json()

        assert body == {"installed": ["indi_asi_ccd"], "running": [], "available": []}

    def test_request_validation(self, client):
        assert client.get("/api/drivers/search").status_code == 422
        assert client.get("/api/drivers/search", params={"q": ""}).status_code == 422
        assert client.post("/api/drivers/add", json={"driver": ""}).status_code == 422
        assert client.post("/api/drivers/remove", json={}).status_code == 422

    def test_remove_unloaded_driver(self, client, launcher):
        response = client.post("/api/drivers/remove", json={"driver": "indi_asi_ccd"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "drivers": []}
        assert launcher.launches == []


# =============================================================================
# Equipment
# =============================================================================


class TestEquipmentEndpoints:
    """Tests for /api/equipment and its error mapping."""

    def test_scan_then_list(self, client, listening_runner, services):
        listening_runner.set("lsusb", stdout=LSUSB_ZWO + LSUSB_WEBCAM)
        services.knowledge_base.load_static()

        scanned = client.post("/api/equipment/scan").json()
        listed = client.get("/api/equipment").json()
        summary = client.get("/api/equipment/status").json()

        assert scanned["count"] == 2
        assert {s["id"] for s in listed["equipment"]} == {"03c3:294a", "1234:5678"}
        assert summary["totalCount"] == 2
        assert summary["connectedCount"] == 0

    def test_unknown_device_is_404(self, client):
        response = client.post("/api/equipment/serial:/dev/ttyUSB9/setup")
        assert response.status_code == 404
        assert response.json() == {"error": "Device 'serial:/dev/ttyUSB9' not found"}

    def test_non_installable_device_is_400(self, client, listening_runner):
        listening_runner.set("lsusb", stdout=LSUSB_WEBCAM)

        response = client.post("/api/equipment/1234:5678/restart")

        assert response.status_code == 400
        assert "error" in response.json()

    def test_concurrent_auto_setup_is_409(self, client, services):
        """Verifies a second auto-setup is rejected while one runs.

        Arrangement:
        Monitor flagged as mid-setup.

        Action:
        POST /api/equipment/auto-setup.

        Assertion Strategy:
        409 with an error body.

        Testing Principle:
        Two setups never race on apt-get and the server.
        """
        services.monitor._setup_in_progress = True

        response = client.post("/api/equipment/auto-setup")

        assert response.status_code == 409
        assert "error" in response.json()

    def test_auto_setup_result(self, client, listening_runner, services):
        listening_runner.set("lsusb", stdout=LSUSB_WEBCAM)
        services.knowledge_base.load_static()

        body = client.post("/api/equipment/auto-setup").json()

        assert body["totalDevices"] == 0
        assert body["configured"] == 0


class TestKnowledgeBase:
    def test_types_manufacturers_and_stats(self, client, services):
        services.knowledge_base.load_static()

        types = client.get("/api/equipment/types").json()["types"]
        manufacturers = client.get("/api/equipment/manufacturers").json()["manufacturers"]
        stats = client.get("/api/database/stats").json()

        assert "camera" in types
        assert "ZWO" in manufacturers
        assert stats["totalEquipment"] > 0

    def test_update_without_remote_is_500(self, client):
        response = client.post("/api/database/update")
        assert response.status_code == 500
        assert response.json() == {"error": "Remote catalog disabled"}
