"""Tests for the equipment knowledge base and its static data."""

import json
from datetime import timedelta

import pytest

from indi_autodetect.config import KnowledgeBaseConfig
from indi_autodetect.devices.knowledge_base import (
    CORE_PACKAGE,
    DATABASE_VERSION,
    EquipmentKnowledgeBase,
)
from indi_autodetect.devices.knowledge_data import (
    categorize_driver,
    extract_manufacturer,
    map_driver_to_equipment_type,
)
from indi_autodetect.devices.types import DeviceType, EquipmentEntry, utc_now
from indi_autodetect.errors import CatalogError
from tests.fakes import FakeCatalog


def _kb(tmp_path, catalog=None, remote_enabled=True):
    config = KnowledgeBaseConfig(remote_enabled=remote_enabled)
    return EquipmentKnowledgeBase(config, tmp_path / "kb" / "cache.json", catalog)


def _online_catalog():
    return FakeCatalog(
        core={"telescope": ["lx200generic"], "ccd": ["ccd_simulator"]},
        thirdparty=["indi-custom", "indi-asi"],
    )


# =============================================================================
# Initialization and caching
# =============================================================================


class TestInitialize:
    """Tests for cache loading, refresh and static fallback."""

    @pytest.mark.asyncio
    async def test_without_catalog_loads_and_persists_static_table(self, tmp_path):
        """Verifies offline startup still recognizes common equipment.

        Arrangement:
        No cache file and no catalog.

        Action:
        initialize().

        Assertion Strategy:
        - The ASI294MC Pro is known by USB id.
        - The cache file exists with database/lastUpdate/version keys.

        Testing Principle:
        Detection works on a machine that never reached GitHub.
        """
        kb = _kb(tmp_path)
        await kb.initialize()

        entry = kb.find_by_usb_id("03c3", "294a")
        assert entry.name == "ASI294MC Pro"
        assert entry.type is DeviceType.CAMERA
        assert entry.driver_name == "indi-asi"
        assert entry.auto_installable

        raw = json.loads((tmp_path / "kb" / "cache.json").read_text())
        assert set(raw) == {"database", "lastUpdate", "version"}
        assert raw["version"] == DATABASE_VERSION
        assert "03c3:294a" in raw["database"]

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_remote(self, tmp_path):
        first = _kb(tmp_path, _online_catalog())
        await first.initialize()

        catalog = FakeCatalog(fail=True)
        second = _kb(tmp_path, catalog)
        await second.initialize()

        assert catalog.calls == 0
        assert set(second.database) == set(first.database)
        assert second.find_by_usb_id("03c3", "294a").name == "ASI294MC Pro"

    @pytest.mark.asyncio
    async def test_stale_cache_with_failing_catalog_falls_back(self, tmp_path):
        """Verifies a failed refresh replaces a stale cache with static data.

        Arrangement:
        Cache stamped two days ago holding one bogus entry; the catalog
        raises CatalogError.

        Action:
        initialize().

        Assertion Strategy:
        - The catalog was consulted.
        - The bogus entry is gone, static entries are present.
        - lastUpdate moved to now.

        Testing Principle:
        The knowledge base is never left empty or silently stale.
        """
        cache = tmp_path / "kb" / "cache.json"
        cache.parent.mkdir()
        bogus = EquipmentEntry(
            name="Bogus", type=DeviceType.AUX, manufacturer="X", model="Y",
            driver_name="indi-bogus",
        )
        cache.write_text(
            json.dumps(
                {
                    "database": {"dead:beef": bogus.to_dict()},
                    "lastUpdate": (utc_now() - timedelta(days=2)).isoformat(),
                    "version": DATABASE_VERSION,
                }
            )
        )
        catalog = FakeCatalog(fail=True)
        kb = _kb(tmp_path, catalog)

        await kb.initialize()

        assert catalog.calls > 0
        assert kb.find_by_usb_id("dead", "beef") is None
        assert kb.find_by_usb_id("03c3", "294a") is not None
        assert utc_now() - kb.last_update < timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_corrupt_cache_is_ignored(self, tmp_path):
        cache = tmp_path / "kb" / "cache.json"
        cache.parent.mkdir()
        cache.write_text("{not json")
        kb = _kb(tmp_path)

        await kb.initialize()

        assert kb.find_by_usb_id("0403", "6001").name == "Celestron Mount"


class TestUpdateFromRemote:
    @pytest.mark.asyncio
    async def test_merges_catalog_with_static_table(self, tmp_path):
        """Verifies generic catalog entries and static entries coexist.

        Arrangement:
        Catalog with two core drivers and two third-party directories.

        Action:
        update_from_remote().

        Assertion Strategy:
        - Core drivers become ``generic:<name>`` entries packaged in
          indi-bin with a type from their category.
        - Third-party drivers are packaged under their own name.
        - Known third-party drivers are present even if not listed.
        - Static USB entries are present.

        Testing Principle:
        Searching by name finds drivers that have no USB id.
        """
        kb = _kb(tmp_path, _online_catalog())
        await kb.update_from_remote()

        lx200 = kb.database["generic:lx200generic"]
        assert lx200.type is DeviceType.MOUNT
        assert lx200.package_name == CORE_PACKAGE
        assert lx200.auto_installable

        assert kb.database["generic:ccd_simulator"].type is DeviceType.CAMERA

        custom = kb.database["generic:custom"]
        assert custom.driver_name == "indi-custom"
        assert custom.package_name == "indi-custom"

        assert kb.database["generic:eqmod"].manufacturer == "Sky-Watcher"
        assert kb.find_by_usb_id("03c3", "294a").name == "ASI294MC Pro"
        assert (tmp_path / "kb" / "cache.json").exists()

    @pytest.mark.asyncio
    async def test_partial_catalog_is_enough(self, tmp_path):
        catalog = FakeCatalog(core={}, thirdparty=["indi-custom"])
        kb = _kb(tmp_path, catalog)
        await kb.update_from_remote()
        assert "generic:custom" in kb.database

    @pytest.mark.asyncio
    async def test_failing_catalog_raises(self, tmp_path):
        kb = _kb(tmp_path, FakeCatalog(fail=True))
        with pytest.raises(CatalogError, match="catalog offline"):
            await kb.update_from_remote()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("remote_enabled", [True, False])
    async def test_disabled_remote_raises(self, tmp_path, remote_enabled):
        catalog = None if remote_enabled else _online_catalog()
        kb = _kb(tmp_path, catalog, remote_enabled=remote_enabled)
        with pytest.raises(CatalogError, match="disabled"):
            await kb.force_update()


# =============================================================================
# Lookups
# =============================================================================


@pytest.fixture
def static_kb(tmp_path):
    kb = _kb(tmp_path)
    kb.load_static()
    return kb


class TestLookup:
    def test_vendor_wildcard(self, static_kb):
        assert static_kb.find_by_usb_id("04A9", "3218").name == "Canon DSLR"
        assert static_kb.find_by_usb_id("2e8d", "0001").driver_name == "indi-playerone"
        assert static_kb.find_by_usb_id("dead", "beef") is None

    def test_exact_id_beats_vendor_wildcard(self, static_kb):
        static_kb.database["03c3:*"] = EquipmentEntry(
            name="ZWO Device", type=DeviceType.CAMERA, manufacturer="ZWO",
            model="Generic", driver_name="indi-asi",
        )
        assert static_kb.find_by_usb_id("03c3", "294a").name == "ASI294MC Pro"
        assert static_kb.find_by_usb_id("03c3", "ffff").name == "ZWO Device"

    def test_find_by_name_ranks_exact_then_contains(self, static_kb):
        results = static_kb.find_by_name("ASI120MM")
        assert [entry.name for entry in results[:2]] == ["ASI120MM", "ASI120MM-S"]

    def test_find_by_name_matches_aliases(self, static_kb):
        names = {entry.name for entry in static_kb.find_by_name("dslr")}
        assert names == {"Canon DSLR", "Nikon DSLR"}
        assert static_kb.find_by_name("   ") == []

    def test_lookup_prefers_usb_id(self, static_kb):
        assert static_kb.lookup("03c3", "294a", name="Nikon").name == "ASI294MC Pro"
        assert static_kb.lookup("dead", "beef", name="Nikon").name == "Nikon DSLR"
        assert static_kb.lookup(name="no such thing") is None

    def test_type_manufacturer_and_driver_indexes(self, static_kb):
        mounts = {entry.name for entry in static_kb.find_by_type("mount")}
        assert mounts == {"Celestron Mount", "Sky-Watcher Mount"}
        assert static_kb.find_by_type(DeviceType.GUIDE_CAMERA)
        assert all(e.manufacturer == "ZWO" for e in static_kb.find_by_manufacturer("zwo"))
        assert len(static_kb.find_by_driver("indi-qhy")) == 4
        assert static_kb.get_types() == sorted(static_kb.get_types())
        assert "ZWO" in static_kb.get_manufacturers()

    def test_statistics(self, static_kb):
        stats = static_kb.get_statistics()
        assert stats["totalEquipment"] == len(static_kb.database)
        assert stats["autoInstallableCount"] == len(static_kb.database)
        assert stats["byDriver"]["indi-qhy"] == 4
        assert stats["byType"]["mount"] == 2
        assert stats["lastUpdate"] is not None


class TestKnowledgeData:
    @pytest.mark.parametrize(
        ("driver", "category"),
        [
            ("indi-eqmod", "telescope"),
            ("indi-asi", "ccd"),
            ("indi-moonlite", "focuser"),
            ("indi-nexdome", "dome"),
            ("indi-aagcloudwatcher", "weather"),
            ("indi-gpio", "aux"),
        ],
    )
    def test_categorize_driver(self, driver, category):
        assert categorize_driver(driver) == category

    def test_equipment_type_mapping(self):
        assert map_driver_to_equipment_type("lx200generic", "telescope") is DeviceType.MOUNT
        assert map_driver_to_equipment_type("moonlite", "focuser") is DeviceType.FOCUSER
        assert map_driver_to_equipment_type("gpio", "aux") is DeviceType.AUX

    def test_extract_manufacturer(self):
        assert extract_manufacturer("asi") == "ZWO"
        assert extract_manufacturer("eqmod") == "Sky-Watcher"
        assert extract_manufacturer("gpio") == "Generic"
