"""Equipment knowledge base.

Maps USB ids and product names to equipment records (type, manufacturer,
model, INDI driver package). Two sources are merged:

- The static USB table in ``knowledge_data`` (authoritative).
- ``generic:<driver>`` entries built from the upstream INDI driver
  catalog, refreshed at most once per TTL (24h by default).

The merged database is cached as JSON::

    {"database": {key: entry, ...}, "lastUpdate": "<iso8601>", "version": "1.0.0"}

Example:
    kb = EquipmentKnowledgeBase(KnowledgeBaseConfig(), cache_path, catalog)
    await kb.initialize()
    kb.find_by_usb_id("03c3", "294a").model  # "ASI294MC Pro"
"""

from __future__ import annotations

import json
from collections import Counter
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from indi_autodetect.config import KnowledgeBaseConfig
from indi_autodetect.devices.knowledge_data import (
    KNOWN_THIRDPARTY_DRIVERS,
    categorize_driver,
    extract_manufacturer,
    map_driver_to_equipment_type,
    static_usb_entries,
)
from indi_autodetect.devices.types import DeviceType, EquipmentEntry, utc_now
from indi_autodetect.drivers.catalog import CatalogSource
from indi_autodetect.errors import CatalogError
from indi_autodetect.observability import get_logger

logger = get_logger(__name__)

DATABASE_VERSION = "1.0.0"

#: Debian package shipping every core (indilib/indi) driver.
CORE_PACKAGE = "indi-bin"


class EquipmentKnowledgeBase:
    """Lookup tables for USB ids, names, types, manufacturers and drivers."""

    def __init__(
        self,
        config: KnowledgeBaseConfig,
        cache_path: Path,
        catalog: CatalogSource | None = None,
    ) -> None:
        """Create an empty knowledge base. Call ``initialize()`` before use.

        Args:
            config: TTL and remote switch.
            cache_path: JSON cache file location.
            catalog: Upstream driver catalog. None (or ``remote_enabled``
                False) restricts the database to the static table.
        """
        self._config = config
        self._cache_path = cache_path
        self._catalog = catalog
        self._database: dict[str, EquipmentEntry] = {}
        self._last_update: datetime | None = None

    @property
    def last_update(self) -> datetime | None:
        return self._last_update

    @property
    def database(self) -> dict[str, EquipmentEntry]:
        """Read-only view by convention; mutate through the update methods."""
        return self._database

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the cache and refresh it when stale.

        A missing or corrupt cache starts empty. If the refresh fails for
        any reason the static table is loaded and persisted instead, so
        the knowledge base is never left empty.
        """
        self._load_cache()
        if not self._is_stale():
            logger.info(
                "Knowledge base up to date",
                entries=len(self._database),
                last_update=self._last_update,
            )
            return

        try:
            await self.update_from_remote()
        except Exception as e:
            logger.warning(
                "Knowledge base refresh failed, using static table", error=str(e)
            )
            self.load_static()

    def _is_stale(self) -> bool:
        if self._last_update is None:
            return True
        age = utc_now() - self._last_update
        return age > timedelta(seconds=self._config.ttl)

    def _load_cache(self) -> None:
        self._database = {}
        self._last_update = None
        try:
            raw = json.loads(self._cache_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.info("No knowledge base cache", path=str(self._cache_path))
            return
        except (OSError, ValueError) as e:
            logger.warning(
                "Knowledge base cache unreadable", path=str(self._cache_path), error=str(e)
            )
            return

        try:
            self._database = {
                key: EquipmentEntry.from_dict(value)
                for key, value in (raw.get("database") or {}).items()
            }
            last_update = raw.get("lastUpdate")
            self._last_update = (
                datetime.fromisoformat(last_update) if last_update else None
            )
            if self._last_update is not None and self._last_update.tzinfo is None:
                self._last_update = self._last_update.replace(tzinfo=UTC)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Knowledge base cache corrupt", error=str(e))
            self._database = {}
            self._last_update = None
            return

        logger.info("Knowledge base cache loaded", entries=len(self._database))

    def _save_cache(self) -> None:
        payload = {
            "database": {key: entry.to_dict() for key, entry in self._database.items()},
            "lastUpdate": self._last_update.isoformat() if self._last_update else None,
            "version": DATABASE_VERSION,
        }
        try:
            self._cache_path.parent.mkdir(parents=True, exist_ok=True)
            self._cache_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error(
                "Knowledge base cache not saved", path=str(self._cache_path), error=str(e)
            )

    def load_static(self) -> None:
        """Replace the database with the static table, stamp now and persist."""
        now = utc_now()
        self._database = static_usb_entries(now.isoformat())
        self._last_update = now
        self._save_cache()
        logger.info("Static knowledge base loaded", entries=len(self._database))

    async def update_from_remote(self) -> None:
        """Rebuild the database from the upstream catalog plus the static table.

        A failing core category or third-party tree is skipped; the known
        third-party driver list is always included.

        Raises:
            CatalogError: If remote access is disabled or no remote data
                at all could be fetched.
        """
        if self._catalog is None or not self._config.remote_enabled:
            raise CatalogError("Remote catalog disabled")

        core: dict[str, list[str]] = {}
        thirdparty: list[str] = []
        failures: list[str] = []
        try:
            core = await self._catalog.list_core_drivers()
        except CatalogError as e:
            failures.append(str(e))
        try:
            thirdparty = await self._catalog.list_thirdparty_drivers()
        except CatalogError as e:
            failures.append(str(e))
        if not core and not thirdparty:
            raise CatalogError("; ".join(failures) or "Remote catalog returned no drivers")

        now = utc_now()
        stamp = now.isoformat()
        database: dict[str, EquipmentEntry] = {}
        for category, names in core.items():
            for name in names:
                key, entry = _generic_entry(name, category, CORE_PACKAGE, stamp)
                database[key] = entry
        for name in sorted(set(thirdparty) | set(KNOWN_THIRDPARTY_DRIVERS)):
            key, entry = _generic_entry(name, categorize_driver(name), name, stamp)
            database[key] = entry
        database.update(static_usb_entries(stamp))

        self._database = database
        self._last_update = now
        self._save_cache()
        logger.info(
            "Knowledge base updated",
            entries=len(database),
            core_categories=len(core),
            thirdparty=len(thirdparty),
        )

    async def force_update(self) -> None:
        """Refresh from the remote catalog regardless of the TTL."""
        await self.update_from_remote()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def find_by_usb_id(self, vendor_id: str, product_id: str) -> EquipmentEntry | None:
        """Exact ``vendor:product`` entry, else the ``vendor:*`` entry."""
        vendor = vendor_id.lower()
        exact = self._database.get(f"{vendor}:{product_id.lower()}")
        if exact is not None:
            return exact
        return self._database.get(f"{vendor}:*")

    def find_by_name(self, term: str) -> list[EquipmentEntry]:
        """Substring search over name, aliases, model, description, manufacturer.

        Results are ordered exact name first, then name contains the term,
        then everything else in database order.
        """
        needle = term.strip().lower()
        if not needle:
            return []

        results = [entry for entry in self._database.values() if _matches(entry, needle)]

        def rank(entry: EquipmentEntry) -> int:
            name = entry.name.lower()
            if name == needle:
                return 0
            if needle in name:
                return 1
            return 2

        return sorted(results, key=rank)

    def lookup(
        self,
        vendor_id: str | None = None,
        product_id: str | None = None,
        name: str | None = None,
    ) -> EquipmentEntry | None:
        """USB id lookup, then name search. Returns the first match or None."""
        if vendor_id and product_id:
            entry = self.find_by_usb_id(vendor_id, product_id)
            if entry is not None:
                return entry
        if name:
            matches = self.find_by_name(name)
            if matches:
                return matches[0]
        return None

    def find_by_type(self, device_type: DeviceType | str) -> list[EquipmentEntry]:
        wanted = DeviceType.parse(
            device_type.value if isinstance(device_type, DeviceType) else device_type
        )
        return [entry for entry in self._database.values() if entry.type is wanted]

    def find_by_manufacturer(self, manufacturer: str) -> list[EquipmentEntry]:
        needle = manufacturer.lower()
        return [
            entry for entry in self._database.values()
            if needle in entry.manufacturer.lower()
        ]

    def find_by_driver(self, driver_name: str) -> list[EquipmentEntry]:
        return [
            entry for entry in self._database.values()
            if entry.driver_name == driver_name
        ]

    def get_types(self) -> list[str]:
        return sorted({entry.type.value for entry in self._database.values()})

    def get_manufacturers(self) -> list[str]:
        return sorted({entry.manufacturer for entry in self._database.values()})

    def get_statistics(self) -> dict[str, Any]:
        """Counts by type, manufacturer and driver."""
        entries = list(self._database.values())
        return {
            "totalEquipment": len(entries),
            "byType": dict(Counter(entry.type.value for entry in entries)),
            "byManufacturer": dict(Counter(entry.manufacturer for entry in entries)),
            "byDriver": dict(
                Counter(entry.driver_name for entry in entries if entry.driver_name)
            ),
            "autoInstallableCount": sum(1 for entry in entries if entry.auto_installable),
            "lastUpdate": self._last_update.isoformat() if self._last_update else None,
        }


def _matches(entry: EquipmentEntry, needle: str) -> bool:
    if needle in entry.name.lower():
        return True
    if any(needle in alias.lower() for alias in entry.aliases):
        return True
    if needle in entry.model.lower():
        return True
    if entry.description and needle in entry.description.lower():
        return True
    return needle in entry.manufacturer.lower()


def _generic_entry(
    driver: str, category: str, package: str, stamp: str
) -> tuple[str, EquipmentEntry]:
    short = driver.removeprefix("indi-")
    manufacturer = extract_manufacturer(short)
    aliases = [short]
    if manufacturer != "Generic":
        aliases.append(manufacturer.lower())
    description = f"Driver {short}"
    return f"generic:{short}", EquipmentEntry(
        name=description,
        type=map_driver_to_equipment_type(short, category),
        manufacturer=manufacturer,
        model=short.upper(),
        driver_name=driver,
        package_name=package,
        auto_installable=True,
        aliases=aliases,
        description=description,
        category=category,
        last_updated=stamp,
    )


__all__ = [
    "CORE_PACKAGE",
    "DATABASE_VERSION",
    "EquipmentKnowledgeBase",
]
