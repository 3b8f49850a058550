"""Driver directory resolver.

Answers the questions every other component asks about INDI drivers on
this machine: where is the executable, is it installed, is it running,
can it be installed, and what exists upstream.

Name normalization:
    Packages are named ``indi-asi`` while the executables they ship are
    ``indi_asi_ccd``, ``indi_asi_wheel``, ... A name is resolved by exact
    file name first, then by its underscore form (``indi_asi``) exactly,
    then by prefix (``indi_asi*``), first in sorted order.

Example:
    resolver = DriverResolver(ResolverConfig(), runner, catalog)
    resolver.resolve_driver_path("indi-asi")  # "/usr/bin/indi_asi_ccd"
    await resolver.install_driver("indi-qhy")
"""

from __future__ import annotations

import os
import re
import time
from collections.abc import Iterable
from pathlib import Path

from indi_autodetect.config import ResolverConfig
from indi_autodetect.devices.types import DriverStatus
from indi_autodetect.drivers.catalog import CatalogSource
from indi_autodetect.drivers.process import CommandRunner
from indi_autodetect.errors import CatalogError, DriverInstallError
from indi_autodetect.observability import OperationStats, get_logger

logger = get_logger(__name__)

DRIVER_PREFIX = "indi_"

# Debian package names; anything else never reaches apt-get.
_PACKAGE_NAME = re.compile(r"^[a-z0-9][a-z0-9.+-]*$")


def normalize_driver_name(name: str) -> str:
    """Return the executable form of a driver or package name.

    Example:
        >>> normalize_driver_name("indi-asi")
        'indi_asi'
        >>> normalize_driver_name("indi_eqmod_telescope")
        'indi_eqmod_telescope'
    """
    return name.strip().replace("-", "_")


def _is_executable_file(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class DriverResolver:
    """Locates, installs and tracks INDI driver executables."""

    def __init__(
        self,
        config: ResolverConfig,
        runner: CommandRunner,
        catalog: CatalogSource | None = None,
        stats: OperationStats | None = None,
    ) -> None:
        """Create a resolver.

        Args:
            config: Search dirs, sudo usage, cache TTL and install timeout.
            runner: Runs apt-get.
            catalog: Upstream driver listing. None disables
                ``get_available_drivers`` (always empty).
            stats: Receives an ``"install"`` record per install attempt.
        """
        self._config = config
        self._runner = runner
        self._catalog = catalog
        self._stats = stats
        self._running: set[str] = set()
        self._available: list[str] | None = None
        self._available_at = 0.0

    @property
    def search_dirs(self) -> list[Path]:
        return [Path(d) for d in self._config.search_dirs]

    # -------------------------------------------------------------------------
    # Filesystem
    # -------------------------------------------------------------------------

    def _executables(self) -> list[Path]:
        """Executable ``indi_*`` files across the search dirs, search order."""
        found: list[Path] = []
        for directory in self.search_dirs:
            try:
                entries = sorted(directory.iterdir())
            except OSError:
                continue
            found.extend(
                entry
                for entry in entries
                if entry.name.startswith(DRIVER_PREFIX) and _is_executable_file(entry)
            )
        return found

    def resolve_driver_path(self, name: str) -> str | None:
        """Find the executable for a driver or package name.

        Args:
            name: Absolute path, executable name (``indi_asi_ccd``) or
                package name (``indi-asi``).

        Returns:
            Absolute path of the first match, or None.

        Example:
            >>> resolver.resolve_driver_path("indi_simulator_ccd")
            '/usr/bin/indi_simulator_ccd'
        """
        name = name.strip()
        if not name:
            return None

        if os.path.isabs(name):
            path = Path(name)
            return str(path) if _is_executable_file(path) else None

        for directory in self.search_dirs:
            candidate = directory / name
            if _is_executable_file(candidate):
                return str(candidate)

        normalized = normalize_driver_name(name)
        executables = self._executables()
        for path in executables:
            if path.name == normalized:
                return str(path)

        prefixed = sorted(
            (path for path in executables if path.name.startswith(normalized)),
            key=lambda path: path.name,
        )
        if prefixed:
            return str(prefixed[0])
        return None

    def get_installed_drivers(self) -> list[str]:
        """Sorted unique ``indi_*`` executable names across the search dirs."""
        return sorted({path.name for path in self._executables()})

    def is_installed(self, name: str) -> bool:
        return self.resolve_driver_path(name) is not None

    # -------------------------------------------------------------------------
    # Installation
    # -------------------------------------------------------------------------

    def _apt(self, *args: str) -> list[str]:
        command = ["apt-get", *args]
        return ["sudo", *command] if self._config.use_sudo else command

    async def install_driver(self, package: str) -> None:
        """Install a driver package with apt-get.

        Runs ``apt-get update`` then ``apt-get install -y <package>``. A
        failing update is logged and the install is attempted anyway.

        Args:
            package: Debian package name, e.g. "indi-asi".

        Raises:
            ValueError: If ``package`` is not a valid package name.
            DriverInstallError: If the install command exits non-zero.
            CommandError: If a command times out.

        Example:
            >>> await resolver.install_driver("indi-asi")
            >>> resolver.is_installed("indi-asi")
            True
        """
        if not _PACKAGE_NAME.match(package):
            raise ValueError(f"Invalid package name: {package!r}")

        start = time.monotonic()
        error_type: str | None = None
        try:
            logger.info("Installing driver package", package=package)
            update = await self._runner.run(
                *self._apt("update"), timeout=self._config.install_timeout
            )
            if not update.ok:
                logger.warning(
                    "apt-get update failed",
                    returncode=update.returncode,
                    stderr=update.stderr.strip()[-200:],
                )

            result = await self._runner.run(
                *self._apt("install", "-y", package),
                timeout=self._config.install_timeout,
            )
            if not result.ok:
                raise DriverInstallError(package, result.returncode, result.stderr)
        except Exception as e:
            error_type = type(e).__name__
            logger.error("Driver install failed", package=package, error=str(e))
            raise
        finally:
            duration_ms = (time.monotonic() - start) * 1000
            if self._stats is not None:
                self._stats.record(
                    "install", duration_ms, error_type is None, error_type
                )

        logger.info(
            "Driver package installed", package=package, duration_ms=duration_ms
        )

    # -------------------------------------------------------------------------
    # Running set
    # -------------------------------------------------------------------------

    def mark_running(self, names: Iterable[str]) -> None:
        self._running.update(name.strip() for name in names if name.strip())

    def mark_stopped(self, names: Iterable[str] | None = None) -> None:
        """Remove ``names`` from the running set, or clear it when None."""
        if names is None:
            self._running.clear()
        else:
            self._running.difference_update(name.strip() for name in names)

    def list_running_drivers(self) -> list[str]:
        return sorted(self._running)

    def is_running(self, name: str) -> bool:
        """True if ``name`` or a driver sharing its normalized prefix runs.

        Running entries are whatever was passed to the supervisor (package
        names, executable names or paths), so both sides are normalized.
        """
        target = normalize_driver_name(os.path.basename(name))
        if not target:
            return False
        for running in self._running:
            candidate = normalize_driver_name(os.path.basename(running))
            if candidate == target or candidate.startswith(target):
                return True
        return False

    # -------------------------------------------------------------------------
    # Upstream catalog
    # -------------------------------------------------------------------------

    async def get_available_drivers(self) -> list[str]:
        """Upstream driver names, cached for ``available_ttl`` seconds.

        Returns:
            Sorted names. On catalog failure the stale cache is returned,
            or an empty list if nothing was ever fetched.
        """
        if self._catalog is None:
            return []

        now = time.monotonic()
        if (
            self._available is not None
            and now - self._available_at < self._config.available_ttl
        ):
            return list(self._available)

        try:
            names = await self._catalog.list_driver_names()
        except CatalogError as e:
            logger.warning("Available driver list unavailable", error=str(e))
            return list(self._available or [])

        self._available = sorted(set(names))
        self._available_at = now
        logger.debug("Available drivers refreshed", count=len(self._available))
        return list(self._available)

    async def is_available(self, name: str) -> bool:
        available = await self.get_available_drivers()
        lowered = {n.lower() for n in available}
        return name.lower() in lowered or name.lower().removeprefix("indi-") in lowered

    async def search_drivers(self, query: str) -> list[str]:
        """Case-insensitive substring search over available drivers."""
        needle = query.strip().lower()
        return [
            name for name in await self.get_available_drivers()
            if needle in name.lower()
        ]

    async def driver_status(self, name: str, installable: bool = False) -> DriverStatus:
        """Status of ``name``: running > installed > found > not-found.

        Args:
            name: Driver or package name.
            installable: The caller already knows the package can be
                installed (knowledge base entry), so it counts as found
                without consulting the upstream catalog.
        """
        if self.is_running(name):
            return DriverStatus.RUNNING
        if self.is_installed(name):
            return DriverStatus.INSTALLED
        if installable or await self.is_available(name):
            return DriverStatus.FOUND
        return DriverStatus.NOT_FOUND


__all__ = [
    "DRIVER_PREFIX",
    "DriverResolver",
    "normalize_driver_name",
]
