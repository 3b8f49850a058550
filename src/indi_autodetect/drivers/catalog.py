"""Remote INDI driver catalog backed by the GitHub REST API.

The upstream driver sources live in two repositories:

- ``indilib/indi``: core drivers under ``drivers/<category>/<name>``.
- ``indilib/indi-3rdparty``: one top-level ``indi-*`` or ``lib*``
  directory per vendor driver.

``DriverCatalog`` lists driver names from both. HTTP is done with
``requests`` in a worker thread (``asyncio.to_thread``) so the event loop
keeps polling USB while GitHub is slow.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, runtime_checkable

import requests

from indi_autodetect.config import CatalogConfig
from indi_autodetect.errors import CatalogError
from indi_autodetect.observability import get_logger

logger = get_logger(__name__)

CORE_REPO = "indilib/indi"
THIRDPARTY_REPO = "indilib/indi-3rdparty"
DEFAULT_BRANCH = "master"

#: Core driver categories, as directory names under ``drivers/``.
CORE_CATEGORIES: tuple[str, ...] = (
    "telescope",
    "ccd",
    "focuser",
    "aux",
    "dome",
    "weather",
)


@runtime_checkable
class CatalogSource(Protocol):  # pragma: no cover
    """Protocol for listing upstream drivers.

    Implemented by ``DriverCatalog``; tests provide in-memory fakes.
    """

    async def list_core_drivers(self) -> dict[str, list[str]]:
        """Core driver directory names keyed by category.

        Failed categories are omitted. Raises CatalogError only when
        every category failed.
        """
        ...

    async def list_thirdparty_drivers(self) -> list[str]:
        """Top-level third-party driver directory names.

        Raises:
            CatalogError: If the repository tree cannot be fetched.
        """
        ...

    async def list_driver_names(self) -> list[str]:
        """Sorted unique driver names across both repositories.

        Raises:
            CatalogError: If neither repository could be read.
        """
        ...


class DriverCatalog:
    """GitHub client for the INDI driver repositories."""

    def __init__(
        self,
        config: CatalogConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Create a catalog client.

        Args:
            config: API root, timeout, User-Agent and optional token.
            session: Session to reuse. A new one is created by default.
        """
        self._config = config or CatalogConfig()
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "User-Agent": self._config.user_agent,
                "Accept": "application/vnd.github+json",
            }
        )
        if self._config.token:
            self._session.headers["Authorization"] = f"Bearer {self._config.token}"

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self._config.api_url.rstrip('/')}/{path.lstrip('/')}"
        try:
            response = self._session.get(
                url, params=params, timeout=self._config.request_timeout
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise CatalogError(f"GET {url} failed: {e}") from e

    async def fetch_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET an API path in a worker thread and decode the JSON body.

        Raises:
            CatalogError: On transport errors, HTTP errors or invalid JSON.
        """
        return await asyncio.to_thread(self._get_json, path, params)

    async def fetch_tree(self, repo: str) -> list[dict[str, Any]]:
        """Return the recursive git tree entries of ``repo``'s default branch."""
        data = await self.fetch_json(
            f"repos/{repo}/git/trees/{DEFAULT_BRANCH}", {"recursive": "1"}
        )
        if not isinstance(data, dict) or not isinstance(data.get("tree"), list):
            raise CatalogError(f"Unexpected tree payload for {repo}")
        return data["tree"]

    async def list_core_drivers(self) -> dict[str, list[str]]:
        """List core driver directories per category.

        Returns:
            Mapping category → sorted directory names. Categories whose
            request failed are skipped with a warning.

        Raises:
            CatalogError: If no category could be fetched.
        """
        result: dict[str, list[str]] = {}
        for category in CORE_CATEGORIES:
            try:
                entries = await self.fetch_json(
                    f"repos/{CORE_REPO}/contents/drivers/{category}"
                )
            except CatalogError as e:
                logger.warning(
                    "Skipping driver category", category=category, error=str(e)
                )
                continue
            result[category] = sorted(
                entry["name"]
                for entry in entries
                if isinstance(entry, dict) and entry.get("type") == "dir"
            )
        if not result:
            raise CatalogError("No core driver category could be fetched")
        return result

    async def list_thirdparty_drivers(self) -> list[str]:
        """List top-level ``indi-*`` and ``lib*`` directories of indi-3rdparty."""
        tree = await self.fetch_tree(THIRDPARTY_REPO)
        return thirdparty_driver_dirs(tree)

    async def list_driver_names(self) -> list[str]:
        """Union of driver names from both repositories.

        A repository whose tree cannot be fetched is skipped with a warning.

        Raises:
            CatalogError: If both trees failed.
        """
        names: set[str] = set()
        failures = 0
        for repo in (CORE_REPO, THIRDPARTY_REPO):
            try:
                tree = await self.fetch_tree(repo)
            except CatalogError as e:
                failures += 1
                logger.warning("Driver tree unavailable", repo=repo, error=str(e))
                continue
            names.update(cmake_driver_dirs(tree))
            if repo == THIRDPARTY_REPO:
                names.update(
                    name for name in thirdparty_driver_dirs(tree)
                    if name.startswith("indi-")
                )
        if failures == 2:
            raise CatalogError("No driver repository could be read")
        return sorted(names)


def cmake_driver_dirs(tree: list[dict[str, Any]]) -> set[str]:
    """Directory names holding a CMakeLists.txt under ``drivers/``.

    Example:
        >>> cmake_driver_dirs([
        ...     {"path": "drivers/ccd/ccd_simulator/CMakeLists.txt", "type": "blob"}
        ... ])
        {'ccd_simulator'}
    """
    names: set[str] = set()
    for item in tree:
        path = item.get("path", "")
        if (
            item.get("type") == "blob"
            and path.startswith("drivers/")
            and path.endswith("CMakeLists.txt")
        ):
            parts = path.split("/")
            if len(parts) >= 3:
                names.add(parts[-2])
    return names


def thirdparty_driver_dirs(tree: list[dict[str, Any]]) -> list[str]:
    """Top-level directories starting with ``indi-`` or ``lib`` that hold files."""
    names: set[str] = set()
    for item in tree:
        path = item.get("path", "")
        if (
            item.get("type") == "blob"
            and "/" in path
            and (path.startswith("indi-") or path.startswith("lib"))
        ):
            names.add(path.split("/", 1)[0])
    return sorted(names)


__all__ = [
    "CORE_CATEGORIES",
    "CatalogSource",
    "DriverCatalog",
    "cmake_driver_dirs",
    "thirdparty_driver_dirs",
]
