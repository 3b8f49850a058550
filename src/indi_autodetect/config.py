"""Runtime configuration.

One dataclass per component, aggregated in ``AppConfig``. Defaults match a
Raspberry Pi style astro computer running indiserver on the standard port.
Values can be overridden from ``INDI_AUTODETECT_*`` environment variables
(``AppConfig.from_env``) and then from CLI flags.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

# =============================================================================
# Constants
# =============================================================================

ENV_PREFIX = "INDI_AUTODETECT_"

DEFAULT_INDI_PORT = 7624
DEFAULT_FIFO_PATH = "/tmp/indiFIFO"

#: Ordered driver search path. First hit wins.
DEFAULT_DRIVER_SEARCH_DIRS: tuple[str, ...] = (
    "/usr/local/bin",
    "/usr/bin",
    "/usr/local/lib/indi",
    "/usr/lib/indi",
    "/opt/indi/bin",
    "/usr/lib/x86_64-linux-gnu/indi",
    "/usr/lib/aarch64-linux-gnu/indi",
    "/usr/lib/arm-linux-gnueabihf/indi",
    "/usr/share/indi",
)


def _default_data_dir() -> Path:
    """Return ``~/.indi-autodetect/data``.

    Holds the equipment knowledge base cache. The directory is created on
    first write.

    Example:
        >>> _default_data_dir()
        PosixPath('/home/astro/.indi-autodetect/data')
    """
    return Path.home() / ".indi-autodetect" / "data"


# =============================================================================
# Component Configuration
# =============================================================================


@dataclass
class ScannerConfig:
    """USB scanner settings.

    Attributes:
        poll_interval: Seconds between ``lsusb`` polls.
        restart_delay: Debounce window before a restart request is emitted.
        auto_restart: Emit restart requests on qualifying hot-plug events.
        enrich: Query ``lsusb -v`` per device for manufacturer/product.
    """

    poll_interval: float = 5.0
    restart_delay: float = 2.0
    auto_restart: bool = True
    enrich: bool = True


@dataclass
class KnowledgeBaseConfig:
    """Equipment knowledge base settings.

    Attributes:
        cache_path: JSON cache file. None means ``data_dir/equipment-database.json``.
        ttl: Seconds before the cache is refreshed from the remote catalog.
        remote_enabled: Allow GitHub catalog requests at all.
    """

    cache_path: Path | None = None
    ttl: float = 24 * 60 * 60
    remote_enabled: bool = True


@dataclass
class CatalogConfig:
    """Remote GitHub catalog settings.

    Attributes:
        api_url: GitHub REST API root.
        request_timeout: Per-request timeout in seconds.
        user_agent: User-Agent header (GitHub rejects anonymous agents).
        token: Optional token raising the anonymous rate limit.
    """

    api_url: str = "https://api.github.com"
    request_timeout: float = 15.0
    user_agent: str = "indi-autodetect"
    token: str | None = None


@dataclass
class ResolverConfig:
    """Driver directory resolver settings.

    Attributes:
        search_dirs: Ordered directories searched for driver executables.
        use_sudo: Prefix package manager commands with sudo.
        available_ttl: Seconds the upstream driver name list is cached.
        install_timeout: Seconds allowed for each apt-get invocation.
    """

    search_dirs: list[str] = field(
        default_factory=lambda: list(DEFAULT_DRIVER_SEARCH_DIRS)
    )
    use_sudo: bool = True
    available_ttl: float = 60 * 60
    install_timeout: float = 600.0


@dataclass
class DetectorConfig:
    """Equipment detector settings.

    Attributes:
        cache_duration: Seconds a detection result is reused.
        refine_guide_cameras: Reclassify typical guide camera models.
        scan_serial: Include serial ports as low-confidence devices.
        serial_baud_rate: Baud rate reported for serial devices.
    """

    cache_duration: float = 5.0
    refine_guide_cameras: bool = False
    scan_serial: bool = True
    serial_baud_rate: int = 9600


@dataclass
class SupervisorConfig:
    """indiserver supervision settings.

    Attributes:
        binary: indiserver executable name or path.
        host: Host used by property clients to reach the server.
        port: TCP port passed with ``-p``.
        verbose: Pass ``-v``.
        enable_fifo: Pass ``-f fifo_path``.
        fifo_path: FIFO used for dynamic driver loading.
        max_retries: Automatic restarts after crashes before giving up.
        retry_delay: Seconds between a crash and the automatic restart.
        start_grace: Seconds to wait before the listening check.
        stop_timeout: Seconds between SIGTERM and SIGKILL.
        restart_pause: Seconds between stop and start during restart.
    """

    binary: str = "indiserver"
    host: str = "localhost"
    port: int = DEFAULT_INDI_PORT
    verbose: bool = True
    enable_fifo: bool = False
    fifo_path: str = DEFAULT_FIFO_PATH
    max_retries: int = 3
    retry_delay: float = 5.0
    start_grace: float = 2.0
    stop_timeout: float = 5.0
    restart_pause: float = 1.0


@dataclass
class CoordinatorConfig:
    """Orchestration settings.

    Attributes:
        startup_drivers: Drivers always loaded, whatever is plugged in.
        restart_pause: Seconds between stop and start in ``restart()``.
    """

    startup_drivers: list[str] = field(default_factory=list)
    restart_pause: float = 1.0


@dataclass
class MonitorConfig:
    """Equipment monitor settings.

    Attributes:
        interval: Seconds between detection passes.
    """

    interval: float = 30.0


@dataclass
class DashboardConfig:
    """REST dashboard settings. ``host=None`` disables the dashboard."""

    host: str | None = "127.0.0.1"
    port: int = 8080
    log_level: str = "warning"


# =============================================================================
# Aggregate
# =============================================================================


@dataclass
class AppConfig:
    """Complete configuration handed to the composition root.

    Attributes:
        data_dir: Directory for persistent files.
        log_level: Package log level name.
        log_json: Emit NDJSON logs.
    """

    data_dir: Path = field(default_factory=_default_data_dir)
    log_level: str = "INFO"
    log_json: bool = False
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    knowledge_base: KnowledgeBaseConfig = field(default_factory=KnowledgeBaseConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)

    @property
    def kb_cache_path(self) -> Path:
        """Knowledge base cache location, defaulting under ``data_dir``."""
        if self.knowledge_base.cache_path is not None:
            return self.knowledge_base.cache_path
        return self.data_dir / "equipment-database.json"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AppConfig:
        """Build a configuration from ``INDI_AUTODETECT_*`` variables.

        Unset variables keep their defaults. Malformed numbers raise
        ValueError naming the variable.

        Args:
            environ: Mapping to read, ``os.environ`` by default.

        Returns:
            New AppConfig.

        Raises:
            ValueError: If a numeric or boolean variable cannot be parsed.

        Example:
            >>> cfg = AppConfig.from_env({"INDI_AUTODETECT_PORT": "7625"})
            >>> cfg.supervisor.port
            7625
        """
        env = os.environ if environ is None else environ
        config = cls()

        def get(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            return value.strip() if value is not None and value.strip() else None

        if (value := get("DATA_DIR")) is not None:
            config.data_dir = Path(value).expanduser()
        if (value := get("PORT")) is not None:
            config.supervisor.port = _parse_int("PORT", value)
        if (value := get("MAX_RETRIES")) is not None:
            config.supervisor.max_retries = _parse_int("MAX_RETRIES", value)
        if (value := get("POLL_INTERVAL")) is not None:
            config.scanner.poll_interval = _parse_float("POLL_INTERVAL", value)
        if (value := get("RESTART_DELAY")) is not None:
            config.scanner.restart_delay = _parse_float("RESTART_DELAY", value)
        if (value := get("MONITOR_INTERVAL")) is not None:
            config.monitor.interval = _parse_float("MONITOR_INTERVAL", value)
        if (value := get("STARTUP_DRIVERS")) is not None:
            config.coordinator.startup_drivers = [
                name.strip() for name in value.split(",") if name.strip()
            ]
        if (value := get("USE_SUDO")) is not None:
            config.resolver.use_sudo = _parse_bool("USE_SUDO", value)
        if (value := get("LOG_LEVEL")) is not None:
            config.log_level = value.upper()
        if (value := get("LOG_JSON")) is not None:
            config.log_json = _parse_bool("LOG_JSON", value)
        if (value := get("DASHBOARD_HOST")) is not None:
            config.dashboard.host = None if value.lower() == "none" else value
        if (value := get("DASHBOARD_PORT")) is not None:
            config.dashboard.port = _parse_int("DASHBOARD_PORT", value)
        if (value := get("GITHUB_TOKEN")) is not None:
            config.catalog.token = value

        return config


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}")


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {value!r}")


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{ENV_PREFIX}{name} must be a boolean, got {value!r}")
