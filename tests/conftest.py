"""Pytest configuration and fixtures for indi-autodetect tests.

Fakes live in ``tests/fakes.py``. Timing values in ``app_config`` are
shrunk to zero or pushed far out so background loops do not fire during
a test unless the test asks them to.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from indi_autodetect.config import AppConfig
from indi_autodetect.services import ServiceContainer
from tests.fakes import (
    NETSTAT_LISTEN,
    FakeCommandRunner,
    FakeLauncher,
    FakeTransport,
    MockPortEnumerator,
)


@pytest.fixture
def runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def listening_runner() -> FakeCommandRunner:
    """Runner reporting indiserver listening on port 7624."""
    fake = FakeCommandRunner()
    fake.set("netstat", stdout=NETSTAT_LISTEN)
    return fake


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def bin_dir(tmp_path: Path) -> Path:
    """Empty driver search directory."""
    path = tmp_path / "bin"
    path.mkdir()
    return path


@pytest.fixture
def app_config(tmp_path: Path, bin_dir: Path) -> AppConfig:
    """Offline configuration with immediate timings.

    Background polling intervals are an hour so loops never tick during
    a test; start grace, retry delay and pauses are zero.
    """
    config = AppConfig(data_dir=tmp_path / "data")
    config.scanner.poll_interval = 3600
    config.scanner.restart_delay = 0
    config.scanner.enrich = False
    config.knowledge_base.remote_enabled = False
    config.resolver.search_dirs = [str(bin_dir)]
    config.resolver.use_sudo = False
    config.supervisor.start_grace = 0
    config.supervisor.retry_delay = 0
    config.supervisor.restart_pause = 0
    config.supervisor.stop_timeout = 0.5
    config.supervisor.fifo_path = str(tmp_path / "indiFIFO")
    config.coordinator.restart_pause = 0
    config.monitor.interval = 3600
    config.dashboard.host = None
    return config


@pytest.fixture
def services(
    app_config: AppConfig,
    listening_runner: FakeCommandRunner,
    launcher: FakeLauncher,
) -> ServiceContainer:
    """Container wired with fakes, built but not started."""
    return ServiceContainer.build(
        app_config,
        runner=listening_runner,
        launcher=launcher,
        ports=MockPortEnumerator(),
        transport=FakeTransport(),
    )
