"""Test helper functions for indi-autodetect.

Provides protocol compliance checks, a polling helper for waiting on
background tasks, and a builder for a detector wired to fakes.

Example:
    from tests.helpers import assert_implements_protocol, wait_until
    from indi_autodetect.drivers.process import CommandRunner

    def test_fake_runner_implements_protocol():
        assert_implements_protocol(FakeCommandRunner(), CommandRunner)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from indi_autodetect.config import (
    DetectorConfig,
    KnowledgeBaseConfig,
    ResolverConfig,
    ScannerConfig,
)
from indi_autodetect.devices.detector import EquipmentDetector
from indi_autodetect.devices.knowledge_base import EquipmentKnowledgeBase
from indi_autodetect.devices.usb_scanner import UsbScanner
from indi_autodetect.drivers.resolver import DriverResolver


def assert_implements_protocol(instance: object, protocol: type[Any]) -> None:
    """Assert that an instance implements a runtime-checkable Protocol.

    Fakes used throughout the suite stand in for real OS seams; if one
    drifts from its protocol the tests would silently exercise the wrong
    interface. The failure message lists the missing members.

    Args:
        instance: Object to check.
        protocol: Protocol class decorated with ``@runtime_checkable``.

    Raises:
        AssertionError: If ``instance`` does not satisfy ``protocol``.

    Example:
        >>> assert_implements_protocol(FakeLauncher(), ProcessLauncher)
    """
    if isinstance(instance, protocol):
        return
    object_attrs = set(dir(object))
    members = {
        attr for attr in set(dir(protocol)) - object_attrs
        if not attr.startswith("_")
    }
    missing = sorted(attr for attr in members if not hasattr(instance, attr))
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {', '.join(missing) or 'unknown'}"
    )


async def wait_until(
    predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01
) -> None:
    """Yield to the event loop until ``predicate()`` is true.

    Raises:
        AssertionError: If the predicate is still false after ``timeout``.
    """
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not reached before timeout")
        await asyncio.sleep(interval)


def build_detector(
    tmp_path: Path,
    runner: Any,
    bin_dir: Path,
    ports: Any = None,
    starter: Any = None,
    **config: Any,
) -> tuple[EquipmentDetector, DriverResolver]:
    """Detector over real resolver, scanner and static knowledge base.

    Only the OS seams (``runner``, ``ports``, ``starter``) are fakes. The
    scanner is not started, so every detection runs ``lsusb``.

    Args:
        tmp_path: Directory for the knowledge base cache.
        runner: Fake command runner answering lsusb and apt-get.
        bin_dir: Driver search directory.
        ports: Serial port enumerator.
        starter: Driver starter handed to the detector.
        **config: DetectorConfig overrides.
    """
    resolver = DriverResolver(
        ResolverConfig(search_dirs=[str(bin_dir)], use_sudo=False), runner
    )
    scanner = UsbScanner(
        ScannerConfig(auto_restart=False, enrich=False), runner, resolver
    )
    kb = EquipmentKnowledgeBase(
        KnowledgeBaseConfig(remote_enabled=False), tmp_path / "kb.json"
    )
    kb.load_static()
    detector = EquipmentDetector(
        DetectorConfig(**config), scanner, kb, resolver, ports, starter
    )
    return detector, resolver
