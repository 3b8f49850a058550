"""Driver layer: OS commands, upstream catalog, serial ports, driver resolution.

Process and catalog modules come first; the resolver depends on the
equipment types.

    from indi_autodetect.drivers import DriverResolver, AsyncCommandRunner
"""

from indi_autodetect.drivers.process import (
    AsyncCommandRunner,
    CommandResult,
    CommandRunner,
    ProcessLauncher,
    ServerProcess,
    SubprocessLauncher,
)
from indi_autodetect.drivers.catalog import CatalogSource, DriverCatalog
from indi_autodetect.drivers.serial import PortEnumerator, PySerialPortEnumerator
from indi_autodetect.drivers.resolver import DriverResolver, normalize_driver_name

__all__ = [
    # Processes
    "AsyncCommandRunner",
    "CommandResult",
    "CommandRunner",
    "ProcessLauncher",
    "ServerProcess",
    "SubprocessLauncher",
    # Catalog
    "CatalogSource",
    "DriverCatalog",
    # Serial
    "PortEnumerator",
    "PySerialPortEnumerator",
    # Resolver
    "DriverResolver",
    "normalize_driver_name",
]
