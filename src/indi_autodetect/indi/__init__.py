"""Control server: indiserver supervision, orchestration and device properties."""

from indi_autodetect.indi.supervisor import ControlServerSupervisor
from indi_autodetect.indi.coordinator import OrchestrationCoordinator
from indi_autodetect.indi.properties import (
    CliPropertyTransport,
    PropertySnapshot,
    PropertyTransport,
)
from indi_autodetect.indi.devices import (
    IndiCamera,
    IndiDevice,
    IndiFilterWheel,
    IndiFocuser,
    IndiMount,
    create_device,
    detect_device_kind,
    open_device,
)

__all__ = [
    # Server
    "ControlServerSupervisor",
    "OrchestrationCoordinator",
    # Properties
    "CliPropertyTransport",
    "PropertySnapshot",
    "PropertyTransport",
    # Devices
    "IndiCamera",
    "IndiDevice",
    "IndiFilterWheel",
    "IndiFocuser",
    "IndiMount",
    "create_device",
    "detect_device_kind",
    "open_device",
]
