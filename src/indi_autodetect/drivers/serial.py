"""Serial port enumeration for equipment detection.

Mounts and focusers behind USB-serial adapters show up as serial ports
rather than as recognizable USB devices. The detector lists them through
the ``PortEnumerator`` protocol so tests can inject fixed port lists.

Example:
    class MockComPort:
        device = "/dev/ttyUSB0"
        description = "FT232R USB UART"
        hwid = "USB VID:PID=0403:6001"

    class MockPortEnumerator:
        def comports(self):
            return [MockComPort()]

    detector = EquipmentDetector(..., ports=MockPortEnumerator())
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import serial.tools.list_ports


@runtime_checkable
class PortEnumerator(Protocol):  # pragma: no cover
    """Protocol for enumerating serial ports.

    Abstraction over ``serial.tools.list_ports`` for testing.
    """

    def comports(self) -> list[Any]:
        """Enumerate serial ports on the system.

        Returns:
            Port info objects with at least ``device``, ``description``
            and ``hwid`` attributes.
        """
        ...


class PySerialPortEnumerator:
    """PortEnumerator backed by pyserial."""

    def comports(self) -> list[Any]:
        return list_serial_ports()


def list_serial_ports() -> list[Any]:  # pragma: no cover
    """List serial ports using pyserial's ``list_ports.comports()``.

    Returns:
        Port info objects with device/description/hwid attributes.

    Example:
        >>> for p in list_serial_ports():
        ...     print(f"{p.device}: {p.description}")
    """
    return list(serial.tools.list_ports.comports())


__all__ = [
    "PortEnumerator",
    "PySerialPortEnumerator",
    "list_serial_ports",
]
