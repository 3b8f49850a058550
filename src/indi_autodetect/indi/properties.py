"""INDI property access.

``PropertyTransport`` is the seam between device wrappers and the control
server. ``CliPropertyTransport`` implements it with the ``indi_getprop`` /
``indi_setprop`` tools shipped with INDI, polling for changes; a native
XML-protocol client can implement the same protocol later.

Property addressing follows the INDI tools: ``device.property.element``.
Every property has a state, one of ``Idle``, ``Ok``, ``Busy``, ``Alert``.

Example:
    transport = CliPropertyTransport(AsyncCommandRunner())
    await transport.set_property("ZWO CCD ASI294MC Pro", "CCD_EXPOSURE",
                                 {"CCD_EXPOSURE_VALUE": 5})
    state = await transport.get_state("ZWO CCD ASI294MC Pro", "CCD_EXPOSURE")
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from indi_autodetect.config import DEFAULT_INDI_PORT
from indi_autodetect.drivers.process import CommandRunner
from indi_autodetect.errors import CommandError
from indi_autodetect.observability import get_logger

logger = get_logger(__name__)

STATE_IDLE = "Idle"
STATE_OK = "Ok"
STATE_BUSY = "Busy"
STATE_ALERT = "Alert"

SWITCH_ON = "On"
SWITCH_OFF = "Off"

#: Pseudo element ``indi_getprop`` reports the property state under.
STATE_ELEMENT = "_STATE"

GETPROP_TIMEOUT = 2

PropertyValue = str | int | float | bool
# (device, property, state, values)
PropertyListener = Callable[[str, str, str | None, dict[str, str]], None]
Unsubscribe = Callable[[], None]


@dataclass
class PropertySnapshot:
    """Last polled values and state of one property."""

    state: str | None = None
    values: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class PropertyTransport(Protocol):  # pragma: no cover
    """Read/write access to INDI device properties."""

    async def get_property(
        self, device: str, prop: str, elem: str
    ) -> str | None:
        """Current value of one element, or None if undefined."""
        ...

    async def get_values(self, device: str, prop: str) -> dict[str, str]:
        """All element values of a property (empty if undefined)."""
        ...

    async def get_state(self, device: str, prop: str) -> str | None:
        """Property state, or None if undefined."""
        ...

    async def list_properties(self, device: str) -> list[str]:
        """Names of every property the device defines."""
        ...

    async def set_property(
        self, device: str, prop: str, values: Mapping[str, PropertyValue]
    ) -> None:
        """Send new element values."""
        ...

    def subscribe(self, listener: PropertyListener) -> Unsubscribe:
        """Register for property changes; returns the unsubscribe callable."""
        ...

    async def poll(self, device: str, prop: str) -> PropertySnapshot:
        """Refresh one property and notify listeners when it changed."""
        ...


def format_value(value: PropertyValue) -> str:
    """INDI text form of a value; booleans become switch states.

    Example:
        >>> format_value(True), format_value(1.5)
        ('On', '1.5')
    """
    if isinstance(value, bool):
        return SWITCH_ON if value else SWITCH_OFF
    return str(value)


def parse_getprop(output: str) -> dict[tuple[str, str], dict[str, str]]:
    """Parse ``indi_getprop`` lines into ``{(device, prop): {elem: value}}``.

    Device names may contain dots and spaces, so the key is split from
    the right.

    Example:
        >>> parse_getprop("EQMod Mount.EQUATORIAL_EOD_COORD.RA=5.5")
        {('EQMod Mount', 'EQUATORIAL_EOD_COORD'): {'RA': '5.5'}}
    """
    result: dict[tuple[str, str], dict[str, str]] = {}
    for line in output.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        parts = key.strip().rsplit(".", 2)
        if len(parts) != 3:
            continue
        device, prop, elem = parts
        result.setdefault((device, prop), {})[elem] = value.strip()
    return result


class CliPropertyTransport:
    """``PropertyTransport`` over the INDI command-line tools."""

    def __init__(
        self,
        runner: CommandRunner,
        host: str = "localhost",
        port: int = DEFAULT_INDI_PORT,
        timeout: float = GETPROP_TIMEOUT,
    ) -> None:
        self._runner = runner
        self._host = host
        self._port = port
        self._timeout = timeout
        self._listeners: list[PropertyListener] = []
        self._snapshots: dict[tuple[str, str], PropertySnapshot] = {}

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def _getprop(self, pattern: str) -> dict[tuple[str, str], dict[str, str]]:
        try:
            result = await self._runner.run(
                "indi_getprop",
                "-h", self._host,
                "-p", str(self._port),
                "-t", f"{self._timeout:g}",
                pattern,
                timeout=self._timeout + 3,
            )
        except CommandError as e:
            logger.debug("indi_getprop failed", pattern=pattern, error=str(e))
            return {}
        # indi_getprop exits non-zero when nothing matched
        return parse_getprop(result.stdout)

    async def get_values(self, device: str, prop: str) -> dict[str, str]:
        found = await self._getprop(f"{device}.{prop}.*")
        return found.get((device, prop), {})

    async def get_property(self, device: str, prop: str, elem: str) -> str | None:
        found = await self._getprop(f"{device}.{prop}.{elem}")
        return found.get((device, prop), {}).get(elem)

    async def get_state(self, device: str, prop: str) -> str | None:
        return await self.get_property(device, prop, STATE_ELEMENT)

    async def list_properties(self, device: str) -> list[str]:
        found = await self._getprop(f"{device}.*.*")
        return sorted(prop for dev, prop in found if dev == device)

    async def set_property(
        self, device: str, prop: str, values: Mapping[str, PropertyValue]
    ) -> None:
        """Send values with one ``indi_setprop`` call.

        Raises:
            ValueError: If ``values`` is empty.
            CommandError: If indi_setprop fails.
        """
        if not values:
            raise ValueError("No property values given")
        names = ";".join(values)
        formatted = ";".join(format_value(v) for v in values.values())
        spec = f"{device}.{prop}.{names}={formatted}"
        result = await self._runner.run(
            "indi_setprop", "-h", self._host, "-p", str(self._port), spec,
            timeout=self._timeout + 3,
        )
        if not result.ok:
            raise CommandError(
                f"indi_setprop failed ({result.returncode}): {result.stderr.strip()}",
                result.args,
            )
        logger.debug("Property set", device=device, prop=prop, values=dict(values))

    def subscribe(self, listener: PropertyListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def poll(self, device: str, prop: str) -> PropertySnapshot:
        """Re-read a property; listeners hear about it if anything changed."""
        found = await self._getprop(f"{device}.{prop}.*")
        values = dict(found.get((device, prop), {}))
        state = values.pop(STATE_ELEMENT, None)
        if state is None and values:
            state = await self.get_state(device, prop)

        snapshot = PropertySnapshot(state=state, values=values)
        previous = self._snapshots.get((device, prop))
        self._snapshots[(device, prop)] = snapshot
        if previous is None or previous != snapshot:
            for listener in list(self._listeners):
                try:
                    listener(device, prop, state, dict(values))
                except Exception:
                    logger.exception("Property listener failed", device=device, prop=prop)
        return snapshot


__all__ = [
    "STATE_ALERT",
    "STATE_BUSY",
    "STATE_IDLE",
    "STATE_OK",
    "CliPropertyTransport",
    "PropertyListener",
    "PropertySnapshot",
    "PropertyTransport",
    "format_value",
    "parse_getprop",
]
