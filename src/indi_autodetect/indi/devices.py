"""Typed wrappers over INDI standard properties.

Each wrapper translates a high-level action into writes on the standard
INDI property names and, where the driver reports completion through the
property state, waits for it:

=================  ===============================================
Wrapper            Properties
=================  ===============================================
IndiDevice         CONNECTION
IndiCamera         CCD_EXPOSURE, CCD_ABORT_EXPOSURE, CCD_TEMPERATURE,
                   CCD_COOLER, CCD_BINNING, CCD_FRAME
IndiMount          ON_COORD_SET, EQUATORIAL_EOD_COORD,
                   TELESCOPE_TRACK_STATE, TELESCOPE_PARK,
                   TELESCOPE_ABORT_MOTION
IndiFocuser        ABS_FOCUS_POSITION, REL_FOCUS_POSITION,
                   FOCUS_MOTION, FOCUS_ABORT_MOTION
IndiFilterWheel    FILTER_SLOT, FILTER_NAME
=================  ===============================================

Example:
    camera = await open_device(transport, "ZWO CCD ASI294MC Pro")
    await camera.connect()
    await camera.start_exposure(10.0)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Collection, Iterable, Mapping

from indi_autodetect.devices.types import DeviceType
from indi_autodetect.errors import PropertyAlertError, PropertyTimeoutError
from indi_autodetect.indi.properties import (
    STATE_ALERT,
    STATE_OK,
    SWITCH_ON,
    PropertyTransport,
    PropertyValue,
)
from indi_autodetect.observability import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
PROPERTY_TIMEOUT = 5.0
POLL_INTERVAL = 0.5
#: Added to the exposure time when waiting for an exposure to finish.
EXPOSURE_MARGIN = 30.0
SLEW_TIMEOUT = 180.0


def _to_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _to_int(value: str | None) -> int | None:
    number = _to_float(value)
    return int(number) if number is not None else None


class IndiDevice:
    """One named device on the control server."""

    kind = DeviceType.UNKNOWN

    def __init__(
        self,
        transport: PropertyTransport,
        name: str,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        """Wrap ``name`` on ``transport``.

        Args:
            transport: Property access.
            name: INDI device name, e.g. "ZWO CCD ASI294MC Pro".
            poll_interval: Seconds between polls while waiting.
        """
        self.transport = transport
        self.name = name
        self._poll_interval = poll_interval

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    # -------------------------------------------------------------------------
    # Property access
    # -------------------------------------------------------------------------

    async def get_value(self, prop: str, elem: str) -> str | None:
        return await self.transport.get_property(self.name, prop, elem)

    async def get_number(self, prop: str, elem: str) -> float | None:
        return _to_float(await self.get_value(prop, elem))

    async def set_values(self, prop: str, values: Mapping[str, PropertyValue]) -> None:
        await self.transport.set_property(self.name, prop, values)

    async def wait_for_property(
        self, prop: str, timeout: float = PROPERTY_TIMEOUT
    ) -> None:
        """Wait until the device defines ``prop``.

        Raises:
            PropertyTimeoutError: If it is still undefined after ``timeout``.
        """

        async def defined() -> None:
            while await self.transport.get_state(self.name, prop) is None:
                await asyncio.sleep(self._poll_interval)

        try:
            await asyncio.wait_for(defined(), timeout)
        except asyncio.TimeoutError:
            raise PropertyTimeoutError(self.name, prop, timeout) from None

    async def wait_for_state(
        self,
        prop: str,
        targets: Collection[str] = (STATE_OK,),
        timeout: float = DEFAULT_TIMEOUT,
        trigger: Callable[[], Awaitable[None]] | None = None,
    ) -> str:
        """Wait for ``prop`` to report one of ``targets``.

        State changes arrive through a transport subscription feeding a
        queue; the property is polled while waiting. The subscription is
        registered before ``trigger`` runs, so a fast transition caused by
        the trigger is not missed. The first reading after ``trigger``
        counts even when nothing changed, so a write that leaves the
        property in a target state (selecting the current filter slot)
        completes at once.

        Args:
            prop: Property name.
            targets: Accepted states.
            timeout: Seconds to wait.
            trigger: Coroutine function run after subscribing, typically
                the property write.

        Returns:
            The state reached.

        Raises:
            PropertyAlertError: If the property switches to Alert.
            PropertyTimeoutError: If no target state is reported in time.
        """
        queue: asyncio.Queue[str | None] = asyncio.Queue()

        def listener(device: str, name: str, state: str | None, values: dict[str, str]) -> None:
            if device == self.name and name == prop:
                queue.put_nowait(state)

        async def reached() -> str:
            while True:
                state = await queue.get()
                if state == STATE_ALERT:
                    raise PropertyAlertError(self.name, prop)
                if state in targets:
                    return state

        async def poll() -> None:
            first = await self.transport.poll(self.name, prop)
            queue.put_nowait(first.state)
            while True:
                await asyncio.sleep(self._poll_interval)
                await self.transport.poll(self.name, prop)

        unsubscribe = self.transport.subscribe(listener)
        poller: asyncio.Task[None] | None = None
        try:
            if trigger is not None:
                await trigger()
            poller = asyncio.create_task(poll())
            return await asyncio.wait_for(reached(), timeout)
        except asyncio.TimeoutError:
            raise PropertyTimeoutError(self.name, prop, timeout) from None
        finally:
            if poller is not None:
                poller.cancel()
            unsubscribe()

    async def set_and_wait(
        self,
        prop: str,
        values: Mapping[str, PropertyValue],
        timeout: float = DEFAULT_TIMEOUT,
    ) -> str:
        """Write ``values`` and wait for ``prop`` to settle in Ok."""

        async def write() -> None:
            await self.set_values(prop, values)

        return await self.wait_for_state(prop, (STATE_OK,), timeout, trigger=write)

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    async def is_connected(self) -> bool:
        return await self.get_value("CONNECTION", "CONNECT") == SWITCH_ON

    async def connect(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        if await self.is_connected():
            return
        logger.info("Connecting INDI device", device=self.name)
        await self.set_and_wait(
            "CONNECTION", {"CONNECT": True, "DISCONNECT": False}, timeout
        )

    async def disconnect(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        if not await self.is_connected():
            return
        logger.info("Disconnecting INDI device", device=self.name)
        await self.set_and_wait(
            "CONNECTION", {"CONNECT": False, "DISCONNECT": True}, timeout
        )


class IndiCamera(IndiDevice):
    kind = DeviceType.CAMERA

    async def start_exposure(self, seconds: float, wait: bool = True) -> None:
        """Expose for ``seconds``; with ``wait`` return once it completes.

        Raises:
            ValueError: If ``seconds`` is negative.
            PropertyTimeoutError: If the exposure does not finish within
                ``seconds + EXPOSURE_MARGIN``.
        """
        if seconds < 0:
            raise ValueError(f"Exposure time must not be negative: {seconds}")
        await self.wait_for_property("CCD_EXPOSURE")
        values = {"CCD_EXPOSURE_VALUE": seconds}
        if not wait:
            await self.set_values("CCD_EXPOSURE", values)
            return
        logger.info("Starting exposure", device=self.name, seconds=seconds)
        await self.set_and_wait("CCD_EXPOSURE", values, seconds + EXPOSURE_MARGIN)

    async def abort_exposure(self) -> None:
        await self.set_values("CCD_ABORT_EXPOSURE", {"ABORT": True})

    async def set_temperature(self, celsius: float) -> None:
        await self.set_values("CCD_TEMPERATURE", {"CCD_TEMPERATURE_VALUE": celsius})

    async def get_temperature(self) -> float | None:
        return await self.get_number("CCD_TEMPERATURE", "CCD_TEMPERATURE_VALUE")

    async def set_cooler(self, on: bool) -> None:
        await self.set_and_wait("CCD_COOLER", {"COOLER_ON": on, "COOLER_OFF": not on})

    async def set_binning(self, x: int, y: int | None = None) -> None:
        await self.set_and_wait(
            "CCD_BINNING", {"HOR_BIN": x, "VER_BIN": y if y is not None else x}
        )

    async def set_roi(self, x: int, y: int, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid frame size {width}x{height}")
        await self.set_and_wait(
            "CCD_FRAME", {"X": x, "Y": y, "WIDTH": width, "HEIGHT": height}
        )


class IndiMount(IndiDevice):
    kind = DeviceType.MOUNT

    async def _goto(self, mode: str, ra: float, dec: float, timeout: float) -> None:
        if not 0 <= ra < 24:
            raise ValueError(f"RA must be in hours [0, 24): {ra}")
        if not -90 <= dec <= 90:
            raise ValueError(f"DEC must be in degrees [-90, 90]: {dec}")
        await self.set_values(
            "ON_COORD_SET",
            {"TRACK": mode == "TRACK", "SLEW": mode == "SLEW", "SYNC": mode == "SYNC"},
        )
        await self.set_and_wait("EQUATORIAL_EOD_COORD", {"RA": ra, "DEC": dec}, timeout)

    async def slew_to_coord(
        self, ra: float, dec: float, timeout: float = SLEW_TIMEOUT
    ) -> None:
        """Slew to JNow ``ra`` (hours) / ``dec`` (degrees) and track."""
        logger.info("Slewing mount", device=self.name, ra=ra, dec=dec)
        await self._goto("TRACK", ra, dec, timeout)

    async def sync(self, ra: float, dec: float) -> None:
        await self._goto("SYNC", ra, dec, DEFAULT_TIMEOUT)

    async def set_tracking(self, on: bool) -> None:
        await self.set_and_wait(
            "TELESCOPE_TRACK_STATE", {"TRACK_ON": on, "TRACK_OFF": not on}
        )

    async def park(self, timeout: float = SLEW_TIMEOUT) -> None:
        await self.set_and_wait("TELESCOPE_PARK", {"PARK": True, "UNPARK": False}, timeout)

    async def unpark(self) -> None:
        await self.set_and_wait("TELESCOPE_PARK", {"PARK": False, "UNPARK": True})

    async def abort_motion(self) -> None:
        await self.set_values("TELESCOPE_ABORT_MOTION", {"ABORT": True})

    async def get_position(self) -> tuple[float, float] | None:
        values = await self.transport.get_values(self.name, "EQUATORIAL_EOD_COORD")
        ra = _to_float(values.get("RA"))
        dec = _to_float(values.get("DEC"))
        if ra is None or dec is None:
            return None
        return ra, dec


class IndiFocuser(IndiDevice):
    kind = DeviceType.FOCUSER

    async def move_absolute(self, position: int, timeout: float = DEFAULT_TIMEOUT) -> None:
        if position < 0:
            raise ValueError(f"Focuser position must not be negative: {position}")
        await self.set_and_wait(
            "ABS_FOCUS_POSITION", {"FOCUS_ABSOLUTE_POSITION": position}, timeout
        )

    async def move_relative(self, steps: int, timeout: float = DEFAULT_TIMEOUT) -> None:
        """Move ``steps`` outward (positive) or inward (negative)."""
        if steps == 0:
            return
        await self.set_values(
            "FOCUS_MOTION", {"FOCUS_INWARD": steps < 0, "FOCUS_OUTWARD": steps > 0}
        )
        await self.set_and_wait(
            "REL_FOCUS_POSITION", {"FOCUS_RELATIVE_POSITION": abs(steps)}, timeout
        )

    async def abort(self) -> None:
        await self.set_values("FOCUS_ABORT_MOTION", {"ABORT": True})

    async def get_position(self) -> int | None:
        return _to_int(await self.get_value("ABS_FOCUS_POSITION", "FOCUS_ABSOLUTE_POSITION"))


class IndiFilterWheel(IndiDevice):
    kind = DeviceType.FILTER_WHEEL

    async def set_filter(self, slot: int, timeout: float = DEFAULT_TIMEOUT) -> None:
        """Rotate to ``slot`` (1-based)."""
        if slot < 1:
            raise ValueError(f"Filter slots start at 1: {slot}")
        await self.set_and_wait("FILTER_SLOT", {"FILTER_SLOT_VALUE": slot}, timeout)

    async def get_current_filter(self) -> int | None:
        return _to_int(await self.get_value("FILTER_SLOT", "FILTER_SLOT_VALUE"))

    async def get_filter_names(self) -> list[str]:
        values = await self.transport.get_values(self.name, "FILTER_NAME")
        prefix = "FILTER_SLOT_NAME_"
        slots = sorted(
            (int(key[len(prefix):]), value)
            for key, value in values.items()
            if key.startswith(prefix) and key[len(prefix):].isdigit()
        )
        return [name for _, name in slots]


# =============================================================================
# Factory
# =============================================================================

_KIND_PROPERTIES: tuple[tuple[DeviceType, tuple[str, ...]], ...] = (
    (DeviceType.CAMERA, ("CCD_EXPOSURE",)),
    (DeviceType.MOUNT, ("EQUATORIAL_EOD_COORD", "TELESCOPE_PARK")),
    (DeviceType.FOCUSER, ("ABS_FOCUS_POSITION", "REL_FOCUS_POSITION", "FOCUS_MOTION")),
    (DeviceType.FILTER_WHEEL, ("FILTER_SLOT",)),
)

_WRAPPERS: dict[DeviceType, type[IndiDevice]] = {
    DeviceType.CAMERA: IndiCamera,
    DeviceType.GUIDE_CAMERA: IndiCamera,
    DeviceType.MOUNT: IndiMount,
    DeviceType.FOCUSER: IndiFocuser,
    DeviceType.FILTER_WHEEL: IndiFilterWheel,
}


def detect_device_kind(properties: Iterable[str]) -> DeviceType:
    """Guess the device kind from the properties it defines.

    Example:
        >>> detect_device_kind(["CONNECTION", "CCD_EXPOSURE", "CCD_FRAME"])
        <DeviceType.CAMERA: 'camera'>
    """
    defined = set(properties)
    for kind, markers in _KIND_PROPERTIES:
        if defined.intersection(markers):
            return kind
    return DeviceType.UNKNOWN


def create_device(
    transport: PropertyTransport, name: str, kind: DeviceType | str
) -> IndiDevice:
    """Wrapper for ``kind``; unknown kinds get the plain ``IndiDevice``."""
    wrapper = _WRAPPERS.get(DeviceType.parse(kind) if isinstance(kind, str) else kind)
    return (wrapper or IndiDevice)(transport, name)


async def open_device(transport: PropertyTransport, name: str) -> IndiDevice:
    """Detect the kind of ``name`` from its properties and wrap it."""
    kind = detect_device_kind(await transport.list_properties(name))
    logger.debug("INDI device kind detected", device=name, kind=kind.value)
    return create_device(transport, name, kind)


__all__ = [
    "EXPOSURE_MARGIN",
    "IndiCamera",
    "IndiDevice",
    "IndiFilterWheel",
    "IndiFocuser",
    "IndiMount",
    "create_device",
    "detect_device_kind",
    "open_device",
]
