"""indiserver process supervision.

Owns the single ``indiserver`` child process: start with a driver set,
stop, restart, add/remove drivers, and bounded automatic restarts after
crashes.

Lifecycle events (published on ``events``):
    server_started    {"drivers", "pid"}
    server_stopped    {}
    server_restarted  {"drivers"}
    server_exit       {"code", "signal"}    every exit, expected or not
    server_log        {"stream", "message"} one per output line
    server_error      exception instance

Retry policy:
    An unexpected non-zero exit schedules an automatic start with the same
    drivers after ``retry_delay``. Automatic starts count against
    ``max_retries`` and never reset the counter; only an explicit
    ``start``/``restart`` does. Once the limit is reached a
    ``RetriesExhaustedError`` is published and the server stays down.
    Exits during start, stop or restart never schedule a retry.

Example:
    supervisor = ControlServerSupervisor(SupervisorConfig(), resolver, runner)
    await supervisor.start(["indi_asi_ccd", "indi_eqmod_telescope"])
    await supervisor.add_driver("indi_asi_wheel")
    await supervisor.stop()
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from indi_autodetect.config import SupervisorConfig
from indi_autodetect.devices.types import ControlServerStatus
from indi_autodetect.drivers.process import (
    COMMAND_NOT_FOUND,
    CommandRunner,
    ProcessLauncher,
    ServerProcess,
    SubprocessLauncher,
    describe_exit,
)
from indi_autodetect.drivers.resolver import DriverResolver
from indi_autodetect.errors import (
    CommandError,
    RetriesExhaustedError,
    ServerStartError,
)
from indi_autodetect.events import EventBus, EventType
from indi_autodetect.observability import OperationStats, get_logger

logger = get_logger(__name__)

#: Captured output lines kept for ``get_recent_logs``.
OUTPUT_BUFFER_SIZE = 1000

NETSTAT_TIMEOUT = 5.0


def count_port_lines(output: str, port: int, state: str) -> int:
    """Count ``netstat``/``ss`` lines in ``state`` whose local address is ``port``.

    Both tools print the local address in the fourth column.

    Example:
        >>> count_port_lines(
        ...     "tcp 0 0 0.0.0.0:7624 0.0.0.0:* LISTEN", 7624, "LISTEN"
        ... )
        1
    """
    suffix = f":{port}"
    count = 0
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 4 or state not in line.upper():
            continue
        if parts[3].endswith(suffix):
            count += 1
    return count


class ControlServerSupervisor:
    """Supervises one indiserver process."""

    def __init__(
        self,
        config: SupervisorConfig,
        resolver: DriverResolver,
        runner: CommandRunner,
        launcher: ProcessLauncher | None = None,
        stats: OperationStats | None = None,
        events: EventBus | None = None,
    ) -> None:
        """Create a stopped supervisor.

        Args:
            config: Port, flags, retry and timing settings.
            resolver: Turns driver names into executable paths.
            runner: Runs netstat/ss/journalctl.
            launcher: Spawns indiserver. Defaults to a real subprocess
                launcher.
            stats: Receives start/restart/retry records.
            events: Bus to publish on. A private bus is created by default.
        """
        self._config = config
        self._resolver = resolver
        self._runner = runner
        self._launcher = launcher or SubprocessLauncher()
        self._stats = stats
        self.events = events or EventBus("control-server")

        self._process: ServerProcess | None = None
        self._drivers: list[str] = []
        self._start_time: float | None = None
        self._retry_count = 0
        self._restarting = False
        self._starting = False
        self._stopping = False
        self._lock = asyncio.Lock()
        self._watch_task: asyncio.Task[None] | None = None
        self._output_tasks: list[asyncio.Task[None]] = []
        self._retry_task: asyncio.Task[None] | None = None
        self._output: deque[str] = deque(maxlen=OUTPUT_BUFFER_SIZE)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def is_restarting(self) -> bool:
        return self._restarting

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def get_current_drivers(self) -> list[str]:
        return list(self._drivers)

    def is_driver_loaded(self, driver: str) -> bool:
        return self.is_running and driver in self._drivers

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, drivers: Sequence[str] | None = None) -> bool:
        """Start indiserver with ``drivers``; restart if already running.

        The running check is made under the lock, so overlapping calls on
        a stopped server launch one process and the later call restarts it.

        Returns:
            False when the start became a restart that was ignored because
            another restart was in progress.

        Raises:
            ServerStartError: If the process exits or is not listening
                after the start grace period.
        """
        async with self._lock:
            if not self.is_running:
                await self._start_locked(list(drivers or []), explicit=True)
                return True
        return await self.restart(drivers)

    async def stop(self) -> None:
        """Stop indiserver and cancel any pending automatic restart."""
        self._cancel_retry()
        async with self._lock:
            await self._stop_locked()

    async def restart(self, drivers: Sequence[str] | None = None) -> bool:
        """Stop, pause, and start with ``drivers`` (current set when None).

        A no-op returning False while another restart is in progress.

        Raises:
            ServerStartError: If the new process does not come up.
        """
        if self._restarting:
            logger.info("Restart already in progress, ignoring request")
            return False

        self._restarting = True
        started = time.monotonic()
        try:
            async with self._lock:
                target = list(self._drivers if drivers is None else drivers)
                logger.info("Restarting indiserver", drivers=target)
                await self._stop_locked()
                await asyncio.sleep(self._config.restart_pause)
                await self._start_locked(target, explicit=True)
        except Exception as e:
            self._record("restart", started, e)
            if not isinstance(e, ServerStartError):
                self.events.emit(EventType.SERVER_ERROR, e)
            raise
        finally:
            self._restarting = False

        self._record("restart", started)
        logger.info("indiserver restarted", drivers=self._drivers)
        self.events.emit(EventType.SERVER_RESTARTED, {"drivers": list(self._drivers)})
        return True

    async def _start_locked(self, drivers: list[str], explicit: bool) -> None:
        paths: list[str] = []
        for driver in drivers:
            path = self._resolver.resolve_driver_path(driver)
            if path is None:
                logger.warning("Driver executable not found, skipping", driver=driver)
                continue
            paths.append(path)
        if not paths:
            logger.warning("Starting indiserver without drivers")

        args = [self._config.binary, "-p", str(self._config.port)]
        if self._config.verbose:
            args.append("-v")
        if self._config.enable_fifo:
            args.extend(["-f", self._config.fifo_path])
        args.extend(paths)

        started = time.monotonic()
        self._starting = True
        try:
            try:
                process = await self._launcher.launch(args)
            except OSError as e:
                raise ServerStartError(
                    f"Cannot launch {self._config.binary}: {e}"
                ) from e

            self._process = process
            self._attach(process)
            logger.info("indiserver launched", pid=process.pid, argv=args)

            await asyncio.sleep(self._config.start_grace)
            if process.returncode is not None:
                code, sig = describe_exit(process.returncode)
                raise ServerStartError(
                    f"indiserver exited during startup (code={code}, signal={sig})"
                )
            if not await self._is_listening():
                await self._terminate(process)
                raise ServerStartError(
                    f"indiserver is not listening on port {self._config.port}"
                )
        except ServerStartError as e:
            self._process = None
            self._record("start", started, e)
            logger.error("indiserver start failed", error=str(e))
            self.events.emit(EventType.SERVER_ERROR, e)
            raise
        finally:
            self._starting = False

        self._drivers = list(drivers)
        self._start_time = time.monotonic()
        if explicit:
            self._retry_count = 0
        self._record("start", started)
        logger.info("indiserver started", pid=process.pid, drivers=self._drivers)
        self.events.emit(
            EventType.SERVER_STARTED, {"drivers": list(self._drivers), "pid": process.pid}
        )

    async def _stop_locked(self) -> None:
        process = self._process
        if process is None:
            return

        logger.info("Stopping indiserver", pid=process.pid)
        await self._terminate(process)
        self._process = None
        self._drivers = []
        self._start_time = None
        logger.info("indiserver stopped")
        self.events.emit(EventType.SERVER_STOPPED, {})

    async def _terminate(self, process: ServerProcess) -> None:
        """SIGTERM, wait ``stop_timeout``, then SIGKILL. Waits for the watcher."""
        self._stopping = True
        try:
            if process.returncode is None:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), self._config.stop_timeout)
                except asyncio.TimeoutError:
                    logger.warning("indiserver ignored SIGTERM, killing", pid=process.pid)
                    process.kill()
                    await process.wait()
            watcher = self._watch_task
            if watcher is not None and watcher is not asyncio.current_task():
                await watcher
        finally:
            self._stopping = False
        for task in self._output_tasks:
            task.cancel()
        self._output_tasks = []

    # -------------------------------------------------------------------------
    # Process watching
    # -------------------------------------------------------------------------

    def _attach(self, process: ServerProcess) -> None:
        self._watch_task = asyncio.create_task(self._watch(process))
        self._output_tasks = [
            asyncio.create_task(self._pump(name, stream))
            for name, stream in (("stdout", process.stdout), ("stderr", process.stderr))
            if stream is not None
        ]

    async def _pump(self, name: str, stream: asyncio.StreamReader) -> None:
        while True:
            line = await stream.readline()
            if not line:
                return
            message = line.decode(errors="replace").rstrip()
            if not message:
                continue
            self._output.append(message)
            logger.debug("indiserver output", stream=name, message=message)
            self.events.emit(EventType.SERVER_LOG, {"stream": name, "message": message})

    async def _watch(self, process: ServerProcess) -> None:
        returncode = await process.wait()
        code, sig = describe_exit(returncode)
        logger.info("indiserver exited", pid=process.pid, code=code, signal=sig)
        self.events.emit(EventType.SERVER_EXIT, {"code": code, "signal": sig})

        if process is not self._process:
            return
        if self._stopping or self._restarting or self._starting:
            return

        drivers = list(self._drivers)
        self._process = None
        self._start_time = None
        if returncode == 0:
            self._drivers = []
            self.events.emit(EventType.SERVER_STOPPED, {})
            return

        if self._retry_count < self._config.max_retries:
            self._retry_count += 1
            logger.warning(
                "indiserver crashed, scheduling restart",
                attempt=self._retry_count,
                max_retries=self._config.max_retries,
                delay=self._config.retry_delay,
            )
            self._retry_task = asyncio.create_task(self._retry(drivers))
        else:
            self._give_up()

    async def _retry(self, drivers: list[str]) -> None:
        while True:
            await asyncio.sleep(self._config.retry_delay)
            started = time.monotonic()
            async with self._lock:
                if self._process is not None:
                    return
                try:
                    await self._start_locked(drivers, explicit=False)
                except ServerStartError as e:
                    self._record("retry", started, e)
                else:
                    self._record("retry", started)
                    return

            if self._retry_count >= self._config.max_retries:
                self._give_up()
                return
            self._retry_count += 1

    def _give_up(self) -> None:
        error = RetriesExhaustedError(self._retry_count)
        logger.error("indiserver retries exhausted", attempts=self._retry_count)
        self._drivers = []
        self.events.emit(EventType.SERVER_ERROR, error)
        self.events.emit(EventType.SERVER_STOPPED, {})

    def _cancel_retry(self) -> None:
        task = self._retry_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._retry_task = None

    def _record(self, operation: str, started: float, error: Exception | None = None) -> None:
        if self._stats is None:
            return
        duration_ms = (time.monotonic() - started) * 1000
        self._stats.record(
            operation,
            duration_ms,
            error is None,
            type(error).__name__ if error is not None else None,
        )

    # -------------------------------------------------------------------------
    # Drivers
    # -------------------------------------------------------------------------

    async def add_driver(self, driver: str) -> None:
        """Load ``driver``, starting the server when it is stopped."""
        if self.is_running:
            if driver in self._drivers:
                return
            await self.restart([*self._drivers, driver])
        else:
            await self.start([*self._drivers, driver])

    async def remove_driver(self, driver: str) -> None:
        """Unload ``driver``; restarts only if it was loaded."""
        if driver not in self._drivers:
            return
        remaining = [d for d in self._drivers if d != driver]
        if self.is_running:
            await self.restart(remaining)
        else:
            self._drivers = remaining

    # -------------------------------------------------------------------------
    # Status and diagnostics
    # -------------------------------------------------------------------------

    async def _netstat(self, *flags: str) -> str | None:
        for tool in ("netstat", "ss"):
            try:
                result = await self._runner.run(tool, *flags, timeout=NETSTAT_TIMEOUT)
            except CommandError as e:
                logger.debug("Socket listing failed", tool=tool, error=str(e))
                continue
            if result.returncode == COMMAND_NOT_FOUND or not result.ok:
                continue
            return result.stdout
        return None

    async def _is_listening(self) -> bool:
        output = await self._netstat("-tln")
        if output is None:
            logger.warning("Neither netstat nor ss available, cannot check port")
            return False
        return count_port_lines(output, self._config.port, "LISTEN") > 0

    async def get_connected_clients(self) -> int:
        output = await self._netstat("-tn")
        if output is None:
            return 0
        return count_port_lines(output, self._config.port, "ESTAB")

    async def get_status(self) -> ControlServerStatus:
        running = self.is_running
        return ControlServerStatus(
            running=running,
            pid=self.pid if running else None,
            uptime_ms=(
                (time.monotonic() - self._start_time) * 1000
                if running and self._start_time is not None
                else None
            ),
            loaded_drivers=self.get_current_drivers(),
            connected_clients=await self.get_connected_clients() if running else 0,
        )

    async def get_recent_logs(self, lines: int = 50) -> list[str]:
        """Recent indiserver output.

        Output captured from the supervised process is preferred; when
        nothing was captured (server managed by systemd) the journal of
        the ``indiserver`` unit is read.
        """
        lines = max(1, lines)
        if self._output:
            return list(self._output)[-lines:]
        try:
            result = await self._runner.run(
                "journalctl", "-n", str(lines), "-u", "indiserver", "--no-pager",
                timeout=NETSTAT_TIMEOUT,
            )
        except CommandError as e:
            logger.warning("journalctl failed", error=str(e))
            return []
        if not result.ok:
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]

    async def cleanup(self) -> None:
        """Stop the server if running and remove leftover FIFOs."""
        self._cancel_retry()
        if self._process is not None:
            await self.stop()
        fifo = Path(self._config.fifo_path)
        try:
            leftovers = list(fifo.parent.glob(f"{fifo.name}*"))
        except OSError as e:
            logger.warning("FIFO cleanup failed", error=str(e))
            return
        for path in leftovers:
            try:
                path.unlink()
                logger.debug("Removed FIFO", path=str(path))
            except OSError as e:
                logger.warning("FIFO not removed", path=str(path), error=str(e))

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "pid": self.pid,
            "drivers": self.get_current_drivers(),
            "retryCount": self._retry_count,
            "isRestarting": self._restarting,
        }


__all__ = [
    "ControlServerSupervisor",
    "count_port_lines",
]
