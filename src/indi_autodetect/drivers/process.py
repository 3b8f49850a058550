"""Awaitable OS command execution and control-server process launching.

Every external tool the service touches (``lsusb``, ``apt-get``,
``netstat``, ``journalctl``, ``indiserver``, ``indi_getprop``) goes through
one of the two seams defined here, so tests can substitute fakes without
spawning anything.

Protocols:
    CommandRunner: Run a short-lived command and collect its output.
    ProcessLauncher: Spawn a long-lived process in its own process group.
    ServerProcess: Handle to a launched long-lived process.

Implementations:
    AsyncCommandRunner: asyncio subprocess runner.
    SubprocessLauncher: asyncio launcher using ``start_new_session``.
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from indi_autodetect.errors import CommandError
from indi_autodetect.observability import get_logger

logger = get_logger(__name__)

#: Exit code reported when the executable does not exist (shell convention).
COMMAND_NOT_FOUND = 127


@dataclass
class CommandResult:
    """Outcome of a finished command.

    Attributes:
        args: Command line that was run.
        returncode: Exit status. 127 when the executable was not found.
        stdout: Decoded standard output.
        stderr: Decoded standard error.
    """

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """True when the command exited with status 0."""
        return self.returncode == 0


@runtime_checkable
class CommandRunner(Protocol):  # pragma: no cover
    """Protocol for running short-lived OS commands.

    A missing executable is reported as a result with return code 127, not
    an exception, so callers can treat "tool not installed" like any other
    failed command.

    Example:
        class FakeRunner:
            async def run(self, *args, timeout=None):
                return CommandResult(list(args), 0, "Bus 001 Device 002: ...")
    """

    async def run(self, *args: str, timeout: float | None = None) -> CommandResult:
        """Run ``args`` and wait for completion.

        Args:
            *args: Executable followed by its arguments.
            timeout: Seconds before the command is killed. None waits forever.

        Returns:
            CommandResult with decoded output.

        Raises:
            CommandError: If the timeout expires.
        """
        ...


@runtime_checkable
class ServerProcess(Protocol):  # pragma: no cover
    """Handle to a long-lived child process.

    ``terminate`` and ``kill`` signal the whole process group so driver
    processes spawned by indiserver go down with it.

    Attributes:
        pid: OS process id.
        returncode: Exit status once exited, None while alive. Negative
            values mean the process was killed by that signal number.
        stdout: Line stream of standard output, or None if not captured.
        stderr: Line stream of standard error, or None if not captured.
    """

    pid: int
    returncode: int | None
    stdout: asyncio.StreamReader | None
    stderr: asyncio.StreamReader | None

    async def wait(self) -> int:
        """Wait for exit and return the exit status."""
        ...

    def terminate(self) -> None:
        """Send SIGTERM to the process group."""
        ...

    def kill(self) -> None:
        """Send SIGKILL to the process group."""
        ...


@runtime_checkable
class ProcessLauncher(Protocol):  # pragma: no cover
    """Protocol for spawning long-lived processes."""

    async def launch(self, args: Sequence[str]) -> ServerProcess:
        """Spawn ``args`` in a new process group.

        Raises:
            FileNotFoundError: If the executable does not exist.
            OSError: If the process cannot be created.
        """
        ...


# =============================================================================
# asyncio implementations
# =============================================================================


class AsyncCommandRunner:
    """CommandRunner backed by ``asyncio.create_subprocess_exec``."""

    async def run(self, *args: str, timeout: float | None = None) -> CommandResult:
        """Run a command, capturing stdout and stderr.

        Args:
            *args: Executable followed by its arguments.
            timeout: Seconds before the command is killed.

        Returns:
            CommandResult. A missing executable yields return code 127 with
            the OS error text as stderr.

        Raises:
            CommandError: If the command did not finish within ``timeout``.

        Example:
            >>> result = await AsyncCommandRunner().run("lsusb")
            >>> result.ok
            True
        """
        argv = list(args)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            logger.debug("Command not found", command=argv[0])
            return CommandResult(argv, COMMAND_NOT_FOUND, "", str(e))

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise CommandError(
                f"Command timed out after {timeout:g}s: {' '.join(argv)}", argv
            )

        return CommandResult(
            argv,
            process.returncode if process.returncode is not None else -1,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )


class ProcessGroupHandle:
    """ServerProcess wrapping an asyncio subprocess started as group leader."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self._process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self._process.stderr

    async def wait(self) -> int:
        return await self._process.wait()

    def terminate(self) -> None:
        self._signal_group(signal.SIGTERM)

    def kill(self) -> None:
        self._signal_group(signal.SIGKILL)

    def _signal_group(self, sig: signal.Signals) -> None:
        if self._process.returncode is not None:
            return
        try:
            os.killpg(self._process.pid, sig)
        except ProcessLookupError:
            logger.debug("Process group already gone", pid=self._process.pid)


class SubprocessLauncher:
    """ProcessLauncher starting each child in a new session."""

    async def launch(self, args: Sequence[str]) -> ProcessGroupHandle:
        """Spawn ``args`` with piped output as a new process group leader."""
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
        logger.debug("Process launched", pid=process.pid, command=args[0])
        return ProcessGroupHandle(process)


def describe_exit(returncode: int | None) -> tuple[int | None, str | None]:
    """Split an asyncio return code into ``(exit_code, signal_name)``.

    Example:
        >>> describe_exit(-15)
        (None, 'SIGTERM')
        >>> describe_exit(1)
        (1, None)
    """
    if returncode is None:
        return None, None
    if returncode < 0:
        try:
            return None, signal.Signals(-returncode).name
        except ValueError:
            return None, str(-returncode)
    return returncode, None


__all__ = [
    "COMMAND_NOT_FOUND",
    "AsyncCommandRunner",
    "CommandResult",
    "CommandRunner",
    "ProcessGroupHandle",
    "ProcessLauncher",
    "ServerProcess",
    "SubprocessLauncher",
    "describe_exit",
]
