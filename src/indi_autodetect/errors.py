"""Exceptions raised by indi-autodetect components."""

from __future__ import annotations


class IndiAutodetectError(Exception):
    """Base exception for all indi-autodetect errors."""

    pass


# --- Equipment ---


class DeviceNotFoundError(IndiAutodetectError, LookupError):
    """Raised when an operation references an unknown device id.

    Attributes:
        device_id: The id that was looked up.
    """

    def __init__(self, device_id: str) -> None:
        """Store the missing id for callers that list alternatives.

        Args:
            device_id: Device id as passed by the caller.

        Example:
            >>> try:
            ...     await monitor.setup_single_device("03c3:999z")
            ... except DeviceNotFoundError as e:
            ...     print(f"no such device: {e.device_id}")
        """
        self.device_id = device_id
        super().__init__(f"Device '{device_id}' not found")


class DeviceNotInstallableError(IndiAutodetectError):
    """Raised when setup is requested for a device without unattended install.

    Attributes:
        device_id: The device that cannot be set up automatically.
    """

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        super().__init__(f"Device '{device_id}' does not support automatic setup")


class SetupInProgressError(IndiAutodetectError):
    """Raised when auto-setup is requested while another run is in flight."""

    def __init__(self) -> None:
        super().__init__("Automatic setup already in progress")


# --- Drivers ---


class DriverInstallError(IndiAutodetectError):
    """Raised when the package manager fails to install a driver package.

    Attributes:
        package: Package name passed to the package manager.
        returncode: Exit status of the failing command.
        stderr: Captured error output, possibly truncated.
    """

    def __init__(self, package: str, returncode: int, stderr: str = "") -> None:
        """Record the failing package and command output.

        Args:
            package: Package that failed to install (e.g. "indi-asi").
            returncode: Non-zero exit code from apt-get.
            stderr: Error output, kept for the device's error message.
        """
        self.package = package
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        message = f"Installing '{package}' failed with exit code {returncode}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class CatalogError(IndiAutodetectError):
    """Raised when no remote driver catalog data could be retrieved."""

    pass


class CommandError(IndiAutodetectError):
    """Raised when an OS command cannot be run or times out.

    Attributes:
        args_: The command line that failed.
    """

    def __init__(self, message: str, args_: list[str] | tuple[str, ...] = ()) -> None:
        self.args_ = list(args_)
        super().__init__(message)


# --- Control server ---


class ServerStartError(IndiAutodetectError):
    """Raised when indiserver is not listening after the start grace period."""

    pass


class RetriesExhaustedError(IndiAutodetectError):
    """Emitted with ``server_error`` once crash retries reach the limit.

    Attributes:
        attempts: Automatic restart attempts made before giving up.
    """

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            f"indiserver crashed again after {attempts} automatic restart attempts"
        )


# --- Device properties ---


class PropertyTimeoutError(IndiAutodetectError, TimeoutError):
    """Raised when a property does not reach its target state in time.

    Attributes:
        device: INDI device name.
        prop: Property name.
        timeout: Seconds waited.
    """

    def __init__(self, device: str, prop: str, timeout: float) -> None:
        self.device = device
        self.prop = prop
        self.timeout = timeout
        super().__init__(f"Timeout waiting for {device}.{prop} after {timeout:g}s")


class PropertyAlertError(IndiAutodetectError):
    """Raised when a property switches to the Alert state while waited on."""

    def __init__(self, device: str, prop: str) -> None:
        self.device = device
        self.prop = prop
        super().__init__(f"{device}.{prop} reported Alert state")
