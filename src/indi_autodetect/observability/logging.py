"""Structured logging for indi-autodetect.

Keyword arguments given to a log call become *fields* on the record and
are rendered after the message, either as ``key=value`` pairs or as JSON
keys. Fields set with ``LogContext`` are added to every record logged in
its scope, so a hot-plug restart or an auto-setup run can be followed by
device id, driver or operation.

Security Note:
    USB descriptor strings and package manager output are untrusted text.
    Pass them as fields, never interpolated into the message; field
    values containing whitespace, quotes or ``=`` are rendered as JSON
    strings so an embedded newline cannot forge a second log line.

    # SAFE
    logger.info("Device added", description=usb_description)

    # UNSAFE
    logger.info(f"Device added: {usb_description}")

Example:
    logger = get_logger(__name__)

    with LogContext(device_id="03c3:294a", operation="setup"):
        logger.info("Installing driver", package="indi-asi")
    # ... - INFO - Installing driver | device_id=03c3:294a operation=setup package=indi-asi

    configure_logging(level="DEBUG", json_format=True, force=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, TextIO, cast

#: Name of the package root logger. Every module logger hangs off it.
ROOT_LOGGER_NAME = "indi_autodetect"

#: Record attribute holding the structured fields.
FIELDS_ATTR = "fields"

_context_fields: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar(
    "indi_autodetect_log_fields", default={}
)


def record_fields(record: logging.LogRecord) -> Mapping[str, Any]:
    """Fields attached to ``record``; empty for records from other loggers."""
    return getattr(record, FIELDS_ATTR, None) or {}


class StructuredLogger(logging.Logger):
    """Logger whose calls accept fields as keyword arguments.

    ``debug()``, ``info()``, ``exception()`` and the other level methods of
    ``logging.Logger`` forward their keyword arguments to ``_log``, which
    is the only method overridden here. The parameters ``logging`` itself
    passes positionally are positional-only, so a field may be named
    ``args``.

    Usage:
        logger = get_logger(__name__)
        logger.warning("Driver not found", driver="indi_asi_ccd")
    """

    def _log(  # type: ignore[override]
        self,
        level: int,
        msg: object,
        args: Any,
        /,
        exc_info: Any = None,
        extra: Mapping[str, object] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        merged = {**_context_fields.get(), **fields}
        record_extra = {**(extra or {}), FIELDS_ATTR: merged}
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=record_extra,
            stack_info=stack_info,
            # this frame sits between the caller and logging internals
            stacklevel=stacklevel + 1,
        )


# =============================================================================
# Formatters
# =============================================================================


def _render(value: Any) -> str:
    """Render one field value for ``key=value`` output.

    Example:
        >>> _render(["indi_asi_ccd", "indi_eqmod_telescope"])
        '["indi_asi_ccd", "indi_eqmod_telescope"]'
        >>> _render("USB2.0 Webcam")
        '"USB2.0 Webcam"'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if not value or any(c.isspace() or c in '"=' for c in value):
            return json.dumps(value)
        return value
    if isinstance(value, Mapping | list | tuple | set):
        return json.dumps(
            sorted(value) if isinstance(value, set) else value, default=str
        )
    return str(value)


class TextFormatter(logging.Formatter):
    """``timestamp - logger - LEVEL - message | key=value ...``"""

    DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def __init__(
        self, fmt: str | None = None, datefmt: str | None = None, show_fields: bool = True
    ) -> None:
        super().__init__(fmt or self.DEFAULT_FORMAT, datefmt)
        self.show_fields = show_fields

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        fields = record_fields(record) if self.show_fields else {}
        if not fields:
            return text
        return text + " | " + " ".join(f"{k}={_render(v)}" for k, v in fields.items())


class JsonLinesFormatter(logging.Formatter):
    """One JSON object per record, for journald and log shippers.

    Keys are ``timestamp`` (UTC ISO 8601), ``level``, ``logger`` and
    ``message``, then every field at top level, then ``exception`` when
    the record carries one. A field never replaces one of the fixed keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record_fields(record).items():
            payload.setdefault(key, value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


# =============================================================================
# Context
# =============================================================================


class LogContext:
    """Add fields to every record logged inside the ``with`` block.

    Nested contexts merge, inner values win. The fields live in a
    ``contextvars.ContextVar``, so the scanner loop, the monitor loop and
    request handlers each see only their own.

    Usage:
        with LogContext(operation="auto_setup"):
            for device in candidates:
                with LogContext(device_id=device.id):
                    logger.info("Configuring device")
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields
        self._token: contextvars.Token[Mapping[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        self._token = _context_fields.set({**_context_fields.get(), **self.fields})
        return self

    def __exit__(self, *exc: object) -> None:
        if self._token is not None:
            _context_fields.reset(self._token)
            self._token = None


def current_fields() -> dict[str, Any]:
    """Fields active in the current context."""
    return dict(_context_fields.get())


# =============================================================================
# Configuration
# =============================================================================

_lock = threading.Lock()
_handler: logging.Handler | None = None


def _install(level: int | str, json_format: bool, stream: TextIO | None) -> None:
    global _handler

    logging.setLoggerClass(StructuredLogger)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonLinesFormatter() if json_format else TextFormatter())

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.addHandler(handler)
    # uvicorn and mcp install their own handlers on the global root
    root.propagate = False
    _handler = handler


def _uninstall() -> None:
    global _handler

    if _handler is not None:
        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.removeHandler(_handler)
        _handler.close()
        _handler = None


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: TextIO | None = None,
    force: bool = False,
) -> None:
    """Install the package log handler.

    Only the first call takes effect unless ``force`` replaces the
    handler. ``get_logger`` makes a default call, so the CLI passes
    ``force=True`` to apply its flags.

    Args:
        level: Minimum level, number or name (case-insensitive).
        json_format: JSON lines instead of ``key=value`` text.
        stream: Destination, ``sys.stderr`` by default. Never stdout:
            the MCP stdio transport owns it.
        force: Replace an existing handler.
    """
    with _lock:
        if force:
            _uninstall()
        if _handler is None:
            _install(level, json_format, stream)


def reset_logging() -> None:
    """Remove the package handler so the next call configures afresh."""
    with _lock:
        _uninstall()


def get_logger(name: str) -> StructuredLogger:
    """Structured logger for ``name``, usually ``__name__``.

    Example:
        >>> logger = get_logger("indi_autodetect.devices.usb_scanner")
        >>> logger.info("Device added", device_id="03c3:294a")
    """
    if _handler is None:
        configure_logging()
    return cast(StructuredLogger, logging.getLogger(name))


__all__ = [
    "FIELDS_ATTR",
    "ROOT_LOGGER_NAME",
    "JsonLinesFormatter",
    "LogContext",
    "StructuredLogger",
    "TextFormatter",
    "configure_logging",
    "current_fields",
    "get_logger",
    "record_fields",
    "reset_logging",
]
