"""Subscription registry used for all cross-component notifications.

Components never mutate each other's state; they publish on an
``EventBus`` and whoever wired them subscribes. Every ``subscribe`` returns
an unsubscribe callable, and ``clear()`` drops everything at teardown, so a
stopped component cannot receive callbacks.

Handlers are plain callables invoked synchronously in subscription order.
A handler that needs to await schedules its own task. A failing handler is
logged and does not prevent delivery to the remaining handlers.

Example:
    bus = EventBus("scanner")
    unsubscribe = bus.subscribe(EventType.DEVICE_ADDED, on_added)
    bus.emit(EventType.DEVICE_ADDED, event)
    unsubscribe()
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

from indi_autodetect.observability import get_logger

logger = get_logger(__name__)

Handler = Callable[..., Any]
Unsubscribe = Callable[[], None]


class EventType(str, Enum):
    """Event names published by the core components."""

    # USB scanner
    DEVICE_ADDED = "device_added"
    DEVICE_REMOVED = "device_removed"
    RESTART_REQUESTED = "restart_requested"

    # Equipment monitor
    EQUIPMENT_STATUS_CHANGED = "equipment_status_changed"
    AUTO_SETUP_COMPLETED = "auto_setup_completed"

    # Control-server supervisor
    SERVER_STARTED = "server_started"
    SERVER_STOPPED = "server_stopped"
    SERVER_RESTARTED = "server_restarted"
    SERVER_ERROR = "server_error"
    SERVER_EXIT = "server_exit"
    SERVER_LOG = "server_log"

    # Orchestration coordinator
    SYSTEM_STARTED = "system_started"
    SYSTEM_STOPPED = "system_stopped"
    SYSTEM_ERROR = "system_error"


class EventBus:
    """Ordered handler lists keyed by event type."""

    def __init__(self, name: str = "") -> None:
        """Create an empty bus.

        Args:
            name: Label used in log output when a handler fails.
        """
        self.name = name
        self._handlers: dict[EventType, list[Handler]] = {}

    def subscribe(self, event: EventType, handler: Handler) -> Unsubscribe:
        """Register ``handler`` for ``event``.

        Returns:
            Callable removing exactly this registration. Calling it more
            than once is harmless.
        """
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: EventType, *args: Any) -> int:
        """Deliver ``args`` to every handler of ``event``.

        The handler list is copied first, so handlers may unsubscribe
        themselves during delivery.

        Returns:
            Number of handlers invoked.
        """
        handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            try:
                handler(*args)
            except Exception:
                logger.exception(
                    "Event handler failed", bus=self.name, event=event.value
                )
        return len(handlers)

    def forward(self, target: EventBus, events: Iterable[EventType]) -> Unsubscribe:
        """Re-emit ``events`` from this bus on ``target``.

        Returns:
            Single callable removing all forwarding subscriptions.
        """
        unsubscribers = [
            self.subscribe(event, _forwarder(target, event)) for event in events
        ]

        def unsubscribe_all() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return unsubscribe_all

    def listener_count(self, event: EventType | None = None) -> int:
        """Handlers registered for ``event``, or across all events."""
        if event is not None:
            return len(self._handlers.get(event, ()))
        return sum(len(handlers) for handlers in self._handlers.values())

    def clear(self, event: EventType | None = None) -> None:
        """Drop handlers for ``event``, or every handler."""
        if event is not None:
            self._handlers.pop(event, None)
        else:
            self._handlers.clear()


def _forwarder(target: EventBus, event: EventType) -> Handler:
    def forward(*args: Any) -> None:
        target.emit(event, *args)

    return forward
