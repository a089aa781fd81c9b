"""
Connection Events
=================

Explicit event channel from the ConnectionManager to its collaborators.

Problem solved:
- paho reports connect/loss/publish completion through callbacks on its
  network thread
- discovery and aggregation need to react to those transitions without the
  manager knowing about them

Solution:
- ConnectionState: the manager's view of the connection
- ConnectionEvent: transitions and outcomes broadcast by the manager
- EventRegistry: listeners register per event, emit() fans out and isolates
  listener failures
"""
from enum import Enum
from typing import Callable, Dict, List, Set
import logging

from ..logging import log_error_with_context

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection state owned by the ConnectionManager."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionEvent(Enum):
    """Events emitted by the ConnectionManager."""
    CONNECTED = "connected"              # new connection epoch started
    DISCONNECTED = "disconnected"        # epoch ended (explicit or lost)
    CONNECT_FAILED = "connect_failed"    # all attempts exhausted
    PUBLISH_DROPPED = "publish_dropped"  # publish while not connected


class EventRegistry:
    """
    Registry of connection event listeners.

    Listeners run synchronously in registration order on the thread that
    emitted the event (usually paho's network thread). A failing listener is
    logged and does not prevent the others from running.

    Usage:
        events = EventRegistry()
        events.register(ConnectionEvent.CONNECTED, discovery.on_connected,
                        "Publish retained discovery config")
        events.emit(ConnectionEvent.CONNECTED)
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._listeners: Dict[ConnectionEvent, List[Callable[..., None]]] = {}
        self._descriptions: Dict[ConnectionEvent, List[str]] = {}

    def register(self, event: ConnectionEvent, handler: Callable[..., None], description: str = ""):
        """
        Register a listener for an event.

        Args:
            event: Event to listen to
            handler: Callable invoked with the event's keyword payload
            description: Human readable purpose, used in logs/help
        """
        listeners = self._listeners.setdefault(event, [])
        if handler in listeners:
            logger.warning(
                f"⚠️ Listener already registered for '{event.value}', ignoring",
                extra={"component": "events", "event": event.value}
            )
            return

        listeners.append(handler)
        self._descriptions.setdefault(event, []).append(description)
        logger.debug(f"📝 Listener registered for '{event.value}' - {description}")

    def emit(self, event: ConnectionEvent, **payload) -> int:
        """
        Invoke every listener of an event.

        Args:
            event: Event to emit
            **payload: Keyword arguments passed to each listener

        Returns:
            Number of listeners that completed without raising
        """
        completed = 0
        for handler in list(self._listeners.get(event, [])):
            try:
                handler(**payload)
                completed += 1
            except Exception as e:
                log_error_with_context(
                    logger,
                    message=f"❌ Listener for '{event.value}' failed",
                    exception=e,
                    component="events",
                    event=event.value,
                    listener=getattr(handler, '__qualname__', repr(handler)),
                )
        return completed

    def has_listeners(self, event: ConnectionEvent) -> bool:
        return bool(self._listeners.get(event))

    @property
    def registered_events(self) -> Set[ConnectionEvent]:
        """Events with at least one listener."""
        return {event for event, handlers in self._listeners.items() if handlers}

    def get_help(self) -> Dict[str, List[str]]:
        """Listener descriptions per event name."""
        return {event.value: list(descs) for event, descs in self._descriptions.items()}

    def __repr__(self) -> str:
        events = ', '.join(sorted(e.value for e in self.registered_events))
        return f"EventRegistry({events})"
