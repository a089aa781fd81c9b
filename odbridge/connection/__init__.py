"""
Connection - single MQTT connection, state and event channel
"""
from .events import ConnectionEvent, ConnectionState, EventRegistry
from .manager import ConnectionManager, AVAILABILITY_ONLINE, AVAILABILITY_OFFLINE

__all__ = [
    "ConnectionManager",
    "ConnectionEvent",
    "ConnectionState",
    "EventRegistry",
    "AVAILABILITY_ONLINE",
    "AVAILABILITY_OFFLINE",
]
