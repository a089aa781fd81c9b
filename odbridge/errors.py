"""
Bridge Errors
=============

Exceptions raised inside the bridge.

Policy: MQTT seams (connection manager, publishers, aggregator) log and
swallow these; none of them reach the detection caller. Only configuration
errors abort the process, and those are pydantic ValidationErrors.
"""


class BridgeError(Exception):
    """Base class for bridge errors."""
    pass


class SerializationError(BridgeError):
    """A payload could not be encoded for the wire."""
    pass


class IdentityStoreError(BridgeError):
    """The preferences file holding the device id could not be read or written."""
    pass
