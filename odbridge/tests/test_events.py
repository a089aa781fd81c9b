"""
Connection Event Tests
======================

EventRegistry: the channel connection transitions are broadcast on.

Invariants tested:
1. Registered listeners run with the event payload, in registration order
2. A failing listener doesn't stop the others
3. Duplicate registration is ignored
4. Emitting an event nobody listens to is a no-op
"""
import pytest
from unittest.mock import Mock

from odbridge.connection import ConnectionEvent, EventRegistry


@pytest.mark.unit
@pytest.mark.mqtt
class TestEventRegistry:

    def test_register_and_emit(self):
        """
        Invariant: A registered listener receives the keyword payload.
        """
        events = EventRegistry()
        handler = Mock()

        events.register(ConnectionEvent.CONNECTED, handler, "Test listener")
        completed = events.emit(ConnectionEvent.CONNECTED, epoch=3)

        handler.assert_called_once_with(epoch=3)
        assert completed == 1

    def test_listeners_run_in_registration_order(self):
        events = EventRegistry()
        calls = []

        events.register(ConnectionEvent.DISCONNECTED, lambda **_: calls.append("discovery"), "first")
        events.register(ConnectionEvent.DISCONNECTED, lambda **_: calls.append("aggregator"), "second")
        events.emit(ConnectionEvent.DISCONNECTED, reason="lost", expected=False)

        assert calls == ["discovery", "aggregator"]

    def test_failing_listener_does_not_stop_others(self):
        """
        Invariant: Listener exceptions are logged and swallowed.
        """
        events = EventRegistry()
        failing = Mock(side_effect=RuntimeError("boom"))
        healthy = Mock()

        events.register(ConnectionEvent.CONNECTED, failing, "fails")
        events.register(ConnectionEvent.CONNECTED, healthy, "works")
        completed = events.emit(ConnectionEvent.CONNECTED, epoch=1)

        healthy.assert_called_once_with(epoch=1)
        assert completed == 1

    def test_duplicate_registration_ignored(self):
        events = EventRegistry()
        handler = Mock()

        events.register(ConnectionEvent.CONNECTED, handler, "once")
        events.register(ConnectionEvent.CONNECTED, handler, "twice")
        events.emit(ConnectionEvent.CONNECTED)

        assert handler.call_count == 1

    def test_emit_without_listeners(self):
        events = EventRegistry()

        assert events.emit(ConnectionEvent.CONNECT_FAILED, attempts=3, reason="refused") == 0
        assert not events.has_listeners(ConnectionEvent.CONNECT_FAILED)

    def test_registered_events_and_help(self):
        events = EventRegistry()

        assert events.registered_events == set()

        events.register(ConnectionEvent.CONNECTED, Mock(), "Publish config")
        events.register(ConnectionEvent.DISCONNECTED, Mock(), "Reset state")

        assert events.registered_events == {ConnectionEvent.CONNECTED, ConnectionEvent.DISCONNECTED}
        assert events.get_help() == {
            "connected": ["Publish config"],
            "disconnected": ["Reset state"],
        }
        assert "connected" in repr(events)
