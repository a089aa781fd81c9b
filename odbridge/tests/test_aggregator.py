"""
Detection Aggregator Tests
==========================

Per-label counting and debounced publishing.

Invariants tested:
1. Counts include every considered label (absent = 0), honor min_score
2. Two identical frames: one publish per label, then none
3. Only changed labels are published, discovery ensured before each
4. Not connected: frame dropped, one reconnect request, nothing recorded
5. Rejected publish is not recorded (next frame retries it)
6. DISCONNECTED resets LastSentValue: next frame is a full resync
7. Reconnect is only requested once the aggregator lock is released
8. Counters stay exact under concurrent frames
"""
from threading import Thread

import pytest
from unittest.mock import Mock, call

from odbridge.connection import ConnectionEvent, ConnectionManager, ConnectionState, EventRegistry
from odbridge.detection import DetectionAggregator, DetectionFrame, count_labels
from odbridge.publishers import DiscoveryPublisher, TopicLayout

LABELS = ["person", "car", "bicycle"]
TOPICS = TopicLayout(device_id="d6287655")

SCENARIO_FRAME = DetectionFrame.of(("person", 0.9), ("car", 0.8), ("person", 0.95))


def make_aggregator(connected=True, publish_ok=True, **kwargs):
    connection = Mock(spec=ConnectionManager)
    connection.state = ConnectionState.CONNECTED if connected else ConnectionState.DISCONNECTED
    connection.is_connected.return_value = connected
    connection.publish.return_value = publish_ok

    discovery = Mock(spec=DiscoveryPublisher)
    discovery.ensure_published.return_value = True

    kwargs.setdefault('labels', LABELS)
    return DetectionAggregator(connection, discovery, TOPICS, **kwargs)


def state_call(label, value, qos=1, retain=False):
    return call(TOPICS.state_topic(label), value, qos=qos, retain=retain, reconnect=False)


@pytest.mark.unit
class TestCountLabels:

    def test_scenario_counts(self):
        assert count_labels(SCENARIO_FRAME, LABELS) == {"person": 2, "car": 1, "bicycle": 0}

    def test_unconsidered_labels_ignored(self):
        frame = DetectionFrame.of(("dog", 0.99), ("person", 0.7))

        assert count_labels(frame, LABELS) == {"person": 1, "car": 0, "bicycle": 0}

    def test_min_score(self):
        frame = DetectionFrame.of(("person", 0.3), ("person", 0.5), ("car", 0.49))

        assert count_labels(frame, LABELS, min_score=0.5) == {"person": 1, "car": 0, "bicycle": 0}

    def test_empty_frame_counts_zero(self):
        assert count_labels(DetectionFrame(), LABELS) == {"person": 0, "car": 0, "bicycle": 0}


@pytest.mark.unit
@pytest.mark.mqtt
class TestDebounce:

    def test_first_frame_publishes_every_label(self):
        aggregator = make_aggregator()

        published = aggregator.process_frame(SCENARIO_FRAME)

        assert published == {"person": "2", "car": "1", "bicycle": "0"}
        assert aggregator.connection.publish.call_args_list == [
            state_call("person", "2"),
            state_call("car", "1"),
            state_call("bicycle", "0"),
        ]

    def test_identical_frame_publishes_nothing(self):
        """
        Invariant: Publish only on change (no heartbeat).
        """
        aggregator = make_aggregator()

        aggregator.process_frame(SCENARIO_FRAME)
        aggregator.connection.publish.reset_mock()
        published = aggregator.process_frame(
            DetectionFrame.of(("person", 0.6), ("person", 0.7), ("car", 0.9))
        )

        assert published == {}
        aggregator.connection.publish.assert_not_called()

    def test_only_changed_label_published(self):
        aggregator = make_aggregator()
        aggregator.process_frame(SCENARIO_FRAME)
        aggregator.connection.publish.reset_mock()

        published = aggregator.process_frame(DetectionFrame.of(("person", 0.9), ("car", 0.8)))

        assert published == {"person": "1"}
        aggregator.connection.publish.assert_called_once_with(
            TOPICS.state_topic("person"), "1", qos=1, retain=False, reconnect=False
        )

    def test_discovery_ensured_before_state(self):
        aggregator = make_aggregator()
        order = []
        aggregator.discovery.ensure_published.side_effect = lambda label: order.append(("config", label)) or True
        aggregator.connection.publish.side_effect = lambda topic, payload, **kw: order.append(("state", payload)) or True

        aggregator.process_frame(DetectionFrame.of(("car", 0.9)))

        assert order[:2] == [("config", "person"), ("state", "0")]
        assert ("config", "car") in order
        assert order.index(("config", "car")) < order.index(("state", "1"))

    def test_discovery_not_touched_without_changes(self):
        aggregator = make_aggregator()
        aggregator.process_frame(SCENARIO_FRAME)
        aggregator.discovery.ensure_published.reset_mock()

        aggregator.process_frame(SCENARIO_FRAME)

        aggregator.discovery.ensure_published.assert_not_called()

    def test_qos_and_retain_forwarded(self):
        aggregator = make_aggregator(qos=0, retain=True, labels=["person"])

        aggregator.process_frame(SCENARIO_FRAME)

        aggregator.connection.publish.assert_called_once_with(
            TOPICS.state_topic("person"), "2", qos=0, retain=True, reconnect=False
        )

    def test_without_discovery(self):
        aggregator = make_aggregator()
        aggregator.discovery = None

        assert aggregator.process_frame(SCENARIO_FRAME) == {"person": "2", "car": "1", "bicycle": "0"}


@pytest.mark.unit
@pytest.mark.mqtt
class TestTransportFailures:

    def test_not_connected_drops_frame(self):
        """
        Invariant: Frames are not buffered while disconnected.
        """
        aggregator = make_aggregator(connected=False)

        assert aggregator.process_frame(SCENARIO_FRAME) == {}

        aggregator.connection.publish.assert_not_called()
        aggregator.connection.request_reconnect.assert_called_once()
        assert aggregator.last_sent == {}
        assert aggregator.get_stats()['frames_dropped'] == 1

    def test_rejected_publish_not_recorded(self):
        aggregator = make_aggregator(publish_ok=False)

        assert aggregator.process_frame(SCENARIO_FRAME) == {}
        assert aggregator.last_sent == {}

        aggregator.connection.publish.return_value = True
        aggregator.connection.publish.reset_mock()
        aggregator.process_frame(SCENARIO_FRAME)

        assert aggregator.connection.publish.call_count == 3

    def test_partial_rejection(self):
        aggregator = make_aggregator()
        aggregator.connection.publish.side_effect = lambda topic, payload, **kw: not topic.endswith("/car/stat_t")

        published = aggregator.process_frame(SCENARIO_FRAME)

        assert published == {"person": "2", "bicycle": "0"}
        assert aggregator.last_sent == {"person": "2", "bicycle": "0"}


@pytest.mark.unit
@pytest.mark.mqtt
class TestEpochReset:

    def test_disconnected_event_resets_last_sent(self):
        events = EventRegistry()
        aggregator = make_aggregator()
        aggregator.attach(events)
        aggregator.process_frame(SCENARIO_FRAME)

        events.emit(ConnectionEvent.DISCONNECTED, reason="lost", expected=False)

        assert aggregator.last_sent == {}

    def test_full_resync_after_reset(self):
        """
        Invariant: First frame of an epoch publishes every label.
        """
        aggregator = make_aggregator()
        aggregator.process_frame(SCENARIO_FRAME)
        aggregator.reset()
        aggregator.connection.publish.reset_mock()

        published = aggregator.process_frame(SCENARIO_FRAME)

        assert published == {"person": "2", "car": "1", "bicycle": "0"}

    def test_stats(self):
        aggregator = make_aggregator()
        aggregator.process_frame(SCENARIO_FRAME)
        aggregator.process_frame(SCENARIO_FRAME)

        stats = aggregator.get_stats()

        assert stats['frames_processed'] == 2
        assert stats['states_published'] == 3
        assert stats['last_sent'] == {"person": "2", "car": "1", "bicycle": "0"}


@pytest.mark.unit
@pytest.mark.mqtt
class TestLockDiscipline:

    def test_lost_mid_frame_reconnects_after_lock_released(self):
        """
        Invariant: A reconnect never starts while the aggregator lock is held.
        """
        aggregator = make_aggregator()
        connection = aggregator.connection

        def lose_transport(topic, payload, **kw):
            connection.state = ConnectionState.DISCONNECTED
            connection.is_connected.return_value = False
            return False

        lock_held = []
        connection.publish.side_effect = lose_transport
        connection.request_reconnect.side_effect = lambda: lock_held.append(aggregator._lock.locked())

        assert aggregator.process_frame(SCENARIO_FRAME) == {}

        assert lock_held == [False]
        assert connection.publish.call_args_list == [state_call(label, value) for label, value in (
            ("person", "2"), ("car", "1"), ("bicycle", "0"),
        )]

    def test_rejected_while_connected_does_not_reconnect(self):
        aggregator = make_aggregator(publish_ok=False)

        aggregator.process_frame(SCENARIO_FRAME)

        aggregator.connection.request_reconnect.assert_not_called()

    @pytest.mark.parametrize("connected", [True, False])
    def test_counters_exact_under_concurrent_frames(self, connected):
        """
        Invariant: Stats count every frame fed from any thread.
        """
        aggregator = make_aggregator(connected=connected)

        def feed():
            for _ in range(50):
                aggregator.process_frame(SCENARIO_FRAME)

        threads = [Thread(target=feed) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stats = aggregator.get_stats()
        assert stats['frames_processed'] == 400
        assert stats['frames_dropped'] == (0 if connected else 400)
