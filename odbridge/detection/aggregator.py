"""
Detection Aggregator
====================

Turns per-frame detections into per-label count publications.

Algorithm (per frame):
1. Keep detections whose label is considered and whose score >= min_score
2. Count per label; considered labels absent from the frame count 0
3. For each label, compare the encoded count with LastSentValue
   - equal: skip (no heartbeat, publish only on change)
   - different: make sure discovery was announced, publish, remember it

The first frame of an epoch finds LastSentValue empty, so every label is
published once: an implicit full-state resync.

LastSentValue only records values the transport accepted, so a dropped
message is published again on the next frame that computes the same count.

Reconnects are only requested after _lock is released: connecting joins
paho's network thread, and that thread's DISCONNECTED listeners (reset())
take _lock.
"""
import logging
from threading import Lock
from typing import Any, Dict, Iterable, Mapping, Optional

from .models import DetectionFrame
from ..connection import ConnectionEvent, ConnectionManager, ConnectionState, EventRegistry
from ..errors import SerializationError
from ..logging import (
    generate_trace_id,
    log_error_with_context,
    log_frame_summary,
    trace_context,
)
from ..publishers import DiscoveryPublisher, TopicLayout, encode_state

logger = logging.getLogger(__name__)


def count_labels(
    frame: DetectionFrame,
    labels: Iterable[str],
    min_score: float = 0.0,
) -> Dict[str, int]:
    """
    Count detections per considered label.

    Example:
        >>> frame = DetectionFrame.of(("person", 0.9), ("car", 0.8), ("person", 0.95))
        >>> count_labels(frame, ["person", "car", "bicycle"])
        {'person': 2, 'car': 1, 'bicycle': 0}
    """
    counts = dict.fromkeys(labels, 0)
    for detection in frame.detections:
        if detection.label in counts and detection.score >= min_score:
            counts[detection.label] += 1
    return counts


class DetectionAggregator:
    """
    Debounced per-label state publisher.

    Usage:
        aggregator = DetectionAggregator(manager, discovery, topics, labels=["person", "car"])
        aggregator.attach(manager.events)    # DISCONNECTED → reset
        aggregator.process_frame(DetectionFrame.of(("person", 0.9)))
    """

    def __init__(
        self,
        connection: ConnectionManager,
        discovery: Optional[DiscoveryPublisher],
        topics: TopicLayout,
        labels: Iterable[str],
        min_score: float = 0.0,
        qos: int = 1,
        retain: bool = False,
    ):
        self.connection = connection
        self.discovery = discovery
        self.topics = topics
        self.labels = tuple(dict.fromkeys(labels))
        self.min_score = min_score
        self.qos = qos
        self.retain = retain

        self._last_sent: Dict[str, str] = {}
        self._lock = Lock()

        self._frames_processed = 0
        self._frames_dropped = 0
        self._states_published = 0

    def attach(self, events: EventRegistry) -> None:
        """Subscribe to the connection event channel."""
        events.register(ConnectionEvent.DISCONNECTED, self.on_disconnected, "Forget last sent values")

    def on_disconnected(self, **_: Any) -> None:
        self.reset()

    def reset(self) -> None:
        """Clear LastSentValue so the next frame resyncs every label."""
        with self._lock:
            self._last_sent.clear()

    @property
    def last_sent(self) -> Mapping[str, str]:
        """Copy of LastSentValue."""
        with self._lock:
            return dict(self._last_sent)

    def _transport_up(self) -> bool:
        return self.connection.state is ConnectionState.CONNECTED and self.connection.is_connected()

    def count(self, frame: DetectionFrame) -> Dict[str, int]:
        return count_labels(frame, self.labels, self.min_score)

    def process_frame(self, frame: DetectionFrame) -> Dict[str, str]:
        """
        Aggregate one frame and publish the labels whose count changed.

        Never raises; failures are logged.

        Returns:
            Labels handed to the transport in this call (label -> payload)
        """
        with trace_context(generate_trace_id("frame")):
            counts = self.count(frame)
            connected = self._transport_up()

            with self._lock:
                self._frames_processed += 1
                if not connected:
                    self._frames_dropped += 1

            if not connected:
                logger.warning(
                    "⚠️ MQTT not connected, frame not published",
                    extra={
                        "component": "aggregator",
                        "event": "frame_dropped",
                        "reason": "not_connected",
                        "counts": counts,
                    }
                )
                self.connection.request_reconnect()
                return {}

            published: Dict[str, str] = {}
            lost = False
            with self._lock:
                for label, count in counts.items():
                    try:
                        payload = encode_state(count)
                    except SerializationError as e:
                        log_error_with_context(
                            logger,
                            message=f"❌ Could not encode state for '{label}'",
                            exception=e,
                            component="aggregator",
                            event="serialization_error",
                            label=label,
                        )
                        continue

                    if self._last_sent.get(label) == payload:
                        continue

                    if self.discovery is not None:
                        self.discovery.ensure_published(label)

                    topic = self.topics.state_topic(label)
                    # reconnecting joins paho's thread, whose DISCONNECTED
                    # listeners wait for this lock
                    sent = self.connection.publish(
                        topic, payload, qos=self.qos, retain=self.retain, reconnect=False
                    )
                    if not sent:
                        lost = lost or not self._transport_up()
                    else:
                        self._last_sent[label] = payload
                        published[label] = payload
                        self._states_published += 1
                        logger.info(
                            f"📤 {label}: {payload} → {topic}",
                            extra={
                                "component": "aggregator",
                                "event": "state_published",
                                "label": label,
                                "value": payload,
                                "mqtt_topic": topic,
                            }
                        )

            if lost:
                self.connection.request_reconnect()

            log_frame_summary(
                logger,
                counts=counts,
                published=published,
                detections_in_frame=len(frame),
            )
            return published

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "frames_processed": self._frames_processed,
                "frames_dropped": self._frames_dropped,
                "states_published": self._states_published,
                "last_sent": dict(self._last_sent),
            }
