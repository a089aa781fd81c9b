"""
Discovery Publisher
===================

Publishes the retained Home Assistant device discovery message.

Responsibility:
- Once per connection epoch: one batched config message enumerating every
  considered label (retained, QoS from config)
- Tracks which labels were announced in the current epoch
  (PublishedConfigSet) so state publishing never re-triggers discovery
- Forgets everything when the epoch ends

The message format lives in schemas.py; the transport in ConnectionManager.
"""
import logging
from threading import RLock
from typing import Any, Dict, FrozenSet, Set

from .schemas import DiscoveryConfig, encode_discovery
from ..connection import ConnectionEvent, ConnectionManager, EventRegistry
from ..errors import SerializationError
from ..logging import log_error_with_context

logger = logging.getLogger(__name__)


class DiscoveryPublisher:
    """
    Announces the device and its label sensors on connect.

    Usage:
        discovery = DiscoveryPublisher(manager, config, topic=topics.discovery_topic)
        discovery.attach(manager.events)     # CONNECTED → publish, DISCONNECTED → reset
    """

    def __init__(
        self,
        connection: ConnectionManager,
        config: DiscoveryConfig,
        topic: str,
        qos: int = 1,
        abbreviate: bool = False,
    ):
        self.connection = connection
        self.config = config
        self.topic = topic
        self.qos = qos
        self.abbreviate = abbreviate

        self._published: Set[str] = set()
        self._lock = RLock()
        self._message_count = 0

    def attach(self, events: EventRegistry) -> None:
        """Subscribe to the connection event channel."""
        events.register(ConnectionEvent.CONNECTED, self.on_connected, "Publish retained discovery config")
        events.register(ConnectionEvent.DISCONNECTED, self.on_disconnected, "Forget announced labels")

    def on_connected(self, **_: Any) -> None:
        """New epoch: the broker may have lost nothing, but we announce again."""
        self.reset()
        self.publish_all()

    def on_disconnected(self, **_: Any) -> None:
        self.reset()

    def reset(self) -> None:
        """Clear PublishedConfigSet."""
        with self._lock:
            self._published.clear()

    def format_message(self) -> Dict[str, Any]:
        """Discovery payload as a dict (abbreviated keys if configured)."""
        return self.config.to_dict(abbreviate=self.abbreviate)

    def publish_all(self) -> bool:
        """
        Publish the batched config for every considered label.

        Returns:
            True if the transport accepted the message
        """
        with self._lock:
            try:
                payload = encode_discovery(self.config, abbreviate=self.abbreviate)
            except SerializationError as e:
                log_error_with_context(
                    logger,
                    message="❌ Could not encode discovery config",
                    exception=e,
                    component="discovery",
                    event="serialization_error",
                )
                return False

            # called under our lock (and the aggregator's): never reconnect here
            if not self.connection.publish(self.topic, payload, qos=self.qos, retain=True, reconnect=False):
                return False

            self._published.update(self.config.labels)
            self._message_count += 1

        logger.info(
            f"📤 Discovery config published for {len(self.config.labels)} labels",
            extra={
                "component": "discovery",
                "event": "config_published",
                "mqtt_topic": self.topic,
                "labels": list(self.config.labels),
                "qos": self.qos,
            }
        )
        return True

    def ensure_published(self, label: str) -> bool:
        """
        Publish config unless label was already announced this epoch.

        Returns:
            True if label is announced after the call
        """
        with self._lock:
            if label in self._published:
                return True
            return self.publish_all()

    def is_published(self, label: str) -> bool:
        with self._lock:
            return label in self._published

    @property
    def published_labels(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._published)

    @property
    def message_count(self) -> int:
        """Discovery messages handed to the transport since startup."""
        return self._message_count
