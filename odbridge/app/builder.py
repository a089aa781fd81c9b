"""
Bridge Builder
==============

Builder pattern for wiring the bridge from a validated BridgeConfig.

Responsibility:
- Resolve the device id (configured or persisted)
- Build topic layout, connection manager, discovery publisher, aggregator
- Subscribe discovery and aggregator to the connection event channel

Design:
- Builder builds, Controller orchestrates lifecycle
- Nothing connects here; the controller decides when
"""
import logging
from dataclasses import dataclass
from typing import Optional

from ..config import BridgeConfig
from ..connection import ConnectionManager, EventRegistry
from ..detection import DetectionAggregator
from ..identity import resolve_device_id
from ..publishers import DiscoveryConfig, DiscoveryPublisher, TopicLayout

logger = logging.getLogger(__name__)


@dataclass
class Bridge:
    """Wired components, ready to connect"""
    device_id: str
    topics: TopicLayout
    events: EventRegistry
    connection: ConnectionManager
    discovery: DiscoveryPublisher
    aggregator: DetectionAggregator


class BridgeBuilder:
    """
    Usage:
        builder = BridgeBuilder(config)
        bridge = builder.build()
        bridge.connection.connect()
    """

    def __init__(self, config: BridgeConfig):
        self.config = config

    def resolve_device_id(self) -> str:
        return resolve_device_id(
            self.config.identity.device_id,
            self.config.identity.store_path,
        )

    def build_topics(self, device_id: str) -> TopicLayout:
        topics_cfg = self.config.topics
        return TopicLayout(
            device_id=device_id,
            prefix=topics_cfg.prefix,
            discovery_prefix=topics_cfg.discovery_prefix,
            node_id=topics_cfg.node_id,
        )

    def build_connection(self, topics: TopicLayout, events: Optional[EventRegistry] = None) -> ConnectionManager:
        mqtt_cfg = self.config.mqtt
        broker = mqtt_cfg.broker
        policy = mqtt_cfg.connection

        logger.info(
            f"Building connection manager for {broker.host}:{broker.port}",
            extra={
                "component": "builder",
                "event": "connection_build",
                "broker_host": broker.host,
                "broker_port": broker.port,
                "client_id": broker.client_id,
            }
        )
        return ConnectionManager(
            broker_host=broker.host,
            broker_port=broker.port,
            client_id=broker.client_id,
            username=broker.username,
            password=broker.password,
            keepalive=broker.keepalive,
            availability_topic=topics.availability_topic,
            availability_qos=mqtt_cfg.qos.availability,
            default_qos=mqtt_cfg.qos.state,
            max_attempts=policy.max_attempts,
            retry_delay=policy.retry_delay,
            reconnect_on_publish=policy.reconnect_on_publish,
            reconnect_cooldown=policy.reconnect_cooldown,
            events=events,
        )

    def build_discovery(self, connection: ConnectionManager, topics: TopicLayout) -> DiscoveryPublisher:
        disc = self.config.discovery
        config = DiscoveryConfig.build(
            topics=topics,
            labels=self.config.detection.labels,
            manufacturer=disc.manufacturer,
            model=disc.model,
            sw_version=disc.sw_version,
            origin_name=disc.origin_name,
            device_name=disc.device_name,
            platform=disc.platform,
            value_template=disc.value_template,
        )
        return DiscoveryPublisher(
            connection=connection,
            config=config,
            topic=topics.discovery_topic,
            qos=self.config.mqtt.qos.discovery,
            abbreviate=disc.abbreviate,
        )

    def build_aggregator(
        self,
        connection: ConnectionManager,
        discovery: DiscoveryPublisher,
        topics: TopicLayout,
    ) -> DetectionAggregator:
        return DetectionAggregator(
            connection=connection,
            discovery=discovery,
            topics=topics,
            labels=self.config.detection.labels,
            min_score=self.config.detection.min_score,
            qos=self.config.mqtt.qos.state,
            retain=self.config.mqtt.retain_state,
        )

    def build(self) -> Bridge:
        """Build and wire every component (no network I/O)."""
        device_id = self.resolve_device_id()
        topics = self.build_topics(device_id)
        events = EventRegistry()

        connection = self.build_connection(topics, events)
        discovery = self.build_discovery(connection, topics)
        aggregator = self.build_aggregator(connection, discovery, topics)

        discovery.attach(events)
        aggregator.attach(events)

        logger.info(
            "Bridge build complete",
            extra={
                "component": "builder",
                "event": "bridge_build_complete",
                "device_id": device_id,
                "labels": list(aggregator.labels),
                "listeners": events.get_help(),
            }
        )
        return Bridge(
            device_id=device_id,
            topics=topics,
            events=events,
            connection=connection,
            discovery=discovery,
            aggregator=aggregator,
        )
