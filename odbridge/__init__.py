"""
odbridge - Object Detection to MQTT Bridge
==========================================

Turns a stream of object-detection frames into debounced per-label count
publications plus a retained Home Assistant discovery config.

Public API:
- BridgeConfig: Validated configuration
- ConnectionManager: Single MQTT connection with manual reconnect
- DiscoveryPublisher: Retained device config, once per connection epoch
- DetectionAggregator: Per-label counts, published only on change

Usage:
    # Run the bridge (JSON-lines frames on stdin)
    python -m odbridge

    # Or programmatically
    from odbridge import BridgeBuilder, BridgeConfig, DetectionFrame

    bridge = BridgeBuilder(BridgeConfig()).build()
    bridge.connection.connect()
    bridge.aggregator.process_frame(DetectionFrame.of(("person", 0.9)))
"""

__version__ = "1.0.0"

from .config import BridgeConfig
from .connection import ConnectionEvent, ConnectionManager, ConnectionState, EventRegistry
from .detection import Detection, DetectionAggregator, DetectionFrame
from .publishers import DiscoveryConfig, DiscoveryPublisher, TopicLayout
from .app import BridgeBuilder, BridgeController, main

__all__ = [
    # Config
    "BridgeConfig",
    # Connection
    "ConnectionManager",
    "ConnectionEvent",
    "ConnectionState",
    "EventRegistry",
    # Detection
    "Detection",
    "DetectionFrame",
    "DetectionAggregator",
    # Publishers
    "TopicLayout",
    "DiscoveryConfig",
    "DiscoveryPublisher",
    # App
    "BridgeBuilder",
    "BridgeController",
    "main",
]
