"""
App - wiring and lifecycle
"""
from .builder import Bridge, BridgeBuilder
from .controller import BridgeController, main
from .sinks import create_detection_sink
from .sources import iter_frames

__all__ = [
    "Bridge",
    "BridgeBuilder",
    "BridgeController",
    "main",
    "create_detection_sink",
    "iter_frames",
]
