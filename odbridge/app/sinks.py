"""
Detection Sink
==============

Callable adapter for detectors that push results through a callback.
"""
from typing import Any, Callable, Dict, List, Union

from ..detection import DetectionAggregator, DetectionFrame


def create_detection_sink(aggregator: DetectionAggregator) -> Callable:
    """
    Create a sink function that feeds the aggregator.

    The sink accepts a DetectionFrame or the raw decoded JSON the detector
    emits. It never raises on the MQTT side; malformed payloads raise
    ValueError to the caller.

    Note:
        The returned function has __name__ = 'detection_sink' so it can be
        identified when composed with other callbacks.
    """
    def detection_sink(frame: Union[DetectionFrame, List[Dict[str, Any]], Dict[str, Any]]):
        """Sink that publishes per-label counts via MQTT"""
        if not isinstance(frame, DetectionFrame):
            frame = DetectionFrame.from_payload(frame)
        return aggregator.process_frame(frame)

    detection_sink.__name__ = 'detection_sink'

    return detection_sink
