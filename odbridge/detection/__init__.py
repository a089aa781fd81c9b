"""
Detection - frames from the external detector and their aggregation
"""
from .models import Detection, DetectionFrame
from .aggregator import DetectionAggregator, count_labels

__all__ = [
    "Detection",
    "DetectionFrame",
    "DetectionAggregator",
    "count_labels",
]
