"""
Detection Models
================

Transient values handed to the bridge by the external detector.

A DetectionFrame is produced once per processed camera frame and is not
retained after aggregation. The JSON shape accepted by from_payload() is the
one the detector apps emit:

    [{"label": "person", "score": 0.9}, {"label": "car", "score": 0.8}]

or the same list wrapped as {"detections": [...]}.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union


@dataclass(frozen=True)
class Detection:
    """One detected object: class label and model confidence."""
    label: str
    score: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Detection':
        """
        Build a detection from {"label": str, "score": float}.

        "class"/"class_name" and "confidence" are accepted as aliases.

        Raises:
            ValueError: If the label is missing or the score is not numeric
        """
        label = data.get('label', data.get('class', data.get('class_name')))
        if not isinstance(label, str) or not label:
            raise ValueError(f"Detection without label: {data!r}")

        score = data.get('score', data.get('confidence', 0.0))
        try:
            score = float(score)
        except (TypeError, ValueError):
            raise ValueError(f"Detection score is not numeric: {data!r}")

        return cls(label=label, score=score)


@dataclass(frozen=True)
class DetectionFrame:
    """
    All detections of one processed camera frame.

    Attributes:
        detections: Detections in model output order
        timestamp: When the frame was produced (informational only)
    """
    detections: Tuple[Detection, ...] = ()
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def of(cls, *pairs: Tuple[str, float]) -> 'DetectionFrame':
        """
        Shorthand for building a frame from (label, score) pairs.

        Example:
            >>> frame = DetectionFrame.of(("person", 0.9), ("car", 0.8))
        """
        return cls(detections=tuple(Detection(label, float(score)) for label, score in pairs))

    @classmethod
    def from_payload(
        cls,
        payload: Union[List[Dict[str, Any]], Dict[str, Any]],
        timestamp: Optional[datetime] = None,
    ) -> 'DetectionFrame':
        """
        Build a frame from decoded detector JSON.

        Raises:
            ValueError: If the payload does not have a detections list
        """
        if isinstance(payload, dict):
            payload = payload.get('detections')

        if not isinstance(payload, list):
            raise ValueError("Frame payload must be a list of detections")

        detections = []
        for item in payload:
            if not isinstance(item, dict):
                raise ValueError(f"Detection must be an object, got {type(item).__name__}")
            detections.append(Detection.from_dict(item))

        return cls(
            detections=tuple(detections),
            timestamp=timestamp or datetime.now(),
        )

    @property
    def labels(self) -> Iterable[str]:
        return (d.label for d in self.detections)

    def __len__(self) -> int:
        return len(self.detections)
