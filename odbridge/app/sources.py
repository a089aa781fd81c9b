"""
Frame Sources
=============

Reads detection frames written by an external detector as JSON lines.

Each line is either a list of detections or an object with a
"detections" list:

    [{"label": "person", "score": 0.91}, {"label": "car", "score": 0.77}]
    {"detections": [{"label": "person", "score": 0.91}]}

Malformed lines are logged and skipped; the stream keeps going.
"""
import json
import logging
from typing import Iterator, TextIO

from ..detection import DetectionFrame

logger = logging.getLogger(__name__)


def iter_frames(stream: TextIO) -> Iterator[DetectionFrame]:
    """Yield one DetectionFrame per valid non-empty line."""
    for line_no, line in enumerate(stream, start=1):
        line = line.strip()
        if not line:
            continue

        try:
            payload = json.loads(line)
            frame = DetectionFrame.from_payload(payload)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(
                f"⚠️ Skipping malformed frame at line {line_no}: {e}",
                extra={
                    "component": "source",
                    "event": "frame_malformed",
                    "line": line_no,
                    "error": str(e),
                }
            )
            continue

        yield frame
