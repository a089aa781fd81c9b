"""
Structured Logging Infrastructure
==================================

JSON logging so bridge output can be queried in production.

Design Philosophy:
- JSON only (one output format, no dual console/JSON mode)
- Trace correlation via contextvars (one trace per processed frame)
- Helpers for the common cases (MQTT publish, frame summaries, errors)
- Emojis stay in messages (human-readable inside JSON)
- Optional file rotation (RotatingFileHandler)

Usage:
    # Setup (once at startup)
    from odbridge.logging import setup_logging

    # Stdout (development)
    setup_logging(level="INFO")

    # File with rotation (production)
    setup_logging(
        level="INFO",
        log_file="logs/odbridge.log",
        max_bytes=10*1024*1024,  # 10 MB
        backup_count=5
    )

    # Logging with context
    logger.info("📤 State published", extra={
        "label": "person",
        "mqtt_topic": "aha/object_detector/<id>/person/stat_t"
    })

    # Trace propagation
    from odbridge.logging import trace_context, get_trace_id

    with trace_context(generate_trace_id("frame")):
        logger.info("Processing frame", extra={"trace_id": get_trace_id()})
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from contextvars import ContextVar
from contextlib import contextmanager
from typing import Optional, Dict, Any, Mapping
import uuid

from pythonjsonlogger.json import JsonFormatter

# ============================================================================
# Trace Context (trace_id propagation)
# ============================================================================

trace_id_var: ContextVar[Optional[str]] = ContextVar('trace_id', default=None)


def get_trace_id() -> Optional[str]:
    """
    Return the trace_id of the current context.

    Returns:
        Current trace ID or None outside of a trace_context block
    """
    return trace_id_var.get()


def generate_trace_id(prefix: str = "trace") -> str:
    """
    Generate a new unique trace ID.

    Args:
        prefix: Trace ID prefix (e.g. "frame", "connect", "discovery")

    Returns:
        Trace ID formatted as {prefix}-{short_uuid}
    """
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def trace_context(trace_id: Optional[str] = None):
    """
    Context manager that propagates a trace_id through the call stack.

    Args:
        trace_id: Trace ID to propagate. Generated when None.

    Usage:
        with trace_context(generate_trace_id("frame")):
            aggregator.process_frame(frame)
    """
    if trace_id is None:
        trace_id = generate_trace_id()

    token = trace_id_var.set(trace_id)
    try:
        yield trace_id
    finally:
        trace_id_var.reset(token)


# ============================================================================
# Logger Setup
# ============================================================================

class BridgeJsonFormatter(JsonFormatter):
    """JSON formatter with renamed core fields, trace ids and global fields."""

    def __init__(self, *args, global_fields: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.global_fields = dict(global_fields or {})

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        if 'levelname' in log_record:
            log_record['level'] = log_record.pop('levelname')

        if 'name' in log_record:
            log_record['logger'] = log_record.pop('name')

        current_trace_id = get_trace_id()
        if current_trace_id and 'trace_id' not in log_record:
            log_record['trace_id'] = current_trace_id

        for key, value in self.global_fields.items():
            if key not in log_record:
                log_record[key] = value


def setup_logging(
    level: str = "INFO",
    indent: Optional[int] = None,
    add_fields: Optional[Dict[str, Any]] = None,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
    paho_level: str = "WARNING",
) -> None:
    """
    Configure structured (JSON) logging for the whole process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        indent: JSON indent for pretty-print (None = compact, 2 = readable)
        add_fields: Extra fields added to every record (e.g. {"device_id": ...})
        log_file: Log file path (None = stdout). Enables rotation when set.
        max_bytes: Maximum file size before rotating (default 10 MB)
        backup_count: Number of rotated files to keep (default 5)
        paho_level: Log level for the paho-mqtt library logger

    File Rotation:
        odbridge.log, odbridge.log.1, odbridge.log.2, ... The oldest backup
        is dropped once backup_count files exist.
    """
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )

        print(
            f"📄 Logging to file: {log_file} "
            f"(max: {max_bytes // 1024 // 1024}MB, backups: {backup_count})",
            file=sys.stderr,
        )
    else:
        handler = logging.StreamHandler(sys.stdout)

    formatter = BridgeJsonFormatter(
        '%(timestamp)s %(levelname)s %(name)s %(message)s',
        timestamp=True,
        json_indent=indent,
        global_fields=add_fields,
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    logging.getLogger('paho').setLevel(getattr(logging, paho_level.upper()))


# ============================================================================
# Helper Functions
# ============================================================================

def log_mqtt_publish(
    logger: logging.Logger,
    topic: str,
    qos: int,
    payload_size: int,
    success: bool = True,
    error_code: Optional[int] = None,
    retain: bool = False,
    component: str = "connection",
) -> None:
    """
    Helper for MQTT publish logs.

    Args:
        logger: Logger instance
        topic: MQTT topic
        qos: QoS level
        payload_size: Payload size in bytes
        success: Whether paho accepted the message
        error_code: paho error code (when success=False)
        retain: MQTT retain flag
        component: Component emitting the log
    """
    extra = {
        "component": component,
        "mqtt_topic": topic,
        "qos": qos,
        "retain": retain,
        "payload_size_bytes": payload_size,
        "success": success
    }

    if error_code is not None:
        extra["mqtt_error_code"] = error_code

    if success:
        logger.debug(f"📤 Message handed to transport for {topic}", extra=extra)
    else:
        logger.warning(f"⚠️ Failed to publish to {topic}", extra=extra)


def log_frame_summary(
    logger: logging.Logger,
    counts: Mapping[str, int],
    published: Mapping[str, str],
    detections_in_frame: int,
    component: str = "aggregator",
) -> None:
    """
    Helper for per-frame aggregation logs.

    Args:
        logger: Logger instance
        counts: Per-label counts computed for the frame
        published: Labels actually published (label -> payload)
        detections_in_frame: Raw number of detections in the frame
        component: Component emitting the log
    """
    extra = {
        "component": component,
        "counts": dict(counts),
        "published": dict(published),
        "detections_in_frame": detections_in_frame,
        "trace_id": get_trace_id(),
    }

    logger.debug(
        f"Frame aggregated: {detections_in_frame} detections → "
        f"{len(published)} changed labels",
        extra=extra
    )


def log_error_with_context(
    logger: logging.Logger,
    message: str,
    exception: Optional[Exception] = None,
    component: str = "unknown",
    event: Optional[str] = None,
    trace_id: Optional[str] = None,
    **kwargs: Any
) -> None:
    """
    Helper for error logs with full context.

    Args:
        logger: Logger instance
        message: Error message
        exception: Caught exception (optional)
        component: Component where the error happened
        event: Event that caused the error
        trace_id: Trace ID (taken from the context when omitted)
        **kwargs: Additional context (broker_host, topic, ...)
    """
    extra = {
        "component": component,
        "trace_id": trace_id or get_trace_id()
    }

    if event:
        extra["event"] = event

    if exception:
        extra["error_type"] = type(exception).__name__
        extra["error_message"] = str(exception)

    extra.update(kwargs)

    if exception:
        logger.error(f"{message}: {exception}", extra=extra, exc_info=True)
    else:
        logger.error(message, extra=extra)


__all__ = [
    # Setup
    "setup_logging",
    "BridgeJsonFormatter",
    # Trace context
    "trace_context",
    "get_trace_id",
    "generate_trace_id",
    # Helpers
    "log_mqtt_publish",
    "log_frame_summary",
    "log_error_with_context",
]
