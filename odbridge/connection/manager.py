"""
MQTT Connection Manager
=======================

Owns the single MQTT client of the bridge, its connection state, the
availability topic and the bounded reconnect policy.

Design:
- paho's own reconnect is disabled (reconnect_on_failure=False and the
  network loop is stopped after every failure or loss). Retries happen here,
  up to max_attempts per connect() cycle, retry_delay seconds apart.
- Fire-and-forget publishing: publish() never blocks on the network, never
  queues while disconnected and never retries a failed send.
- Transitions are broadcast on an EventRegistry (CONNECTED, DISCONNECTED,
  CONNECT_FAILED, PUBLISH_DROPPED) instead of optional callbacks.
- Every error is logged and swallowed; nothing propagates to the caller.

Threads:
    connect()/publish()/disconnect() run on the caller's thread, paho
    callbacks run on paho's network thread, retries on a Timer thread.
    State transitions are guarded by _state_lock; events are emitted
    outside the lock.
"""
import logging
import time
from threading import Event, Lock, Timer
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from .events import ConnectionEvent, ConnectionState, EventRegistry
from ..logging import (
    generate_trace_id,
    log_error_with_context,
    log_mqtt_publish,
    trace_context,
)

logger = logging.getLogger(__name__)

AVAILABILITY_ONLINE = "online"
AVAILABILITY_OFFLINE = "offline"


class ConnectionManager:
    """
    Single MQTT connection with manual bounded reconnect.

    Usage:
        events = EventRegistry()
        manager = ConnectionManager(
            broker_host="192.168.0.150",
            client_id="odbridge-1",
            availability_topic="aha/object_detector/<id>/avty_t",
            events=events,
        )
        manager.connect()                    # asynchronous
        manager.publish("a/b", "1")          # False (dropped) until connected
        manager.disconnect()
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int = 1883,
        client_id: str = "odbridge",
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        availability_topic: Optional[str] = None,
        availability_qos: int = 1,
        default_qos: int = 1,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        reconnect_on_publish: bool = True,
        reconnect_cooldown: float = 30.0,
        events: Optional[EventRegistry] = None,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.client_id = client_id
        self.keepalive = keepalive
        self.availability_topic = availability_topic
        self.availability_qos = availability_qos
        self.default_qos = default_qos
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.reconnect_on_publish = reconnect_on_publish
        self.reconnect_cooldown = reconnect_cooldown
        self.events = events if events is not None else EventRegistry()

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
            reconnect_on_failure=False,
        )
        if username:
            self.client.username_pw_set(username, password)
        if availability_topic:
            # broker announces "offline" if we vanish without disconnect()
            self.client.will_set(availability_topic, AVAILABILITY_OFFLINE, qos=availability_qos, retain=True)

        self.client.on_connect = self._on_connect
        self.client.on_connect_fail = self._on_connect_fail
        self.client.on_disconnect = self._on_disconnect
        self.client.on_publish = self._on_publish

        self._state = ConnectionState.DISCONNECTED
        self._state_lock = Lock()
        self._connected = Event()
        self._attempts = 0
        self._epoch = 0
        self._gave_up_at: Optional[float] = None
        self._retry_timer: Optional[Timer] = None

        self._stats_lock = Lock()
        self._published = 0
        self._dropped = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def broker(self) -> str:
        return f"{self.broker_host}:{self.broker_port}"

    def is_connected(self) -> bool:
        """Transport state as reported by paho (not ConnectionState)."""
        return self.client.is_connected()

    def wait_until_connected(self, timeout: Optional[float] = None) -> bool:
        """Block until the current epoch is connected or timeout expires."""
        return self._connected.wait(timeout=timeout)

    def connect(self) -> bool:
        """
        Start an asynchronous connect cycle.

        Idempotent: does nothing while CONNECTING or CONNECTED.

        Returns:
            True if a new cycle was started
        """
        with self._state_lock:
            if self._state is not ConnectionState.DISCONNECTED:
                logger.debug(
                    "Connect ignored, connection already in progress",
                    extra={"component": "connection", "state": self._state.value}
                )
                return False
            self._state = ConnectionState.CONNECTING
            self._attempts = 0
            self._gave_up_at = None

        self._attempt_connect()
        return True

    def request_reconnect(self) -> bool:
        """
        Best-effort reconnect after a publish found the client disconnected.

        Honors reconnect_on_publish and, after a cycle gave up, the
        reconnect_cooldown.

        Returns:
            True if a new connect cycle was started
        """
        if not self.reconnect_on_publish:
            return False

        gave_up_at = self._gave_up_at
        if gave_up_at is not None and time.monotonic() - gave_up_at < self.reconnect_cooldown:
            return False

        return self.connect()

    def publish(
        self,
        topic: str,
        payload: str,
        qos: Optional[int] = None,
        retain: bool = False,
        reconnect: bool = True,
    ) -> bool:
        """
        Hand a message to the transport.

        Dropped with a warning when not connected (never queued); in that case
        a best-effort reconnect is requested unless reconnect=False. Callers
        holding a lock that DISCONNECTED listeners take must pass
        reconnect=False: connecting joins paho's network thread. Failed sends
        are logged, not retried. Delivery is reported asynchronously by
        on_publish.

        Returns:
            True if paho accepted the message
        """
        qos = self.default_qos if qos is None else qos

        if self._state is not ConnectionState.CONNECTED or not self.is_connected():
            with self._stats_lock:
                self._dropped += 1
            logger.warning(
                "⚠️ MQTT not connected, message dropped",
                extra={
                    "component": "connection",
                    "event": "publish_skipped",
                    "reason": "not_connected",
                    "mqtt_topic": topic,
                    "state": self._state.value,
                }
            )
            self.events.emit(ConnectionEvent.PUBLISH_DROPPED, topic=topic)
            if reconnect:
                self.request_reconnect()
            return False

        try:
            result = self.client.publish(topic, payload, qos=qos, retain=retain)
        except Exception as e:
            log_error_with_context(
                logger,
                message="❌ Error publishing message",
                exception=e,
                component="connection",
                event="publish_exception",
                mqtt_topic=topic,
            )
            return False

        payload_size = len(payload.encode('utf-8')) if isinstance(payload, str) else len(payload or b"")
        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            with self._stats_lock:
                self._published += 1
            log_mqtt_publish(logger, topic=topic, qos=qos, payload_size=payload_size, retain=retain)
            return True

        log_mqtt_publish(
            logger,
            topic=topic,
            qos=qos,
            payload_size=payload_size,
            success=False,
            error_code=int(result.rc),
            retain=retain,
        )
        return False

    def disconnect(self, timeout: float = 1.0) -> None:
        """
        Announce "offline", tear the connection down and end the epoch.

        The offline message is best-effort: errors are logged and swallowed.
        Listeners of DISCONNECTED reset their per-epoch state.
        """
        logger.info(
            "🔌 Disconnecting from MQTT broker",
            extra={"component": "connection", "event": "disconnecting", "broker": self.broker}
        )

        if self._state is ConnectionState.CONNECTED:
            try:
                info = self._publish_availability(AVAILABILITY_OFFLINE)
                if info is not None:
                    info.wait_for_publish(timeout=timeout)
            except Exception as e:
                logger.warning(
                    "⚠️ Offline availability not delivered",
                    extra={
                        "component": "connection",
                        "event": "offline_failed",
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )

        with self._state_lock:
            self._state = ConnectionState.DISCONNECTED
            self._attempts = 0
            self._gave_up_at = None
            timer, self._retry_timer = self._retry_timer, None

        if timer is not None:
            timer.cancel()
        self._connected.clear()

        try:
            self.client.disconnect()
            self.client.loop_stop()
        except Exception as e:
            log_error_with_context(
                logger,
                message="❌ Error during disconnect",
                exception=e,
                component="connection",
                event="disconnect_error",
            )

        self.events.emit(ConnectionEvent.DISCONNECTED, reason="client_disconnect", expected=True)

    def get_stats(self) -> Dict[str, Any]:
        """Counters and state for diagnostics."""
        with self._stats_lock:
            return {
                "state": self._state.value,
                "connected": self._connected.is_set(),
                "broker": self.broker,
                "client_id": self.client_id,
                "epoch": self._epoch,
                "attempts": self._attempts,
                "messages_published": self._published,
                "messages_dropped": self._dropped,
            }

    # ------------------------------------------------------------------
    # Connect cycle
    # ------------------------------------------------------------------

    def _attempt_connect(self) -> None:
        with self._state_lock:
            if self._state is not ConnectionState.CONNECTING:
                return
            self._retry_timer = None
            self._attempts += 1
            attempt = self._attempts

        with trace_context(generate_trace_id("connect")):
            logger.info(
                f"🔁 Connecting to MQTT broker (attempt {attempt}/{self.max_attempts})",
                extra={
                    "component": "connection",
                    "event": "connection_attempt",
                    "broker": self.broker,
                    "client_id": self.client_id,
                    "attempt": attempt,
                }
            )
            try:
                # joins a network thread left over from a failed attempt
                self.client.loop_stop()
                self.client.connect_async(self.broker_host, self.broker_port, keepalive=self.keepalive)
                rc = self.client.loop_start()
                if rc != mqtt.MQTT_ERR_SUCCESS:
                    raise RuntimeError(f"network loop did not start (rc={rc})")
            except Exception as e:
                self._handle_connect_failure(reason=str(e), exception=e)

    def _handle_connect_failure(self, reason: str, exception: Optional[Exception] = None) -> None:
        with self._state_lock:
            if self._state is not ConnectionState.CONNECTING:
                return
            attempt = self._attempts
            will_retry = attempt < self.max_attempts
            if not will_retry:
                self._state = ConnectionState.DISCONNECTED
                self._gave_up_at = time.monotonic()

        # stop paho from retrying on its own
        self.client.loop_stop()

        if will_retry:
            logger.warning(
                f"⚠️ Connection attempt {attempt}/{self.max_attempts} failed, retrying in {self.retry_delay}s",
                extra={
                    "component": "connection",
                    "event": "connection_failed",
                    "broker": self.broker,
                    "attempt": attempt,
                    "reason": reason,
                }
            )
            timer = Timer(self.retry_delay, self._attempt_connect)
            timer.daemon = True
            with self._state_lock:
                if self._state is not ConnectionState.CONNECTING:
                    return
                self._retry_timer = timer
            timer.start()
            return

        log_error_with_context(
            logger,
            message=f"❌ Could not connect after {attempt} attempts, giving up",
            exception=exception,
            component="connection",
            event="connection_gave_up",
            broker=self.broker,
            attempts=attempt,
            reason=reason,
        )
        self.events.emit(ConnectionEvent.CONNECT_FAILED, attempts=attempt, reason=reason)

    def _publish_availability(self, status: str) -> Optional[mqtt.MQTTMessageInfo]:
        if not self.availability_topic:
            return None
        info = self.client.publish(self.availability_topic, status, qos=self.availability_qos, retain=True)
        logger.info(
            f"📶 Availability published: {status}",
            extra={
                "component": "connection",
                "event": "availability_published",
                "status": status,
                "mqtt_topic": self.availability_topic,
            }
        )
        return info

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """CONNACK received"""
        if reason_code.is_failure:
            self._handle_connect_failure(reason=str(reason_code))
            return

        with self._state_lock:
            cancelled = self._state is not ConnectionState.CONNECTING
            if not cancelled:
                self._state = ConnectionState.CONNECTED
                self._attempts = 0
                self._epoch += 1
                epoch = self._epoch

        if cancelled:
            # disconnect() ran while the CONNACK was in flight
            client.disconnect()
            return

        self._connected.set()
        logger.info(
            "✅ Connected to MQTT broker",
            extra={
                "component": "connection",
                "event": "connected",
                "broker": self.broker,
                "client_id": self.client_id,
                "epoch": epoch,
            }
        )

        try:
            self._publish_availability(AVAILABILITY_ONLINE)
        except Exception as e:
            log_error_with_context(
                logger,
                message="❌ Error publishing online availability",
                exception=e,
                component="connection",
                event="availability_error",
            )

        self.events.emit(ConnectionEvent.CONNECTED, epoch=epoch)

    def _on_connect_fail(self, client, userdata):
        """TCP/TLS connection could not be established"""
        self._handle_connect_failure(reason="network connection failed")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        """Connection closed (explicitly or lost)"""
        with self._state_lock:
            was_connected = self._state is ConnectionState.CONNECTED
            if was_connected:
                self._state = ConnectionState.DISCONNECTED

        if not was_connected:
            logger.debug(
                "Disconnect callback outside an established epoch",
                extra={"component": "connection", "reason_code": str(reason_code)}
            )
            return

        self._connected.clear()
        self.client.loop_stop()
        logger.warning(
            "⚠️ Connection to MQTT broker lost",
            extra={
                "component": "connection",
                "event": "disconnected",
                "broker": self.broker,
                "reason_code": str(reason_code),
            }
        )
        self.events.emit(ConnectionEvent.DISCONNECTED, reason=str(reason_code), expected=False)

    def _on_publish(self, client, userdata, mid, reason_code, properties=None):
        """Delivery completed (PUBACK/PUBCOMP, or written to socket for QoS 0)"""
        if reason_code.is_failure:
            logger.warning(
                "⚠️ Broker rejected publish",
                extra={"component": "connection", "event": "publish_rejected", "mid": mid, "reason_code": str(reason_code)}
            )
        else:
            logger.debug(
                "✅ Publish acknowledged",
                extra={"component": "connection", "event": "publish_acked", "mid": mid}
            )
