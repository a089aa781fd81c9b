#!/usr/bin/env python3
"""
State Monitor
=============

Watches the per-label state topics of one device and reports when a count
crosses a threshold (e.g. "person >= 1" switches an indicator on).

Usage:
    python -m odbridge.monitors --device-id d6287655
    python -m odbridge.monitors --broker 192.168.1.100 --device-id d6287655 --threshold 2
    python -m odbridge.monitors --device-id d6287655 --label person --verbose
"""
import argparse
import signal
import sys
import time
from datetime import datetime
from threading import Lock
from typing import Dict, Optional, Tuple

import paho.mqtt.client as mqtt

from ..connection import AVAILABILITY_ONLINE
from ..publishers import TopicLayout


class StateMonitor:
    """Subscriber for the bridge's state and availability topics"""

    def __init__(
        self,
        broker: str,
        port: int,
        topics: TopicLayout,
        threshold: int = 1,
        label: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        verbose: bool = False,
    ):
        self.broker = broker
        self.port = port
        self.topics = topics
        self.threshold = threshold
        self.label = label
        self.verbose = verbose

        self.message_count = 0
        self.values: Dict[str, int] = {}
        self.active: Dict[str, bool] = {}
        self.crossings = 0
        self.device_online: Optional[bool] = None
        self.lock = Lock()
        self.running = True

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"odbridge-monitor-{topics.device_id}",
        )
        if username:
            self.client.username_pw_set(username, password)
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

    @property
    def subscription(self) -> str:
        if self.label:
            return self.topics.state_topic(self.label)
        return self.topics.state_wildcard

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            print(f"❌ Connection refused: {reason_code}")
            return

        print(f"✅ Connected to {self.broker}:{self.port}")
        self.client.subscribe(self.subscription, qos=1)
        self.client.subscribe(self.topics.availability_topic, qos=1)
        print(f"📡 Listening: {self.subscription}")
        print(f"💓 Availability: {self.topics.availability_topic}")
        print(f"🎯 Threshold: >= {self.threshold}")
        print("\n" + "=" * 70)
        print("🎧 Monitor active - Press Ctrl+C to exit")
        print("=" * 70 + "\n")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        print(f"\n⚠️ Disconnected ({reason_code})")

    def _on_message(self, client, userdata, msg):
        payload = msg.payload.decode('utf-8', errors='replace')

        if msg.topic == self.topics.availability_topic:
            self.handle_availability(payload)
            return

        try:
            crossing = self.handle_state(msg.topic, payload)
        except ValueError as e:
            print(f"❌ Ignoring message on {msg.topic}: {e}")
            return

        now = datetime.now().strftime("%H:%M:%S")
        if crossing is not None:
            label, active = crossing
            icon = "🔴 ON " if active else "⚪ OFF"
            print(f"[{now}] {icon} {label} = {self.values[label]}")
        elif self.verbose:
            label = self.topics.label_from_state_topic(msg.topic)
            print(f"[{now}] 📦 {label} = {self.values[label]}")

    def handle_availability(self, payload: str) -> bool:
        online = payload == AVAILABILITY_ONLINE
        with self.lock:
            changed = online != self.device_online
            self.device_online = online
        if changed:
            print(f"{'🟢' if online else '🔌'} Device {self.topics.device_id} is {payload}")
        return online

    def handle_state(self, topic: str, payload: str) -> Optional[Tuple[str, bool]]:
        """
        Record a state value.

        Returns:
            (label, active) when the label crossed the threshold, else None

        Raises:
            ValueError: If topic or payload isn't a valid state message
        """
        label = self.topics.label_from_state_topic(topic)
        value = int(payload.strip())

        with self.lock:
            self.message_count += 1
            self.values[label] = value

            active = value >= self.threshold
            previous = self.active.get(label)
            self.active[label] = active

            # first value only reports when it is already active
            if previous is None and not active:
                return None
            if previous == active:
                return None

            self.crossings += 1
            return label, active

    def run(self):
        """Start the monitor"""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        print(f"🔌 Connecting to {self.broker}:{self.port}...")
        try:
            self.client.connect(self.broker, self.port, keepalive=60)
            self.client.loop_start()
        except Exception as e:
            print(f"❌ Error connecting: {e}")
            return

        try:
            while self.running:
                time.sleep(1)
        except KeyboardInterrupt:
            pass

        self.stop()

    def _signal_handler(self, signum, frame):
        print("\n\n⚠️ Stopping monitor...")
        self.running = False

    def stop(self):
        """Stop the monitor and print statistics"""
        # DISCONNECT is flushed by the network loop, so stop it afterwards
        self.client.disconnect()
        self.client.loop_stop()

        print("\n" + "=" * 70)
        print("📊 STATISTICS")
        print("=" * 70)
        print(f"Messages received: {self.message_count}")
        print(f"Threshold crossings: {self.crossings}")

        if self.values:
            print("\nLast value per label:")
            for label, value in sorted(self.values.items()):
                marker = "●" if self.active.get(label) else "○"
                print(f"  {marker} {label}: {value}")

        print("=" * 70)
        print("👋 Monitor stopped")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Watch odbridge state topics and report threshold crossings"
    )
    parser.add_argument("--broker", default="localhost", help="MQTT broker host (default: localhost)")
    parser.add_argument("--port", type=int, default=1883, help="MQTT broker port (default: 1883)")
    parser.add_argument("--device-id", required=True, help="Device id of the bridge to watch")
    parser.add_argument("--prefix", default="aha", help="State topic prefix (default: aha)")
    parser.add_argument("--node-id", default="object_detector", help="Node segment (default: object_detector)")
    parser.add_argument("--label", default=None, help="Watch a single label (default: all)")
    parser.add_argument("--threshold", type=int, default=1, help="Count considered active (default: 1)")
    parser.add_argument("--username", default=None, help="MQTT username")
    parser.add_argument("--password", default=None, help="MQTT password")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print every state message")

    args = parser.parse_args(argv)

    topics = TopicLayout(device_id=args.device_id, prefix=args.prefix, node_id=args.node_id)
    monitor = StateMonitor(
        broker=args.broker,
        port=args.port,
        topics=topics,
        threshold=args.threshold,
        label=args.label,
        username=args.username,
        password=args.password,
        verbose=args.verbose,
    )

    monitor.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
