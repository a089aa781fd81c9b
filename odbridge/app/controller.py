"""
Bridge Controller
=================

Detection frames in, debounced MQTT state out.

Input: JSON-lines frames on stdin or from a file (one frame per line)
Output: per-label counts on {prefix}/{node_id}/{device_id}/{label}/stat_t,
        retained discovery config, retained availability
"""
import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event, Thread
from typing import Optional, TextIO

from dotenv import load_dotenv
from pydantic import ValidationError

from ..config import BridgeConfig
from ..errors import IdentityStoreError
from ..logging import setup_logging
from .builder import Bridge, BridgeBuilder
from .sinks import create_detection_sink
from .sources import iter_frames

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/odbridge/config.yaml"


class BridgeController:
    """
    Lifecycle of the bridge.

    Responsibility: orchestration
    - Setup (delegates construction to BridgeBuilder)
    - Feeding frames from the input stream to the aggregator
    - Signal handling (Ctrl+C)
    - Cleanup (offline availability + disconnect)
    """

    def __init__(self, config: BridgeConfig, input_stream: TextIO):
        self.config = config
        self.input_stream = input_stream
        self.builder = BridgeBuilder(config)

        self.bridge: Optional[Bridge] = None
        self.sink = None

        self.shutdown_event = Event()
        self._reader: Optional[Thread] = None
        self.frames_read = 0

    def setup(self) -> bool:
        """
        Build components and connect.

        Returns:
            bool: False only if the bridge could not be built. A broker that
            is down is not fatal: frames keep flowing and publishes request
            a reconnect.
        """
        logger.info("🚀 Starting odbridge...")

        try:
            self.bridge = self.builder.build()
        except IdentityStoreError as e:
            logger.error(f"❌ Could not resolve device id: {e}")
            return False

        self.sink = create_detection_sink(self.bridge.aggregator)

        connection = self.bridge.connection
        connection.connect()

        timeout = self.config.mqtt.connection.connect_timeout
        if not connection.wait_until_connected(timeout=timeout):
            logger.warning(
                f"⚠️ Not connected to {connection.broker} after {timeout}s, "
                f"continuing without MQTT",
                extra={
                    "component": "controller",
                    "event": "connect_timeout",
                    "broker": connection.broker,
                    "timeout": timeout,
                }
            )
            return True

        logger.info("✅ Setup complete")
        return True

    def _read_frames(self):
        """Reader thread: feeds every frame to the sink until EOF or shutdown."""
        try:
            for frame in iter_frames(self.input_stream):
                if self.shutdown_event.is_set():
                    break
                self.frames_read += 1
                self.sink(frame)
        except Exception as e:
            logger.error(f"❌ Error reading frames: {e}", exc_info=True)
        finally:
            logger.info("📭 Input stream finished")
            self.shutdown_event.set()

    def run(self) -> int:
        """
        Run until the input stream ends or a signal arrives.

        Returns:
            Process exit code
        """
        if not self.setup():
            logger.error("❌ Setup failed")
            self.cleanup()
            return 1

        topics = self.bridge.topics
        logger.info("=" * 70)
        logger.info("🎬 odbridge running")
        logger.info("=" * 70)
        logger.info(f"🆔 Device: {self.bridge.device_id}")
        logger.info(f"🏷️  Labels: {', '.join(self.bridge.aggregator.labels)}")
        logger.info(f"📊 State topics: {topics.state_wildcard}")
        logger.info(f"📡 Discovery topic: {topics.discovery_topic}")
        logger.info(f"💓 Availability topic: {topics.availability_topic}")
        logger.info("⌨️  Press Ctrl+C to exit")
        logger.info("=" * 70)

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self._reader = Thread(target=self._read_frames, name="odbridge-reader", daemon=True)
        self._reader.start()

        try:
            while not self.shutdown_event.is_set():
                self.shutdown_event.wait(timeout=1.0)
        except KeyboardInterrupt:
            logger.info("⚠️ Forced interrupt...")
            self.shutdown_event.set()

        self.cleanup()
        return 0

    def _signal_handler(self, signum, frame):
        """Handler for termination signals (Ctrl+C)"""
        logger.info("⚠️ Termination signal received...")
        self.shutdown_event.set()

    def cleanup(self):
        """Publish offline availability and disconnect."""
        logger.info("🧹 Cleaning up...")

        if self.bridge is None:
            return

        stats = self.bridge.aggregator.get_stats()
        logger.info(
            f"📊 Aggregator stats: {stats}",
            extra={"component": "controller", "event": "aggregator_stats", "frames_read": self.frames_read, **stats}
        )

        try:
            self.bridge.connection.disconnect()
            logger.info("✅ MQTT disconnected")
        except Exception as e:
            logger.error(f"❌ Error disconnecting: {e}")

        logger.info("👋 Bye!")


# ============================================================================
# MAIN
# ============================================================================

def load_config(config_path: str) -> BridgeConfig:
    """
    Load config.yaml, or defaults if it doesn't exist.

    Raises:
        ValidationError: If the config is invalid
    """
    if Path(config_path).exists():
        config = BridgeConfig.from_yaml(config_path)
        print(f"✅ Config loaded and validated from {config_path}", file=sys.stderr)
    else:
        config = BridgeConfig.from_dict({})
        print(f"⚠️  Config file not found ({config_path}), using defaults", file=sys.stderr)
    return config


def main(argv=None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Publish debounced per-label detection counts to MQTT",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Frames from a detector on stdin
  detector | python -m odbridge

  # Frames from a file, custom config
  python -m odbridge --config config/odbridge/config.yaml --input frames.jsonl
        """
    )
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH, help=f'Path to config.yaml (default: {DEFAULT_CONFIG_PATH})')
    parser.add_argument('--input', default='-', help='JSON-lines frame file (default: stdin)')

    args = parser.parse_args(argv)

    load_dotenv()

    try:
        config = load_config(args.config)
    except ValidationError as e:
        # Fail fast with a clear message
        print("❌ Invalid configuration:", file=sys.stderr)
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error['loc'])
            print(f"   • {field}: {error['msg']}", file=sys.stderr)
        print(f"\nPlease fix {args.config} and try again.", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"❌ Error loading config: {e}", file=sys.stderr)
        return 1

    log_cfg = config.logging
    setup_logging(
        level=log_cfg.level,
        indent=log_cfg.json_indent,
        add_fields={"service": "odbridge"},
        log_file=log_cfg.file,
        max_bytes=log_cfg.max_bytes,
        backup_count=log_cfg.backup_count,
        paho_level=log_cfg.paho_level,
    )
    logger.info("🔧 odbridge starting...")

    if args.input == '-':
        stream = sys.stdin
    else:
        try:
            stream = open(args.input, 'r')
        except OSError as e:
            logger.error(f"❌ Cannot open input {args.input}: {e}")
            return 1

    controller = BridgeController(config, stream)
    try:
        return controller.run()
    except Exception as e:
        logger.error(f"❌ Fatal error: {e}", exc_info=True)
        return 1
    finally:
        if stream is not sys.stdin:
            stream.close()


if __name__ == "__main__":
    sys.exit(main())
