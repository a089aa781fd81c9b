"""
Topic Layout
============

Builds every topic the bridge publishes to from the device id and the
configured prefixes.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class TopicLayout:
    """
    Topics for one device.

    Example:
        >>> topics = TopicLayout(device_id="d6287655")
        >>> topics.state_topic("person")
        'aha/object_detector/d6287655/person/stat_t'
        >>> topics.discovery_topic
        'homeassistant/device/object_detector/d6287655/config'
    """
    device_id: str
    prefix: str = "aha"
    discovery_prefix: str = "homeassistant"
    node_id: str = "object_detector"

    @property
    def base(self) -> str:
        return f"{self.prefix}/{self.node_id}/{self.device_id}"

    def state_topic(self, label: str) -> str:
        """Per-label state topic."""
        return f"{self.base}/{label}/stat_t"

    @property
    def availability_topic(self) -> str:
        return f"{self.base}/avty_t"

    @property
    def discovery_topic(self) -> str:
        """Retained device-based discovery/config topic."""
        return f"{self.discovery_prefix}/device/{self.node_id}/{self.device_id}/config"

    @property
    def state_wildcard(self) -> str:
        """Subscription filter matching every label's state topic."""
        return f"{self.base}/+/stat_t"

    def label_from_state_topic(self, topic: str) -> str:
        """
        Inverse of state_topic().

        Raises:
            ValueError: If the topic is not a state topic of this device
        """
        prefix = f"{self.base}/"
        suffix = "/stat_t"
        if not (topic.startswith(prefix) and topic.endswith(suffix)):
            raise ValueError(f"Not a state topic of device {self.device_id}: {topic}")
        label = topic[len(prefix):-len(suffix)]
        if not label or '/' in label:
            raise ValueError(f"Not a state topic of device {self.device_id}: {topic}")
        return label
