"""
Discovery Schemas
=================

Immutable value objects describing the device and its sensors, plus the
wire encoding of the discovery/config and state payloads.

Built once per bridge from the stable device id and the considered labels;
only the encoding runs per connection epoch.

Wire shape (long keys):

    {
      "components": {"person": {"platform": "sensor", "name": "person",
                                "state_topic": ".../person/stat_t",
                                "value_template": "{{ value }}",
                                "unit_of_measurement": "person",
                                "unique_id": "<device_id>_person"}},
      "origin": {"name": "Object Detector", "sw_version": "1.0.0"},
      "device": {"identifiers": ["<device_id>"], "name": "Object Detector <device_id>",
                 "manufacturer": "...", "model": "...", "sw_version": "1.0.0"},
      "availability_topic": ".../avty_t"
    }

With abbreviate=True the Home Assistant short keys are used instead
(cmps, o, dev, stat_t, val_tpl, unit_of_meas, uniq_id, ids, mf, mdl, sw,
avty_t).
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from ..errors import SerializationError
from .topics import TopicLayout

# Home Assistant MQTT discovery abbreviations
ABBREVIATIONS: Dict[str, str] = {
    "components": "cmps",
    "origin": "o",
    "device": "dev",
    "state_topic": "stat_t",
    "value_template": "val_tpl",
    "unit_of_measurement": "unit_of_meas",
    "unique_id": "uniq_id",
    "identifiers": "ids",
    "manufacturer": "mf",
    "model": "mdl",
    "sw_version": "sw",
    "availability_topic": "avty_t",
}


def _abbreviate(data: Dict[str, Any]) -> Dict[str, Any]:
    """Rename known keys recursively. Component keys (labels) are left alone."""
    out = {}
    for key, value in data.items():
        short = ABBREVIATIONS.get(key, key)
        if key == "components":
            value = {label: _abbreviate(entry) for label, entry in value.items()}
        elif isinstance(value, dict):
            value = _abbreviate(value)
        out[short] = value
    return out


@dataclass(frozen=True)
class SensorComponent:
    """One Home Assistant entity, one per considered label."""
    label: str
    state_topic: str
    unique_id: str
    platform: str = "sensor"
    value_template: str = "{{ value }}"
    unit_of_measurement: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "name": self.label,
            "state_topic": self.state_topic,
            "value_template": self.value_template,
            "unit_of_measurement": self.unit_of_measurement or self.label,
            "unique_id": self.unique_id,
        }


@dataclass(frozen=True)
class DeviceDescriptor:
    """The logical device every component belongs to."""
    device_id: str
    name: str
    manufacturer: str
    model: str
    sw_version: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifiers": [self.device_id],
            "name": self.name,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "sw_version": self.sw_version,
        }


@dataclass(frozen=True)
class OriginDescriptor:
    """Software that publishes the discovery message."""
    name: str
    sw_version: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "sw_version": self.sw_version}


@dataclass(frozen=True)
class DiscoveryConfig:
    """Batched device discovery message: all components in one payload."""
    device: DeviceDescriptor
    origin: OriginDescriptor
    components: Tuple[SensorComponent, ...]
    availability_topic: Optional[str] = None

    @classmethod
    def build(
        cls,
        topics: TopicLayout,
        labels: Iterable[str],
        manufacturer: str = "odbridge",
        model: str = "EdgeCamera v1",
        sw_version: str = "1.0.0",
        origin_name: str = "Object Detector",
        device_name: Optional[str] = None,
        platform: str = "sensor",
        value_template: str = "{{ value }}",
    ) -> 'DiscoveryConfig':
        """
        Describe a device and one sensor component per label.

        Labels keep their given order and duplicates are collapsed, so every
        label appears exactly once.
        """
        device_id = topics.device_id
        components = tuple(
            SensorComponent(
                label=label,
                state_topic=topics.state_topic(label),
                unique_id=f"{device_id}_{label}",
                platform=platform,
                value_template=value_template,
            )
            for label in dict.fromkeys(labels)
        )
        return cls(
            device=DeviceDescriptor(
                device_id=device_id,
                name=device_name or f"Object Detector {device_id}",
                manufacturer=manufacturer,
                model=model,
                sw_version=sw_version,
            ),
            origin=OriginDescriptor(name=origin_name, sw_version=sw_version),
            components=components,
            availability_topic=topics.availability_topic,
        )

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(c.label for c in self.components)

    def to_dict(self, abbreviate: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "components": {c.label: c.to_dict() for c in self.components},
            "origin": self.origin.to_dict(),
            "device": self.device.to_dict(),
        }
        if self.availability_topic:
            data["availability_topic"] = self.availability_topic
        return _abbreviate(data) if abbreviate else data


def encode_discovery(config: DiscoveryConfig, abbreviate: bool = False) -> str:
    """
    Encode the discovery message as JSON.

    Raises:
        SerializationError: If the payload cannot be encoded
    """
    try:
        return json.dumps(config.to_dict(abbreviate=abbreviate), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Failed to encode discovery config: {e}") from e


def encode_state(count: int) -> str:
    """
    Encode a per-label state payload: the bare integer as text.

    Raises:
        SerializationError: If count is not an integer
    """
    if isinstance(count, bool) or not isinstance(count, int):
        raise SerializationError(f"State count must be an int, got {type(count).__name__}")
    return str(count)
