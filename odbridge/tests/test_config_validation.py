"""
Config Validation Tests
=======================

Pydantic configuration validation.

Invariants tested:
1. Defaults are valid
2. Range validation (port, QoS, min_score, retry policy)
3. Label list: non-empty, unique, usable as a topic level
4. Broker URL is split into host/port
5. MQTT_* environment variables override YAML broker settings
"""
import pytest
from pydantic import ValidationError

from odbridge.config import (
    BridgeConfig,
    DetectionSettings,
    IdentitySettings,
    MQTTBrokerSettings,
    MQTTConnectionSettings,
    MQTTQoSSettings,
    TopicsSettings,
)


@pytest.fixture(autouse=True)
def clean_mqtt_env(monkeypatch):
    """Keep a developer's MQTT_* variables out of these tests"""
    for name in ("MQTT_HOST", "MQTT_PORT", "MQTT_USERNAME", "MQTT_PASSWORD", "MQTT_CLIENT_ID"):
        monkeypatch.delenv(name, raising=False)


@pytest.mark.unit
class TestBrokerSettings:

    def test_default_values_valid(self):
        settings = MQTTBrokerSettings()

        assert settings.host == "localhost"
        assert settings.port == 1883
        assert settings.client_id.startswith("odbridge-")
        assert settings.username is None

    def test_url_sets_host_and_port(self):
        """
        Invariant: url tcp://host:port overrides host/port.
        """
        settings = MQTTBrokerSettings(url="tcp://192.168.0.150:1884")

        assert settings.host == "192.168.0.150"
        assert settings.port == 1884

    def test_url_without_scheme_or_port(self):
        settings = MQTTBrokerSettings(url="broker.local")

        assert settings.host == "broker.local"
        assert settings.port == 1883

    def test_url_rejects_unknown_scheme(self):
        with pytest.raises(ValidationError) as exc_info:
            MQTTBrokerSettings(url="http://broker.local:80")

        assert 'scheme' in str(exc_info.value).lower()

    def test_port_range(self):
        with pytest.raises(ValidationError):
            MQTTBrokerSettings(port=0)

        with pytest.raises(ValidationError):
            MQTTBrokerSettings(port=70000)


@pytest.mark.unit
class TestConnectionSettings:

    def test_defaults(self):
        settings = MQTTConnectionSettings()

        assert settings.max_attempts == 3
        assert settings.retry_delay == 2.0
        assert settings.reconnect_on_publish is True
        assert settings.reconnect_cooldown == 30.0

    def test_max_attempts_at_least_one(self):
        with pytest.raises(ValidationError):
            MQTTConnectionSettings(max_attempts=0)

    def test_qos_literal(self):
        """
        Invariant: QoS must be 0, 1 or 2.
        """
        assert MQTTQoSSettings(state=0).state == 0

        with pytest.raises(ValidationError):
            MQTTQoSSettings(state=3)


@pytest.mark.unit
class TestDetectionSettings:

    def test_default_labels(self):
        settings = DetectionSettings()

        assert settings.labels == ["person", "car", "bicycle"]
        assert settings.min_score == 0.0

    def test_labels_cannot_be_empty(self):
        with pytest.raises(ValidationError) as exc_info:
            DetectionSettings(labels=[])

        assert 'at least one' in str(exc_info.value)

    def test_labels_must_be_unique(self):
        with pytest.raises(ValidationError) as exc_info:
            DetectionSettings(labels=["person", "car", "person"])

        assert 'duplicate' in str(exc_info.value)

    @pytest.mark.parametrize("label", ["a/b", "pers+on", "#", "  "])
    def test_labels_must_be_single_topic_level(self, label):
        with pytest.raises(ValidationError):
            DetectionSettings(labels=["person", label])

    def test_min_score_range(self):
        with pytest.raises(ValidationError):
            DetectionSettings(min_score=1.5)


@pytest.mark.unit
class TestTopicsAndIdentity:

    def test_topic_defaults(self):
        settings = TopicsSettings()

        assert settings.prefix == "aha"
        assert settings.discovery_prefix == "homeassistant"
        assert settings.node_id == "object_detector"

    def test_prefix_may_span_levels(self):
        assert TopicsSettings(prefix="home/aha").prefix == "home/aha"

    def test_prefix_rejects_wildcards_and_dangling_slash(self):
        with pytest.raises(ValidationError):
            TopicsSettings(prefix="aha/#")

        with pytest.raises(ValidationError):
            TopicsSettings(discovery_prefix="homeassistant/")

    def test_node_id_single_level(self):
        with pytest.raises(ValidationError):
            TopicsSettings(node_id="object/detector")

    def test_device_id_single_level(self):
        assert IdentitySettings(device_id="d6287655").device_id == "d6287655"

        with pytest.raises(ValidationError):
            IdentitySettings(device_id="a/b")


@pytest.mark.unit
class TestBridgeConfig:

    def test_from_dict_defaults(self):
        config = BridgeConfig.from_dict({})

        assert config.mqtt.qos.discovery == 1
        assert config.discovery.abbreviate is False
        assert config.logging.level == "INFO"

    def test_from_yaml(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "mqtt:\n"
            "  broker:\n"
            "    url: tcp://broker.local:1885\n"
            "detection:\n"
            "  labels: [person, dog]\n"
            "  min_score: 0.4\n"
        )

        config = BridgeConfig.from_yaml(str(config_file))

        assert config.mqtt.broker.host == "broker.local"
        assert config.mqtt.broker.port == 1885
        assert config.detection.labels == ["person", "dog"]
        assert config.detection.min_score == 0.4

    def test_from_yaml_empty_file_uses_defaults(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        config = BridgeConfig.from_yaml(str(config_file))

        assert config.detection.labels == ["person", "car", "bicycle"]

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            BridgeConfig.from_yaml(str(tmp_path / "missing.yaml"))

    def test_invalid_yaml_value_raises_validation_error(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("mqtt:\n  qos:\n    state: 5\n")

        with pytest.raises(ValidationError):
            BridgeConfig.from_yaml(str(config_file))

    def test_env_overrides_credentials(self, monkeypatch):
        """
        Invariant: MQTT_USERNAME / MQTT_PASSWORD win over YAML.
        """
        monkeypatch.setenv("MQTT_USERNAME", "bridge")
        monkeypatch.setenv("MQTT_PASSWORD", "s3cret")

        config = BridgeConfig.from_dict({"mqtt": {"broker": {"username": "yaml-user"}}})

        assert config.mqtt.broker.username == "bridge"
        assert config.mqtt.broker.password == "s3cret"

    def test_env_host_wins_over_yaml_url(self, monkeypatch):
        monkeypatch.setenv("MQTT_HOST", "10.0.0.5")
        monkeypatch.setenv("MQTT_PORT", "1999")

        config = BridgeConfig.from_dict({"mqtt": {"broker": {"url": "tcp://broker.local:1885"}}})

        assert config.mqtt.broker.host == "10.0.0.5"
        assert config.mqtt.broker.port == 1999
        assert config.mqtt.broker.url is None
