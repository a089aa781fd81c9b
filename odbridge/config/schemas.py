"""
Pydantic Configuration Schemas
================================

Type-safe configuration validation with Pydantic v2.

Benefits:
- Validation at load time (not at runtime)
- Type safety with IDE autocomplete
- Clear error messages
- Self-documenting defaults

Every knob is supplied at construction time; the bridge never mutates its
configuration mid-session.

Usage:
    config = BridgeConfig.from_yaml("config/odbridge/config.yaml")
    # Config is validated, types are guaranteed
"""
import uuid
from typing import Any, Dict, List, Literal, Optional
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Characters that cannot appear inside a single MQTT topic level
_TOPIC_RESERVED = ('/', '+', '#')


# ============================================================================
# MQTT Configuration
# ============================================================================

class MQTTBrokerSettings(BaseModel):
    """MQTT broker connection settings"""
    url: Optional[str] = Field(
        default=None,
        description="Broker URL (tcp://host:port). Overrides host/port when set."
    )
    host: str = Field(
        default="localhost",
        description="MQTT broker hostname"
    )
    port: int = Field(
        default=1883,
        ge=1,
        le=65535,
        description="MQTT broker port"
    )
    client_id: str = Field(
        default_factory=lambda: f"odbridge-{uuid.uuid4().hex[:6]}",
        min_length=1,
        description="MQTT client identifier"
    )
    username: Optional[str] = Field(
        default=None,
        description="MQTT username (optional, from env)"
    )
    password: Optional[str] = Field(
        default=None,
        description="MQTT password (optional, from env)"
    )
    keepalive: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="Keepalive interval in seconds"
    )

    @model_validator(mode='before')
    @classmethod
    def split_broker_url(cls, data: Any) -> Any:
        """Fill host/port from url (tcp://, mqtt:// or bare host:port)"""
        if not isinstance(data, dict) or not data.get('url'):
            return data

        url = data['url']
        if '://' not in url:
            url = f"tcp://{url}"

        parts = urlsplit(url)
        if parts.scheme not in ('tcp', 'mqtt'):
            raise ValueError(f"Unsupported broker URL scheme '{parts.scheme}' (use tcp:// or mqtt://)")
        if not parts.hostname:
            raise ValueError(f"Broker URL has no host: {data['url']}")

        data = dict(data)
        data['host'] = parts.hostname
        if parts.port is not None:
            data['port'] = parts.port
        return data


class MQTTConnectionSettings(BaseModel):
    """Manual reconnect policy (library auto-reconnect is always off)"""
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Connect attempts per connect() call before giving up"
    )
    retry_delay: float = Field(
        default=2.0,
        ge=0.0,
        le=300.0,
        description="Seconds between failed attempts"
    )
    connect_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Seconds the CLI waits for the first connection"
    )
    reconnect_on_publish: bool = Field(
        default=True,
        description="Start a best-effort reconnect when a publish finds the client disconnected"
    )
    reconnect_cooldown: float = Field(
        default=30.0,
        ge=0.0,
        description="Seconds after a failed connect cycle before a publish may start another"
    )


class MQTTQoSSettings(BaseModel):
    """MQTT QoS levels"""
    state: Literal[0, 1, 2] = Field(
        default=1,
        description="QoS for per-label state messages"
    )
    discovery: Literal[0, 1, 2] = Field(
        default=1,
        description="QoS for the retained discovery/config message"
    )
    availability: Literal[0, 1, 2] = Field(
        default=1,
        description="QoS for online/offline availability messages"
    )


class MQTTSettings(BaseModel):
    """Complete MQTT configuration"""
    broker: MQTTBrokerSettings = Field(default_factory=MQTTBrokerSettings)
    connection: MQTTConnectionSettings = Field(default_factory=MQTTConnectionSettings)
    qos: MQTTQoSSettings = Field(default_factory=MQTTQoSSettings)
    retain_state: bool = Field(
        default=False,
        description="Publish state messages with the retain flag"
    )


class BrokerEnvSettings(BaseSettings):
    """
    Broker overrides read from the environment (MQTT_HOST, MQTT_USERNAME, ...).

    Secrets stay out of config.yaml; .env files are loaded by the CLI with
    python-dotenv before this model is instantiated.
    """
    model_config = SettingsConfigDict(env_prefix='MQTT_', extra='ignore')

    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: Optional[str] = None

    def overrides(self) -> Dict[str, Any]:
        """Only the values actually present in the environment"""
        return self.model_dump(exclude_none=True)


# ============================================================================
# Topic Configuration
# ============================================================================

class TopicsSettings(BaseModel):
    """
    Topic layout.

    state:        {prefix}/{node_id}/{device_id}/{label}/stat_t
    availability: {prefix}/{node_id}/{device_id}/avty_t
    discovery:    {discovery_prefix}/device/{node_id}/{device_id}/config
    """
    prefix: str = Field(
        default="aha",
        min_length=1,
        description="Root for state and availability topics"
    )
    discovery_prefix: str = Field(
        default="homeassistant",
        min_length=1,
        description="Home Assistant discovery prefix"
    )
    node_id: str = Field(
        default="object_detector",
        min_length=1,
        description="Node segment shared by all topics"
    )

    @field_validator('prefix', 'discovery_prefix')
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Prefixes may span levels but cannot hold wildcards or dangling slashes"""
        if '+' in v or '#' in v:
            raise ValueError(f"topic prefix cannot contain wildcards: {v!r}")
        if v.startswith('/') or v.endswith('/'):
            raise ValueError(f"topic prefix cannot start or end with '/': {v!r}")
        return v

    @field_validator('node_id')
    @classmethod
    def validate_node_id(cls, v: str) -> str:
        if any(ch in v for ch in _TOPIC_RESERVED):
            raise ValueError(f"node_id must be a single topic level: {v!r}")
        return v


# ============================================================================
# Detection Configuration
# ============================================================================

class DetectionSettings(BaseModel):
    """Which detections are counted"""
    labels: List[str] = Field(
        default_factory=lambda: ["person", "car", "bicycle"],
        description="Considered labels (allow-list of tracked classes)"
    )
    min_score: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Detections below this score are ignored"
    )

    @field_validator('labels')
    @classmethod
    def validate_labels(cls, v: List[str]) -> List[str]:
        """Labels become topic levels: non-empty, unique, no reserved characters"""
        if not v:
            raise ValueError("labels must contain at least one label")

        seen = set()
        for label in v:
            if not label or not label.strip():
                raise ValueError("labels cannot be empty strings")
            if any(ch in label for ch in _TOPIC_RESERVED):
                raise ValueError(f"label {label!r} cannot contain '/', '+' or '#'")
            if label in seen:
                raise ValueError(f"duplicate label {label!r}")
            seen.add(label)
        return v


# ============================================================================
# Discovery Configuration
# ============================================================================

class DiscoverySettings(BaseModel):
    """Metadata announced in the retained discovery/config message"""
    device_name: Optional[str] = Field(
        default=None,
        description="Device name (default: 'Object Detector <device_id>')"
    )
    manufacturer: str = Field(default="odbridge")
    model: str = Field(default="EdgeCamera v1")
    sw_version: str = Field(default="1.0.0")
    origin_name: str = Field(default="Object Detector")
    platform: str = Field(
        default="sensor",
        description="Home Assistant platform for every label component"
    )
    value_template: str = Field(default="{{ value }}")
    abbreviate: bool = Field(
        default=False,
        description="Use Home Assistant abbreviated keys (cmps, stat_t, uniq_id, ...)"
    )


# ============================================================================
# Identity Configuration
# ============================================================================

class IdentitySettings(BaseModel):
    """Where the stable device id comes from"""
    device_id: Optional[str] = Field(
        default=None,
        description="Fixed device id. When unset, a persisted random id is used."
    )
    store_path: str = Field(
        default="~/.config/odbridge/preferences.json",
        description="Preferences file holding the generated device id"
    )

    @field_validator('device_id')
    @classmethod
    def validate_device_id(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and (not v or any(ch in v for ch in _TOPIC_RESERVED)):
            raise ValueError(f"device_id must be a single topic level: {v!r}")
        return v


# ============================================================================
# Logging Configuration
# ============================================================================

class LoggingSettings(BaseModel):
    """Logging configuration (JSON structured logging)"""
    level: Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'] = Field(
        default='INFO',
        description="Log level"
    )
    json_indent: Optional[int] = Field(
        default=None,
        ge=0,
        le=4,
        description="JSON indent for pretty-print (None=compact, 2=readable)"
    )
    paho_level: Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'] = Field(
        default='WARNING',
        description="Paho MQTT library log level"
    )
    file: Optional[str] = Field(
        default=None,
        description="Path to log file (None=stdout). If specified, enables file rotation."
    )
    max_bytes: int = Field(
        default=10485760,  # 10 MB
        ge=1024,
        description="Maximum bytes per log file before rotation (default 10 MB)"
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep"
    )


# ============================================================================
# Root Configuration
# ============================================================================

class BridgeConfig(BaseModel):
    """
    Root bridge configuration with full validation.

    Loads from YAML and validates all settings.
    Environment variables override YAML for broker credentials.
    """
    mqtt: MQTTSettings = Field(default_factory=MQTTSettings)
    topics: TopicsSettings = Field(default_factory=TopicsSettings)
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_yaml(cls, config_path: str) -> 'BridgeConfig':
        """
        Load and validate configuration from a YAML file.

        Args:
            config_path: Path to config.yaml

        Returns:
            Validated BridgeConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValidationError: If config is invalid

        Example:
            config = BridgeConfig.from_yaml("config/odbridge/config.yaml")
            print(config.detection.labels)  # Type-safe access
        """
        import yaml

        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create it from config/odbridge/config.yaml.example"
            )

        with open(config_file, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        return cls.from_dict(config_dict)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'BridgeConfig':
        """Validate a raw mapping, applying MQTT_* environment overrides to the broker"""
        config_dict = dict(config_dict)

        env_overrides = BrokerEnvSettings().overrides()
        if env_overrides:
            mqtt_cfg = dict(config_dict.get('mqtt') or {})
            broker_cfg = dict(mqtt_cfg.get('broker') or {})
            if 'host' in env_overrides or 'port' in env_overrides:
                # explicit host/port from env win over a YAML url
                broker_cfg.pop('url', None)
            broker_cfg.update(env_overrides)
            mqtt_cfg['broker'] = broker_cfg
            config_dict['mqtt'] = mqtt_cfg

        return cls(**config_dict)
