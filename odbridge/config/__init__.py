"""
Configuration Module
====================

Provides configuration loading with Pydantic validation.

Usage:
    from odbridge.config import BridgeConfig
    config = BridgeConfig.from_yaml("config/odbridge/config.yaml")
"""
from .schemas import (
    BridgeConfig,
    BrokerEnvSettings,
    MQTTSettings,
    MQTTBrokerSettings,
    MQTTConnectionSettings,
    MQTTQoSSettings,
    TopicsSettings,
    DetectionSettings,
    DiscoverySettings,
    IdentitySettings,
    LoggingSettings,
)

__all__ = [
    'BridgeConfig',
    'BrokerEnvSettings',
    'MQTTSettings',
    'MQTTBrokerSettings',
    'MQTTConnectionSettings',
    'MQTTQoSSettings',
    'TopicsSettings',
    'DetectionSettings',
    'DiscoverySettings',
    'IdentitySettings',
    'LoggingSettings',
]
