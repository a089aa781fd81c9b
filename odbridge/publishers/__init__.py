"""
Publishers
==========

Wire formats and the discovery publisher.

Responsibility:
- topics.py: topic layout per device
- schemas.py: discovery value objects, state/config encoding
- discovery.py: retained config once per connection epoch
"""
from .topics import TopicLayout
from .schemas import (
    ABBREVIATIONS,
    DeviceDescriptor,
    DiscoveryConfig,
    OriginDescriptor,
    SensorComponent,
    encode_discovery,
    encode_state,
)
from .discovery import DiscoveryPublisher

__all__ = [
    'TopicLayout',
    'ABBREVIATIONS',
    'DeviceDescriptor',
    'DiscoveryConfig',
    'OriginDescriptor',
    'SensorComponent',
    'encode_discovery',
    'encode_state',
    'DiscoveryPublisher',
]
