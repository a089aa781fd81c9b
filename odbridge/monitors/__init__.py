"""
Monitors - MQTT subscribers for debugging a running bridge
"""
from .state_monitor import StateMonitor

__all__ = ["StateMonitor"]
