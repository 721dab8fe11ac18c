"""
Control Plane - comandos remotos vía MQTT
"""
from .plane import MQTTControlPlane
from .registry import CommandRegistry, CommandNotAvailableError, InvalidCommandArgumentsError

__all__ = [
    'MQTTControlPlane',
    'CommandRegistry',
    'CommandNotAvailableError',
    'InvalidCommandArgumentsError',
]
