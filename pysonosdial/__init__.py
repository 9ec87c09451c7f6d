"""pysonosdial Python Package

Python library for controlling Sonos volume and mute from a rotary dial,
including stereo pairs and zone groups.
"""

from pysonosdial.dial import SonosVolumeDial
from pysonosdial.exceptions import ConfigurationError, ProtocolError, SonosDialError, TransportError
from pysonosdial.listener import DialListener, LoggingListener, MultiplexingListener
from pysonosdial.speaker import SonosSpeaker

__all__ = [
    "SonosVolumeDial",
    "SonosSpeaker",
    "DialListener",
    "MultiplexingListener",
    "LoggingListener",
    "SonosDialError",
    "ConfigurationError",
    "TransportError",
    "ProtocolError",
]
