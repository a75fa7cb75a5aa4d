"""Adapter modules for external integrations."""

from .geolocation import (
    HttpPositionProvider,
    PositionLookupError,
    StaticPositionProvider,
)
from .mqtt import MQTTClient, MQTTConnectionError

__all__ = [
    "HttpPositionProvider",
    "MQTTClient",
    "MQTTConnectionError",
    "PositionLookupError",
    "StaticPositionProvider",
]
