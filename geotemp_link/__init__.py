"""Live geolocation and temperature sharing over MQTT."""

__version__ = "0.1.0"
