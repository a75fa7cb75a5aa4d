"""Constants used across the geotemp-link package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "geotemp-link"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_BROKER_HOST = "test.mosquitto.org"
DEFAULT_BROKER_PORT = 8081
DEFAULT_BROKER_TRANSPORT = "websockets"
DEFAULT_BROKER_PATH = "/mqtt"

DEFAULT_TOPIC_PREFIX = "ENG551/Ashraful"
DEFAULT_SHARED_TOPIC = f"{DEFAULT_TOPIC_PREFIX}/my_temperature"

DEFAULT_RETRY_DELAY_SECONDS = 3.0
DEFAULT_GEO_INTERVAL_SECONDS = 5.0

CLIENT_ID_PREFIX = "geotemp-"
