"""Wire format for status reports and free-form user messages.

Status reports travel as a GeoJSON ``Feature`` holding a ``Point``::

    {"type": "Feature",
     "geometry": {"type": "Point", "coordinates": [lon, lat]},
     "properties": {"temp": 21}}

Coordinates are ordered ``[longitude, latitude]`` on the wire and mapped
back onto :class:`~geotemp_link.core.models.Position` when decoding.
User messages are sent as a JSON encoded string.
"""

from __future__ import annotations

import json
import math
import random
from typing import Any, Optional

from .core.models import OutgoingMessage, Position, StatusReport

MIN_SAMPLE_TEMPERATURE = -20
MAX_SAMPLE_TEMPERATURE = 39


class DecodeError(ValueError):
    """Raised when an inbound payload does not match the expected format."""


def encode_status_report(position: Position, temperature: int) -> str:
    document = {
        "type": "Feature",
        "geometry": {
            "type": "Point",
            "coordinates": [position.longitude, position.latitude],
        },
        "properties": {"temp": int(temperature)},
    }
    return json.dumps(document, separators=(",", ":"))


def decode_status_report(payload: str | bytes) -> StatusReport:
    """Parse a status report, raising :class:`DecodeError` when malformed."""

    document = _load_json(payload)
    if not isinstance(document, dict):
        raise DecodeError("Status report must be a JSON object")

    geometry = document.get("geometry")
    if not isinstance(geometry, dict):
        raise DecodeError("Status report is missing 'geometry'")

    coordinates = geometry.get("coordinates")
    if not isinstance(coordinates, list):
        raise DecodeError("'geometry.coordinates' must be an array")
    if len(coordinates) != 2:
        raise DecodeError(
            f"'geometry.coordinates' must hold 2 values, got {len(coordinates)}"
        )

    longitude = _as_number(coordinates[0], "geometry.coordinates[0]")
    latitude = _as_number(coordinates[1], "geometry.coordinates[1]")
    if not -90.0 <= latitude <= 90.0:
        raise DecodeError(f"Latitude {latitude} is out of range")
    if not -180.0 <= longitude <= 180.0:
        raise DecodeError(f"Longitude {longitude} is out of range")

    properties = document.get("properties")
    if not isinstance(properties, dict):
        raise DecodeError("Status report is missing 'properties'")
    if "temp" not in properties:
        raise DecodeError("Status report is missing 'properties.temp'")

    temperature = _as_number(properties["temp"], "properties.temp")

    return StatusReport(
        position=Position(latitude=float(latitude), longitude=float(longitude)),
        temperature=math.floor(temperature),
    )


def encode_user_message(text: str) -> str:
    return json.dumps(text)


def decode_user_message(payload: str | bytes) -> str:
    value = _load_json(payload)
    if not isinstance(value, str):
        raise DecodeError("User message must be a JSON string")
    return value


def user_topic(prefix: str, segment: str) -> str:
    """Build a user-addressed topic under ``prefix``.

    The segment is used verbatim; the broker client rejects what it cannot
    publish to (empty levels are fine, wildcards are not).
    """

    if not segment:
        raise ValueError("Topic segment cannot be empty")
    return f"{prefix.rstrip('/')}/{segment}"


def status_message(topic: str, position: Position, temperature: int) -> OutgoingMessage:
    return OutgoingMessage(
        topic=topic, payload=encode_status_report(position, temperature)
    )


def user_message(prefix: str, segment: str, text: str) -> OutgoingMessage:
    return OutgoingMessage(
        topic=user_topic(prefix, segment), payload=encode_user_message(text)
    )


def sample_temperature(rng: Optional[random.Random] = None) -> int:
    """Return a simulated temperature reading in degrees Celsius."""

    source = rng or random
    return source.randint(MIN_SAMPLE_TEMPERATURE, MAX_SAMPLE_TEMPERATURE)


def _load_json(payload: str | bytes) -> Any:
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Payload is not valid UTF-8: {exc}") from exc

    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Payload is not valid JSON: {exc.msg}") from exc
    except RecursionError as exc:
        raise DecodeError("Payload is nested too deeply") from exc
    except ValueError as exc:
        # e.g. integer literals beyond the interpreter's digit limit
        raise DecodeError(f"Payload is not valid JSON: {exc}") from exc


def _as_number(value: Any, field: str) -> float:
    # bool is an int subclass but never a valid reading
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"'{field}' must be a number")
    try:
        finite = math.isfinite(value)
    except OverflowError as exc:
        raise DecodeError(f"'{field}' is out of range") from exc
    if not finite:
        raise DecodeError(f"'{field}' must be finite")
    return value
