"""Position providers backing :class:`~geotemp_link.geo.GeoSource`."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import aiohttp

from ..core.models import Position

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

_KEY_PAIRS = (
    ("latitude", "longitude"),
    ("lat", "lon"),
    ("lat", "lng"),
)


class PositionLookupError(RuntimeError):
    """Raised when a provider cannot produce a position fix."""


class StaticPositionProvider:
    """Reports a fixed position, e.g. one taken from configuration."""

    def __init__(self, position: Position) -> None:
        self._position = position

    async def read_position(self) -> Position:
        return self._position

    async def aclose(self) -> None:
        return None


class HttpPositionProvider:
    """Polls a JSON geolocation endpoint over HTTP.

    The endpoint must answer with an object carrying a latitude/longitude
    pair under one of the common key spellings (``latitude``/``longitude``,
    ``lat``/``lon`` or ``lat``/``lng``). An ``accuracy`` value, when present,
    is recorded as :attr:`last_accuracy`.
    """

    def __init__(
        self,
        url: str,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.url = url
        self.last_accuracy: Optional[float] = None
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout

    async def read_position(self) -> Position:
        session = self._ensure_session()
        try:
            async with session.get(self.url) as response:
                if response.status != 200:
                    raise PositionLookupError(
                        f"Geolocation endpoint returned HTTP {response.status}"
                    )
                payload = await response.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise PositionLookupError(f"Geolocation request failed: {exc}") from exc

        if not isinstance(payload, Mapping):
            raise PositionLookupError("Geolocation response is not a JSON object")

        position = parse_position(payload)
        accuracy = payload.get("accuracy")
        if isinstance(accuracy, (int, float)) and not isinstance(accuracy, bool):
            self.last_accuracy = float(accuracy)
        return position

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
            self._owns_session = True
        return self._session


def parse_position(payload: Mapping[str, Any]) -> Position:
    for lat_key, lon_key in _KEY_PAIRS:
        if lat_key in payload and lon_key in payload:
            try:
                return Position(
                    latitude=float(payload[lat_key]),
                    longitude=float(payload[lon_key]),
                )
            except (TypeError, ValueError) as exc:
                raise PositionLookupError(
                    f"Invalid coordinates in geolocation response: {exc}"
                ) from exc

    raise PositionLookupError("Geolocation response has no latitude/longitude")
