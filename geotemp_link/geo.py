"""Continuous position acquisition."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Optional

from .constants import DEFAULT_GEO_INTERVAL_SECONDS
from .core.models import Position
from .core.protocols import PositionProvider

LOGGER = logging.getLogger(__name__)

UpdateCallback = Callable[[Position], None]
ErrorCallback = Callable[["GeolocationError"], None]


class GeolocationError(RuntimeError):
    """Base class for position acquisition failures."""


class CapabilityUnavailable(GeolocationError):
    """No position provider is available on this host."""


class TransientLocationError(GeolocationError):
    """A single position fix failed; watching continues."""


class GeoSource:
    """Watches a :class:`PositionProvider` and reports position changes.

    Once started the watch runs until :meth:`stop` is called. A stopped
    source cannot be started again; build a new one instead.
    """

    def __init__(
        self,
        provider: Optional[PositionProvider],
        *,
        interval_seconds: float = DEFAULT_GEO_INTERVAL_SECONDS,
    ) -> None:
        self._provider = provider
        self._interval = max(0.0, interval_seconds)
        self._task: Optional[asyncio.Task[None]] = None
        self._started = False
        self._latest: Optional[Position] = None

    @property
    def latest(self) -> Optional[Position]:
        return self._latest

    @property
    def available(self) -> bool:
        return self._provider is not None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, on_update: UpdateCallback, on_error: ErrorCallback) -> None:
        if self._started:
            raise RuntimeError("GeoSource cannot be restarted")
        self._started = True

        if self._provider is None:
            LOGGER.warning("Geolocation is not available on this host")
            _invoke(on_error, CapabilityUnavailable("Geolocation is not supported"))
            return

        self._task = asyncio.create_task(self._watch(on_update, on_error))

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._provider is not None:
            await self._provider.aclose()

    async def __aenter__(self) -> "GeoSource":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _watch(self, on_update: UpdateCallback, on_error: ErrorCallback) -> None:
        assert self._provider is not None
        while True:
            try:
                position = await self._provider.read_position()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.warning("Position fix failed: %s", exc)
                error = TransientLocationError(str(exc))
                error.__cause__ = exc
                _invoke(on_error, error)
            else:
                if position != self._latest:
                    self._latest = position
                    LOGGER.debug(
                        "Position update lat=%.6f lng=%.6f",
                        position.latitude,
                        position.longitude,
                    )
                    _invoke(on_update, position)

            await asyncio.sleep(self._interval)


def _invoke(callback: Callable, value) -> None:
    try:
        callback(value)
    except Exception:
        LOGGER.exception("Geolocation callback raised an exception")
