"""Main application entry-point for geotemp-link."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from .adapters import HttpPositionProvider, MQTTClient, StaticPositionProvider
from .config import ConfigurationError, GeolocationConfig, LinkConfig, load_config
from .connection import ConnectionManager, EventKind, SessionEvent
from .core.models import Position
from .core.protocols import PositionProvider, Transport
from .geo import CapabilityUnavailable, GeoSource, GeolocationError
from .health import HealthReporter, HealthServer
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)

FIRST_FIX_TIMEOUT_SECONDS = 15.0

_DEFAULT = object()


def build_position_provider(config: GeolocationConfig) -> Optional[PositionProvider]:
    if config.provider == "static":
        if config.latitude is None or config.longitude is None:
            raise ConfigurationError(
                "[geolocation] static provider requires latitude and longitude"
            )
        return StaticPositionProvider(
            Position(latitude=config.latitude, longitude=config.longitude)
        )
    if config.provider == "http":
        if not config.url:
            raise ConfigurationError("[geolocation] http provider requires url")
        return HttpPositionProvider(config.url)
    return None


class GeoTempApp:
    """Wires geolocation, the broker session and console rendering together.

    The transport and position provider can be injected for testing; by
    default they are built from configuration.
    """

    def __init__(
        self,
        config: Optional[LinkConfig] = None,
        *,
        transport: Optional[Transport] = None,
        provider=_DEFAULT,
    ) -> None:
        self._config = config or load_config()
        self._transport: Transport = transport or MQTTClient(self._config.broker)
        if provider is _DEFAULT:
            provider = build_position_provider(self._config.geolocation)

        session = self._config.session
        self.manager = ConnectionManager(
            self._transport,
            shared_topic=session.shared_topic,
            topic_prefix=session.topic_prefix,
            retry_delay_seconds=session.retry_delay_seconds,
        )
        self.manager.add_listener(self._on_session_event)
        self.geo = GeoSource(
            provider, interval_seconds=self._config.geolocation.interval_seconds
        )

        self._health = HealthReporter()
        self._health_server: Optional[HealthServer] = None
        self._first_fix: Optional[asyncio.Event] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._share_task: Optional[asyncio.Task[None]] = None
        self._background: set[asyncio.Task[None]] = set()

    @property
    def config(self) -> LinkConfig:
        return self._config

    @property
    def health(self) -> HealthReporter:
        return self._health

    @classmethod
    def start(cls, config: Optional[LinkConfig] = None) -> int:
        instance = cls(config=config)
        instance.configure_logging()
        try:
            return 0 if asyncio.run(instance.run()) else 1
        except KeyboardInterrupt:
            LOGGER.info("geotemp-link received shutdown signal")
            return 0

    def configure_logging(self) -> None:
        logging_config = self._config.logging
        configure_logging(
            logging_config.level,
            log_path=logging_config.path,
            log_network=logging_config.log_network,
        )

    async def run(self) -> bool:
        """Run a session until cancelled or :meth:`request_shutdown` is called.

        Returns False when the initial connection could not be established.
        """

        self._shutdown_event = asyncio.Event()
        LOGGER.info("geotemp-link starting with config: %s", self._config.path)

        await self._start_health_server()
        self._start_geolocation()

        try:
            if not await self.manager.connect():
                LOGGER.error("Unable to connect to broker; exiting")
                return False

            interval = self._config.session.share_interval_seconds
            if interval > 0:
                self._share_task = asyncio.create_task(self._share_loop(interval))

            await self._shutdown_event.wait()
            return True
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def share(self, temperature: Optional[int] = None) -> bool:
        """Connect, publish one status report and disconnect."""

        return await self._run_once(
            lambda: self.manager.share_status(temperature=temperature)
        )

    async def send(self, segment: str, text: str) -> bool:
        """Connect, publish one user message and disconnect."""

        return await self._run_once(lambda: self.manager.send_user_message(segment, text))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _run_once(self, action) -> bool:
        self._start_geolocation()
        try:
            if not await self._await_first_fix(FIRST_FIX_TIMEOUT_SECONDS):
                LOGGER.error("No position fix available; nothing was sent")
                return False
            if not await self.manager.connect():
                return False
            return bool(action())
        finally:
            await self._stop_services()

    def _start_geolocation(self) -> None:
        self._first_fix = asyncio.Event()
        self.geo.start(self._on_position, self._on_geo_error)

    async def _await_first_fix(self, timeout: float) -> bool:
        if self.manager.position is not None:
            return True
        if not self.geo.available or self._first_fix is None:
            return False
        try:
            await asyncio.wait_for(self._first_fix.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return self.manager.position is not None

    async def _share_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self.manager.is_connected:
                self.manager.share_status()

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0:
            return

        server = HealthServer(self._health, health.host, health.port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
        else:
            self._health_server = server

    async def _stop_services(self) -> None:
        if self._share_task is not None:
            self._share_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._share_task
            self._share_task = None

        await self.manager.disconnect()
        await self.geo.stop()

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None

    def _on_position(self, position: Position) -> None:
        self.manager.update_position(position)
        if self._first_fix is not None:
            self._first_fix.set()
        self._schedule_health_update(
            "geolocation",
            True,
            f"lat={position.latitude:.5f} lng={position.longitude:.5f}",
        )

    def _on_geo_error(self, error: GeolocationError) -> None:
        if isinstance(error, CapabilityUnavailable):
            LOGGER.error("Position sharing disabled: %s", error)
        self._schedule_health_update("geolocation", False, str(error))

    def _on_session_event(self, event: SessionEvent) -> None:
        if event.kind == EventKind.CONNECTED:
            LOGGER.info("Connected to %s:%s", self._config.broker.host, self._config.broker.port)
            self._schedule_health_update("mqtt", True, None)
        elif event.kind == EventKind.CONNECT_FAILED:
            LOGGER.error("Connection failed: %s", event.detail)
            self._schedule_health_update("mqtt", False, str(event.detail))
        elif event.kind == EventKind.CONNECTION_LOST:
            LOGGER.warning("Connection lost: %s", event.detail)
            self._schedule_health_update("mqtt", False, str(event.detail))
        elif event.kind == EventKind.DISCONNECTED:
            self._schedule_health_update("mqtt", False, "disconnected")
        elif event.kind == EventKind.REPORT_RECEIVED:
            report = event.detail
            category = self.manager.category
            print(
                f"Temperature: {report.temperature}°C "
                f"[{category.value if category else 'n/a'}] "
                f"at {report.position.latitude:.5f}, {report.position.longitude:.5f}",
                flush=True,
            )
        elif event.kind == EventKind.DECODE_ERROR:
            LOGGER.debug("Ignored undecodable message: %s", event.detail)

        self._schedule_session_state()

    def _schedule_health_update(
        self, name: str, healthy: bool, detail: Optional[str]
    ) -> None:
        self._spawn(self._health.update(name, healthy, detail))

    def _schedule_session_state(self) -> None:
        self._spawn(self._health.set_session_state(self.manager.state.value))

    def _spawn(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)
