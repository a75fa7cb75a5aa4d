"""Session lifecycle management for the shared topic space.

:class:`ConnectionManager` owns the transport and the session state
machine::

    DISCONNECTED -> CONNECTING -> (success) -> CONNECTED
                               -> (failure or cancelled) -> DISCONNECTED
    CONNECTED -> (loss) -> RECONNECTING -> (retry ok) -> CONNECTED
                                        -> (retry failed) -> DISCONNECTED
    CONNECTED | RECONNECTING -> (disconnect) -> DISCONNECTED

A lost connection is retried exactly once after a fixed delay. All
transitions run on the event loop, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from .classification import classify
from .codec import (
    DecodeError,
    decode_status_report,
    sample_temperature,
    status_message,
    user_message,
)
from .constants import CLIENT_ID_PREFIX, DEFAULT_RETRY_DELAY_SECONDS
from .core.models import DisplayCategory, OutgoingMessage, Position, StatusReport
from .core.protocols import Transport

LOGGER = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Current state of the broker session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class EventKind(str, Enum):
    CONNECTED = "connected"
    CONNECT_FAILED = "connect_failed"
    CONNECTION_LOST = "connection_lost"
    DISCONNECTED = "disconnected"
    REPORT_RECEIVED = "report_received"
    DECODE_ERROR = "decode_error"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """Notification emitted to presentation listeners.

    ``detail`` carries the client id for ``CONNECTED``, the exception for
    ``CONNECT_FAILED`` and ``DECODE_ERROR``, the reason string for
    ``CONNECTION_LOST`` and the :class:`StatusReport` for ``REPORT_RECEIVED``.
    """

    kind: EventKind
    detail: Any = None


SessionListener = Callable[[SessionEvent], None]


def generate_client_id() -> str:
    return f"{CLIENT_ID_PREFIX}{secrets.token_hex(4)}"


class ConnectionManager:
    """Connects to the broker, exchanges reports and recovers from loss."""

    def __init__(
        self,
        transport: Transport,
        *,
        shared_topic: str,
        topic_prefix: str,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        client_id_factory: Callable[[], str] = generate_client_id,
    ) -> None:
        self._transport = transport
        self._shared_topic = shared_topic
        self._topic_prefix = topic_prefix
        self._retry_delay = max(0.0, retry_delay_seconds)
        self._client_id_factory = client_id_factory

        self._state = ConnectionState.DISCONNECTED
        self._client_id: Optional[str] = None
        self._listeners: List[SessionListener] = []

        self._position: Optional[Position] = None
        self._last_known_position: Optional[Position] = None
        self._last_report: Optional[StatusReport] = None
        self._category: Optional[DisplayCategory] = None

        self._retry_token = 0
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._retry_task: Optional[asyncio.Task[None]] = None

        transport.set_message_handler(self.handle_message)
        transport.register_disconnect_handler(self._on_transport_disconnect)

    # ------------------------------------------------------------------
    # Read-only snapshots
    # ------------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def client_id(self) -> Optional[str]:
        return self._client_id

    @property
    def shared_topic(self) -> str:
        return self._shared_topic

    @property
    def position(self) -> Optional[Position]:
        """Latest local position fix."""
        return self._position

    @property
    def last_known_position(self) -> Optional[Position]:
        """Newest position seen, either the local fix or a received report."""
        return self._last_known_position

    @property
    def last_report(self) -> Optional[StatusReport]:
        """Most recent report received from the shared topic."""
        return self._last_report

    @property
    def category(self) -> Optional[DisplayCategory]:
        return self._category

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None or (
            self._retry_task is not None and not self._retry_task.done()
        )

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> bool:
        """Open a session unless one is already open or opening.

        Returns whether the session is connected once the attempt finishes.
        Failures are reported through a ``CONNECT_FAILED`` event and are not
        retried.
        """

        if self._state != ConnectionState.DISCONNECTED:
            LOGGER.debug("connect() ignored while %s", self._state.value)
            return self.is_connected

        self._transition(ConnectionState.CONNECTING)
        await self._attempt_connect()
        return self.is_connected

    async def disconnect(self) -> None:
        """Close the session and cancel any pending reconnect."""

        if self._state == ConnectionState.DISCONNECTED:
            return
        if self._state == ConnectionState.CONNECTING:
            LOGGER.warning("disconnect() ignored while a connection attempt is in flight")
            return

        await self._cancel_retry()
        self._transition(ConnectionState.DISCONNECTED)

        try:
            await self._transport.disconnect()
        except Exception as exc:
            LOGGER.warning("Error while disconnecting from broker: %s", exc)

        LOGGER.info("Session closed")
        self._emit(EventKind.DISCONNECTED)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------
    def update_position(self, position: Position) -> None:
        self._position = position
        self._last_known_position = position

    def publish(self, message: OutgoingMessage) -> bool:
        """Hand ``message`` to the transport without acknowledgement.

        Messages are dropped, not queued, while the session is not connected
        or no position fix is known. Returns whether the transport accepted it.
        """

        if self._state != ConnectionState.CONNECTED:
            LOGGER.warning(
                "Dropping message for %s: session is %s",
                message.topic,
                self._state.value,
            )
            return False
        if self._position is None:
            LOGGER.warning("Dropping message for %s: no position fix yet", message.topic)
            return False

        try:
            self._transport.publish(message.topic, message.payload.encode("utf-8"), qos=0)
        except Exception as exc:
            LOGGER.warning("Publish to %s failed: %s", message.topic, exc)
            return False

        LOGGER.debug("Published %d bytes to %s", len(message.payload), message.topic)
        return True

    def share_status(self, temperature: Optional[int] = None) -> bool:
        """Publish the local position with ``temperature`` to the shared topic.

        A simulated reading is used when no temperature is given.
        """

        position = self._position
        if position is None:
            LOGGER.warning("Dropping status report: no position fix yet")
            return False
        if temperature is None:
            temperature = sample_temperature()
        return self.publish(status_message(self._shared_topic, position, temperature))

    def send_user_message(self, segment: str, text: str) -> bool:
        try:
            message = user_message(self._topic_prefix, segment, text)
        except ValueError as exc:
            LOGGER.warning("Dropping user message: %s", exc)
            return False
        return self.publish(message)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    def handle_message(self, topic: str, payload: bytes | str) -> None:
        try:
            report = decode_status_report(payload)
        except DecodeError as exc:
            LOGGER.warning("Discarding malformed message on %s: %s", topic, exc)
            self._emit(EventKind.DECODE_ERROR, exc)
            return

        self._last_report = report
        self._last_known_position = report.position
        self._category = classify(report.temperature)
        LOGGER.info(
            "Report received on %s: lat=%.5f lng=%.5f temp=%d (%s)",
            topic,
            report.position.latitude,
            report.position.longitude,
            report.temperature,
            self._category.value,
        )
        self._emit(EventKind.REPORT_RECEIVED, report)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _attempt_connect(self) -> None:
        client_id = self._client_id_factory()
        try:
            await self._transport.connect(client_id)
        except asyncio.CancelledError:
            LOGGER.warning("Connection attempt cancelled")
            self._transition(ConnectionState.DISCONNECTED)
            self._release_transport()
            raise
        except Exception as exc:
            LOGGER.error("Connection attempt failed: %s", exc)
            self._transition(ConnectionState.DISCONNECTED)
            self._emit(EventKind.CONNECT_FAILED, exc)
            return

        try:
            self._transport.subscribe(self._shared_topic, qos=0)
        except Exception as exc:
            LOGGER.error("Subscribing to %s failed: %s", self._shared_topic, exc)
            self._transition(ConnectionState.DISCONNECTED)
            self._release_transport()
            self._emit(EventKind.CONNECT_FAILED, exc)
            return

        self._client_id = client_id
        self._transition(ConnectionState.CONNECTED)
        LOGGER.info("Subscribed to %s as %s", self._shared_topic, client_id)
        self._emit(EventKind.CONNECTED, client_id)

    def _on_transport_disconnect(self, rc: int) -> None:
        # Local teardown happens after leaving CONNECTED, so only real loss lands here.
        if self._state != ConnectionState.CONNECTED:
            return

        reason = f"connection lost (rc={rc})"
        LOGGER.warning("Broker %s; retrying in %.1fs", reason, self._retry_delay)
        self._transition(ConnectionState.RECONNECTING)
        self._release_transport()
        self._emit(EventKind.CONNECTION_LOST, reason)
        self._schedule_retry()

    def _schedule_retry(self) -> None:
        loop = asyncio.get_running_loop()
        self._retry_token += 1
        self._retry_handle = loop.call_later(
            self._retry_delay, self._fire_retry, self._retry_token
        )

    def _fire_retry(self, token: int) -> None:
        self._retry_handle = None
        if token != self._retry_token or self._state != ConnectionState.RECONNECTING:
            return
        self._retry_task = asyncio.create_task(self._retry())

    async def _retry(self) -> None:
        LOGGER.info("Reconnecting to broker")
        await self._attempt_connect()

    async def _cancel_retry(self) -> None:
        self._retry_token += 1
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

        task = self._retry_task
        self._retry_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _release_transport(self) -> None:
        try:
            self._transport.close()
        except Exception as exc:
            LOGGER.warning("Error releasing transport: %s", exc)

    def _transition(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        LOGGER.info("Session state %s -> %s", previous.value, state.value)

    def _emit(self, kind: EventKind, detail: Any = None) -> None:
        event = SessionEvent(kind=kind, detail=detail)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Session listener failed handling %s", kind.value)
