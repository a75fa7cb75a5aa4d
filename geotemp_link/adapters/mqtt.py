"""MQTT adapter encapsulating paho-mqtt client usage."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

import paho.mqtt.client as mqtt

from ..config import BrokerConfig
from ..core.protocols import DisconnectHandler, MessageHandler

LOGGER = logging.getLogger(__name__)

# Reported when the socket could not be opened at all (no CONNACK).
CONNECT_FAILED_RC = -1


class MQTTConnectionError(RuntimeError):
    """Raised when the MQTT client fails to establish or use a connection."""


def _reason_value(reason_code: Any) -> int:
    value = getattr(reason_code, "value", reason_code)
    try:
        return int(value)
    except (TypeError, ValueError):
        return CONNECT_FAILED_RC


class MQTTClient:
    """Async-friendly wrapper over the threaded paho-mqtt client.

    A fresh paho client is built for every :meth:`connect` call. All paho
    callbacks are marshalled onto the event loop that called ``connect`` so
    handlers never run on the network thread.
    """

    def __init__(self, config: BrokerConfig) -> None:
        self.config = config
        self.client_id: Optional[str] = None

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected_event: Optional[asyncio.Event] = None
        self._disconnect_event: Optional[asyncio.Event] = None
        self._message_handler: Optional[MessageHandler] = None
        self._last_connect_rc: Optional[int] = None
        self._connected: bool = False
        self._disconnect_handlers: List[DisconnectHandler] = []

    async def connect(self, client_id: str, timeout: float = 30.0) -> None:
        """Connect to the MQTT broker and wait for acknowledgement."""

        if self._client is not None:
            self.close()

        self._loop = asyncio.get_running_loop()
        self._connected_event = asyncio.Event()
        self._disconnect_event = asyncio.Event()
        self._last_connect_rc = None
        self.client_id = client_id

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            transport=self.config.transport,
        )
        client.enable_logger(LOGGER)

        if self.config.transport == "websockets":
            client.ws_set_options(path=self.config.path)
        if self.config.use_tls:
            client.tls_set()
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._client = client

        LOGGER.info(
            "Connecting to MQTT broker %s:%s as %s",
            self.config.host,
            self.config.port,
            client_id,
        )

        client.connect_async(self.config.host, self.config.port, self.config.keepalive)
        client.loop_start()

        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
            if self._last_connect_rc is None or self._last_connect_rc != 0:
                raise MQTTConnectionError(
                    f"MQTT broker rejected connection (rc={self._last_connect_rc})"
                )
        except asyncio.TimeoutError as exc:
            self.close()
            raise MQTTConnectionError("Timed out connecting to MQTT broker") from exc
        except (MQTTConnectionError, asyncio.CancelledError):
            self.close()
            raise

    async def disconnect(self, timeout: float = 5.0) -> None:
        """Gracefully disconnect from the broker."""

        if not self._client:
            return

        assert self._disconnect_event is not None

        self._client.disconnect()

        try:
            await asyncio.wait_for(self._disconnect_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Timed out waiting for MQTT disconnect acknowledgement")
        finally:
            self.close()

    def close(self) -> None:
        """Stop the network loop without sending DISCONNECT.

        Used after the broker connection is already gone so that paho's own
        reconnect logic does not compete with the connection manager.
        """

        client = self._client
        self._client = None
        self._connected = False
        if client is not None:
            client.loop_stop()

    def publish(self, topic: str, payload: bytes, qos: int = 0) -> None:
        if not self._client:
            raise MQTTConnectionError("MQTT client not connected")

        info = self._client.publish(topic, payload, qos=qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Publish failed with rc={info.rc}")

    def subscribe(self, topic: str, qos: int = 0) -> None:
        if not self._client:
            raise MQTTConnectionError("MQTT client not connected")
        result, _ = self._client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Subscribe failed with rc={result}")

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._message_handler = handler

    def register_disconnect_handler(self, handler: DisconnectHandler) -> None:
        self._disconnect_handlers.append(handler)

    def is_connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------
    # Internal callbacks bridging the threaded paho callbacks into asyncio
    # ------------------------------------------------------------------
    def _on_connect(
        self, client: mqtt.Client, userdata, flags, reason_code, properties=None
    ) -> None:
        if client is not self._client:
            return
        rc = _reason_value(reason_code)
        if rc == 0:
            LOGGER.info("Connected to MQTT broker")
        else:
            LOGGER.error("MQTT connection failed with rc=%s", rc)
        self._call_on_loop(self._record_connect_result, rc)

    def _on_connect_fail(self, client: mqtt.Client, userdata) -> None:
        if client is not self._client:
            return
        LOGGER.error("Unable to reach MQTT broker %s:%s", self.config.host, self.config.port)
        self._call_on_loop(self._record_connect_result, CONNECT_FAILED_RC)

    def _on_disconnect(
        self, client: mqtt.Client, userdata, flags, reason_code, properties=None
    ) -> None:
        if client is not self._client:
            return
        rc = _reason_value(reason_code)
        LOGGER.info("Disconnected from MQTT broker (rc=%s)", rc)
        self._call_on_loop(self._record_disconnect, rc)

    def _on_message(
        self, client: mqtt.Client, userdata, message: mqtt.MQTTMessage
    ) -> None:
        if client is not self._client:
            return
        self._call_on_loop(self._dispatch_message, message.topic, message.payload)

    def _call_on_loop(self, callback, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    def _record_connect_result(self, rc: int) -> None:
        self._last_connect_rc = rc
        self._connected = rc == 0
        if self._connected_event:
            self._connected_event.set()

    def _record_disconnect(self, rc: int) -> None:
        self._connected = False
        if self._disconnect_event:
            self._disconnect_event.set()
        for handler in list(self._disconnect_handlers):
            try:
                handler(rc)
            except Exception:
                LOGGER.exception("MQTT disconnect handler raised an exception")

    def _dispatch_message(self, topic: str, payload: bytes) -> None:
        handler = self._message_handler
        if handler is None:
            return

        try:
            result = handler(topic, payload)
            if asyncio.iscoroutine(result):
                asyncio.ensure_future(result)
        except Exception:
            LOGGER.exception("MQTT message handler raised an exception")
