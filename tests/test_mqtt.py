"""Tests for the MQTT adapter."""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from geotemp_link.adapters import MQTTClient, MQTTConnectionError
from geotemp_link.config import BrokerConfig

import paho.mqtt.client as mqtt


class FakeMqttClient:
    """Minimal fake paho-mqtt client for testing."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: dict,
        *,
        rc_connect: int = 0,
        rc_disconnect: int = 0,
        unreachable: bool = False,
        publish_rc: int = mqtt.MQTT_ERR_SUCCESS,
        subscribe_rc: int = mqtt.MQTT_ERR_SUCCESS,
        **kwargs,
    ):
        self._loop = loop
        self._events = events
        self._rc_connect = rc_connect
        self._rc_disconnect = rc_disconnect
        self._unreachable = unreachable
        self._publish_rc = publish_rc
        self._subscribe_rc = subscribe_rc
        self._events.setdefault("clients", []).append(self)
        self._events["client_kwargs"] = kwargs

        self.on_connect = None
        self.on_connect_fail = None
        self.on_disconnect = None
        self.on_message = None

    # paho interface -------------------------------------------------
    def enable_logger(self, logger):
        self._events.setdefault("logger_enabled", True)

    def username_pw_set(self, username, password=None):
        self._events["auth"] = (username, password)

    def ws_set_options(self, path="/mqtt", headers=None):
        self._events["ws_path"] = path

    def tls_set(self, *args, **kwargs):
        self._events["tls"] = True

    def connect_async(self, host, port, keepalive):
        self._events["connect_args"] = (host, port, keepalive)
        if self._unreachable:
            if self.on_connect_fail:
                self._loop.call_soon(self.on_connect_fail, self, None)
            return
        if self.on_connect:
            self._loop.call_soon(
                self.on_connect,
                self,
                None,
                None,
                self._rc_connect,
                None,
            )

    def loop_start(self):
        self._events["loop_start"] = self._events.get("loop_start", 0) + 1

    def loop_stop(self):
        self._events["loop_stop"] = self._events.get("loop_stop", 0) + 1

    def disconnect(self):
        self._events["disconnect_called"] = True
        if self.on_disconnect:
            self._loop.call_soon(
                self.on_disconnect,
                self,
                None,
                None,
                self._rc_disconnect,
                None,
            )

    def publish(self, topic, payload, qos=0, retain=False, properties=None):
        self._events.setdefault("published", []).append((topic, payload, qos))
        return SimpleNamespace(rc=self._publish_rc)

    def subscribe(self, topic, qos=0):
        self._events.setdefault("subscribed", []).append((topic, qos))
        return self._subscribe_rc, 1

    # test helpers ---------------------------------------------------
    def drop(self, rc: int = 7):
        self.on_disconnect(self, None, None, rc, None)


def tcp_config(**overrides) -> BrokerConfig:
    values = dict(
        host="broker.example.org",
        port=1883,
        transport="tcp",
        use_tls=False,
    )
    values.update(overrides)
    return BrokerConfig(**values)


@pytest.fixture
def patch_paho(monkeypatch):
    def _patch(**fake_kwargs):
        loop = asyncio.get_running_loop()
        events: dict = {}

        def factory(*args, **kwargs):
            return FakeMqttClient(loop, events, **fake_kwargs, **kwargs)

        monkeypatch.setattr("geotemp_link.adapters.mqtt.mqtt.Client", factory)
        return events

    return _patch


@pytest_asyncio.fixture
async def mqtt_client(patch_paho):
    events = patch_paho()
    client = MQTTClient(tcp_config(username="reporter", password="secret"))
    await client.connect("geotemp-42")

    yield client, events

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_configures_client(mqtt_client):
    client, events = mqtt_client

    assert events["connect_args"] == ("broker.example.org", 1883, 60)
    assert events["auth"] == ("reporter", "secret")
    assert events["loop_start"] == 1
    assert events["client_kwargs"]["client_id"] == "geotemp-42"
    assert events["client_kwargs"]["transport"] == "tcp"
    assert (
        events["client_kwargs"]["callback_api_version"]
        == mqtt.CallbackAPIVersion.VERSION2
    )
    assert "tls" not in events
    assert client.is_connected() is True
    assert client.client_id == "geotemp-42"


@pytest.mark.asyncio
async def test_connect_over_secure_websockets(patch_paho):
    events = patch_paho()
    client = MQTTClient(BrokerConfig())

    await client.connect("geotemp-ws")

    assert events["client_kwargs"]["transport"] == "websockets"
    assert events["ws_path"] == "/mqtt"
    assert events["tls"] is True
    assert events["connect_args"] == ("test.mosquitto.org", 8081, 60)
    assert "auth" not in events

    await client.disconnect()


@pytest.mark.asyncio
async def test_each_connect_builds_fresh_client(mqtt_client):
    client, events = mqtt_client

    await client.connect("geotemp-43")

    assert len(events["clients"]) == 2
    assert events["loop_stop"] == 1
    assert events["client_kwargs"]["client_id"] == "geotemp-43"


@pytest.mark.asyncio
async def test_publish_delegates_to_client(mqtt_client):
    client, events = mqtt_client

    client.publish("test/topic", b"payload")

    assert events["published"] == [("test/topic", b"payload", 0)]


@pytest.mark.asyncio
async def test_subscribe_records_topics(mqtt_client):
    client, events = mqtt_client

    client.subscribe("ENG551/Ashraful/my_temperature")

    assert events["subscribed"] == [("ENG551/Ashraful/my_temperature", 0)]


@pytest.mark.asyncio
async def test_message_handler_runs_on_loop(patch_paho):
    patch_paho()
    client = MQTTClient(tcp_config())
    received = asyncio.Event()
    handled: list = []

    def handler(topic: str, payload: bytes) -> None:
        handled.append((topic, payload))
        received.set()

    client.set_message_handler(handler)
    await client.connect("geotemp-1")

    message = SimpleNamespace(topic="ENG551/Ashraful/my_temperature", payload=b"data")
    client._on_message(client._client, None, message)  # type: ignore[arg-type]
    assert handled == []

    await asyncio.wait_for(received.wait(), timeout=1.0)
    await client.disconnect()

    assert handled == [("ENG551/Ashraful/my_temperature", b"data")]


@pytest.mark.asyncio
async def test_message_handler_dispatches_async(patch_paho):
    patch_paho()
    client = MQTTClient(tcp_config())
    received = asyncio.Event()
    handled: list = []

    async def handler(topic: str, payload: bytes) -> None:
        handled.append((topic, payload))
        received.set()

    client.set_message_handler(handler)
    await client.connect("geotemp-2")

    message = SimpleNamespace(topic="a/b", payload=b"{}")
    client._on_message(client._client, None, message)  # type: ignore[arg-type]

    await asyncio.wait_for(received.wait(), timeout=1.0)
    await client.disconnect()

    assert handled == [("a/b", b"{}")]


@pytest.mark.asyncio
async def test_publish_failure_raises(patch_paho):
    patch_paho(publish_rc=mqtt.MQTT_ERR_NO_CONN)
    client = MQTTClient(tcp_config())
    await client.connect("geotemp-7")

    with pytest.raises(MQTTConnectionError):
        client.publish("test", b"payload")

    await client.disconnect()


@pytest.mark.asyncio
async def test_publish_without_connection_raises():
    client = MQTTClient(tcp_config())

    with pytest.raises(MQTTConnectionError):
        client.publish("test", b"payload")
    with pytest.raises(MQTTConnectionError):
        client.subscribe("test")


@pytest.mark.asyncio
async def test_subscribe_failure_raises(patch_paho):
    patch_paho(subscribe_rc=mqtt.MQTT_ERR_NO_CONN)
    client = MQTTClient(tcp_config())
    await client.connect("geotemp-8")

    with pytest.raises(MQTTConnectionError):
        client.subscribe("test")

    await client.disconnect()


@pytest.mark.asyncio
async def test_disconnect_handler_invoked(patch_paho):
    patch_paho(rc_disconnect=1)
    client = MQTTClient(tcp_config())
    disconnect_event = asyncio.Event()
    received: list = []

    def _handler(rc: int) -> None:
        received.append(rc)
        disconnect_event.set()

    client.register_disconnect_handler(_handler)

    await client.connect("geotemp-3")
    await client.disconnect()

    await asyncio.wait_for(disconnect_event.wait(), timeout=1.0)
    assert received == [1]
    assert client.is_connected() is False


@pytest.mark.asyncio
async def test_unexpected_drop_reaches_handler(patch_paho):
    events = patch_paho()
    client = MQTTClient(tcp_config())
    received: list = []
    client.register_disconnect_handler(received.append)
    await client.connect("geotemp-4")

    events["clients"][-1].drop(rc=16)
    await asyncio.sleep(0.01)

    assert received == [16]
    assert client.is_connected() is False

    client.close()
    assert events["loop_stop"] == 1


@pytest.mark.asyncio
async def test_callbacks_from_replaced_client_are_ignored(patch_paho):
    events = patch_paho()
    client = MQTTClient(tcp_config())
    received: list = []
    client.register_disconnect_handler(received.append)
    await client.connect("geotemp-5")
    stale = events["clients"][-1]
    await client.connect("geotemp-6")

    stale.drop(rc=7)
    await asyncio.sleep(0.01)

    assert received == []
    assert client.is_connected() is True

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_failure_raises(patch_paho):
    events = patch_paho(rc_connect=5)
    client = MQTTClient(tcp_config())

    with pytest.raises(MQTTConnectionError, match="rc=5"):
        await client.connect("geotemp-9")

    assert events["loop_stop"] == 1
    assert client.is_connected() is False


@pytest.mark.asyncio
async def test_unreachable_broker_fails_fast(patch_paho):
    events = patch_paho(unreachable=True)
    client = MQTTClient(tcp_config())

    with pytest.raises(MQTTConnectionError):
        await client.connect("geotemp-10", timeout=5.0)

    assert events["loop_stop"] == 1


@pytest.mark.asyncio
async def test_disconnect_without_connection_is_noop():
    client = MQTTClient(tcp_config())

    await client.disconnect()
    client.close()

    assert client.is_connected() is False
