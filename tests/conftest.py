import asyncio
import socket
from typing import Optional

import pytest

from geotemp_link.core.models import Position


class FakeTransport:
    """In-memory stand-in for the MQTT adapter."""

    def __init__(self) -> None:
        self.connect_outcomes: list[Optional[BaseException]] = []
        self.connect_delay = 0.0
        self.connect_calls: list[str] = []
        self.subscribed: list[str] = []
        self.published: list[tuple[str, bytes, int]] = []
        self.disconnect_calls = 0
        self.close_calls = 0
        self.subscribe_error: Optional[BaseException] = None
        self.publish_error: Optional[BaseException] = None
        self.message_handler = None
        self.disconnect_handlers: list = []

    async def connect(self, client_id: str) -> None:
        self.connect_calls.append(client_id)
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        outcome = self.connect_outcomes.pop(0) if self.connect_outcomes else None
        if outcome is not None:
            raise outcome

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        for handler in list(self.disconnect_handlers):
            handler(0)

    def close(self) -> None:
        self.close_calls += 1

    def subscribe(self, topic: str, qos: int = 0) -> None:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscribed.append(topic)

    def publish(self, topic: str, payload: bytes, qos: int = 0) -> None:
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((topic, payload, qos))

    def set_message_handler(self, handler) -> None:
        self.message_handler = handler

    def register_disconnect_handler(self, handler) -> None:
        self.disconnect_handlers.append(handler)

    # test helpers -----------------------------------------------------
    def drop_connection(self, rc: int = 7) -> None:
        for handler in list(self.disconnect_handlers):
            handler(rc)

    def deliver(self, topic: str, payload: bytes) -> None:
        assert self.message_handler is not None
        self.message_handler(topic, payload)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def calgary() -> Position:
    return Position(latitude=51.05, longitude=-114.07)


async def _wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def unused_tcp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
