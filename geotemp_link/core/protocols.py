"""Protocol definitions for the transport and geolocation seams."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol

from .models import Position

MessageHandler = Callable[[str, bytes], Awaitable[None] | None]
DisconnectHandler = Callable[[int], None]


class Transport(Protocol):
    """Minimal publish/subscribe contract the connection manager relies on."""

    async def connect(self, client_id: str) -> None:
        """Open a session using ``client_id``; raise on failure."""
        ...

    async def disconnect(self) -> None:
        """Gracefully close the session."""
        ...

    def close(self) -> None:
        """Release the network loop of a session that is already gone."""
        ...

    def subscribe(self, topic: str, qos: int = 0) -> None:
        ...

    def publish(self, topic: str, payload: bytes, qos: int = 0) -> None:
        ...

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        ...

    def register_disconnect_handler(self, handler: DisconnectHandler) -> None:
        """Register a callback invoked with the reason code on every disconnect.

        A reason code of ``0`` means the disconnect was requested locally.
        """
        ...


class PositionProvider(Protocol):
    """Source of individual position fixes."""

    async def read_position(self) -> Position:
        """Return the current position or raise when no fix is available."""
        ...

    async def aclose(self) -> None:
        """Close any underlying resources."""
        ...
