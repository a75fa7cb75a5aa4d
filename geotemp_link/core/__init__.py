"""Core primitives for geotemp-link."""

from .models import DisplayCategory, OutgoingMessage, Position, StatusReport
from .protocols import (
    DisconnectHandler,
    MessageHandler,
    PositionProvider,
    Transport,
)

__all__ = [
    "DisconnectHandler",
    "DisplayCategory",
    "MessageHandler",
    "OutgoingMessage",
    "Position",
    "PositionProvider",
    "StatusReport",
    "Transport",
]
