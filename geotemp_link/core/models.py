"""Domain models exchanged between the session components."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True, slots=True)
class Position:
    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class StatusReport:
    """A single position and temperature reading."""

    position: Position
    temperature: int


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    topic: str
    payload: str


class DisplayCategory(str, Enum):
    """Display bucket derived from the latest received temperature."""

    LOW = "low"
    MID = "mid"
    HIGH = "high"
