"""Temperature to display category mapping."""

from __future__ import annotations

from .core.models import DisplayCategory

LOW_UPPER_BOUND = 10
HIGH_LOWER_BOUND = 30


def classify(temperature: int) -> DisplayCategory:
    """Bucket a temperature reading for display.

    Readings below 10 are ``LOW``, readings from 10 up to but excluding 30
    are ``MID`` and anything from 30 upwards is ``HIGH``.
    """

    if temperature < LOW_UPPER_BOUND:
        return DisplayCategory.LOW
    if temperature < HIGH_LOWER_BOUND:
        return DisplayCategory.MID
    return DisplayCategory.HIGH
