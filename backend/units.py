"""Unit conversions, rounded the way the forecast display expects."""

from __future__ import annotations

import math

FEET_PER_METER = 3.28084


def round_half_away(value: float) -> float:
    """Round to nearest, halves away from zero (Python's round() is banker's).

    Non-finite input rounds to 0.
    """
    if not math.isfinite(value):
        return 0.0
    return math.copysign(math.floor(abs(value) + 0.5), value)


def round_to_one_decimal(value: float) -> float:
    return round_half_away(value * 10) / 10


def meters_to_feet(meters: float) -> int:
    return int(round_half_away(meters * FEET_PER_METER))


def feet_to_meters(feet: float) -> float:
    return round_half_away(feet / FEET_PER_METER)


def celsius_to_fahrenheit(celsius: int) -> int:
    return int(round_half_away(celsius * 9 / 5 + 32))
