"""Numeric helpers shared by the scoring components.

Rounding is half-up on the decimal representation of the value so that
2.5 -> 3 and 0.125 -> 0.13, matching how scores are reported to consumers.
Python's built-in round() is banker's rounding and is not used for scores.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round a float half-up to ``ndigits`` decimal places.

    Args:
        value: Value to round.
        ndigits: Number of decimal places (0 rounds to an integral float).

    Returns:
        Rounded value as float.
    """
    quantum = Decimal(1).scaleb(-ndigits)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    """Clamp a value to the closed interval [low, high]."""
    if value < low:
        return low
    if value > high:
        return high
    return value
