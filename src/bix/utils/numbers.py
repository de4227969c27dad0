"""Rounding used for every payout computation."""

from __future__ import annotations

import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (12.5 -> 13).

    Python's round() is banker's rounding, which would pay 12 for a 12.5 bonus.
    """
    return math.floor(value + 0.5)
