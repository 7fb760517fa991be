"""Shared numeric helpers for the fleet prediction models."""

from __future__ import annotations

import math


def normalize(value: float, lo: float, hi: float) -> float:
    """Min-max scale value from [lo, hi] onto [0, 1].

    Values outside the range are not clipped, so live readings beyond the
    training bounds extrapolate rather than saturate.
    """
    return (value - lo) / (hi - lo)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (not banker's rounding)."""
    return int(math.floor(value + 0.5))


def severity_for(probability: float) -> str:
    """Bucket a 0-1 failure probability into a severity tier."""
    if probability > 0.7:
        return "critical"
    if probability > 0.5:
        return "high"
    if probability > 0.3:
        return "medium"
    return "low"
