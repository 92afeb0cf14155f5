"""
Robust statistics used by the segmentation metrics.

Quartiles use the nearest-rank indices ``floor(n * 0.25)`` and
``floor(n * 0.75)`` on the sorted sample; the Tukey fences sit 1.5 IQR
outside them.
"""

from __future__ import annotations

import math
import statistics
from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from app.features.analytics.domain.models import Trend

TUKEY_K = 1.5


def median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return float(statistics.median(values))


def quartiles(values: Sequence[float]) -> tuple[float, float]:
    ordered = sorted(values)
    n = len(ordered)
    return ordered[math.floor(n * 0.25)], ordered[math.floor(n * 0.75)]


def tukey_trim(values: Sequence[float], k: float = TUKEY_K) -> list[float]:
    """Drop values outside ``[Q1 - k*IQR, Q3 + k*IQR]``."""
    if not values:
        return []
    q1, q3 = quartiles(values)
    iqr = q3 - q1
    low, high = q1 - k * iqr, q3 + k * iqr
    return [v for v in values if low <= v <= high]


def robust_average(values: Sequence[float]) -> float:
    """Median of the Tukey-trimmed sample, or of the whole sample if trimming empties it."""
    if not values:
        return 0.0
    trimmed = tukey_trim(values)
    return median(trimmed if trimmed else values)


def round_half_up(value: float, digits: int = 0) -> float:
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percent_change(current: float, previous: float) -> Trend:
    if previous > 0:
        change = math.floor((current - previous) / previous * 100 + 0.5)
    elif current > 0:
        change = 100
    else:
        change = 0

    if current > previous:
        direction = "up"
    elif current < previous:
        direction = "down"
    else:
        direction = "neutral"
    return Trend(percent_change=abs(change), direction=direction)
