"""Pure metric math helpers used by aggregation & reconciliation."""
from __future__ import annotations

from typing import Iterable


def safe_div(numerator: float | int, denominator: float | int) -> float:
    if denominator in (0, 0.0):
        return 0.0
    return float(numerator) / float(denominator)


def relative_diff(a: float | int, b: float | int) -> float:
    """Relative difference ``|a-b| / max(a, b, 1)``; both zero is 0."""
    a = float(a)
    b = float(b)
    if a == 0 and b == 0:
        return 0.0
    return abs(a - b) / max(a, b, 1.0)


def weighted_average(pairs: Iterable[tuple[float, float]]) -> float | None:
    """Average of ``value`` weighted by ``weight`` over (value, weight) pairs.

    Returns None when the total weight is zero.
    """
    total_weight = 0.0
    weighted_sum = 0.0
    for value, weight in pairs:
        weighted_sum += float(value) * float(weight)
        total_weight += float(weight)
    if total_weight == 0:
        return None
    return weighted_sum / total_weight


__all__ = ["safe_div", "relative_diff", "weighted_average"]
