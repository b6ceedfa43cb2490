"""Exponential backoff helpers with jitter for rate-limited platform calls."""
from __future__ import annotations

import random
from typing import Optional

from smart_cache.config import BACKOFF_POLICY


def compute_backoff_seconds(
    attempt: int,
    *,
    base: Optional[float] = None,
    factor: Optional[float] = None,
    max_seconds: Optional[float] = None,
    jitter_pct: Optional[float] = None,
    retry_after: Optional[float] = None,
    rng: Optional[random.Random] = None,
) -> float:
    """Delay before retry ``attempt`` (1-based).

    ``base * factor ** (attempt - 1)`` capped at ``max_seconds`` with +/- jitter.
    A platform supplied ``retry_after`` hint raises the floor but never the cap.
    """
    if attempt < 1:
        attempt = 1
    base = float(base if base is not None else BACKOFF_POLICY["base_seconds"])
    factor = float(factor if factor is not None else BACKOFF_POLICY["factor"])
    max_seconds = float(max_seconds if max_seconds is not None else BACKOFF_POLICY["max_seconds"])
    jitter_pct = float(jitter_pct if jitter_pct is not None else BACKOFF_POLICY["jitter_pct"])

    delay = min(base * (factor ** (attempt - 1)), max_seconds)
    if jitter_pct > 0:
        jitter_amount = delay * jitter_pct
        delay = (rng or random).uniform(delay - jitter_amount, delay + jitter_amount)
    if retry_after is not None:
        delay = max(delay, min(float(retry_after), max_seconds))
    return max(delay, 0.0)


__all__ = ["compute_backoff_seconds"]
