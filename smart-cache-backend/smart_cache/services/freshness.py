"""Cache freshness policy.

Current-period entries expire after a per-platform TTL. Historical entries
never expire once they hold good data; an entry failing the good-data
predicate (empty breakdown, or no spend and no impressions) counts as missing.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, TYPE_CHECKING

from smart_cache.config import CACHE_SETTINGS
from smart_cache.models.db.enums import FreshnessDecision, PeriodStatus
from smart_cache.models.schemas.summary import SummaryMetrics
from smart_cache.utils.time import ensure_aware, utc_now

if TYPE_CHECKING:  # pragma: no cover
    from .cache_store import CacheEntry


def has_good_data(summary: SummaryMetrics | None) -> bool:
    if summary is None:
        return False
    return len(summary.campaign_data) > 0 and (summary.total_spend > 0 or summary.total_impressions > 0)


def ttl_seconds(platform: str) -> float:
    ttl = CACHE_SETTINGS["ttl_current_seconds"]
    return float(ttl.get(platform, ttl["default"]))  # type: ignore[union-attr]


@dataclass
class FreshnessResult:
    decision: FreshnessDecision
    age_seconds: Optional[float] = None

    @property
    def usable(self) -> bool:
        return self.decision in {FreshnessDecision.FRESH, FreshnessDecision.VALID}


class FreshnessPolicy:
    """Decides whether a cache entry can be served or must be rebuilt."""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utc_now,
        force_historical_refresh: Optional[bool] = None,
    ):
        self._clock = clock
        if force_historical_refresh is None:
            force_historical_refresh = bool(CACHE_SETTINGS["force_historical_refresh"])
        self.force_historical_refresh = force_historical_refresh

    def evaluate(
        self,
        entry: "CacheEntry | None",
        status: PeriodStatus,
        *,
        force_refresh: bool = False,
    ) -> FreshnessResult:
        if force_refresh:
            return FreshnessResult(FreshnessDecision.FORCED)
        if status == PeriodStatus.HISTORICAL and self.force_historical_refresh:
            return FreshnessResult(FreshnessDecision.FORCED)
        if entry is None:
            return FreshnessResult(FreshnessDecision.MISSING)

        age = (self._clock() - ensure_aware(entry.last_updated)).total_seconds()
        if status == PeriodStatus.HISTORICAL:
            if has_good_data(entry.summary):
                return FreshnessResult(FreshnessDecision.VALID, age)
            return FreshnessResult(FreshnessDecision.INVALID, age)

        if age < ttl_seconds(entry.key.platform):
            return FreshnessResult(FreshnessDecision.FRESH, age)
        return FreshnessResult(FreshnessDecision.STALE, age)

    def is_usable(self, entry: "CacheEntry | None", status: PeriodStatus) -> bool:
        return self.evaluate(entry, status).usable


__all__ = ["FreshnessPolicy", "FreshnessResult", "has_good_data", "ttl_seconds"]
