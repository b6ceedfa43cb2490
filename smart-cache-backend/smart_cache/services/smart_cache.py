"""Smart cache read-through for the in-progress period.

``SmartCacheService.get`` serves the ``current_period_cache`` entry while it
is fresh, otherwise rebuilds it from a live fetch under the single-flight
guard. A failed rebuild falls back to the stale entry when one exists.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smart_cache.models.db.clients import Client
from smart_cache.models.db.enums import DataSource, ErrorKind, FreshnessDecision, PeriodStatus, PeriodType
from smart_cache.models.schemas.summary import AggregateSummary, SummaryKey
from smart_cache.services.aggregator import summarize
from smart_cache.services.cache_store import CacheEntry, CacheStore
from smart_cache.services.fetcher import ResilientFetcher
from smart_cache.services.freshness import FreshnessPolicy
from smart_cache.services.periods import Period, current_period
from smart_cache.services.single_flight import ClaimRegistry, InProcessSingleFlight, SingleFlightGuard
from smart_cache.utils import get_logger, log_business_event, log_performance
from smart_cache.utils.time import utc_now

logger = get_logger(__name__)


@dataclass
class SmartCacheResult:
    success: bool
    key: SummaryKey
    period: Period
    summary: Optional[AggregateSummary] = None
    last_updated: Optional[datetime] = None
    from_cache: bool = False
    stale: bool = False
    shared: bool = False
    decision: Optional[FreshnessDecision] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None


@dataclass
class _Rebuild:
    summary: Optional[AggregateSummary]
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None


class SmartCacheService:
    def __init__(
        self,
        session: Session,
        fetchers: Mapping[str, ResilientFetcher],
        *,
        today: Optional[date] = None,
        clock: Callable[[], datetime] = utc_now,
        policy: Optional[FreshnessPolicy] = None,
        single_flight: Optional[InProcessSingleFlight] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self.fetchers = fetchers
        self.store = CacheStore(session, today=today, clock=clock)
        self.policy = policy or FreshnessPolicy(clock=clock)
        self.guard = SingleFlightGuard(
            ClaimRegistry(session, clock=clock, sleep=sleep),
            local=single_flight,
        )
        self._clock = clock

    def get(
        self,
        client: Client,
        platform: str,
        period_type: PeriodType | str,
        *,
        force_refresh: bool = False,
    ) -> SmartCacheResult:
        period = current_period(period_type, self.store.today)
        key = SummaryKey(client.id, platform, period.type, period.id)

        entry = self.store.get_cached(key)
        freshness = self.policy.evaluate(entry, PeriodStatus.CURRENT, force_refresh=force_refresh)
        if freshness.usable and entry is not None:
            logger.debug("Smart cache hit", key=key.label(), age_seconds=round(freshness.age_seconds or 0, 1))
            return SmartCacheResult(
                success=True,
                key=key,
                period=period,
                summary=entry.summary,
                last_updated=entry.last_updated,
                from_cache=True,
                decision=freshness.decision,
            )

        logger.info("Smart cache rebuild required", key=key.label(), decision=freshness.decision.value)
        account_id = client.account_id_for(platform)
        fetcher = self.fetchers.get(platform)
        if not account_id or fetcher is None:
            return self._fallback(
                key, period, entry, freshness.decision,
                ErrorKind.MISSING_ACCOUNT, f"Client {client.id} has no {platform} account configured",
            )

        started = time.perf_counter()
        flight = self.guard.run(key, lambda: self._rebuild(key, period, account_id, fetcher))

        if flight.rebuilt_elsewhere:
            fresh = self.store.get_cached(key)
            if fresh is not None:
                return SmartCacheResult(
                    success=True, key=key, period=period, summary=fresh.summary,
                    last_updated=fresh.last_updated, from_cache=True, shared=True,
                    decision=freshness.decision,
                )
            return self._fallback(key, period, entry, freshness.decision, ErrorKind.TRANSPORT, "Concurrent rebuild stored nothing")
        if flight.timed_out or flight.value is None:
            return self._fallback(key, period, entry, freshness.decision, ErrorKind.CLAIM_TIMEOUT, "Timed out waiting for rebuild claim")

        rebuild = flight.value
        if rebuild.summary is None:
            return self._fallback(key, period, entry, freshness.decision, rebuild.error_kind, rebuild.error_message)

        log_performance(
            "smart_cache_rebuild",
            (time.perf_counter() - started) * 1000,
            {"key": key.label(), "shared": flight.shared},
        )
        return SmartCacheResult(
            success=True,
            key=key,
            period=period,
            summary=rebuild.summary,
            last_updated=rebuild.summary.last_updated,
            shared=flight.shared,
            decision=freshness.decision,
        )

    def _rebuild(self, key: SummaryKey, period: Period, account_id: str, fetcher: ResilientFetcher) -> _Rebuild:
        outcome = fetcher.fetch(account_id, period.start_date, period.end_date, with_account_insights=True)
        if not outcome.success:
            logger.warning(
                "Smart cache fetch failed",
                key=key.label(),
                error_kind=outcome.error_kind.value if outcome.error_kind else None,
                error=outcome.error_message,
            )
            return _Rebuild(None, outcome.error_kind, outcome.error_message)

        data_source, extra = fetcher.provenance(DataSource.API_LIVE, account_id, period.start_date, period.end_date)
        summary = summarize(
            outcome.rows,
            data_source=data_source,
            last_updated=self._clock(),
            account_insights=outcome.account_insights,
            **extra,
        )
        try:
            self.store.put_cached(key, summary)
        except SQLAlchemyError as exc:
            return _Rebuild(None, ErrorKind.PERSISTENCE, str(exc))

        log_business_event(
            "cache_rebuilt",
            {
                "period_type": key.period_type.value,
                "period_id": key.period_id,
                "data_source": summary.data_source,
                "campaigns": len(summary.campaign_data),
                "total_spend": summary.total_spend,
            },
            client_id=key.client_id,
            platform=key.platform,
        )
        return _Rebuild(summary)

    def _fallback(
        self,
        key: SummaryKey,
        period: Period,
        entry: Optional[CacheEntry],
        decision: FreshnessDecision,
        error_kind: Optional[ErrorKind],
        error_message: Optional[str],
    ) -> SmartCacheResult:
        if entry is not None:
            logger.warning(
                "Serving stale cache entry after failed rebuild",
                key=key.label(),
                error_kind=error_kind.value if error_kind else None,
            )
            return SmartCacheResult(
                success=True,
                key=key,
                period=period,
                summary=entry.summary,
                last_updated=entry.last_updated,
                from_cache=True,
                stale=True,
                decision=decision,
                error_kind=error_kind,
                error_message=error_message,
            )
        return SmartCacheResult(
            success=False,
            key=key,
            period=period,
            decision=decision,
            error_kind=error_kind,
            error_message=error_message,
        )


__all__ = ["SmartCacheService", "SmartCacheResult"]
