"""Backfill orchestrator: populate historical period summaries idempotently.

Each (client, platform, period) walks a small state machine::

    PENDING -> SKIPPED
    PENDING -> FETCHING -> STORED | FAILED

Per-period problems (auth, exhausted rate-limit retries, transport errors,
open circuit, persistence errors, malformed payloads) become ``PeriodResult`` rows and the batch
carries on. Only setup problems raise ``BackfillSetupError``. Clients are
processed in id order and periods most-recent-first, so two runs over the
same data produce the same report.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Iterable, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smart_cache.config import BACKFILL_SETTINGS, SUPPORTED_PLATFORMS
from smart_cache.models.db.clients import Client
from smart_cache.models.db.enums import BackfillStatus, DataSource, ErrorKind, PeriodStatus, PeriodType
from smart_cache.models.schemas.summary import SummaryKey
from smart_cache.services.aggregator import summarize
from smart_cache.services.cache_store import CacheStore
from smart_cache.services.fetcher import ResilientFetcher
from smart_cache.services.freshness import FreshnessPolicy
from smart_cache.services.periods import Period, classify, past_periods
from smart_cache.services.single_flight import ClaimRegistry
from smart_cache.utils import get_logger, log_business_event
from smart_cache.utils.time import format_elapsed, utc_now

logger = get_logger(__name__)


class BackfillSetupError(Exception):
    """Raised when the batch cannot start (no clients, unreachable store, unknown platform)."""


@dataclass
class BackfillOptions:
    period_type: PeriodType = PeriodType.MONTHLY
    periods: int = int(BACKFILL_SETTINGS["default_periods"])
    platforms: Sequence[str] = SUPPORTED_PLATFORMS
    client_ids: Optional[Sequence[int]] = None
    dry_run: bool = False
    skip_existing: bool = True
    force_refresh: bool = False
    include_current: bool = False

    def __post_init__(self) -> None:
        self.period_type = PeriodType(self.period_type)
        if self.periods < 1:
            raise ValueError("periods must be >= 1")


@dataclass
class PeriodResult:
    client_id: int
    platform: str
    period_type: PeriodType
    period_id: str
    status: BackfillStatus = BackfillStatus.PENDING
    reason: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    empty: bool = False
    data_source: Optional[str] = None
    total_spend: Optional[float] = None
    attempts: int = 0
    client_name: Optional[str] = None

    def label(self) -> str:
        return f"client={self.client_id} platform={self.platform} period={self.period_type.value}:{self.period_id}"


@dataclass
class BackfillReport:
    started_at: datetime
    dry_run: bool
    results: list[PeriodResult] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    def count(self, status: BackfillStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def stored(self) -> int:
        return self.count(BackfillStatus.STORED)

    @property
    def skipped(self) -> int:
        return self.count(BackfillStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(BackfillStatus.FAILED)

    @property
    def pending(self) -> int:
        return self.count(BackfillStatus.PENDING)

    @property
    def failures(self) -> list[PeriodResult]:
        return [r for r in self.results if r.status == BackfillStatus.FAILED]

    def counts(self) -> dict[str, int]:
        return {
            "total": len(self.results),
            "stored": self.stored,
            "empty": sum(1 for r in self.results if r.empty),
            "skipped": self.skipped,
            "failed": self.failed,
            "pending": self.pending,
        }

    def summary_lines(self) -> list[str]:
        counts = self.counts()
        lines = [
            "Backfill summary" + (" (dry run)" if self.dry_run else ""),
            f"  periods processed: {counts['total']}",
            f"  stored:  {counts['stored']} (empty: {counts['empty']})",
            f"  skipped: {counts['skipped']}",
            f"  failed:  {counts['failed']}",
        ]
        if self.dry_run:
            lines.append(f"  would fetch: {counts['pending']}")
        if self.failures:
            lines.append("Failures:")
            for r in self.failures:
                kind = r.error_kind.value if r.error_kind else "unknown"
                lines.append(f"  - {r.label()} reason={kind}: {r.reason or ''}".rstrip())
        return lines


class BackfillOrchestrator:
    def __init__(
        self,
        session: Session,
        fetchers: Mapping[str, ResilientFetcher],
        *,
        today: Optional[date] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        policy: Optional[FreshnessPolicy] = None,
        claims: Optional[ClaimRegistry] = None,
    ):
        self.session = session
        self.fetchers = fetchers
        self.store = CacheStore(session, today=today, clock=clock)
        self.policy = policy or FreshnessPolicy(clock=clock)
        self.claims = claims or ClaimRegistry(session, clock=clock, sleep=sleep)
        self._clock = clock
        self._sleep = sleep
        self._fetch_calls = 0

    # ------------------------------------------------------------------ #
    def load_clients(self, client_ids: Optional[Iterable[int]] = None) -> list[Client]:
        stmt = select(Client).where(Client.is_active.is_(True)).order_by(Client.id)
        if client_ids:
            stmt = stmt.where(Client.id.in_(list(client_ids)))
        try:
            clients = list(self.session.execute(stmt).scalars())
        except SQLAlchemyError as exc:
            raise BackfillSetupError(f"Could not load clients: {exc}") from exc
        if not clients:
            raise BackfillSetupError("No active clients to backfill")
        return clients

    def run(self, options: BackfillOptions) -> BackfillReport:
        unknown = [p for p in options.platforms if p not in self.fetchers]
        if unknown:
            raise BackfillSetupError(f"No fetcher configured for platform(s): {', '.join(unknown)}")

        clients = self.load_clients(options.client_ids)
        periods = past_periods(
            options.period_type,
            options.periods,
            include_current=options.include_current,
            today=self.store.today,
        )
        report = BackfillReport(started_at=self._clock(), dry_run=options.dry_run)
        self._fetch_calls = 0

        logger.info(
            "Backfill started",
            clients=len(clients),
            platforms=list(options.platforms),
            period_type=options.period_type.value,
            periods=len(periods),
            dry_run=options.dry_run,
            skip_existing=options.skip_existing,
            force_refresh=options.force_refresh,
        )

        for client in clients:
            for platform in options.platforms:
                auth_failed = False
                for period in periods:
                    result = self._process(client, platform, period, options, auth_failed=auth_failed)
                    if result.error_kind == ErrorKind.AUTH and result.status == BackfillStatus.FAILED:
                        auth_failed = True
                    report.results.append(result)

        report.finished_at = self._clock()
        log_business_event(
            "backfill_completed",
            {
                **report.counts(),
                "dry_run": options.dry_run,
                "period_type": options.period_type.value,
                "elapsed": format_elapsed(report.started_at, report.finished_at),
            },
        )
        return report

    # ------------------------------------------------------------------ #
    def _process(
        self,
        client: Client,
        platform: str,
        period: Period,
        options: BackfillOptions,
        *,
        auth_failed: bool,
    ) -> PeriodResult:
        key = SummaryKey(client.id, platform, period.type, period.id)
        result = PeriodResult(
            client_id=client.id,
            client_name=client.name,
            platform=platform,
            period_type=period.type,
            period_id=period.id,
        )

        account_id = client.account_id_for(platform)
        if not account_id:
            return self._skip(result, "no account id configured", ErrorKind.MISSING_ACCOUNT)
        if auth_failed:
            return self._skip(result, "earlier auth error for this client/platform", ErrorKind.AUTH)

        status = classify(period, self.store.today)
        if status == PeriodStatus.CURRENT and not options.force_refresh:
            return self._skip(result, "period not complete")

        try:
            existing = self.store.get(key)
            freshness = self.policy.evaluate(existing, status, force_refresh=options.force_refresh)
        except SQLAlchemyError as exc:
            self.session.rollback()
            return self._fail(result, ErrorKind.PERSISTENCE, str(exc))
        if options.skip_existing and freshness.usable:
            return self._skip(result, f"existing entry is {freshness.decision.value.lower()}")

        if options.dry_run:
            result.reason = "dry_run"
            logger.info("Would fetch period", key=key.label(), decision=freshness.decision.value)
            return result

        try:
            claimed = self.claims.acquire(key)
        except SQLAlchemyError as exc:
            self.session.rollback()
            return self._fail(result, ErrorKind.PERSISTENCE, str(exc))
        if not claimed:
            return self._skip(result, "rebuild claimed by another worker")
        try:
            return self._fetch_and_store(key, period, account_id, result)
        except Exception as exc:
            # aggregation or provenance blew up; only this period fails
            self.session.rollback()
            logger.error("Unexpected error while storing period", key=key.label(), exc_info=True)
            return self._fail(result, ErrorKind.UNEXPECTED, f"{type(exc).__name__}: {exc}")
        finally:
            self._release(key)

    def _fetch_and_store(self, key: SummaryKey, period: Period, account_id: str, result: PeriodResult) -> PeriodResult:
        fetcher = self.fetchers[key.platform]
        if self._fetch_calls:
            self._sleep(float(BACKFILL_SETTINGS["fetch_delay_seconds"]))
        self._fetch_calls += 1

        result.status = BackfillStatus.FETCHING
        logger.info("Fetching period", key=key.label(), start=period.start_date.isoformat(), end=period.end_date.isoformat())
        outcome = fetcher.fetch(
            account_id,
            period.start_date,
            period.end_date,
            time_increment=int(BACKFILL_SETTINGS["time_increment"]),
            with_account_insights=True,
        )
        result.attempts = outcome.attempts
        if not outcome.success:
            return self._fail(result, outcome.error_kind or ErrorKind.TRANSPORT, outcome.error_message)

        data_source, extra = fetcher.provenance(DataSource.API_BACKFILL, account_id, period.start_date, period.end_date)
        summary = summarize(
            outcome.rows,
            data_source=data_source,
            last_updated=self._clock(),
            account_insights=outcome.account_insights,
            **extra,
        )
        try:
            self.store.set(key, summary)
        except SQLAlchemyError as exc:
            return self._fail(result, ErrorKind.PERSISTENCE, str(exc))

        result.status = BackfillStatus.STORED
        result.data_source = summary.data_source
        result.total_spend = summary.total_spend
        result.empty = summary.data_source == DataSource.API_EMPTY.value
        logger.info(
            "Period stored",
            key=key.label(),
            data_source=summary.data_source,
            total_spend=summary.total_spend,
            campaigns=len(summary.campaign_data),
            empty=result.empty,
        )
        return result

    def _release(self, key: SummaryKey) -> None:
        try:
            self.claims.release(key)
        except SQLAlchemyError as exc:
            # The claim expires on its own after claim_ttl_seconds
            self.session.rollback()
            logger.warning("Could not release rebuild claim", key=key.label(), error=str(exc))

    def _skip(self, result: PeriodResult, reason: str, kind: Optional[ErrorKind] = None) -> PeriodResult:
        result.status = BackfillStatus.SKIPPED
        result.reason = reason
        result.error_kind = kind
        logger.debug("Period skipped", period=result.label(), reason=reason)
        return result

    def _fail(self, result: PeriodResult, kind: ErrorKind, message: Optional[str]) -> PeriodResult:
        result.status = BackfillStatus.FAILED
        result.error_kind = kind
        result.reason = message
        logger.error("Period failed", period=result.label(), error_kind=kind.value, error=message)
        return result


__all__ = [
    "BackfillSetupError",
    "BackfillOptions",
    "PeriodResult",
    "BackfillReport",
    "BackfillOrchestrator",
]
