"""Reconciliation of report / database / cache views of one period.

The report view (a fresh fetch + aggregate) is the source of truth. Pairs are
compared metric by metric and a mismatching pair takes the severity of its
pairing:

* report vs database -> DISCREPANCY-CRITICAL
* report vs cache    -> DISCREPANCY-HIGH
* database vs cache  -> WARNING

A metric mismatches when ``|a-b| / max(a, b, 1)`` exceeds the tolerance;
two zeros always match. Results are reporting only, nothing is repaired.
"""
from __future__ import annotations

import time
from datetime import date, datetime
from typing import Callable, Iterable, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from smart_cache.config import RECONCILIATION_SETTINGS
from smart_cache.models.db.clients import Client
from smart_cache.models.db.enums import ConsistencyRating, DataSource, PeriodType, Severity, ViewSource
from smart_cache.models.schemas.reconciliation import (
    AuditReport,
    ClientAudit,
    DiscrepancyRecord,
    PairComparison,
    PeriodReconciliation,
)
from smart_cache.models.schemas.summary import SummaryKey, SummaryMetrics
from smart_cache.services.aggregator import summarize
from smart_cache.services.cache_store import CacheStore
from smart_cache.services.fetcher import ResilientFetcher
from smart_cache.services.integrity import check_summary_integrity
from smart_cache.services.periods import Period, past_periods
from smart_cache.utils import get_logger, log_business_event, log_performance
from smart_cache.utils.metrics import relative_diff
from smart_cache.utils.time import utc_now

logger = get_logger(__name__)

PAIR_SEVERITY: dict[tuple[ViewSource, ViewSource], Severity] = {
    (ViewSource.REPORT, ViewSource.DATABASE): Severity.DISCREPANCY_CRITICAL,
    (ViewSource.REPORT, ViewSource.CACHE): Severity.DISCREPANCY_HIGH,
    (ViewSource.DATABASE, ViewSource.CACHE): Severity.WARNING,
}


def _tolerance(tolerance: Optional[float]) -> float:
    return float(tolerance if tolerance is not None else RECONCILIATION_SETTINGS["tolerance_pct"])


def compare_pair(
    a: SummaryMetrics,
    b: SummaryMetrics,
    source_a: ViewSource,
    source_b: ViewSource,
    *,
    tolerance: Optional[float] = None,
) -> PairComparison:
    tol = _tolerance(tolerance)
    severity = PAIR_SEVERITY[(source_a, source_b)]
    values_a = a.metric_values()
    values_b = b.metric_values()

    records: list[DiscrepancyRecord] = []
    for metric, value_a in values_a.items():
        value_b = values_b[metric]
        if value_a == 0 and value_b == 0:
            continue
        diff = relative_diff(value_a, value_b)
        if diff > tol:
            records.append(
                DiscrepancyRecord(
                    metric=metric,
                    value_a=value_a,
                    value_b=value_b,
                    source_a=source_a,
                    source_b=source_b,
                    percent_diff=round(diff, 6),
                    severity=severity,
                    message=f"{source_a.value} {metric}={value_a:g} vs {source_b.value} {metric}={value_b:g} ({diff:.2%})",
                )
            )
    return PairComparison(
        source_a=source_a,
        source_b=source_b,
        severity=severity if records else Severity.MATCH,
        discrepancies=records,
    )


def rate(severities: Iterable[Severity]) -> ConsistencyRating:
    """Consistency rating from pair-level severities.

    Any critical -> POOR; any high or more than ``fair_warning_count``
    warnings -> FAIR; some warnings -> GOOD; otherwise EXCELLENT.
    """
    severities = list(severities)
    warnings = severities.count(Severity.WARNING)
    if Severity.DISCREPANCY_CRITICAL in severities:
        return ConsistencyRating.POOR
    if Severity.DISCREPANCY_HIGH in severities or warnings > int(RECONCILIATION_SETTINGS["fair_warning_count"]):
        return ConsistencyRating.FAIR
    if warnings:
        return ConsistencyRating.GOOD
    return ConsistencyRating.EXCELLENT


def _pair_severities(period: PeriodReconciliation) -> list[Severity]:
    severities = [pair.severity for pair in period.pairs if pair.severity != Severity.MATCH]
    if ViewSource.REPORT not in period.views_present:
        severities.append(Severity.WARNING)
    return severities


def reconcile(
    key: SummaryKey,
    report: Optional[SummaryMetrics],
    database: Optional[SummaryMetrics],
    cache: Optional[SummaryMetrics],
    *,
    tolerance: Optional[float] = None,
    missing_reason: Optional[str] = None,
) -> PeriodReconciliation:
    """Compare the available views of one (client, platform, period)."""
    views = {ViewSource.REPORT: report, ViewSource.DATABASE: database, ViewSource.CACHE: cache}
    present = [source for source, view in views.items() if view is not None]
    result = PeriodReconciliation(
        client_id=key.client_id,
        platform=key.platform,
        period_type=key.period_type,
        period_id=key.period_id,
        views_present=present,
        rating=ConsistencyRating.EXCELLENT,
    )

    if report is None:
        message = f"No report data for period {key.period_id}; missing source of truth"
        if missing_reason:
            message = f"{message} ({missing_reason})"
        result.records.append(
            DiscrepancyRecord(
                metric="source_of_truth",
                source_a=ViewSource.REPORT,
                severity=Severity.WARNING,
                message=message,
            )
        )
        result.rating = rate(_pair_severities(result))
        return result

    for (source_a, source_b) in PAIR_SEVERITY:
        view_a, view_b = views[source_a], views[source_b]
        if view_a is None or view_b is None:
            continue
        pair = compare_pair(view_a, view_b, source_a, source_b, tolerance=tolerance)
        result.pairs.append(pair)
        result.records.extend(pair.discrepancies)

    result.rating = rate(_pair_severities(result))
    return result


class Reconciler:
    """Assembles the three views per period from storage + a live fetch."""

    def __init__(
        self,
        session: Session,
        fetchers: Mapping[str, ResilientFetcher],
        *,
        today: Optional[date] = None,
        clock: Callable[[], datetime] = utc_now,
        tolerance: Optional[float] = None,
    ):
        self.session = session
        self.fetchers = fetchers
        self.store = CacheStore(session, today=today, clock=clock)
        self.tolerance = _tolerance(tolerance)
        self._clock = clock

    def _report_view(self, client: Client, platform: str, period: Period) -> tuple[Optional[SummaryMetrics], Optional[str]]:
        account_id = client.account_id_for(platform)
        fetcher = self.fetchers.get(platform)
        if not account_id or fetcher is None:
            return None, f"no {platform} account configured"
        outcome = fetcher.fetch(account_id, period.start_date, period.end_date, with_account_insights=True)
        if not outcome.success:
            kind = outcome.error_kind.value if outcome.error_kind else "unknown"
            logger.warning(
                "Report fetch failed during audit",
                client_id=client.id,
                platform=platform,
                period_id=period.id,
                error_kind=kind,
            )
            return None, f"fetch failed: {kind}"
        report = summarize(
            outcome.rows,
            data_source=DataSource.API_LIVE,
            last_updated=self._clock(),
            account_insights=outcome.account_insights,
        )
        return report, None

    def audit_period(self, client: Client, platform: str, period: Period) -> PeriodReconciliation:
        key = SummaryKey(client.id, platform, period.type, period.id)
        report, missing_reason = self._report_view(client, platform, period)
        database = self.store.get_summary(key)
        cache = self.store.get_cached(key)
        return reconcile(
            key,
            report,
            database.summary if database else None,
            cache.summary if cache else None,
            tolerance=self.tolerance,
            missing_reason=missing_reason,
        )

    def audit_client(
        self,
        client: Client,
        platform: str,
        period_type: PeriodType | str = PeriodType.MONTHLY,
        periods: int = 3,
        *,
        include_current: bool = True,
    ) -> ClientAudit:
        # include_current replaces the oldest period so ``periods`` stays the total
        historical = periods - 1 if include_current else periods
        targets = past_periods(period_type, max(historical, 0), include_current=include_current, today=self.store.today)
        results = [self.audit_period(client, platform, period) for period in targets]

        severities = [s for r in results for s in _pair_severities(r)]
        audit = ClientAudit(
            client_id=client.id,
            client_name=client.name,
            platform=platform,
            periods=results,
            critical_count=severities.count(Severity.DISCREPANCY_CRITICAL),
            high_count=severities.count(Severity.DISCREPANCY_HIGH),
            warning_count=severities.count(Severity.WARNING),
            rating=rate(severities),
        )
        logger.info(
            "Client audit complete",
            client_id=client.id,
            platform=platform,
            periods=len(results),
            rating=audit.rating.value,
        )
        return audit

    def audit(
        self,
        *,
        client_ids: Optional[Sequence[int]] = None,
        platforms: Sequence[str] = ("meta",),
        period_type: PeriodType | str = PeriodType.MONTHLY,
        periods: int = 3,
        include_current: bool = True,
        with_integrity: bool = True,
    ) -> AuditReport:
        started = time.perf_counter()
        stmt = select(Client).where(Client.is_active.is_(True)).order_by(Client.id)
        if client_ids:
            stmt = stmt.where(Client.id.in_(list(client_ids)))
        clients = list(self.session.execute(stmt).scalars())

        report = AuditReport(generated_at=self._clock(), tolerance_pct=self.tolerance)
        for client in clients:
            for platform in platforms:
                report.clients.append(
                    self.audit_client(client, platform, period_type, periods, include_current=include_current)
                )
        if with_integrity:
            report.system_issues.extend(check_summary_integrity(self.session, clock=self._clock))

        log_performance("reconciliation_audit", (time.perf_counter() - started) * 1000, {"clients": len(clients)})
        log_business_event(
            "reconciliation_completed",
            {
                "clients": len(clients),
                "records": len(report.all_records()),
                "system_issues": len(report.system_issues),
                "ratings": {f"{c.client_id}:{c.platform}": c.rating.value for c in report.clients},
            },
        )
        return report


__all__ = ["PAIR_SEVERITY", "compare_pair", "rate", "reconcile", "Reconciler"]
