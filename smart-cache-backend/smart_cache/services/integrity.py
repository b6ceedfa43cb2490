"""Storage-level integrity checks reported alongside reconciliation audits."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from smart_cache.config import CACHE_SETTINGS, RECONCILIATION_SETTINGS
from smart_cache.models.db.campaign_summaries import CampaignSummary
from smart_cache.models.db.current_period_cache import CurrentPeriodCache
from smart_cache.models.db.enums import Severity
from smart_cache.models.schemas.reconciliation import SystemIssue
from smart_cache.utils import get_logger
from smart_cache.utils.time import ensure_aware, utc_now

logger = get_logger(__name__)


def _breakdown_spend(payload: dict | None) -> float | None:
    if not payload or not isinstance(payload.get("campaign_data"), list):
        return None
    return sum(float(row.get("spend") or 0) for row in payload["campaign_data"])


def check_summary_integrity(session: Session, *, clock: Callable[[], datetime] = utc_now) -> list[SystemIssue]:
    """Flag summaries whose breakdown disagrees with ``total_spend`` and stale cache rows.

    Reads raw rows rather than parsed payloads: a row breaking the spend
    invariant would be rejected by the schema before it could be reported.
    """
    issues: list[SystemIssue] = []
    limit = float(RECONCILIATION_SETTINGS["spend_invariant_abs"])

    for row in session.execute(select(CampaignSummary).order_by(CampaignSummary.id)).scalars():
        calculated = _breakdown_spend(row.summary_payload)
        if calculated is None:
            continue
        stored = float(row.total_spend or 0)
        if abs(calculated - stored) >= limit:
            issues.append(
                SystemIssue(
                    type="SUMMARY_CALCULATION_ERROR",
                    severity=Severity.DISCREPANCY_HIGH,
                    description="Campaign summary total_spend does not match its campaign breakdown",
                    client_id=row.client_id,
                    period_id=row.period_id,
                    details={
                        "summary_id": row.id,
                        "platform": row.platform,
                        "period_type": row.period_type,
                        "calculated_spend": round(calculated, 2),
                        "stored_spend": round(stored, 2),
                    },
                )
            )

    stale_days = int(CACHE_SETTINGS["stale_entry_days"])  # type: ignore[arg-type]
    cutoff = clock() - timedelta(days=stale_days)
    stale = [
        row
        for row in session.execute(select(CurrentPeriodCache).order_by(CurrentPeriodCache.id)).scalars()
        if ensure_aware(row.last_updated) < cutoff
    ]
    if stale:
        issues.append(
            SystemIssue(
                type="STALE_CACHE_ENTRIES",
                severity=Severity.WARNING,
                description=f"Found {len(stale)} cache entries not updated for {stale_days} days",
                details={
                    "count": len(stale),
                    "entries": [f"{r.client_id}:{r.platform}:{r.period_type}:{r.period_id}" for r in stale],
                },
            )
        )

    if issues:
        logger.warning("Storage integrity issues found", count=len(issues))
    return issues


__all__ = ["check_summary_integrity"]
