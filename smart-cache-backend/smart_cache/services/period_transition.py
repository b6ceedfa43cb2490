"""Period transition archival and summary retention.

When a week or month ends, its entry in ``current_period_cache`` is moved
into ``campaign_summaries`` (tagged ``smart_cache_archive``) unless a good
summary is already stored, then removed from the cache table.
``cleanup_old_data`` deletes summaries that fall outside the retention
window (13 past months plus the current one by default).
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smart_cache.config import RETENTION_SETTINGS
from smart_cache.models.db.campaign_summaries import CampaignSummary
from smart_cache.models.db.enums import DataSource
from smart_cache.models.schemas.summary import SummaryKey, build_summary
from smart_cache.services.cache_store import CacheStore
from smart_cache.services.freshness import has_good_data
from smart_cache.services.periods import is_complete, period_from_id
from smart_cache.utils import get_logger, log_business_event
from smart_cache.utils.time import utc_now

logger = get_logger(__name__)


def months_back(day: date, months: int) -> date:
    """Same calendar day ``months`` earlier, clamped to the month's end."""
    index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


@dataclass
class TransitionResult:
    archived: int = 0
    kept_existing: int = 0
    removed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class PeriodTransitionService:
    def __init__(
        self,
        session: Session,
        *,
        today: Optional[date] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self.store = CacheStore(session, today=today, clock=clock)
        self._clock = clock

    def archive_expired(self) -> TransitionResult:
        result = TransitionResult()
        today = self.store.today

        keys = [
            SummaryKey(row.client_id, row.platform, row.period_type, row.period_id)
            for row in self.store.list_cached()
        ]
        for key in keys:
            try:
                period = period_from_id(key.period_type, key.period_id)
            except ValueError as exc:
                result.failed += 1
                result.errors.append(f"{key.label()}: {exc}")
                continue
            if not is_complete(period, today):
                continue

            try:
                entry = self.store.get_cached(key)
                if entry is None:
                    result.failed += 1
                    result.errors.append(f"{key.label()}: unreadable cache payload")
                    continue

                existing = self.store.get_summary(key)
                if existing is not None and has_good_data(existing.summary):
                    result.kept_existing += 1
                else:
                    archived = build_summary(
                        entry.summary,
                        data_source=DataSource.SMART_CACHE_ARCHIVE,
                        last_updated=self._clock(),
                        archived_from=entry.last_updated,
                    )
                    self.store.put_summary(key, archived)
                    result.archived += 1

                result.removed += self.store.delete_cached(key)
            except SQLAlchemyError as exc:
                self.session.rollback()
                result.failed += 1
                result.errors.append(f"{key.label()}: {exc}")
                logger.error("Archival failed for cache entry", key=key.label(), error=str(exc))

        log_business_event(
            "period_archived",
            {
                "archived": result.archived,
                "kept_existing": result.kept_existing,
                "removed": result.removed,
                "failed": result.failed,
            },
        )
        return result

    def cleanup_old_data(self, keep_months: Optional[int] = None) -> int:
        """Delete summaries whose period starts before the retention cutoff."""
        keep_months = int(keep_months if keep_months is not None else RETENTION_SETTINGS["keep_months"])
        cutoff = months_back(self.store.today, keep_months)
        try:
            deleted = self.session.execute(
                delete(CampaignSummary).where(CampaignSummary.period_start < cutoff)
            ).rowcount or 0
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.error("Old data cleanup failed", cutoff=cutoff.isoformat(), exc_info=True)
            raise
        logger.info("Old data cleanup completed", cutoff=cutoff.isoformat(), deleted=deleted)
        return deleted


__all__ = ["PeriodTransitionService", "TransitionResult", "months_back"]
