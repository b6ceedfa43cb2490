"""Keyed summary storage over the two relational tables.

``CacheStore`` routes a ``SummaryKey`` by period status: keys of the
in-progress period live in ``current_period_cache``, completed periods in
``campaign_summaries``. Every write is one ``INSERT ... ON CONFLICT DO
UPDATE`` keyed by ``(client_id, platform, period_type, period_id)``, so
writing the same summary twice leaves exactly one row and readers never
observe a half-written entry.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Optional

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smart_cache.models.db.campaign_summaries import CampaignSummary
from smart_cache.models.db.current_period_cache import CurrentPeriodCache
from smart_cache.models.db.enums import PeriodStatus
from smart_cache.models.schemas.summary import (
    AggregateSummary,
    SummaryKey,
    dump_summary,
    parse_summary,
)
from smart_cache.services.periods import Period, classify, period_from_id
from smart_cache.utils import get_logger
from smart_cache.utils.time import ensure_aware, utc_now

logger = get_logger(__name__)

_KEY_COLUMNS = ["client_id", "platform", "period_type", "period_id"]


@dataclass
class CacheEntry:
    key: SummaryKey
    summary: AggregateSummary
    last_updated: datetime
    scope: PeriodStatus


def _dialect_insert(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:  # pragma: no cover
        raise NotImplementedError(f"Upsert not supported for dialect '{dialect}'")
    return insert


def _summary_columns(key: SummaryKey, period: Period, summary: AggregateSummary) -> dict[str, Any]:
    return {
        **key.columns(),
        "period_start": period.start_date,
        "period_end": period.end_date,
        "total_spend": summary.total_spend,
        "total_impressions": summary.total_impressions,
        "total_clicks": summary.total_clicks,
        "total_conversions": summary.total_conversions,
        "average_ctr": summary.average_ctr,
        "average_cpc": summary.average_cpc,
        "reservations": summary.funnel.reservations,
        "reservation_value": summary.funnel.reservation_value,
        "roas": summary.roas,
        "cost_per_reservation": summary.cost_per_reservation,
        "campaign_count": len(summary.campaign_data),
        "summary_payload": dump_summary(summary),
        "schema_version": summary.schema_version,
        "data_source": summary.data_source,
        "last_updated": summary.last_updated,
    }


def _cache_columns(key: SummaryKey, summary: AggregateSummary) -> dict[str, Any]:
    return {
        **key.columns(),
        "cache_payload": dump_summary(summary),
        "data_source": summary.data_source,
        "last_updated": summary.last_updated,
    }


class CacheStore:
    """Read / upsert access to stored summaries for one session.

    ``today`` pins the date used to decide whether a key is current or
    historical (tests and batch runs pass it explicitly; otherwise the local
    date at call time is used).
    """

    def __init__(
        self,
        session: Session,
        *,
        today: Optional[date] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self._today = today
        self._clock = clock

    @property
    def today(self) -> date:
        return self._today or date.today()

    def scope_of(self, key: SummaryKey) -> PeriodStatus:
        return classify(period_from_id(key.period_type, key.period_id), self.today)

    # ------------------------------------------------------------------ #
    # Contract
    # ------------------------------------------------------------------ #
    def get(self, key: SummaryKey) -> Optional[CacheEntry]:
        if self.scope_of(key) == PeriodStatus.CURRENT:
            return self.get_cached(key)
        return self.get_summary(key)

    def set(self, key: SummaryKey, summary: AggregateSummary) -> None:
        if self.scope_of(key) == PeriodStatus.CURRENT:
            self.put_cached(key, summary)
        else:
            self.put_summary(key, summary)

    # ------------------------------------------------------------------ #
    # campaign_summaries (database view)
    # ------------------------------------------------------------------ #
    def get_summary(self, key: SummaryKey) -> Optional[CacheEntry]:
        row = self.session.execute(
            select(CampaignSummary).filter_by(**key.columns())
        ).scalar_one_or_none()
        if row is None:
            return None
        return self._to_entry(key, row.summary_payload, row.last_updated, PeriodStatus.HISTORICAL)

    def put_summary(self, key: SummaryKey, summary: AggregateSummary) -> None:
        period = period_from_id(key.period_type, key.period_id)
        values = _summary_columns(key, period, summary)
        insert = _dialect_insert(self.session)
        stmt = insert(CampaignSummary).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=_KEY_COLUMNS,
            set_={name: stmt.excluded[name] for name in values if name not in _KEY_COLUMNS},
        )
        self._execute_write(stmt, key, table="campaign_summaries", data_source=summary.data_source)

    def list_summaries(self, client_id: Optional[int] = None) -> list[CampaignSummary]:
        stmt = select(CampaignSummary).order_by(
            CampaignSummary.client_id, CampaignSummary.platform, CampaignSummary.period_start.desc()
        )
        if client_id is not None:
            stmt = stmt.where(CampaignSummary.client_id == client_id)
        return list(self.session.execute(stmt).scalars())

    # ------------------------------------------------------------------ #
    # current_period_cache (cache view)
    # ------------------------------------------------------------------ #
    def get_cached(self, key: SummaryKey) -> Optional[CacheEntry]:
        row = self.session.execute(
            select(CurrentPeriodCache).filter_by(**key.columns())
        ).scalar_one_or_none()
        if row is None:
            return None
        return self._to_entry(key, row.cache_payload, row.last_updated, PeriodStatus.CURRENT)

    def put_cached(self, key: SummaryKey, summary: AggregateSummary) -> None:
        values = _cache_columns(key, summary)
        insert = _dialect_insert(self.session)
        stmt = insert(CurrentPeriodCache).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=_KEY_COLUMNS,
            set_={name: stmt.excluded[name] for name in values if name not in _KEY_COLUMNS},
        )
        self._execute_write(stmt, key, table="current_period_cache", data_source=summary.data_source)

    def delete_cached(self, key: SummaryKey) -> int:
        stmt = delete(CurrentPeriodCache).filter_by(**key.columns())
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return result.rowcount or 0

    def list_cached(self) -> list[CurrentPeriodCache]:
        stmt = select(CurrentPeriodCache).order_by(CurrentPeriodCache.client_id, CurrentPeriodCache.period_id)
        return list(self.session.execute(stmt).scalars())

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _execute_write(self, stmt, key: SummaryKey, *, table: str, data_source: str) -> None:
        try:
            self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(
                "Summary upsert failed",
                table=table,
                key=key.label(),
                error=str(exc),
            )
            raise
        logger.debug("Summary upserted", table=table, key=key.label(), data_source=data_source)

    def _to_entry(
        self,
        key: SummaryKey,
        payload: dict[str, Any],
        last_updated: datetime,
        scope: PeriodStatus,
    ) -> Optional[CacheEntry]:
        try:
            summary = parse_summary(payload)
        except ValidationError as exc:
            # Unreadable payloads are treated as missing so they get rebuilt
            logger.warning(
                "Stored summary failed validation",
                key=key.label(),
                scope=scope.value,
                errors=exc.error_count(),
            )
            return None
        return CacheEntry(key=key, summary=summary, last_updated=ensure_aware(last_updated), scope=scope)


__all__ = ["CacheEntry", "CacheStore"]
