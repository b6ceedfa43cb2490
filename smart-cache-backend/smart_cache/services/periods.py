"""Period classification: weekly / monthly boundaries and current vs historical.

Pure functions with no I/O. Every boundary is built from explicit
``date(year, month, day)`` components or ``date`` arithmetic, never from
parsing timestamps, so no UTC offset can shift a period by a day.

Weekly periods run Monday..Sunday inclusive, monthly periods run over the
calendar month; a period's ``id`` is its first day in ``YYYY-MM-DD`` form.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Optional

from smart_cache.models.db.enums import PeriodStatus, PeriodType


@dataclass(frozen=True)
class Period:
    type: PeriodType
    id: str
    start_date: date
    end_date: date

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "id": self.id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }


def week_start(day: date) -> date:
    """Monday of the week containing ``day`` (Sunday belongs to the week before)."""
    weekday = day.isoweekday()  # Monday=1 .. Sunday=7
    offset = 6 if weekday == 7 else weekday - 1
    return day - timedelta(days=offset)


def weekly_period(start: date) -> Period:
    monday = week_start(start)
    return Period(PeriodType.WEEKLY, monday.isoformat(), monday, monday + timedelta(days=6))


def monthly_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    last = date(year, month, calendar.monthrange(year, month)[1])
    return Period(PeriodType.MONTHLY, first.isoformat(), first, last)


def period_for_date(period_type: PeriodType | str, day: date) -> Period:
    """Period of ``period_type`` that contains ``day``."""
    if PeriodType(period_type) == PeriodType.WEEKLY:
        return weekly_period(day)
    return monthly_period(day.year, day.month)


def current_period(period_type: PeriodType | str, today: Optional[date] = None) -> Period:
    return period_for_date(period_type, today or date.today())


def previous_period(period: Period) -> Period:
    if period.type == PeriodType.WEEKLY:
        return weekly_period(period.start_date - timedelta(days=7))
    year, month = period.start_date.year, period.start_date.month
    if month == 1:
        return monthly_period(year - 1, 12)
    return monthly_period(year, month - 1)


def past_periods(
    period_type: PeriodType | str,
    count: int,
    include_current: bool = False,
    today: Optional[date] = None,
) -> list[Period]:
    """Most-recent-first list of ``count`` completed periods.

    Walking starts at the most recently completed period; the in-progress
    period is prepended only when ``include_current`` is set.
    """
    if count < 0:
        raise ValueError("count must be >= 0")
    current = current_period(period_type, today)
    periods: list[Period] = [current] if include_current else []
    cursor = previous_period(current)
    for _ in range(count):
        periods.append(cursor)
        cursor = previous_period(cursor)
    return periods


def classify(period: Period, today: Optional[date] = None) -> PeriodStatus:
    """HISTORICAL iff the period ended strictly before ``today``."""
    if period.end_date < (today or date.today()):
        return PeriodStatus.HISTORICAL
    return PeriodStatus.CURRENT


def is_complete(period: Period, today: Optional[date] = None) -> bool:
    return classify(period, today) == PeriodStatus.HISTORICAL


def period_from_id(period_type: PeriodType | str, period_id: str) -> Period:
    """Rebuild a Period from its stored key; rejects ids that are not a period start."""
    period_type = PeriodType(period_type)
    try:
        year, month, day = (int(part) for part in period_id.split("-"))
        start = date(year, month, day)
    except ValueError as exc:
        raise ValueError(f"Invalid period id '{period_id}'") from exc
    if period_type == PeriodType.WEEKLY:
        if start.isoweekday() != 1:
            raise ValueError(f"Weekly period id '{period_id}' is not a Monday")
        return weekly_period(start)
    if start.day != 1:
        raise ValueError(f"Monthly period id '{period_id}' is not the first of a month")
    return monthly_period(start.year, start.month)


__all__ = [
    "Period",
    "week_start",
    "weekly_period",
    "monthly_period",
    "period_for_date",
    "current_period",
    "previous_period",
    "past_periods",
    "classify",
    "is_complete",
    "period_from_id",
]
