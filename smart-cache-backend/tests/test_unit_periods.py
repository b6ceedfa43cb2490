from datetime import date

import pytest

from smart_cache.models.db.enums import PeriodStatus, PeriodType
from smart_cache.services.periods import (
    classify,
    current_period,
    is_complete,
    monthly_period,
    past_periods,
    period_for_date,
    period_from_id,
    previous_period,
    week_start,
    weekly_period,
)

WEDNESDAY = date(2024, 3, 13)


def test_current_week_runs_monday_to_sunday():
    period = current_period(PeriodType.WEEKLY, WEDNESDAY)
    assert period.id == "2024-03-11"
    assert period.start_date == date(2024, 3, 11)
    assert period.end_date == date(2024, 3, 17)
    assert period.days == 7
    assert period.contains(WEDNESDAY)


def test_current_month_is_calendar_month():
    period = current_period("monthly", WEDNESDAY)
    assert period.id == "2024-03-01"
    assert (period.start_date, period.end_date) == (date(2024, 3, 1), date(2024, 3, 31))


def test_sunday_belongs_to_preceding_monday():
    assert week_start(date(2024, 3, 17)) == date(2024, 3, 11)
    assert week_start(date(2024, 3, 11)) == date(2024, 3, 11)
    assert week_start(date(2024, 3, 18)) == date(2024, 3, 18)


def test_week_spanning_year_boundary():
    period = period_for_date(PeriodType.WEEKLY, date(2025, 1, 1))
    assert period.start_date == date(2024, 12, 30)
    assert period.end_date == date(2025, 1, 5)
    assert period.id == "2024-12-30"


def test_leap_february():
    assert monthly_period(2024, 2).end_date == date(2024, 2, 29)
    assert monthly_period(2023, 2).end_date == date(2023, 2, 28)


def test_previous_period_wraps_year():
    jan = monthly_period(2024, 1)
    assert previous_period(jan).id == "2023-12-01"
    first_week = weekly_period(date(2024, 1, 1))
    assert previous_period(first_week).id == "2023-12-25"


def test_classify_historical_only_after_end_date():
    last_week = weekly_period(date(2024, 3, 4))
    assert classify(last_week, WEDNESDAY) == PeriodStatus.HISTORICAL
    this_week = weekly_period(WEDNESDAY)
    assert classify(this_week, WEDNESDAY) == PeriodStatus.CURRENT
    # a period ending today is still in progress
    assert classify(this_week, date(2024, 3, 17)) == PeriodStatus.CURRENT
    assert is_complete(this_week, date(2024, 3, 18))


def test_past_periods_most_recent_first():
    periods = past_periods(PeriodType.MONTHLY, 3, today=WEDNESDAY)
    assert [p.id for p in periods] == ["2024-02-01", "2024-01-01", "2023-12-01"]
    assert all(is_complete(p, WEDNESDAY) for p in periods)


def test_past_periods_include_current_prepends():
    periods = past_periods(PeriodType.WEEKLY, 2, include_current=True, today=WEDNESDAY)
    assert [p.id for p in periods] == ["2024-03-11", "2024-03-04", "2024-02-26"]


def test_past_periods_rejects_negative_count():
    with pytest.raises(ValueError):
        past_periods(PeriodType.MONTHLY, -1, today=WEDNESDAY)


def test_period_from_id_round_trip_and_validation():
    assert period_from_id("weekly", "2024-03-11") == weekly_period(date(2024, 3, 11))
    assert period_from_id(PeriodType.MONTHLY, "2024-02-01").end_date == date(2024, 2, 29)
    with pytest.raises(ValueError):
        period_from_id("weekly", "2024-03-12")  # Tuesday
    with pytest.raises(ValueError):
        period_from_id("monthly", "2024-03-02")
    with pytest.raises(ValueError):
        period_from_id("monthly", "march")
