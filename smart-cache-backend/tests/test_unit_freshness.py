from datetime import datetime, timedelta, timezone

from smart_cache.models.db.enums import FreshnessDecision, PeriodStatus
from smart_cache.models.schemas.platform import CampaignRow
from smart_cache.models.schemas.summary import SummaryKey, SummaryMetrics, build_summary
from smart_cache.services.aggregator import aggregate
from smart_cache.services.cache_store import CacheEntry
from smart_cache.services.freshness import FreshnessPolicy, has_good_data, ttl_seconds

NOW = datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)
THREE_HOURS = timedelta(hours=3)


def _entry(period_id: str, last_updated: datetime, *, spend: float = 120.0, scope=PeriodStatus.CURRENT) -> CacheEntry:
    rows = [CampaignRow(campaign_id="c1", spend=spend, impressions=1000, clicks=10)] if spend else []
    metrics = aggregate(rows)
    source = "api_live" if rows else "api_empty"
    summary = build_summary(metrics, data_source=source, last_updated=last_updated)
    return CacheEntry(
        key=SummaryKey(7, "meta", "monthly", period_id),
        summary=summary,
        last_updated=last_updated,
        scope=scope,
    )


def test_ttl_is_three_hours_per_platform():
    assert ttl_seconds("meta") == 3 * 3600
    assert ttl_seconds("google") == 3 * 3600
    assert ttl_seconds("unknown") == 3 * 3600


def test_current_entry_fresh_just_inside_ttl():
    policy = FreshnessPolicy(clock=lambda: NOW)
    entry = _entry("2024-03-01", NOW - THREE_HOURS + timedelta(seconds=1))
    result = policy.evaluate(entry, PeriodStatus.CURRENT)
    assert result.decision == FreshnessDecision.FRESH
    assert result.usable


def test_current_entry_stale_at_and_after_ttl():
    policy = FreshnessPolicy(clock=lambda: NOW)
    assert policy.evaluate(_entry("2024-03-01", NOW - THREE_HOURS), PeriodStatus.CURRENT).decision == FreshnessDecision.STALE
    result = policy.evaluate(_entry("2024-03-01", NOW - THREE_HOURS - timedelta(seconds=1)), PeriodStatus.CURRENT)
    assert result.decision == FreshnessDecision.STALE
    assert not result.usable
    assert result.age_seconds == 3 * 3600 + 1


def test_historical_entry_with_good_data_never_expires():
    policy = FreshnessPolicy(clock=lambda: NOW, force_historical_refresh=False)
    entry = _entry("2023-01-01", NOW - timedelta(days=400), scope=PeriodStatus.HISTORICAL)
    result = policy.evaluate(entry, PeriodStatus.HISTORICAL)
    assert result.decision == FreshnessDecision.VALID
    assert policy.is_usable(entry, PeriodStatus.HISTORICAL)


def test_historical_entry_without_data_is_invalid():
    policy = FreshnessPolicy(clock=lambda: NOW, force_historical_refresh=False)
    entry = _entry("2023-01-01", NOW, spend=0, scope=PeriodStatus.HISTORICAL)
    assert policy.evaluate(entry, PeriodStatus.HISTORICAL).decision == FreshnessDecision.INVALID


def test_missing_entry():
    policy = FreshnessPolicy(clock=lambda: NOW)
    result = policy.evaluate(None, PeriodStatus.CURRENT)
    assert result.decision == FreshnessDecision.MISSING
    assert result.age_seconds is None


def test_force_refresh_overrides_everything():
    policy = FreshnessPolicy(clock=lambda: NOW)
    entry = _entry("2024-03-01", NOW)
    assert policy.evaluate(entry, PeriodStatus.CURRENT, force_refresh=True).decision == FreshnessDecision.FORCED
    assert policy.evaluate(None, PeriodStatus.HISTORICAL, force_refresh=True).decision == FreshnessDecision.FORCED


def test_force_historical_refresh_setting_only_touches_historical():
    policy = FreshnessPolicy(clock=lambda: NOW, force_historical_refresh=True)
    historical = _entry("2023-01-01", NOW, scope=PeriodStatus.HISTORICAL)
    assert policy.evaluate(historical, PeriodStatus.HISTORICAL).decision == FreshnessDecision.FORCED
    current = _entry("2024-03-01", NOW)
    assert policy.evaluate(current, PeriodStatus.CURRENT).decision == FreshnessDecision.FRESH


def test_good_data_predicate():
    assert not has_good_data(None)
    assert not has_good_data(SummaryMetrics())
    impressions_only = SummaryMetrics(
        total_impressions=500,
        campaign_data=[CampaignRow(campaign_id="c1", impressions=500)],
    )
    assert has_good_data(impressions_only)
