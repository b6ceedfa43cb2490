"""Aggregation of raw campaign rows into one period summary.

Totals are plain sums. Ratios follow a fixed preference order so the stored
value matches what the ad platform's own UI shows:

1. account-level insight values, verbatim, when the adapter supplies them;
2. click-weighted average of the per-row reported ctr / cpc
   (``sum(ctr * clicks) / sum(clicks)``), or their plain mean if no row
   has clicks;
3. naive recompute (``clicks / impressions * 100``, ``spend / clicks``) only
   when no row reports a ratio at all.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from smart_cache.models.db.enums import DataSource
from smart_cache.models.schemas.platform import AccountInsights, CampaignRow, FUNNEL_FIELDS
from smart_cache.models.schemas.summary import AggregateSummary, FunnelTotals, SummaryMetrics, build_summary
from smart_cache.utils.metrics import safe_div, weighted_average


def _reported_ratio(rows: Sequence[CampaignRow], attr: str) -> Optional[float]:
    reported = [(getattr(row, attr), row.clicks) for row in rows if getattr(row, attr) is not None]
    if not reported:
        return None
    weighted = weighted_average(reported)
    if weighted is not None:
        return weighted
    # Ratios reported but no clicks anywhere: plain mean
    return sum(value for value, _ in reported) / len(reported)


def _funnel_totals(rows: Sequence[CampaignRow]) -> FunnelTotals:
    sums = {name: sum(getattr(row, name) for row in rows) for name in FUNNEL_FIELDS}
    counters = {name: int(round(value)) for name, value in sums.items() if name != "reservation_value"}
    return FunnelTotals(reservation_value=round(sums["reservation_value"], 2), **counters)


def aggregate(
    rows: Iterable[CampaignRow],
    account_insights: Optional[AccountInsights] = None,
) -> SummaryMetrics:
    """Reduce campaign rows for one period into ``SummaryMetrics``.

    An empty row list yields an all-zero summary.
    """
    rows = list(rows)
    total_spend = round(sum(row.spend for row in rows), 2)
    total_impressions = sum(row.impressions for row in rows)
    total_clicks = sum(row.clicks for row in rows)
    total_conversions = int(round(sum(row.conversions for row in rows)))

    if account_insights is not None:
        average_ctr = account_insights.ctr
        average_cpc = account_insights.cpc
    else:
        reported_ctr = _reported_ratio(rows, "ctr")
        reported_cpc = _reported_ratio(rows, "cpc")
        if reported_ctr is None and reported_cpc is None:
            average_ctr = safe_div(total_clicks, total_impressions) * 100
            average_cpc = safe_div(total_spend, total_clicks)
        else:
            average_ctr = reported_ctr if reported_ctr is not None else safe_div(total_clicks, total_impressions) * 100
            average_cpc = reported_cpc if reported_cpc is not None else safe_div(total_spend, total_clicks)

    funnel = _funnel_totals(rows)
    return SummaryMetrics(
        total_spend=total_spend,
        total_impressions=total_impressions,
        total_clicks=total_clicks,
        total_conversions=total_conversions,
        average_ctr=average_ctr,
        average_cpc=average_cpc,
        funnel=funnel,
        roas=safe_div(funnel.reservation_value, total_spend),
        cost_per_reservation=safe_div(total_spend, funnel.reservations),
        campaign_data=rows,
    )


def summarize(
    rows: Iterable[CampaignRow],
    *,
    data_source: DataSource | str,
    last_updated: datetime,
    account_insights: Optional[AccountInsights] = None,
    **extra: Any,
) -> AggregateSummary:
    """Aggregate and tag with provenance; an empty fetch becomes ``api_empty``."""
    metrics = aggregate(rows, account_insights)
    if not metrics.campaign_data:
        return build_summary(metrics, data_source=DataSource.API_EMPTY, last_updated=last_updated)
    return build_summary(metrics, data_source=data_source, last_updated=last_updated, **extra)


def distribute_pro_rata(total: float, weights: Sequence[float], *, ndigits: Optional[int] = None) -> list[float]:
    """Split ``total`` across ``weights`` proportionally.

    Zero total weight spreads evenly. With ``ndigits`` the shares are rounded
    and the rounding remainder lands on the largest share, so the parts
    always sum back to ``total``.
    """
    if not weights:
        return []
    weight_sum = float(sum(weights))
    if weight_sum <= 0:
        shares = [total / len(weights)] * len(weights)
    else:
        shares = [total * float(w) / weight_sum for w in weights]
    if ndigits is None:
        return shares
    rounded = [round(share, ndigits) for share in shares]
    remainder = round(total - sum(rounded), ndigits)
    if remainder:
        largest = max(range(len(rounded)), key=lambda i: rounded[i])
        rounded[largest] = round(rounded[largest] + remainder, ndigits)
    return rounded


__all__ = ["aggregate", "summarize", "distribute_pro_rata"]
