"""
Simulated Meta (Facebook / Instagram) Marketing API adapter.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from smart_cache.models.schemas.platform import AccountInsights
from smart_cache.utils.metrics import safe_div
from .base import SimulatedAdPlatform


class MetaAdsIntegration(SimulatedAdPlatform):
    platform = "meta"
    base_monthly = {
        "spend": 3250.0,
        "impressions": 100000.0,
        "clicks": 1600.0,
        "conversions": 60.0,
    }
    campaign_names = (
        "Brand - Hotel stays",
        "Retargeting - Booking engine visitors",
        "Prospecting - Weekend packages",
    )

    def get_account_insights(self, account_id: str, start_date: date, end_date: date) -> Optional[AccountInsights]:
        """Account-level insight row, as the Ads Manager headline shows it."""
        rows = self.get_campaign_insights(account_id, start_date, end_date)
        if not rows:
            return None
        spend = round(sum(r.spend for r in rows), 2)
        impressions = sum(r.impressions for r in rows)
        clicks = sum(r.clicks for r in rows)
        return AccountInsights(
            ctr=round(safe_div(clicks, impressions) * 100, 4),
            cpc=round(safe_div(spend, clicks), 4),
            spend=spend,
            impressions=impressions,
            clicks=clicks,
        )
