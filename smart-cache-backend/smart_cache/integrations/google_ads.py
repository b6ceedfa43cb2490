"""
Simulated Google Ads adapter.

Google accounts of the same hotels typically run at ~70% of the Meta budget
with search-heavy click-through rates.
"""
from __future__ import annotations

from .base import SimulatedAdPlatform


class GoogleAdsIntegration(SimulatedAdPlatform):
    platform = "google"
    base_monthly = {
        "spend": 3250.0 * 0.7,
        "impressions": 60000.0,
        "clicks": 2100.0,
        "conversions": 55.0,
    }
    campaign_names = (
        "Search - Brand",
        "Search - Hotel near sea",
        "Performance Max - Direct bookings",
    )
