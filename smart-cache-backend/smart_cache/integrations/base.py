"""
Shared base for simulated ad platform adapters.

Real SDK adapters are registered by deployment code; these simulated ones
generate plausible hotel-campaign data so the backfill, read-through and
audit flows can run end to end without credentials. Output is seeded by
(platform, account, date range) so repeated fetches return identical rows.
"""
from __future__ import annotations

import hashlib
import random
from datetime import date
from typing import Dict, List, Optional, Sequence

from smart_cache.models.db.enums import DataSource
from smart_cache.models.schemas.platform import AccountInsights, CampaignRow
from smart_cache.services.aggregator import distribute_pro_rata
from smart_cache.services.fetcher import AuthError, TransportError
from smart_cache.utils import get_logger

# Share of conversions that reach each funnel step
FUNNEL_RATIOS: Dict[str, float] = {
    "click_to_call": 0.4,
    "email_contacts": 0.3,
    "booking_step_1": 0.6,
    "booking_step_2": 0.5,
    "booking_step_3": 0.7,
    "reservations": 0.8,
}
AVERAGE_RESERVATION_VALUE = 450.0  # PLN

# Rough seasonality for hotel bookings, indexed by month
SEASONAL_FACTORS: Dict[int, float] = {
    1: 0.8, 2: 0.85, 3: 0.95, 4: 1.05, 5: 1.15, 6: 1.3,
    7: 1.4, 8: 1.35, 9: 1.1, 10: 0.95, 11: 0.85, 12: 1.0,
}


class SimulatedAdPlatform:
    """Deterministic stand-in for a platform's campaign insights endpoint."""

    platform: str = ""
    simulated = True
    data_source = DataSource.HISTORICAL_SIMULATION

    # Monthly account baseline; subclasses override
    base_monthly: Dict[str, float] = {
        "spend": 3000.0,
        "impressions": 100000.0,
        "clicks": 1600.0,
        "conversions": 60.0,
    }
    campaign_names: Sequence[str] = ()

    def __init__(self, *, failure_rate: float = 0.0, empty_accounts: Optional[set[str]] = None):
        self.failure_rate = failure_rate
        self.empty_accounts = empty_accounts or set()
        self.logger = get_logger(f"integration.{self.platform}")

    def seed_for(self, account_id: str, start_date: date, end_date: date) -> int:
        raw = f"{self.platform}:{account_id}:{start_date.isoformat()}:{end_date.isoformat()}"
        return int(hashlib.sha256(raw.encode("utf-8")).hexdigest()[:12], 16)

    def _rng(self, account_id: str, start_date: date, end_date: date) -> random.Random:
        return random.Random(self.seed_for(account_id, start_date, end_date))

    def _check_account(self, account_id: str) -> None:
        if not account_id:
            raise AuthError(f"{self.platform}: no access to an empty account id")

    def get_campaign_insights(
        self,
        account_id: str,
        start_date: date,
        end_date: date,
        time_increment: int = 0,
    ) -> List[CampaignRow]:
        self._check_account(account_id)
        rng = self._rng(account_id, start_date, end_date)
        if self.failure_rate and rng.random() < self.failure_rate:
            raise TransportError(f"{self.platform}: simulated upstream failure")
        if account_id in self.empty_accounts:
            return []

        days = (end_date - start_date).days + 1
        multiplier = SEASONAL_FACTORS[start_date.month] * rng.uniform(0.8, 1.2) * days / 30.0
        totals = {name: value * multiplier for name, value in self.base_monthly.items()}

        names = list(self.campaign_names) or [f"{self.platform} campaign"]
        weights = [rng.uniform(0.15, 0.55) for _ in names]
        spend = distribute_pro_rata(round(totals["spend"], 2), weights, ndigits=2)
        impressions = [int(v) for v in distribute_pro_rata(round(totals["impressions"]), weights, ndigits=0)]
        clicks = [int(v) for v in distribute_pro_rata(round(totals["clicks"]), weights, ndigits=0)]
        conversions = distribute_pro_rata(totals["conversions"], weights)

        rows: List[CampaignRow] = []
        for idx, name in enumerate(names):
            funnel = {step: conversions[idx] * ratio for step, ratio in FUNNEL_RATIOS.items()}
            reported_ctr = round(clicks[idx] / impressions[idx] * 100, 2) if impressions[idx] else None
            rows.append(
                CampaignRow(
                    campaign_id=f"{account_id}-{idx + 1:03d}",
                    campaign_name=name,
                    status="ACTIVE",
                    spend=spend[idx],
                    impressions=impressions[idx],
                    clicks=clicks[idx],
                    conversions=conversions[idx],
                    ctr=reported_ctr,
                    cpc=round(spend[idx] / clicks[idx], 2) if clicks[idx] else None,
                    reservation_value=round(funnel["reservations"] * AVERAGE_RESERVATION_VALUE, 2),
                    **funnel,
                )
            )

        self.logger.debug(
            "Simulated campaign insights generated",
            account_id=account_id,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            campaigns=len(rows),
        )
        return rows


__all__ = ["SimulatedAdPlatform", "FUNNEL_RATIOS", "AVERAGE_RESERVATION_VALUE", "SEASONAL_FACTORS"]
