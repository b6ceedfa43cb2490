"""
Versioned aggregate summary schema.

The stored payload is a closed union tagged by ``data_source``; every variant
shares the metric fields of ``SummaryMetrics`` and the spend invariant
(campaign breakdown spend equals ``total_spend`` within one cent) is checked
whenever any variant is constructed or read back from storage.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from smart_cache.config import RECONCILIATION_SETTINGS
from smart_cache.models.db.enums import DataSource, PeriodType
from smart_cache.utils.metrics import safe_div
from .platform import CampaignRow

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class SummaryKey:
    """Natural key of a summary / cache entry."""
    client_id: int
    platform: str
    period_type: PeriodType
    period_id: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "period_type", PeriodType(self.period_type))

    def label(self) -> str:
        return f"{self.client_id}:{self.platform}:{self.period_type.value}:{self.period_id}"

    def columns(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "platform": self.platform,
            "period_type": self.period_type.value,
            "period_id": self.period_id,
        }


class FunnelTotals(BaseModel):
    click_to_call: int = 0
    email_contacts: int = 0
    booking_step_1: int = 0
    booking_step_2: int = 0
    booking_step_3: int = 0
    reservations: int = 0
    reservation_value: float = 0.0


class SummaryMetrics(BaseModel):
    """Totals, derived ratios and funnel for one period (no identity/provenance)."""
    total_spend: float = 0.0
    total_impressions: int = 0
    total_clicks: int = 0
    total_conversions: int = 0
    average_ctr: float = 0.0
    average_cpc: float = 0.0
    funnel: FunnelTotals = Field(default_factory=FunnelTotals)
    roas: float = 0.0
    cost_per_reservation: float = 0.0
    campaign_data: list[CampaignRow] = Field(default_factory=list)

    @model_validator(mode="after")
    def _spend_matches_breakdown(self) -> "SummaryMetrics":
        limit = float(RECONCILIATION_SETTINGS["spend_invariant_abs"])
        campaign_spend = sum(row.spend for row in self.campaign_data)
        if abs(campaign_spend - self.total_spend) >= limit:
            raise ValueError(
                f"campaign spend {campaign_spend:.2f} does not match total_spend {self.total_spend:.2f}"
            )
        return self

    @property
    def cpa(self) -> float:
        return safe_div(self.total_spend, self.total_conversions)

    def metric_values(self) -> dict[str, float]:
        """Flat metric map compared by the reconciler."""
        values = {
            "spend": self.total_spend,
            "impressions": float(self.total_impressions),
            "clicks": float(self.total_clicks),
            "conversions": float(self.total_conversions),
            "ctr": self.average_ctr,
            "cpc": self.average_cpc,
            "cpa": self.cpa,
        }
        values.update({k: float(v) for k, v in self.funnel.model_dump().items()})
        return values


class _StoredSummary(SummaryMetrics):
    schema_version: Literal[1] = SCHEMA_VERSION
    last_updated: datetime


class LiveSummary(_StoredSummary):
    data_source: Literal["api_live"] = "api_live"


class BackfillSummary(_StoredSummary):
    data_source: Literal["api_backfill"] = "api_backfill"


class EmptySummary(_StoredSummary):
    """Zero-valued summary stored when the platform reported no activity."""
    data_source: Literal["api_empty"] = "api_empty"

    @model_validator(mode="after")
    def _must_be_empty(self) -> "EmptySummary":
        if self.campaign_data or self.total_spend or self.total_impressions:
            raise ValueError("api_empty summaries carry no campaigns and no spend")
        return self


class SimulatedSummary(_StoredSummary):
    data_source: Literal["historical_simulation"] = "historical_simulation"
    simulation_seed: Optional[int] = None


class ArchivedSummary(_StoredSummary):
    """Current-period cache entry archived once its period elapsed."""
    data_source: Literal["smart_cache_archive"] = "smart_cache_archive"
    archived_from: datetime


AggregateSummary = Annotated[
    Union[LiveSummary, BackfillSummary, EmptySummary, SimulatedSummary, ArchivedSummary],
    Field(discriminator="data_source"),
]

_SUMMARY_ADAPTER: TypeAdapter[AggregateSummary] = TypeAdapter(AggregateSummary)


def build_summary(
    metrics: SummaryMetrics,
    *,
    data_source: DataSource | str,
    last_updated: datetime,
    **extra: Any,
) -> AggregateSummary:
    """Attach provenance to aggregator output, producing the tagged variant."""
    payload = metrics.model_dump()
    payload.update(extra)
    payload["data_source"] = DataSource(data_source).value
    payload["last_updated"] = last_updated
    payload["schema_version"] = SCHEMA_VERSION
    return _SUMMARY_ADAPTER.validate_python(payload)


def parse_summary(payload: dict[str, Any]) -> AggregateSummary:
    return _SUMMARY_ADAPTER.validate_python(payload)


def dump_summary(summary: SummaryMetrics) -> dict[str, Any]:
    return summary.model_dump(mode="json")


__all__ = [
    "SCHEMA_VERSION",
    "SummaryKey",
    "FunnelTotals",
    "SummaryMetrics",
    "LiveSummary",
    "BackfillSummary",
    "EmptySummary",
    "SimulatedSummary",
    "ArchivedSummary",
    "AggregateSummary",
    "build_summary",
    "parse_summary",
    "dump_summary",
]
