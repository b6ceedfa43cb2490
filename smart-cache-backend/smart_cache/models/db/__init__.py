from .clients import Client
from .campaign_summaries import CampaignSummary
from .current_period_cache import CurrentPeriodCache
from .cache_claims import CacheClaim
from .enums import (
    PeriodType,
    PeriodStatus,
    AdPlatform,
    DataSource,
    FreshnessDecision,
    BackfillStatus,
    ErrorKind,
    ViewSource,
    Severity,
    ConsistencyRating,
)

__all__ = [
    "Client",
    "CampaignSummary",
    "CurrentPeriodCache",
    "CacheClaim",
    "PeriodType",
    "PeriodStatus",
    "AdPlatform",
    "DataSource",
    "FreshnessDecision",
    "BackfillStatus",
    "ErrorKind",
    "ViewSource",
    "Severity",
    "ConsistencyRating",
]
