"""
Pydantic schemas for reconciliation audits.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from smart_cache.models.db.enums import (
    AdPlatform,
    ConsistencyRating,
    PeriodType,
    Severity,
    ViewSource,
)

class DiscrepancyRecord(BaseModel):
    """One metric disagreement between two views (or a missing source of truth)."""
    metric: str = Field(description="spend|impressions|clicks|conversions|ctr|cpc|cpa|<funnel counter>|source_of_truth")
    value_a: Optional[float] = None
    value_b: Optional[float] = None
    source_a: ViewSource
    source_b: Optional[ViewSource] = None
    percent_diff: Optional[float] = Field(None, description="Relative difference |a-b|/max(a,b,1), as a fraction")
    severity: Severity
    message: Optional[str] = None

class PairComparison(BaseModel):
    """Result of comparing every metric for one pair of views."""
    source_a: ViewSource
    source_b: ViewSource
    severity: Severity = Field(description="MATCH when every metric is within tolerance")
    discrepancies: List[DiscrepancyRecord] = Field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.severity == Severity.MATCH

class PeriodReconciliation(BaseModel):
    client_id: int
    platform: str
    period_type: PeriodType
    period_id: str
    views_present: List[ViewSource] = Field(default_factory=list)
    pairs: List[PairComparison] = Field(default_factory=list)
    records: List[DiscrepancyRecord] = Field(default_factory=list)
    rating: ConsistencyRating

class SystemIssue(BaseModel):
    """Storage-level finding not tied to one pairwise comparison."""
    type: str
    severity: Severity
    description: str
    client_id: Optional[int] = None
    period_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

class ClientAudit(BaseModel):
    client_id: int
    client_name: Optional[str] = None
    platform: str
    periods: List[PeriodReconciliation] = Field(default_factory=list)
    critical_count: int = 0
    high_count: int = 0
    warning_count: int = 0
    rating: ConsistencyRating

class AuditReport(BaseModel):
    generated_at: datetime
    tolerance_pct: float
    clients: List[ClientAudit] = Field(default_factory=list)
    system_issues: List[SystemIssue] = Field(default_factory=list)

    def all_records(self) -> List[DiscrepancyRecord]:
        return [r for c in self.clients for p in c.periods for r in p.records]

class AuditRequest(BaseModel):
    """Body for triggering an audit over the API."""
    client_id: int
    platform: AdPlatform = AdPlatform.META
    period_type: PeriodType = PeriodType.MONTHLY
    periods: int = Field(3, ge=1, le=24, description="Number of periods to audit, most recent first")
    include_current: bool = Field(True, description="Audit the in-progress period as well")
