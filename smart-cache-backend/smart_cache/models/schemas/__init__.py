from .base import ResponseBase
from .platform import CampaignRow, AccountInsights, FUNNEL_FIELDS
from .summary import (
    SummaryKey,
    FunnelTotals,
    SummaryMetrics,
    LiveSummary,
    BackfillSummary,
    EmptySummary,
    SimulatedSummary,
    ArchivedSummary,
    AggregateSummary,
    build_summary,
    parse_summary,
    dump_summary,
)
from .reconciliation import (
    DiscrepancyRecord,
    PairComparison,
    PeriodReconciliation,
    SystemIssue,
    ClientAudit,
    AuditReport,
    AuditRequest,
)

__all__ = [
    # Base
    "ResponseBase",

    # Platform adapter output
    "CampaignRow",
    "AccountInsights",
    "FUNNEL_FIELDS",

    # Summaries
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

    # Reconciliation
    "DiscrepancyRecord",
    "PairComparison",
    "PeriodReconciliation",
    "SystemIssue",
    "ClientAudit",
    "AuditReport",
    "AuditRequest",
]
