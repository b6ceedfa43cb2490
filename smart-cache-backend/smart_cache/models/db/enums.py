"""Central Enum definitions for core domain states.

These replace scattered string literals so DB models, schemas and services
agree on period types, provenance tags, backfill states and severities.
"""
from __future__ import annotations
import enum


class PeriodType(str, enum.Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class PeriodStatus(str, enum.Enum):
    CURRENT = "current"
    HISTORICAL = "historical"


class AdPlatform(str, enum.Enum):
    META = "meta"
    GOOGLE = "google"


class DataSource(str, enum.Enum):
    API_LIVE = "api_live"
    API_BACKFILL = "api_backfill"
    API_EMPTY = "api_empty"
    HISTORICAL_SIMULATION = "historical_simulation"
    SMART_CACHE_ARCHIVE = "smart_cache_archive"

# ------------------------ Cache / Backfill Enums ------------------------ #

class FreshnessDecision(str, enum.Enum):
    FRESH = "FRESH"            # current entry younger than TTL
    VALID = "VALID"            # historical entry holding good data
    STALE = "STALE"            # current entry older than TTL
    INVALID = "INVALID"        # historical entry failing the good-data predicate
    MISSING = "MISSING"
    FORCED = "FORCED"          # caller or config demands a rebuild


class BackfillStatus(str, enum.Enum):
    PENDING = "PENDING"
    SKIPPED = "SKIPPED"
    FETCHING = "FETCHING"
    STORED = "STORED"
    FAILED = "FAILED"


class ErrorKind(str, enum.Enum):
    AUTH = "auth_error"
    RATE_LIMIT = "rate_limited"
    TRANSPORT = "transport_error"
    CIRCUIT_OPEN = "circuit_open"
    PERSISTENCE = "persistence_error"
    CLAIM_TIMEOUT = "claim_timeout"
    MISSING_ACCOUNT = "missing_account"
    UNEXPECTED = "unexpected_error"

# --------------------------- Reconciliation ---------------------------- #

class ViewSource(str, enum.Enum):
    REPORT = "report"
    DATABASE = "database"
    CACHE = "cache"


class Severity(str, enum.Enum):
    MATCH = "MATCH"
    WARNING = "WARNING"
    DISCREPANCY_HIGH = "DISCREPANCY-HIGH"
    DISCREPANCY_CRITICAL = "DISCREPANCY-CRITICAL"


class ConsistencyRating(str, enum.Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"

__all__ = [
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
