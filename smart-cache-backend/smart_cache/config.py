"""Core application configuration & tunable cache / reconciliation rules.

All business rules that may evolve (cache TTLs, backfill throttle, tolerance
thresholds, retry/circuit thresholds, single-flight claim timing, retention)
are centralized here so they can be adjusted without diving into service
logic. Values are module constants seeded from environment variables; tests
monkeypatch dict entries directly.
"""
from __future__ import annotations

import os


def _env_float(name: str, default: float) -> float:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return float(raw)


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in {"1", "true", "yes", "on"}


# SQLite by default; production points at PostgreSQL (install the `postgres` extra).
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./smart_cache.db")

SUPPORTED_PLATFORMS: tuple[str, ...] = ("meta", "google")

# ------------------------------- Smart Cache ------------------------------ #
CACHE_SETTINGS: dict[str, object] = {
	# Max age of a current-period entry before it must be rebuilt.
	"ttl_current_seconds": {
		"default": _env_float("CACHE_TTL_CURRENT_SECONDS", 3 * 60 * 60),
		"meta": _env_float("META_CACHE_TTL_SECONDS", 3 * 60 * 60),
		"google": _env_float("GOOGLE_CACHE_TTL_SECONDS", 3 * 60 * 60),
	},
	# When true, historical entries are rebuilt on every pass instead of being
	# kept once they hold good data.
	"force_historical_refresh": _env_bool("FORCE_HISTORICAL_REFRESH", False),
	# Cache rows untouched for this long are reported by the integrity check.
	"stale_entry_days": 7,
}

# -------------------------------- Backfill -------------------------------- #
BACKFILL_SETTINGS: dict[str, float | int] = {
	# Throttle between successive fetcher calls (external API rate limit).
	"fetch_delay_seconds": _env_float("BACKFILL_FETCH_DELAY_SECONDS", 0.2),
	"default_periods": 12,
	# time_increment passed to the fetcher; 0 = one row per campaign for the whole range
	"time_increment": 0,
}

# ----------------------------- Reconciliation ----------------------------- #
RECONCILIATION_SETTINGS: dict[str, float | int] = {
	# Relative difference above this is a discrepancy for that metric.
	"tolerance_pct": 0.01,  # 1%
	# |sum(campaign spend) - total_spend| must stay below this (currency units).
	"spend_invariant_abs": 0.01,
	# Consistency rating: more warnings than this => FAIR.
	"fair_warning_count": 3,
}

# ----------------------------- Circuit Breaker ---------------------------- #
CIRCUIT_BREAKER: dict[str, int | float] = {
	"failure_threshold": 5,          # Consecutive failures before OPEN
	"open_cooldown_seconds": 300,    # Stay OPEN for 5 minutes
	"half_open_probe_count": 3,      # Probes allowed in HALF_OPEN
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float] = {
	"base_seconds": 1,
	"factor": 2,          # Exponential factor
	"max_seconds": 60,
	"max_attempts": 3,
	"jitter_pct": 0.10,   # +/-10% jitter
}

# ------------------------------ Single Flight ----------------------------- #
SINGLE_FLIGHT_SETTINGS: dict[str, float] = {
	# A claim older than this is considered abandoned (crashed rebuild).
	"claim_ttl_seconds": 300,
	# How long a caller waits on another process's claim before giving up.
	"wait_timeout_seconds": 30,
	"poll_interval_seconds": 0.5,
}

# -------------------------------- Retention ------------------------------- #
RETENTION_SETTINGS: dict[str, int] = {
	# 13 past months + the current one, so year-over-year views always resolve.
	"keep_months": 14,
}

__all__ = [
	"SUPPORTED_PLATFORMS",
	"CACHE_SETTINGS",
	"BACKFILL_SETTINGS",
	"RECONCILIATION_SETTINGS",
	"CIRCUIT_BREAKER",
	"BACKOFF_POLICY",
	"SINGLE_FLIGHT_SETTINGS",
	"RETENTION_SETTINGS",
]
