"""Fetcher contract plus the resilient wrapper used by every caller.

Platform adapters implement ``get_campaign_insights`` and raise the typed
errors below. ``ResilientFetcher`` never lets those (or any other adapter
exception) escape: it applies the
per-platform circuit breaker, retries rate limits with exponential backoff
and jitter, and returns a ``FetchOutcome`` carrying an ``ErrorKind``.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from smart_cache.config import BACKOFF_POLICY
from smart_cache.models.db.enums import DataSource, ErrorKind
from smart_cache.models.schemas.platform import AccountInsights, CampaignRow
from smart_cache.utils import get_logger
from smart_cache.utils.backoff import compute_backoff_seconds
from smart_cache.utils.circuit_breaker import CircuitBreaker

logger = get_logger(__name__)


class FetcherError(Exception):
    """Base class for errors raised by platform adapters."""

    kind: ErrorKind = ErrorKind.TRANSPORT


class AuthError(FetcherError):
    """Credentials rejected; retrying the same client/platform is pointless."""

    kind = ErrorKind.AUTH


class RateLimitError(FetcherError):
    kind = ErrorKind.RATE_LIMIT

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class TransportError(FetcherError):
    kind = ErrorKind.TRANSPORT


@runtime_checkable
class Fetcher(Protocol):
    platform: str

    def get_campaign_insights(
        self,
        account_id: str,
        start_date: date,
        end_date: date,
        time_increment: int = 0,
    ) -> list[CampaignRow]:
        ...


@dataclass
class FetchOutcome:
    success: bool
    rows: list[CampaignRow] = field(default_factory=list)
    account_insights: Optional[AccountInsights] = None
    attempts: int = 0
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    rate_limited: bool = False

    @property
    def empty(self) -> bool:
        return self.success and not self.rows


class ResilientFetcher:
    """Wraps one platform adapter with breaker + backoff semantics."""

    def __init__(
        self,
        adapter: Fetcher,
        *,
        breaker: Optional[CircuitBreaker] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: Optional[int] = None,
    ):
        self.adapter = adapter
        self.platform = adapter.platform
        self.breaker = breaker or CircuitBreaker()
        self._sleep = sleep
        self.max_attempts = int(max_attempts or BACKOFF_POLICY["max_attempts"])

    def provenance(
        self,
        default: DataSource,
        account_id: str,
        start_date: date,
        end_date: date,
    ) -> tuple[DataSource, dict[str, Any]]:
        """Data source tag (and extra payload fields) for rows from this adapter."""
        if getattr(self.adapter, "simulated", False):
            seed = self.adapter.seed_for(account_id, start_date, end_date)  # type: ignore[attr-defined]
            return DataSource.HISTORICAL_SIMULATION, {"simulation_seed": seed}
        return default, {}

    def fetch(
        self,
        account_id: str,
        start_date: date,
        end_date: date,
        *,
        time_increment: int = 0,
        with_account_insights: bool = False,
    ) -> FetchOutcome:
        allow, reason = self.breaker.allow_call(self.platform)
        if not allow:
            logger.warning(
                "Platform fetch skipped due to circuit breaker",
                platform=self.platform,
                reason=reason,
            )
            return FetchOutcome(
                success=False,
                error_kind=ErrorKind.CIRCUIT_OPEN,
                error_message=f"Circuit breaker denies call: {reason}",
            )

        attempts = 0
        rate_limited = False
        last_error: Optional[FetcherError] = None

        while attempts < self.max_attempts:
            attempts += 1
            try:
                rows = list(self.adapter.get_campaign_insights(account_id, start_date, end_date, time_increment))
                insights = None
                if with_account_insights and hasattr(self.adapter, "get_account_insights"):
                    insights = self.adapter.get_account_insights(account_id, start_date, end_date)  # type: ignore[attr-defined]
            except AuthError as exc:
                # Terminal for this client only; the platform answered, so a half-open trial call counts as healthy
                self.breaker.record_success(self.platform)
                last_error = exc
                break
            except RateLimitError as exc:
                rate_limited = True
                last_error = exc
                self.breaker.record_failure(self.platform)
                if attempts >= self.max_attempts:
                    break
                allow, reason = self.breaker.allow_call(self.platform)
                if not allow:
                    # the failures recorded above opened the circuit
                    logger.warning("Platform retry abandoned, circuit open", platform=self.platform, attempt=attempts)
                    return FetchOutcome(
                        success=False,
                        attempts=attempts,
                        error_kind=ErrorKind.CIRCUIT_OPEN,
                        error_message=f"Circuit breaker denies retry: {reason}",
                        rate_limited=True,
                    )
                backoff = compute_backoff_seconds(attempts, retry_after=exc.retry_after)
                logger.warning(
                    "Platform fetch retry scheduled",
                    platform=self.platform,
                    attempt=attempts,
                    backoff_seconds=round(backoff, 2),
                    error_code=exc.kind.value,
                )
                self._sleep(backoff)
                continue
            except FetcherError as exc:
                self.breaker.record_failure(self.platform)
                last_error = exc
                break
            except Exception as exc:
                # malformed payloads and client-library errors
                self.breaker.record_failure(self.platform)
                logger.error(
                    "Unexpected adapter error",
                    platform=self.platform,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                last_error = TransportError(f"{type(exc).__name__}: {exc}")
                break

            self.breaker.record_success(self.platform)
            return FetchOutcome(
                success=True,
                rows=rows,
                account_insights=insights,
                attempts=attempts,
                rate_limited=rate_limited,
            )

        return FetchOutcome(
            success=False,
            attempts=attempts,
            error_kind=last_error.kind if last_error else ErrorKind.TRANSPORT,
            error_message=str(last_error) if last_error else None,
            rate_limited=rate_limited,
        )


__all__ = [
    "FetcherError",
    "AuthError",
    "RateLimitError",
    "TransportError",
    "Fetcher",
    "FetchOutcome",
    "ResilientFetcher",
]
