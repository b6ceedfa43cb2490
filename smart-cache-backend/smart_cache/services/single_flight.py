"""Single-flight guard for cache rebuilds.

Two layers:

* ``InProcessSingleFlight`` coalesces concurrent callers in one process so
  they share a single rebuild and its result.
* ``ClaimRegistry`` keeps one ``cache_claims`` row per key being rebuilt so
  separate processes (API workers, the backfill CLI) do not fetch the same
  key twice. Claims expire after ``claim_ttl_seconds`` and a crashed
  owner's claim is taken over with a conditional update.
"""
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Generic, Optional, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from smart_cache.config import SINGLE_FLIGHT_SETTINGS
from smart_cache.models.db.cache_claims import CacheClaim
from smart_cache.models.schemas.summary import SummaryKey
from smart_cache.utils import get_logger
from smart_cache.utils.time import ensure_aware, utc_now

logger = get_logger(__name__)

T = TypeVar("T")


class _Call:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: object = None
        self.error: Optional[BaseException] = None


class InProcessSingleFlight:
    """Runs ``fn`` once per key among concurrent callers in this process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: Dict[str, _Call] = {}

    def do(self, key: str, fn: Callable[[], T]) -> tuple[T, bool]:
        """Return ``(result, shared)``; ``shared`` is True for callers that waited."""
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = _Call()
                self._calls[key] = call
        assert call is not None

        if not leader:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result, True  # type: ignore[return-value]

        try:
            call.result = fn()
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                self._calls.pop(key, None)
            call.done.set()
        return call.result, False  # type: ignore[return-value]

    def in_flight(self) -> list[str]:
        with self._lock:
            return list(self._calls)


class ClaimRegistry:
    """Cross-process rebuild claims backed by the ``cache_claims`` table."""

    def __init__(
        self,
        session: Session,
        *,
        owner: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self.owner = owner or uuid.uuid4().hex
        self._clock = clock
        self._sleep = sleep

    def _ttl(self) -> timedelta:
        return timedelta(seconds=float(SINGLE_FLIGHT_SETTINGS["claim_ttl_seconds"]))

    def acquire(self, key: SummaryKey) -> bool:
        now = self._clock()
        claim = CacheClaim(
            **key.columns(),
            owner=self.owner,
            claimed_at=now,
            expires_at=now + self._ttl(),
        )
        try:
            self.session.add(claim)
            self.session.commit()
            return True
        except IntegrityError:
            self.session.rollback()

        # Existing claim: take it over only if it has expired
        result = self.session.execute(
            update(CacheClaim)
            .filter_by(**key.columns())
            .where(CacheClaim.expires_at < now)
            .values(owner=self.owner, claimed_at=now, expires_at=now + self._ttl())
        )
        self.session.commit()
        if result.rowcount == 1:
            logger.warning("Took over expired rebuild claim", key=key.label(), owner=self.owner)
            return True
        return False

    def release(self, key: SummaryKey) -> None:
        self.session.execute(
            delete(CacheClaim).filter_by(**key.columns()).where(CacheClaim.owner == self.owner)
        )
        self.session.commit()

    def holder(self, key: SummaryKey) -> Optional[CacheClaim]:
        """Live (unexpired) claim for ``key``, if any."""
        claim = self.session.execute(select(CacheClaim).filter_by(**key.columns())).scalar_one_or_none()
        if claim is None or ensure_aware(claim.expires_at) < self._clock():
            return None
        return claim

    def wait_for_release(self, key: SummaryKey, timeout: Optional[float] = None) -> bool:
        """Poll until no live claim remains; False on timeout."""
        timeout = float(timeout if timeout is not None else SINGLE_FLIGHT_SETTINGS["wait_timeout_seconds"])
        interval = float(SINGLE_FLIGHT_SETTINGS["poll_interval_seconds"])
        waited = 0.0
        while True:
            # Drop identity-map state so each poll sees the other process's commit
            self.session.expire_all()
            if self.holder(key) is None:
                return True
            if waited >= timeout:
                return False
            self._sleep(interval)
            waited += interval


@dataclass
class FlightResult(Generic[T]):
    value: Optional[T] = None
    shared: bool = False
    rebuilt_elsewhere: bool = False
    timed_out: bool = False


class SingleFlightGuard:
    """Combines in-process coalescing with the claim row.

    ``run`` returns ``FlightResult(value=...)`` when this caller (or a
    coalesced peer in this process) ran ``rebuild``. When another process
    held the claim, ``value`` is None and ``rebuilt_elsewhere`` or
    ``timed_out`` tells the caller whether to re-read storage.
    """

    def __init__(
        self,
        claims: ClaimRegistry,
        *,
        local: Optional[InProcessSingleFlight] = None,
    ):
        self.claims = claims
        self.local = local or InProcessSingleFlight()

    def run(self, key: SummaryKey, rebuild: Callable[[], T]) -> FlightResult[T]:
        result, shared = self.local.do(key.label(), lambda: self._with_claim(key, rebuild))
        if shared:
            return FlightResult(
                value=result.value,
                shared=True,
                rebuilt_elsewhere=result.rebuilt_elsewhere,
                timed_out=result.timed_out,
            )
        return result

    def _with_claim(self, key: SummaryKey, rebuild: Callable[[], T]) -> FlightResult[T]:
        if self.claims.acquire(key):
            try:
                return FlightResult(value=rebuild())
            finally:
                self.claims.release(key)

        logger.info("Rebuild already claimed, waiting", key=key.label())
        if self.claims.wait_for_release(key):
            return FlightResult(rebuilt_elsewhere=True)
        logger.warning("Timed out waiting for rebuild claim", key=key.label())
        return FlightResult(timed_out=True)


__all__ = ["InProcessSingleFlight", "ClaimRegistry", "SingleFlightGuard", "FlightResult"]
