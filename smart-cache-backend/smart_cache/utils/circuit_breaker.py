"""In-memory circuit breaker for ad platform adapters (process-local).

One breaker instance is owned by each ResilientFetcher; state is tracked per
platform name so a failing Google Ads account does not block Meta calls.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict

from smart_cache.config import CIRCUIT_BREAKER
from smart_cache.utils.time import utc_now

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


@dataclass
class BreakerState:
    failures: int = 0
    state: str = CLOSED
    opened_at: datetime | None = None
    half_open_probes: int = 0


class CircuitBreaker:
    def __init__(self, *, clock: Callable[[], datetime] = utc_now):
        self._states: Dict[str, BreakerState] = {}
        self._clock = clock

    def _get(self, platform: str) -> BreakerState:
        return self._states.setdefault(platform, BreakerState())

    def allow_call(self, platform: str) -> tuple[bool, str | None]:
        st = self._get(platform)
        if st.state == CLOSED:
            return True, None
        if st.state == OPEN:
            cooldown = float(CIRCUIT_BREAKER["open_cooldown_seconds"])
            if st.opened_at and self._clock() - st.opened_at >= timedelta(seconds=cooldown):
                st.state = HALF_OPEN
                st.half_open_probes = 0
            else:
                return False, "circuit_open"
        # HALF_OPEN: let a bounded number of probes through
        if st.half_open_probes >= int(CIRCUIT_BREAKER["half_open_probe_count"]):
            return False, "half_open_probe_exhausted"
        st.half_open_probes += 1
        return True, None

    def record_success(self, platform: str) -> None:
        st = self._get(platform)
        st.failures = 0
        if st.state in {OPEN, HALF_OPEN}:
            st.state = CLOSED
            st.opened_at = None
            st.half_open_probes = 0

    def record_failure(self, platform: str) -> None:
        st = self._get(platform)
        st.failures += 1
        if st.state == CLOSED and st.failures >= int(CIRCUIT_BREAKER["failure_threshold"]):
            st.state = OPEN
            st.opened_at = self._clock()
        elif st.state == HALF_OPEN:
            st.state = OPEN
            st.opened_at = self._clock()

    def state_of(self, platform: str) -> str:
        return self._get(platform).state

    def snapshot(self) -> dict[str, dict[str, object]]:
        return {
            k: {
                "failures": v.failures,
                "state": v.state,
                "opened_at": v.opened_at.isoformat() if v.opened_at else None,
                "half_open_probes": v.half_open_probes,
            }
            for k, v in self._states.items()
        }


__all__ = ["CircuitBreaker", "BreakerState", "CLOSED", "OPEN", "HALF_OPEN"]
