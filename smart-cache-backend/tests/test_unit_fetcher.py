from datetime import date, datetime, timedelta, timezone

from smart_cache.integrations import MetaAdsIntegration, build_resilient_fetchers, get_fetcher
from smart_cache.models.db.enums import DataSource, ErrorKind
from smart_cache.services.fetcher import AuthError, RateLimitError, ResilientFetcher, TransportError
from smart_cache.utils.circuit_breaker import CLOSED, OPEN, CircuitBreaker

import pytest

from conftest import FakeAdapter

FEB_START, FEB_END = date(2024, 2, 1), date(2024, 2, 29)


def _fetcher(adapter, breaker=None):
    sleeps: list[float] = []
    return ResilientFetcher(adapter, breaker=breaker or CircuitBreaker(), sleep=sleeps.append), sleeps


def test_success_returns_rows():
    adapter = FakeAdapter("meta")
    fetcher, sleeps = _fetcher(adapter)
    outcome = fetcher.fetch("1001", FEB_START, FEB_END)
    assert outcome.success
    assert outcome.attempts == 1
    assert len(outcome.rows) == 2
    assert not outcome.empty
    assert sleeps == []
    assert adapter.calls == [("1001", FEB_START, FEB_END)]


def test_rate_limit_retried_with_backoff_then_succeeds():
    adapter = FakeAdapter("meta")
    adapter.queue(RateLimitError(retry_after=5), RateLimitError(retry_after=5))
    fetcher, sleeps = _fetcher(adapter)
    outcome = fetcher.fetch("1001", FEB_START, FEB_END)
    assert outcome.success
    assert outcome.attempts == 3
    assert outcome.rate_limited
    assert len(sleeps) == 2
    # retry_after raises the floor of the computed delay
    assert all(s >= 5 for s in sleeps)


def test_rate_limit_exhausts_attempts():
    adapter = FakeAdapter("meta")
    adapter.queue(*(RateLimitError() for _ in range(3)))
    fetcher, sleeps = _fetcher(adapter)
    outcome = fetcher.fetch("1001", FEB_START, FEB_END)
    assert not outcome.success
    assert outcome.error_kind == ErrorKind.RATE_LIMIT
    assert outcome.attempts == 3
    assert len(sleeps) == 2


def test_auth_error_is_terminal_and_keeps_breaker_closed():
    adapter = FakeAdapter("google")
    adapter.queue(AuthError("token expired"))
    breaker = CircuitBreaker()
    fetcher, sleeps = _fetcher(adapter, breaker)
    outcome = fetcher.fetch("555", FEB_START, FEB_END)
    assert not outcome.success
    assert outcome.error_kind == ErrorKind.AUTH
    assert outcome.error_message == "token expired"
    assert outcome.attempts == 1
    assert sleeps == []
    assert breaker.snapshot()["google"]["failures"] == 0


def test_transport_error_not_retried_and_counts_against_breaker():
    adapter = FakeAdapter("meta")
    adapter.queue(TransportError("connection reset"))
    breaker = CircuitBreaker()
    fetcher, _ = _fetcher(adapter, breaker)
    outcome = fetcher.fetch("1001", FEB_START, FEB_END)
    assert outcome.error_kind == ErrorKind.TRANSPORT
    assert outcome.attempts == 1
    assert breaker.snapshot()["meta"]["failures"] == 1
    assert breaker.state_of("meta") == CLOSED


def test_open_circuit_short_circuits_without_calling_adapter():
    adapter = FakeAdapter("meta")
    breaker = CircuitBreaker()
    for _ in range(5):
        breaker.record_failure("meta")
    assert breaker.state_of("meta") == OPEN
    fetcher, _ = _fetcher(adapter, breaker)
    outcome = fetcher.fetch("1001", FEB_START, FEB_END)
    assert outcome.error_kind == ErrorKind.CIRCUIT_OPEN
    assert adapter.calls == []
    # other platforms are unaffected
    assert breaker.allow_call("google") == (True, None)


def test_empty_result_is_success():
    adapter = FakeAdapter("meta")
    adapter.queue([])
    fetcher, _ = _fetcher(adapter)
    outcome = fetcher.fetch("1001", FEB_START, FEB_END)
    assert outcome.success and outcome.empty


def test_account_insights_fetched_on_request():
    adapter = MetaAdsIntegration()
    fetcher, _ = _fetcher(adapter)
    outcome = fetcher.fetch("1001", FEB_START, FEB_END, with_account_insights=True)
    assert outcome.account_insights is not None
    assert outcome.account_insights.spend == pytest.approx(sum(r.spend for r in outcome.rows))
    assert fetcher.fetch("1001", FEB_START, FEB_END).account_insights is None


def test_provenance_tags_simulated_adapters():
    simulated, _ = _fetcher(MetaAdsIntegration())
    source, extra = simulated.provenance(DataSource.API_BACKFILL, "1001", FEB_START, FEB_END)
    assert source == DataSource.HISTORICAL_SIMULATION
    assert extra["simulation_seed"] == MetaAdsIntegration().seed_for("1001", FEB_START, FEB_END)

    real, _ = _fetcher(FakeAdapter("meta"))
    assert real.provenance(DataSource.API_BACKFILL, "1001", FEB_START, FEB_END) == (DataSource.API_BACKFILL, {})


def test_simulated_adapter_is_deterministic_and_consistent():
    adapter = get_fetcher("google")
    first = adapter.get_campaign_insights("555", FEB_START, FEB_END)
    second = adapter.get_campaign_insights("555", FEB_START, FEB_END)
    assert first == second
    assert len(first) == 3
    with pytest.raises(AuthError):
        adapter.get_campaign_insights("", FEB_START, FEB_END)


def test_registry_rejects_unknown_platform():
    with pytest.raises(ValueError):
        get_fetcher("tiktok")
    fetchers = build_resilient_fetchers(["meta", "google"])
    assert set(fetchers) == {"meta", "google"}
    assert fetchers["meta"].breaker is fetchers["google"].breaker


def test_unexpected_adapter_error_becomes_transport_failure():
    adapter = FakeAdapter("meta")
    adapter.queue(ValueError("malformed insights payload"))
    breaker = CircuitBreaker()
    fetcher, sleeps = _fetcher(adapter, breaker)
    outcome = fetcher.fetch("1001", FEB_START, FEB_END)
    assert not outcome.success
    assert outcome.error_kind == ErrorKind.TRANSPORT
    assert outcome.error_message == "ValueError: malformed insights payload"
    assert sleeps == []
    assert breaker.snapshot()["meta"]["failures"] == 1


def test_auth_errors_during_half_open_close_the_circuit():
    now = [datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)]
    breaker = CircuitBreaker(clock=lambda: now[0])
    for _ in range(5):
        breaker.record_failure("meta")
    now[0] += timedelta(minutes=6)

    adapter = FakeAdapter("meta")
    adapter.queue(AuthError("expired"), AuthError("expired"), AuthError("expired"))
    fetcher, _ = _fetcher(adapter, breaker)
    for account in ("1001", "1002", "1003"):
        assert fetcher.fetch(account, FEB_START, FEB_END).error_kind == ErrorKind.AUTH
    assert breaker.state_of("meta") == CLOSED

    outcome = fetcher.fetch("1004", FEB_START, FEB_END)
    assert outcome.success


def test_rate_limit_retry_stops_once_circuit_opens():
    adapter = FakeAdapter("meta")
    adapter.queue(*(RateLimitError(retry_after=5) for _ in range(3)))
    breaker = CircuitBreaker()
    for _ in range(4):
        breaker.record_failure("meta")
    fetcher, sleeps = _fetcher(adapter, breaker)
    outcome = fetcher.fetch("1001", FEB_START, FEB_END)
    assert outcome.error_kind == ErrorKind.CIRCUIT_OPEN
    assert outcome.rate_limited
    assert outcome.attempts == 1
    assert len(adapter.calls) == 1
    assert sleeps == []
    assert breaker.state_of("meta") == OPEN
