"""Backfill orchestrator against the test database and scripted adapters."""
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

import pytest

from smart_cache.config import BACKFILL_SETTINGS
from smart_cache.models.db import CampaignSummary, CurrentPeriodCache
from smart_cache.models.db.enums import BackfillStatus, ErrorKind
from smart_cache.models.schemas.platform import AccountInsights
from smart_cache.services import backfill as backfill_module
from smart_cache.services.backfill import BackfillOptions, BackfillOrchestrator, BackfillSetupError
from smart_cache.services.fetcher import AuthError, TransportError

from smart_cache.models.schemas.summary import SummaryKey
from smart_cache.services.single_flight import ClaimRegistry

from conftest import TODAY


def _orchestrator(db_session, fake_platforms, sleeps=None):
    return BackfillOrchestrator(
        db_session,
        fake_platforms.fetchers,
        today=TODAY,
        sleep=(sleeps if sleeps is not None else []).append,
    )


def _options(**kwargs) -> BackfillOptions:
    values = {"period_type": "monthly", "periods": 3, "platforms": ("meta",)}
    values.update(kwargs)
    return BackfillOptions(**values)


def _key(result) -> SummaryKey:
    return SummaryKey(result.client_id, result.platform, result.period_type, result.period_id)


def _summary_count(db_session) -> int:
    return db_session.execute(select(func.count()).select_from(CampaignSummary)).scalar_one()


def test_first_run_stores_every_completed_period(db_session, client_factory, fake_platforms):
    c = client_factory()
    sleeps: list[float] = []
    report = _orchestrator(db_session, fake_platforms, sleeps).run(_options())

    assert [r.period_id for r in report.results] == ["2024-02-01", "2024-01-01", "2023-12-01"]
    assert report.stored == 3
    assert all(r.data_source == "api_backfill" for r in report.results)
    assert all(r.total_spend == 200.0 for r in report.results)
    assert _summary_count(db_session) == 3
    # account id is passed without the act_ prefix
    assert {call[0] for call in fake_platforms.meta.calls} == {"1001"}
    # throttle between consecutive fetcher calls only
    assert sleeps == [BACKFILL_SETTINGS["fetch_delay_seconds"]] * 2

    row = db_session.execute(
        select(CampaignSummary).where(CampaignSummary.period_id == "2024-02-01")
    ).scalar_one()
    assert row.client_id == c.id
    assert float(row.total_spend) == 200.0


def test_second_run_is_idempotent(db_session, client_factory, fake_platforms):
    client_factory()
    orchestrator = _orchestrator(db_session, fake_platforms)
    orchestrator.run(_options())
    report = orchestrator.run(_options())

    assert report.skipped == 3
    assert all(r.reason == "existing entry is valid" for r in report.results)
    assert len(fake_platforms.meta.calls) == 3
    assert _summary_count(db_session) == 3


def test_force_refresh_refetches_good_history(db_session, client_factory, fake_platforms):
    client_factory()
    orchestrator = _orchestrator(db_session, fake_platforms)
    orchestrator.run(_options(periods=1))
    report = orchestrator.run(_options(periods=1, force_refresh=True))
    assert report.stored == 1
    assert len(fake_platforms.meta.calls) == 2
    assert _summary_count(db_session) == 1


def test_dry_run_fetches_nothing(db_session, client_factory, fake_platforms):
    client_factory()
    report = _orchestrator(db_session, fake_platforms).run(_options(dry_run=True))
    assert report.pending == 3
    assert all(r.reason == "dry_run" for r in report.results)
    assert fake_platforms.meta.calls == []
    assert _summary_count(db_session) == 0
    assert "  would fetch: 3" in report.summary_lines()


def test_auth_failure_skips_rest_of_client_platform(db_session, client_factory, fake_platforms):
    client_factory()
    fake_platforms.meta.queue(AuthError("invalid OAuth access token"))
    report = _orchestrator(db_session, fake_platforms).run(_options())

    first, *rest = report.results
    assert first.status == BackfillStatus.FAILED
    assert first.error_kind == ErrorKind.AUTH
    assert all(r.status == BackfillStatus.SKIPPED and r.error_kind == ErrorKind.AUTH for r in rest)
    assert len(fake_platforms.meta.calls) == 1


def test_auth_failure_does_not_block_other_platform(db_session, client_factory, fake_platforms):
    client_factory()
    fake_platforms.meta.queue(AuthError("expired"))
    report = _orchestrator(db_session, fake_platforms).run(_options(platforms=("meta", "google"), periods=2))
    by_platform = {p: [r.status for r in report.results if r.platform == p] for p in ("meta", "google")}
    assert by_platform["meta"] == [BackfillStatus.FAILED, BackfillStatus.SKIPPED]
    assert by_platform["google"] == [BackfillStatus.STORED, BackfillStatus.STORED]


def test_transport_error_fails_one_period_and_batch_continues(db_session, client_factory, fake_platforms):
    client_factory()
    fake_platforms.meta.queue(TransportError("502 from upstream"))
    report = _orchestrator(db_session, fake_platforms).run(_options())
    assert [r.status for r in report.results] == [BackfillStatus.FAILED, BackfillStatus.STORED, BackfillStatus.STORED]
    assert report.failures[0].error_kind == ErrorKind.TRANSPORT
    assert any("reason=transport_error" in line for line in report.summary_lines())


def test_empty_fetch_stored_as_api_empty_and_retried_later(db_session, client_factory, fake_platforms):
    client_factory()
    fake_platforms.meta.queue([])
    orchestrator = _orchestrator(db_session, fake_platforms)
    report = orchestrator.run(_options(periods=1))
    result = report.results[0]
    assert result.status == BackfillStatus.STORED
    assert result.empty
    assert result.data_source == "api_empty"
    assert report.counts()["empty"] == 1

    # an empty summary is not good data, so the next run tries again
    again = orchestrator.run(_options(periods=1))
    assert again.results[0].status == BackfillStatus.STORED
    assert again.results[0].data_source == "api_backfill"


def test_persistence_error_is_per_period(db_session, client_factory, fake_platforms, monkeypatch):
    client_factory()
    orchestrator = _orchestrator(db_session, fake_platforms)

    def broken_set(key, summary):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(orchestrator.store, "set", broken_set)
    report = orchestrator.run(_options())
    assert report.failed == 3
    assert all(r.error_kind == ErrorKind.PERSISTENCE for r in report.results)
    # claims were released despite the failures
    assert all(orchestrator.claims.holder(_key(r)) is None for r in report.results)


def test_read_error_fails_one_period_and_batch_continues(db_session, client_factory, fake_platforms, monkeypatch):
    client_factory()
    orchestrator = _orchestrator(db_session, fake_platforms)
    real_get = orchestrator.store.get
    calls = {"n": 0}

    def flaky_get(key):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("SELECT campaign_summaries", {}, Exception("database is locked"))
        return real_get(key)

    monkeypatch.setattr(orchestrator.store, "get", flaky_get)
    report = orchestrator.run(_options())
    assert [r.status for r in report.results] == [BackfillStatus.FAILED, BackfillStatus.STORED, BackfillStatus.STORED]
    assert report.failures[0].error_kind == ErrorKind.PERSISTENCE
    assert "database is locked" in report.failures[0].reason


def test_malformed_adapter_payload_fails_one_period(db_session, client_factory, fake_platforms):
    client_factory()
    fake_platforms.meta.queue(ValueError("malformed insights payload"))
    report = _orchestrator(db_session, fake_platforms).run(_options())
    assert [r.status for r in report.results] == [BackfillStatus.FAILED, BackfillStatus.STORED, BackfillStatus.STORED]
    assert report.failures[0].error_kind == ErrorKind.TRANSPORT
    assert "ValueError" in report.failures[0].reason


def test_aggregation_error_fails_one_period_and_releases_claim(db_session, client_factory, fake_platforms, monkeypatch):
    client_factory()
    orchestrator = _orchestrator(db_session, fake_platforms)
    real_summarize = backfill_module.summarize
    calls = {"n": 0}

    def flaky_summarize(rows, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ValueError("spend mismatch")
        return real_summarize(rows, **kwargs)

    monkeypatch.setattr(backfill_module, "summarize", flaky_summarize)
    report = orchestrator.run(_options())
    assert [r.status for r in report.results] == [BackfillStatus.FAILED, BackfillStatus.STORED, BackfillStatus.STORED]
    assert report.failures[0].error_kind == ErrorKind.UNEXPECTED
    assert orchestrator.claims.holder(_key(report.failures[0])) is None


def test_backfill_uses_account_level_ctr_and_cpc(db_session, client_factory, fake_platforms):
    client_factory()
    fake_platforms.meta.insights = AccountInsights(ctr=3.33, cpc=0.77)
    _orchestrator(db_session, fake_platforms).run(_options(periods=1))

    row = db_session.execute(
        select(CampaignSummary).where(CampaignSummary.period_id == "2024-02-01")
    ).scalar_one()
    assert row.average_ctr == pytest.approx(3.33)
    assert row.average_cpc == pytest.approx(0.77)


def test_missing_account_is_skipped(db_session, client_factory, fake_platforms):
    client_factory(meta=None)
    report = _orchestrator(db_session, fake_platforms).run(_options())
    assert report.skipped == 3
    assert all(r.error_kind == ErrorKind.MISSING_ACCOUNT for r in report.results)
    assert fake_platforms.meta.calls == []


def test_current_period_needs_force_refresh(db_session, client_factory, fake_platforms):
    client_factory()
    orchestrator = _orchestrator(db_session, fake_platforms)
    report = orchestrator.run(_options(periods=1, include_current=True))
    assert report.results[0].period_id == "2024-03-01"
    assert report.results[0].reason == "period not complete"

    forced = orchestrator.run(_options(periods=1, include_current=True, force_refresh=True))
    assert forced.results[0].status == BackfillStatus.STORED
    cached = db_session.execute(select(CurrentPeriodCache)).scalar_one()
    assert cached.period_id == "2024-03-01"


def test_claimed_key_is_skipped(db_session, client_factory, fake_platforms):
    c = client_factory()
    ClaimRegistry(db_session, owner="api-worker").acquire(SummaryKey(c.id, "meta", "monthly", "2024-02-01"))
    report = _orchestrator(db_session, fake_platforms).run(_options(periods=1))
    assert report.results[0].reason == "rebuild claimed by another worker"
    assert fake_platforms.meta.calls == []


def test_clients_processed_in_id_order_and_filtered(db_session, client_factory, fake_platforms):
    first = client_factory()
    second = client_factory(meta="act_2002")
    client_factory(is_active=False)
    report = _orchestrator(db_session, fake_platforms).run(_options(periods=1))
    assert [r.client_id for r in report.results] == [first.id, second.id]

    only = _orchestrator(db_session, fake_platforms).run(_options(periods=1, client_ids=[second.id], force_refresh=True))
    assert [r.client_id for r in only.results] == [second.id]


def test_setup_errors(db_session, client_factory, fake_platforms):
    orchestrator = _orchestrator(db_session, fake_platforms)
    with pytest.raises(BackfillSetupError):
        orchestrator.run(_options())  # no clients
    client_factory()
    with pytest.raises(BackfillSetupError):
        orchestrator.run(_options(platforms=("tiktok",)))
    with pytest.raises(ValueError):
        _options(periods=0)


def test_simulated_adapter_tags_provenance(db_session, client_factory):
    from smart_cache.integrations import build_resilient_fetchers

    client_factory()
    fetchers = build_resilient_fetchers(["google"], sleep=lambda _: None)
    report = BackfillOrchestrator(db_session, fetchers, today=TODAY, sleep=lambda _: None).run(
        _options(periods=2, platforms=("google",))
    )
    assert report.stored == 2
    assert all(r.data_source == "historical_simulation" for r in report.results)
    row = db_session.execute(select(CampaignSummary).order_by(CampaignSummary.period_start)).scalars().first()
    assert row.summary_payload["simulation_seed"] > 0
