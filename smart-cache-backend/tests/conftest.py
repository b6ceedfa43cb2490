import os
import secrets
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'smart_cache' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from smart_cache.main import app  # type: ignore
from smart_cache.database import Base, init_db  # type: ignore
from smart_cache.api import deps  # type: ignore
"""Pytest fixtures and factories.

Fixtures never talk to a real ad platform: ``fake_platforms`` wraps scripted
adapters in the production ``ResilientFetcher`` so breaker / backoff behaviour
is exercised while sleeps are only recorded.
"""
from smart_cache.models.db import Client
from smart_cache.models.schemas.platform import CampaignRow
from smart_cache.models.schemas.summary import SummaryKey, SummaryMetrics, build_summary
from smart_cache.services.aggregator import aggregate
from smart_cache.services.cache_store import CacheStore
from smart_cache.services.fetcher import ResilientFetcher
from smart_cache.services.single_flight import InProcessSingleFlight
from smart_cache.utils.circuit_breaker import CircuitBreaker

SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_smart_cache.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# /health opens its own session; point it at the test DB as well
import smart_cache.database as _smart_cache_database  # noqa: E402
_smart_cache_database.SessionLocal = TestingSessionLocal  # type: ignore
import smart_cache.main as _main_mod  # noqa: E402
_main_mod.SessionLocal = TestingSessionLocal  # type: ignore

TODAY = date(2024, 3, 13)  # a Wednesday
NOW = datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    init_db(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_smart_cache.db")
    except OSError:
        pass


@pytest.fixture(autouse=True)
def _clean_tables(create_test_db):
    """Every test starts from empty tables."""
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def session_factory():
    return TestingSessionLocal


# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db


# ---------- Fake platform adapters ----------

def make_row(campaign_id: str = "c1", spend: float = 100.0, **kwargs) -> CampaignRow:
    values = {"impressions": 10000, "clicks": 200, "conversions": 5, "reservations": 4, "reservation_value": 1800.0}
    values.update(kwargs)
    return CampaignRow(campaign_id=campaign_id, campaign_name=f"Campaign {campaign_id}", spend=spend, **values)


class FakeAdapter:
    """Scripted adapter: queued items (row lists or exceptions) first, then ``rows``."""

    simulated = False

    def __init__(self, platform: str):
        self.platform = platform
        self.rows = [make_row("c1", 120.0), make_row("c2", 80.0, clicks=100)]
        self.insights = None
        self.script: list = []
        self.calls: list[tuple] = []

    def queue(self, *items) -> None:
        self.script.extend(items)

    def get_campaign_insights(self, account_id, start_date, end_date, time_increment=0):
        self.calls.append((account_id, start_date, end_date))
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return list(item)
        return list(self.rows)

    def get_account_insights(self, account_id, start_date, end_date):
        return self.insights


class FakePlatforms:
    def __init__(self):
        self.sleeps: list[float] = []
        self.breaker = CircuitBreaker()
        self.adapters = {"meta": FakeAdapter("meta"), "google": FakeAdapter("google")}
        self.fetchers = {
            name: ResilientFetcher(adapter, breaker=self.breaker, sleep=self.sleeps.append)
            for name, adapter in self.adapters.items()
        }

    @property
    def meta(self) -> FakeAdapter:
        return self.adapters["meta"]

    @property
    def google(self) -> FakeAdapter:
        return self.adapters["google"]


@pytest.fixture()
def fake_platforms():
    return FakePlatforms()


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def client(fake_platforms):
    # The production app sets these up in lifespan; tests bypass lifespan
    app.state.fetchers = fake_platforms.fetchers
    app.state.single_flight = InProcessSingleFlight()
    return TestClient(app)


# ---------- Data factory helpers ----------

@pytest.fixture()
def client_factory(db_session):
    def _create(
        name: str | None = None,
        *,
        meta: str | None = "act_1001",
        google: str | None = "555-000-1001",
        is_active: bool = True,
    ) -> Client:
        c = Client(
            name=name or f"Hotel {secrets.token_hex(3)}",
            meta_ad_account_id=meta,
            google_customer_id=google,
            is_active=is_active,
        )
        db_session.add(c)
        db_session.commit()
        db_session.refresh(c)
        return c
    return _create


@pytest.fixture()
def summary_factory(db_session):
    """Write a summary straight into one of the two tables.

    ``table`` is 'summaries' (campaign_summaries) or 'cache' (current_period_cache).
    """
    def _create(
        client_id: int,
        period_id: str,
        *,
        platform: str = "meta",
        period_type: str = "monthly",
        rows: list[CampaignRow] | None = None,
        data_source: str = "api_backfill",
        last_updated: datetime = NOW,
        table: str = "summaries",
        **extra,
    ):
        key = SummaryKey(client_id, platform, period_type, period_id)
        metrics = aggregate(rows) if rows is not None else SummaryMetrics()
        summary = build_summary(metrics, data_source=data_source, last_updated=last_updated, **extra)
        store = CacheStore(db_session, today=TODAY)
        if table == "cache":
            store.put_cached(key, summary)
        else:
            store.put_summary(key, summary)
        return key, summary
    return _create
