import random

from smart_cache.utils.backoff import compute_backoff_seconds


def test_backoff_growth_and_cap():
    first = compute_backoff_seconds(1, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    second = compute_backoff_seconds(2, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    third = compute_backoff_seconds(3, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    assert first == 1
    assert second == 2
    assert third == 4
    capped = compute_backoff_seconds(10, base=1, factor=2, max_seconds=5, jitter_pct=0.0)
    assert capped <= 5


def test_jitter_stays_within_band():
    rng = random.Random(7)
    for _ in range(50):
        delay = compute_backoff_seconds(3, base=1, factor=2, max_seconds=60, jitter_pct=0.1, rng=rng)
        assert 3.6 <= delay <= 4.4


def test_retry_after_raises_floor_but_not_cap():
    assert compute_backoff_seconds(1, base=1, jitter_pct=0.0, retry_after=12) == 12
    assert compute_backoff_seconds(1, base=1, jitter_pct=0.0, max_seconds=10, retry_after=90) == 10
