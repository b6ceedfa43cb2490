"""
Ad platform adapters.

``get_fetcher(platform)`` resolves an adapter instance by platform name.
Deployments wire real SDK adapters with ``register_fetcher``; without one
the simulated adapter for that platform is returned.
"""
import time
from typing import Callable, Dict, Iterable, Optional

from smart_cache.services.fetcher import Fetcher, ResilientFetcher
from smart_cache.utils.circuit_breaker import CircuitBreaker
from .base import SimulatedAdPlatform
from .meta import MetaAdsIntegration
from .google_ads import GoogleAdsIntegration

_REGISTRY: Dict[str, Callable[[], Fetcher]] = {
    "meta": MetaAdsIntegration,
    "google": GoogleAdsIntegration,
}


def register_fetcher(platform: str, factory: Callable[[], Fetcher]) -> None:
    _REGISTRY[platform.lower()] = factory


def get_fetcher(platform: str) -> Fetcher:
    try:
        factory = _REGISTRY[platform.lower()]
    except KeyError:
        raise ValueError(f"Unsupported platform '{platform}'. Supported: {sorted(_REGISTRY)}") from None
    return factory()


def build_resilient_fetchers(
    platforms: Iterable[str],
    *,
    breaker: Optional[CircuitBreaker] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, ResilientFetcher]:
    """One ResilientFetcher per platform sharing a single circuit breaker."""
    breaker = breaker or CircuitBreaker()
    return {p: ResilientFetcher(get_fetcher(p), breaker=breaker, sleep=sleep) for p in platforms}


__all__ = [
    "SimulatedAdPlatform",
    "MetaAdsIntegration",
    "GoogleAdsIntegration",
    "register_fetcher",
    "get_fetcher",
    "build_resilient_fetchers",
]
