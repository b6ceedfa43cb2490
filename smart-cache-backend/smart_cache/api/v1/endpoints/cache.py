"""
Smart cache endpoints: current-period read-through and stored period lookup.
"""
import time
from typing import Mapping

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from smart_cache.api.deps import get_client_or_404, get_db, get_fetchers, get_single_flight, validate_platform
from smart_cache.models.db import Client
from smart_cache.models.db.enums import PeriodType
from smart_cache.models.schemas.base import ResponseBase
from smart_cache.models.schemas.summary import SummaryKey, dump_summary
from smart_cache.services.cache_store import CacheStore
from smart_cache.services.fetcher import ResilientFetcher
from smart_cache.services.periods import period_from_id
from smart_cache.services.single_flight import InProcessSingleFlight
from smart_cache.services.smart_cache import SmartCacheService
from smart_cache.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/{client_id}/{platform}/{period_type}",
    response_model=ResponseBase,
    summary="Current period summary via the smart cache",
)
def get_current_period(
    request: Request,
    period_type: PeriodType,
    platform: str = Depends(validate_platform),
    force_refresh: bool = Query(False, description="Rebuild even if the cached entry is fresh"),
    client: Client = Depends(get_client_or_404),
    db: Session = Depends(get_db),
    fetchers: Mapping[str, ResilientFetcher] = Depends(get_fetchers),
    single_flight: InProcessSingleFlight = Depends(get_single_flight),
) -> ResponseBase:
    """Serve the in-progress period's summary.

    Fresh cache entries are returned as-is; stale or missing ones are rebuilt
    from a live fetch. A failed rebuild serves the stale entry (``stale``
    flag set) or answers 502 when there is nothing to fall back to.
    """
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    service = SmartCacheService(db, fetchers, single_flight=single_flight)
    result = service.get(client, platform, period_type, force_refresh=force_refresh)

    if not result.success:
        logger.warning(
            "Smart cache request failed",
            client_id=client.id,
            platform=platform,
            error_kind=result.error_kind.value if result.error_kind else None,
            request_id=request_id,
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Could not build summary: {result.error_message or 'unknown error'}",
        )

    log_performance(
        "smart_cache_get",
        (time.time() - start_time) * 1000,
        {"client_id": client.id, "platform": platform, "from_cache": result.from_cache},
    )
    return ResponseBase(
        success=True,
        message="Served from cache" if result.from_cache else "Rebuilt from live data",
        data={
            "period": result.period.to_dict(),
            "from_cache": result.from_cache,
            "stale": result.stale,
            "last_updated": result.last_updated.isoformat() if result.last_updated else None,
            "summary": dump_summary(result.summary) if result.summary else None,
        },
    )


@router.get(
    "/{client_id}/{platform}/{period_type}/{period_id}",
    response_model=ResponseBase,
    summary="Stored summary for any period",
)
def get_period(
    period_type: PeriodType,
    period_id: str,
    platform: str = Depends(validate_platform),
    client: Client = Depends(get_client_or_404),
    db: Session = Depends(get_db),
) -> ResponseBase:
    try:
        period = period_from_id(period_type, period_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    store = CacheStore(db)
    entry = store.get(SummaryKey(client.id, platform, period_type, period.id))
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No {platform} {period_type.value} summary for period {period.id}",
        )
    return ResponseBase(
        success=True,
        data={
            "period": period.to_dict(),
            "scope": entry.scope.value,
            "last_updated": entry.last_updated.isoformat(),
            "summary": dump_summary(entry.summary),
        },
    )
