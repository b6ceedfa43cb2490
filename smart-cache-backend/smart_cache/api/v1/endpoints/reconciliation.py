"""
Reconciliation audit endpoints.
"""
import time
from typing import Mapping

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from smart_cache.api.deps import get_client_or_404, get_db, get_fetchers
from smart_cache.models.schemas.base import ResponseBase
from smart_cache.models.schemas.reconciliation import AuditRequest
from smart_cache.services.fetcher import ResilientFetcher
from smart_cache.services.reconciler import Reconciler
from smart_cache.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/audit",
    response_model=ResponseBase,
    summary="Run a reconciliation audit for one client",
)
def run_audit(
    audit_request: AuditRequest,
    request: Request,
    db: Session = Depends(get_db),
    fetchers: Mapping[str, ResilientFetcher] = Depends(get_fetchers),
) -> ResponseBase:
    """Compare report, database and cache views of the client's recent periods.

    Reporting only: discrepancies are returned, never repaired.
    """
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    client = get_client_or_404(audit_request.client_id, db)

    logger.info(
        "Reconciliation audit requested",
        client_id=client.id,
        platform=audit_request.platform.value,
        periods=audit_request.periods,
        request_id=request_id,
    )
    reconciler = Reconciler(db, fetchers)
    report = reconciler.audit(
        client_ids=[client.id],
        platforms=[audit_request.platform.value],
        period_type=audit_request.period_type,
        periods=audit_request.periods,
        include_current=audit_request.include_current,
    )
    client_audit = report.clients[0]

    log_business_event(
        "reconciliation_audit_requested",
        {"rating": client_audit.rating.value},
        client_id=client.id,
        platform=audit_request.platform.value,
        request_id=request_id,
    )
    log_performance("reconciliation_audit_api", (time.time() - start_time) * 1000, {"client_id": client.id})
    return ResponseBase(
        success=True,
        message=f"Consistency rating: {client_audit.rating.value}",
        data=report.model_dump(mode="json"),
    )
