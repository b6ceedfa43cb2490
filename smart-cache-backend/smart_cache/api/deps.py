"""
Dependencies for database sessions, platform fetchers and common validations.
"""
from typing import Generator, Mapping

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from smart_cache.config import SUPPORTED_PLATFORMS
from smart_cache.database import SessionLocal
from smart_cache.integrations import build_resilient_fetchers
from smart_cache.models.db import Client
from smart_cache.services.fetcher import ResilientFetcher
from smart_cache.services.single_flight import InProcessSingleFlight
from smart_cache.utils import get_logger

logger = get_logger(__name__)


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def get_fetchers(request: Request) -> Mapping[str, ResilientFetcher]:
    """Platform fetchers created at startup (shared circuit breaker)."""
    fetchers = getattr(request.app.state, "fetchers", None)
    if fetchers is None:
        fetchers = build_resilient_fetchers(SUPPORTED_PLATFORMS)
        request.app.state.fetchers = fetchers
    return fetchers


def get_single_flight(request: Request) -> InProcessSingleFlight:
    """Process-wide rebuild coalescer; one per app so concurrent requests share it."""
    single_flight = getattr(request.app.state, "single_flight", None)
    if single_flight is None:
        single_flight = InProcessSingleFlight()
        request.app.state.single_flight = single_flight
    return single_flight


def validate_platform(platform: str) -> str:
    if platform not in SUPPORTED_PLATFORMS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported platform '{platform}'. Supported: {list(SUPPORTED_PLATFORMS)}",
        )
    return platform


def get_client_or_404(client_id: int, db: Session = Depends(get_db)) -> Client:
    """
    Load an active client.

    Raises:
        HTTPException: 404 if the client does not exist or is inactive
    """
    client = db.get(Client, client_id)
    if client is None or not client.is_active:
        logger.warning("Client lookup failed", client_id=client_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Client with id {client_id} not found or inactive",
        )
    return client
