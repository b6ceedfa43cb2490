"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import cache, reconciliation

api_router = APIRouter()

api_router.include_router(
    cache.router,
    prefix="/cache",
    tags=["cache"]
)

api_router.include_router(
    reconciliation.router,
    prefix="/reconciliation",
    tags=["reconciliation"]
)
