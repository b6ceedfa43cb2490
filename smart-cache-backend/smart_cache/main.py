"""
FastAPI application main module.
Serves smart cache reads and on-demand reconciliation audits with request
context logging and uniform ``{success, message}`` error bodies.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import time
import uuid
import os
from contextlib import asynccontextmanager
from smart_cache.api.v1 import api_router
from smart_cache.config import SUPPORTED_PLATFORMS
from smart_cache.database import SessionLocal, engine, init_db
from smart_cache.integrations import build_resilient_fetchers
from smart_cache.services.single_flight import InProcessSingleFlight
from smart_cache.utils import configure_logging_from_env, get_logger

SERVICE_NAME = "smart-cache-backend"
VERSION = "1.0.0"

configure_logging_from_env()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, then the process-wide fetchers and rebuild coalescer."""
    logger.info("Application startup initiated", service=SERVICE_NAME)
    try:
        init_db(bind=engine)
        # one breaker per platform, shared by every request in this process
        app.state.fetchers = build_resilient_fetchers(SUPPORTED_PLATFORMS)
        app.state.single_flight = InProcessSingleFlight()
        logger.info("Application ready", platforms=list(SUPPORTED_PLATFORMS))
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown completed")


app = FastAPI(
    title="Smart Cache Reporting Backend",
    description="""
    Campaign performance summaries for hotel advertising clients on Meta and Google Ads.

    ## Features
    * **Smart cache** - in-progress week/month served from a 3 hour cache, rebuilt on demand
    * **Permanent history** - completed periods stored once and never re-fetched
    * **Reconciliation audits** - report, database and cache views compared per metric
    """,
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _error(status_code: int, message, request: Request, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "request_id": _request_id(request), **extra},
    )


@app.middleware("http")
async def add_request_context(request: Request, call_next):
    """Request ID propagation and timing; health probes are not logged."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    started = time.perf_counter()

    response = await call_next(request)

    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(elapsed_ms)

    if request.url.path != "/health":
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time_ms=elapsed_ms,
            request_id=request_id,
        )
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        path=request.url.path,
        request_id=_request_id(request),
    )
    return _error(422, "Request validation failed", request, details=exc.errors())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        request_id=_request_id(request),
    )
    return _error(exc.status_code, exc.detail, request)


@app.exception_handler(SQLAlchemyError)
async def storage_exception_handler(request: Request, exc: SQLAlchemyError):
    """Summary or cache tables unreachable; callers may retry."""
    logger.error(
        "Storage error",
        error=str(exc),
        path=request.url.path,
        request_id=_request_id(request),
        exc_info=True,
    )
    return _error(503, "Summary storage unavailable", request)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        request_id=_request_id(request),
        exc_info=True,
    )
    return _error(500, "Internal server error", request)


@app.get("/health", tags=["health"], summary="Health check")
async def health_check(request: Request):
    """Database connectivity plus the circuit state of each platform fetcher."""
    health_status = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "timestamp": time.time(),
        "checks": {},
    }

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except SQLAlchemyError as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"
    finally:
        db.close()

    fetchers = getattr(request.app.state, "fetchers", None) or {}
    health_status["checks"]["platforms"] = {
        name: fetcher.breaker.state_of(name) for name, fetcher in fetchers.items()
    }
    return health_status


@app.get("/", tags=["root"])
async def root():
    return {
        "message": "Smart Cache Reporting API",
        "version": VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1",
        "platforms": list(SUPPORTED_PLATFORMS),
    }


app.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "smart_cache.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "false").lower() == "true",
        log_level="info",
    )
