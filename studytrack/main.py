"""
main.py — studytrack FastAPI application entry point.

Start with: uvicorn studytrack.main:app --reload --port 8000
"""
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from studytrack.config import settings
from studytrack.errors import InvalidSessionStateError, SessionNotFoundError

# ---------------------------------------------------------------------------
# Logging — configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


def _run_migrations() -> None:
    package_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=package_dir,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    logger.info("Alembic: %s", result.stdout.strip() or "No pending migrations")


# ---------------------------------------------------------------------------
# Lifespan — startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Run Alembic migrations
      2. Background worker (derived metrics / classification jobs)
      3. Mistral classification oracle + session pipeline
      4. S3 blob store + cleanup engine
      5. Cleanup scheduler (retention sweep, daily cleanup, weekly orphan scan)
    Shutdown (reverse order):
      scheduler -> worker drain -> database engine
    """
    from studytrack.classifier.oracle import MistralOracle
    from studytrack.database import AsyncSessionLocal, async_engine
    from studytrack.metrics.service import SessionPipeline
    from studytrack.retention.blob_store import S3BlobStore
    from studytrack.retention.cleanup import CleanupEngine
    from studytrack.retention.scheduler import CleanupScheduler
    from studytrack.worker import BackgroundWorker

    # --- 1. Database: run Alembic migrations ---
    if settings.run_migrations_on_startup:
        _run_migrations()

    # --- 2. Worker (asyncio primitives MUST be created inside the running loop) ---
    app.state.worker = BackgroundWorker(
        concurrency=settings.worker_concurrency,
        max_queue_size=settings.worker_queue_size,
    )
    app.state.worker.start()

    # --- 3. Oracle + pipeline ---
    app.state.oracle = MistralOracle(
        api_key=settings.mistral_api_key,
        model=settings.mistral_model,
        concurrency=settings.classifier_concurrency,
    )
    if not app.state.oracle.available:
        logger.warning("MISTRAL_API_KEY not set — subject/joy classification falls back to defaults")
    app.state.pipeline = SessionPipeline(AsyncSessionLocal, app.state.oracle)

    # --- 4. Blob store + cleanup engine ---
    blob_store = S3BlobStore(
        bucket=settings.aws_s3_bucket,
        region=settings.aws_region,
        access_key_id=settings.aws_access_key_id,
        secret_access_key=settings.aws_secret_access_key,
    )
    if not blob_store.is_available():
        logger.warning("AWS_S3_BUCKET not set — retention cleanup will skip file deletion")
    app.state.cleanup_engine = CleanupEngine(
        AsyncSessionLocal,
        blob_store=blob_store,
        incomplete_max_age_days=settings.incomplete_session_max_age_days,
    )

    # --- 5. Scheduler ---
    app.state.scheduler = CleanupScheduler(
        app.state.cleanup_engine,
        AsyncSessionLocal,
        daily_hour_utc=settings.daily_cleanup_hour_utc,
        weekly_weekday=settings.weekly_orphan_scan_weekday,
        weekly_hour_utc=settings.weekly_orphan_scan_hour_utc,
        sweep_interval_hours=settings.retention_sweep_interval_hours,
    )
    if settings.scheduler_enabled:
        app.state.scheduler.start()
    else:
        logger.info("Cleanup scheduler disabled (SCHEDULER_ENABLED=false)")

    logger.info("studytrack v%s starting up", settings.app_version)
    yield

    # --- Shutdown ---
    await app.state.scheduler.stop()
    await app.state.worker.stop(drain=True, timeout=settings.worker_drain_timeout_s)
    await async_engine.dispose()
    logger.info("studytrack shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="studytrack API",
    version=settings.app_version,
    description=(
        "Learning-session lifecycle and derived metrics: active-session tracking, "
        "subject classification, streaks and medals, and retention cleanup."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware — restricted to frontend origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers — registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Returns ALL field violations in one 422 response."""
    details = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(SessionNotFoundError)
async def session_not_found_handler(
    request: Request, exc: SessionNotFoundError
) -> JSONResponse:
    return _make_error_response(
        code="NOT_FOUND",
        message=str(exc),
        details=[{"field": "session_id", "issue": exc.session_id}],
        status_code=404,
    )


@app.exception_handler(InvalidSessionStateError)
async def invalid_state_handler(
    request: Request, exc: InvalidSessionStateError
) -> JSONResponse:
    return _make_error_response(
        code="INVALID_STATE",
        message=str(exc),
        details=[{"field": "session_id", "issue": exc.session_id}],
        status_code=409,
    )


@app.exception_handler(ValueError)
async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    """Explicit ValueError raises from business logic surface as 422."""
    return _make_error_response(
        code="VALIDATION_ERROR",
        message=str(exc),
        status_code=422,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  → includes exception type & message in details (dev only).
    DEBUG=false → generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check(request: Request) -> dict:
    worker = getattr(request.app.state, "worker", None)
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker": {
            "running": worker.running if worker is not None else False,
            "pending": worker.pending if worker is not None else 0,
        },
        "scheduler_running": scheduler.is_running() if scheduler is not None else False,
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from studytrack.metrics.routes import router as metrics_router  # noqa: E402
from studytrack.retention.routes import router as cleanup_router  # noqa: E402
from studytrack.sessions.routes import router as sessions_router  # noqa: E402

app.include_router(sessions_router)
app.include_router(metrics_router)
app.include_router(cleanup_router)
