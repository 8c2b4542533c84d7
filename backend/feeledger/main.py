# ============================================================
# feeledger/main.py
#
# Entry point for the fee ledger API.
#
# What this file does:
# - Creates the FastAPI app instance
# - Adds CORS middleware for the school admin frontend
# - Registers all routes under /api/v1
# - Maps domain errors (FeeLedgerError) to the error envelope
# - Adds a /health endpoint for Docker healthchecks
# ============================================================

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import logging
import time

from feeledger.core.config import settings
from feeledger.core.database import check_db_connection
from feeledger.core.errors import DependencyError, FeeLedgerError
from feeledger.schemas.common import ErrorResponse
from feeledger.api.v1.router import api_router

logging.basicConfig(
    level=logging.INFO if settings.is_production else logging.DEBUG,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

# Never leak the service key from low-level HTTP debug logs.
if settings.is_production and not settings.HTTP_CLIENT_DEBUG_LOGS:
    for noisy_logger in ("httpx", "httpcore", "hpack"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


# ── Startup / Shutdown ───────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}, store: {settings.STORE_BACKEND}")

    if await check_db_connection():
        logger.info("Store connection OK")
    else:
        logger.error("Store connection FAILED, check SUPABASE_URL and keys")

    yield

    logger.info(f"Shutting down {settings.APP_NAME}")


# ── Create App ───────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Academic-year fee ledger: fee structures, bus fees, payment "
        "allocation and per-student fee status."
    ),
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    lifespan=lifespan,
)


# ── CORS Middleware ──────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request timing middleware ────────────────────────────────
@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = (time.time() - start) * 1000
    logger.info(f"{request.method} {request.url.path} → {response.status_code} ({duration:.1f}ms)")
    return response


# ── Error handlers ───────────────────────────────────────────
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        field = " → ".join(str(e) for e in error["loc"])
        errors.append(f"{field}: {error['msg']}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "message": "Validation error",
            "detail": errors,
        },
    )


@app.exception_handler(FeeLedgerError)
async def domain_error_handler(request: Request, exc: FeeLedgerError):
    """Domain errors carry their own HTTP status."""
    if isinstance(exc, DependencyError):
        logger.error(f"Dependency failure on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=exc.message, detail=exc.to_detail()).model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def global_error_handler(request: Request, exc: Exception):
    """Catch-all for unexpected errors. Never expose stack traces."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "message": "An unexpected error occurred. Please try again.",
        },
    )


# ── Routes ───────────────────────────────────────────────────
app.include_router(api_router, prefix=settings.API_PREFIX)


# ── Health check ─────────────────────────────────────────────
@app.get("/health", tags=["Health"])
async def health_check():
    """200 when the API and its store are reachable, 503 otherwise."""
    if await check_db_connection():
        return {"status": "healthy", "version": settings.APP_VERSION}
    return JSONResponse(
        status_code=503,
        content={"status": "unhealthy", "reason": "database_unreachable"},
    )


@app.get("/", tags=["Health"])
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
