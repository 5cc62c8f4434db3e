"""FastAPI application for the clan war collector."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from warcollector import state
from warcollector.config import get_settings
from warcollector.etl.base import ProviderError, ProviderForbiddenError
from warcollector.etl.coc_api import ClashOfClansProvider
from warcollector.etl.pipeline import CollectionPipeline
from warcollector.routes.api import router as api_router
from warcollector.routes.core import router as core_router
from warcollector.scheduler import CollectionScheduler, start_scheduler, stop_scheduler
from warcollector.security import limiter
from warcollector.storage import StorageError
from warcollector.telemetry.sentry import capture_exception, init_sentry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Only activates if SENTRY_DSN is set in environment
init_sentry()

settings = get_settings()


def build_collection_scheduler() -> CollectionScheduler:
    """Wire provider -> pipeline -> scheduler around the shared stores."""
    provider = ClashOfClansProvider()
    pipeline = CollectionPipeline(provider, state.match_store, state.league_store)
    return CollectionScheduler(pipeline)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting war collector for clan {settings.CLAN_TAG}...")

    if not settings.COC_API_TOKEN:
        logger.warning("COC_API_TOKEN not set: collection disabled, serving stored data only")
    else:
        state.collection_scheduler = build_collection_scheduler()
        if settings.SCHEDULER_ENABLED:
            start_scheduler(state.collection_scheduler)
        else:
            logger.info("Scheduler disabled via SCHEDULER_ENABLED=false (manual triggers only)")

    yield

    logger.info("Shutting down...")
    stop_scheduler()
    if state.collection_scheduler is not None:
        await state.collection_scheduler.pipeline.provider.close()
        state.collection_scheduler = None


app = FastAPI(
    title="Clan War Collector",
    description="Clash of Clans war and CWL history with attack participation predictions",
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# ERROR PAYLOADS
# =============================================================================
# Every error leaves the API as {"success": false, "error": ..., "detail": ...}.


def error_response(status_code: int, error: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "detail": jsonable_encoder(detail)},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(400, "Invalid request", exc.errors())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(429, "Rate limit exceeded", str(exc.detail))


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"[API] Storage error on {request.url.path}: {exc}")
    return error_response(500, "Storage error", str(exc))


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error(f"[API] Provider error on {request.url.path}: {exc}")
    status_code = 502 if not isinstance(exc, ProviderForbiddenError) else 503
    return error_response(status_code, "Provider error", str(exc))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"[API] Unhandled error on {request.url.path}: {exc}", exc_info=True)
    capture_exception(exc)
    return error_response(500, "Internal server error")


# Add rate limiting
app.state.limiter = limiter

# Include routers
app.include_router(core_router)
app.include_router(api_router)
