"""
Main FastAPI application
"""

import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import time
from prometheus_client import make_asgi_app
import uuid

from app.config import settings
from app.core.cache import get_cache_manager
from app.core.database import init_db, close_db, async_session
from app.core.exceptions import AnalyticsException
from app.core.logging import setup_logging
from app.core.metrics import REQUEST_COUNT, REQUEST_DURATION
from app.core.redis import init_redis, close_redis
from app.api.v1.api import api_router
from app.schemas.response import ErrorDetail, ErrorResponse
from app.services.refresh import AnalyticsRefreshJob
from app.services.sql_event_store import SQLAlchemyEventStore

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()
    logger.info("Database connection established")

    try:
        await init_redis()
        logger.info("Redis connection established")
    except Exception as e:
        # Cache is optional; requests fall through to the event store
        logger.error(f"Redis unavailable at startup, continuing without cache: {e}")

    refresh_task = None
    if settings.ANALYTICS_REFRESH_ENABLED:
        job = AnalyticsRefreshJob(SQLAlchemyEventStore(async_session), get_cache_manager())
        refresh_task = asyncio.create_task(
            job.run_forever(settings.ANALYTICS_REFRESH_INTERVAL_SECONDS)
        )
        logger.info("Analytics refresh job scheduled")

    yield

    # Shutdown
    logger.info("Shutting down application")

    if refresh_task is not None:
        refresh_task.cancel()
        try:
            await refresh_task
        except asyncio.CancelledError:
            pass

    await close_db()
    await close_redis()
    logger.info("Redis connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Creator video analytics, engagement scoring and usage quotas",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request tracking middleware
@app.middleware("http")
async def track_requests(request: Request, call_next):
    """
    Track request metrics and add request ID
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code
    ).inc()

    REQUEST_DURATION.labels(
        method=request.method,
        endpoint=request.url.path
    ).observe(duration)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(duration)

    return response


# Exception handlers
@app.exception_handler(AnalyticsException)
async def analytics_exception_handler(request: Request, exc: AnalyticsException):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    body = ErrorResponse(
        error=ErrorDetail(code=exc.code, message=exc.message, details=exc.details)
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    return JSONResponse(
        status_code=404,
        content={
            "success": False,
            "error": {
                "code": "NOT_FOUND",
                "message": "The requested resource was not found"
            }
        }
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc):
    logger.error(f"Internal server error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An internal server error occurred"
            }
        }
    )


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "api_docs": "/docs" if settings.DEBUG else None
    }


app.include_router(api_router, prefix=settings.API_PREFIX)

# Mount Prometheus metrics endpoint
if settings.PROMETHEUS_ENABLED:
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
