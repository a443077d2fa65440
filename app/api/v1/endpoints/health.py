"""
Health check endpoints
"""

from typing import Any
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.core.database import check_db
from app.core.redis import ping_redis
from app.config import settings
from app.schemas.response import HealthResponse

router = APIRouter()


@router.get("/live")
async def liveness() -> Any:
    """
    Kubernetes liveness probe
    """
    return {"status": "alive", "service": "creator-analytics"}


@router.get("/ready", response_model=HealthResponse)
async def readiness() -> Any:
    """
    Kubernetes readiness probe - checks all dependencies
    """
    checks = {
        "database": await check_db(),
        "redis": await ping_redis(),
        "api": True
    }

    all_healthy = all(checks.values())
    body = HealthResponse(
        status="ready" if all_healthy else "not ready",
        checks=checks,
        version=settings.APP_VERSION
    )
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content=body.model_dump(mode="json")
    )
