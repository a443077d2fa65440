"""
Main API Router
Aggregates all API endpoints for v1
"""

from fastapi import APIRouter
from app.api.v1.endpoints import analytics, health

api_router = APIRouter()

api_router.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
