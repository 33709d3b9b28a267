"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from app.api.v1.endpoints import (
    campaigns,
    segments,
    health,
)

api_router = APIRouter()

# Campaign lifecycle, flow builder and executions
api_router.include_router(campaigns.router)

# Recipient segments
api_router.include_router(segments.router)

api_router.include_router(health.router)
