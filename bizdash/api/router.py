"""Top-level API router."""

from fastapi import APIRouter

from bizdash.api.routes.health import router as health_router
from bizdash.api.routes.reports import router as reports_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(reports_router)
