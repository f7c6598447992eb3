"""Health check endpoints."""

from fastapi import APIRouter

from bizdash.core.config import get_settings

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    """Liveness endpoint; does not touch the database."""

    settings = get_settings()
    return {"status": "ok", "service": settings.app_name, "environment": settings.app_env}
