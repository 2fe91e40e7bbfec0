"""
Health API endpoints
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from ...core.database import database_manager
from ...core.settings import get_settings
from ...utils.logging import setup_kitchen_logging

logger = setup_kitchen_logging("kitchen_service.health")

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness plus a database ping and the realtime connection count"""
    settings = get_settings()
    database = "healthy"
    try:
        async with database_manager.async_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check database ping failed: {e}")
        database = "unhealthy"

    gateway = getattr(request.app.state, "realtime_gateway", None)
    return {
        "status": "healthy" if database == "healthy" else "degraded",
        "service": settings.SERVICE_NAME,
        "version": settings.APP_VERSION,
        "database": database,
        "realtime_connections": gateway.connection_count() if gateway else 0,
    }
