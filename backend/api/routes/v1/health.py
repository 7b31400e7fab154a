import logging
from datetime import datetime

from config import settings
from database import get_db
from fastapi import APIRouter
from services import BackgroundTaskService, CacheService
from services.background_service import LAST_CYCLE_KEY
from services.maintenance_service import maintenance_service
from services.metrics_service import metrics_service
from sqlalchemy import text

logger = logging.getLogger(__name__)
router = APIRouter()

# Service instances (will be set during startup)
cache_service: CacheService = None
background_service: BackgroundTaskService = None


def set_services(cache_svc: CacheService, background_svc: BackgroundTaskService):
    """Set service instances"""
    global cache_service, background_service
    cache_service = cache_svc
    background_service = background_svc


@router.get("/health")
async def health_check():
    """Comprehensive health check endpoint"""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "environment": settings.env,
        "version": settings.api_version,
        "correlation": "enabled" if settings.correlation_enabled else "disabled",
        "racks_in_maintenance": len(maintenance_service.index),
        **metrics_service.get_custom_metrics(),
    }

    # Check database connectivity
    db = None
    try:
        db = next(get_db())
        db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {str(e)}"
        health_status["status"] = "unhealthy"
    finally:
        if db is not None:
            db.close()

    # Check Redis connectivity; the engine keeps evaluating without it
    if cache_service and cache_service.connected:
        health_status["redis"] = "connected" if await cache_service.ping() else "error"
    else:
        health_status["redis"] = "not configured"

    last_cycle = None
    if background_service:
        health_status["background_tasks"] = sorted(background_service.running_tasks)
        last_cycle = background_service.last_cycle

    # Another worker may own the evaluation loop; its summary is shared through Redis
    if last_cycle is None and cache_service:
        last_cycle = await cache_service.get(LAST_CYCLE_KEY)
    if last_cycle:
        health_status["last_evaluation_cycle"] = last_cycle

    return health_status
