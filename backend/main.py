import logging
from contextlib import asynccontextmanager

import uvicorn
from api.routes.v1 import alerts, health, maintenance, readings, thresholds

# Internal imports
from config import settings
from database import SessionLocal, init_db
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from services import BackgroundTaskService, CacheService
from services.alert_service import alert_manager
from services.correlation_service import create_correlation_worker
from services.maintenance_service import maintenance_service
from services.metrics_service import metrics_middleware, metrics_service
from services.reading_source import create_reading_source

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global service instances
cache_service: CacheService = None
background_service: BackgroundTaskService = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager with service initialization"""
    global cache_service, background_service

    # Startup
    logger.info(f"🚀 Starting {settings.api_title} v{settings.api_version}")
    logger.info(f"Environment: {settings.env}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(
        f"Prometheus metrics: {'enabled' if settings.prometheus_enabled else 'disabled'}"
    )
    logger.info(
        f"Correlation service: {'enabled' if settings.correlation_enabled else 'disabled'}"
    )

    try:
        # Initialize database
        init_db()

        db = SessionLocal()
        try:
            maintenance_service.refresh_index(db)
        finally:
            db.close()

        # Initialize services
        cache_service = CacheService()
        await cache_service.connect()
        alert_manager.cache = cache_service

        background_service = BackgroundTaskService(
            cache_service,
            alert_manager,
            reading_source=create_reading_source(),
            correlation_worker=create_correlation_worker(),
        )

        # Start background tasks
        await background_service.start()

        # Set services in route modules
        health.set_services(cache_service, background_service)
        maintenance.set_services(cache_service)
        readings.set_services(cache_service)

        logger.info("✅ All services initialized successfully")

        yield

    except Exception as e:
        logger.error(f"❌ Startup failed: {str(e)}")
        raise

    # Shutdown
    logger.info("🔄 Shutting down application")

    if background_service:
        await background_service.stop()

    if cache_service:
        await cache_service.disconnect()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # Add middleware for performance and security
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Add metrics middleware if Prometheus is enabled
    if settings.prometheus_enabled:
        app.middleware("http")(metrics_middleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=(["*"]),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add Prometheus metrics endpoint
    @app.get("/metrics")
    async def get_prometheus_metrics():
        """Prometheus metrics endpoint"""
        if not settings.prometheus_enabled:
            return {"error": "Metrics disabled"}

        return Response(
            content=metrics_service.get_metrics(), media_type=metrics_service.content_type
        )

    # Include routers
    app.include_router(alerts.router, prefix="/api/v1", tags=["alerts"])
    app.include_router(maintenance.router, prefix="/api/v1", tags=["maintenance"])
    app.include_router(thresholds.router, prefix="/api/v1", tags=["thresholds"])
    app.include_router(readings.router, prefix="/api/v1", tags=["readings"])
    app.include_router(health.router, prefix="", tags=["health"])

    return app


# Create app instance
app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
