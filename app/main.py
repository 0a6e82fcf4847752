"""
QR Check-in Service - Main Application
FastAPI Entry Point with APScheduler for cache housekeeping
"""

from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
import structlog
from asgi_correlation_id import CorrelationIdMiddleware

from app import redis_client
from app.config import settings
from app.database import init_db
from app.dependencies import get_token_service, init_services
from app.routers.checkin import router as checkin_router
from app.routers.qr_codes import router as qr_codes_router
from app.services.monitoring import init_sentry, setup_logging
from app.services.token_service import TokenService

# Structured Logging Setup
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ]
)
logger = structlog.get_logger()

# FastAPI App
app = FastAPI(
    title="QR Check-in Service",
    description="Short-lived, single-use encrypted check-in codes with geofence verification",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(CorrelationIdMiddleware)

# APScheduler instance (module level)
scheduler = BackgroundScheduler(timezone="UTC")

# Register routers
app.include_router(qr_codes_router)
app.include_router(checkin_router)


def run_scheduled_cleanup():
    """
    Wrapper function for the scheduled cache cleanup job.

    Redis TTLs already reclaim expired entries; this removes entries whose
    payload expiry passed before the key's TTL and keeps stats accurate.
    """
    try:
        service = get_token_service()
        if service is None:
            logger.warning("cleanup_skipped", reason="token_service_not_configured")
            return

        total = 0
        events = service.cache.tracked_events()
        for event_id in events:
            total += service.cleanup_expired(event_id)
        logger.info("cleanup_completed", events=len(events), cleaned=total)

    except Exception as e:
        logger.error("cleanup_crashed", error=str(e), exc_info=True)


@app.on_event("startup")
async def startup_event():
    """Application Startup"""
    if settings.environment != "testing":
        setup_logging()
        init_sentry()
    logger.info("startup", environment=settings.environment)

    redis_client.init_redis()
    init_db()
    init_services()

    # Start cleanup scheduler (skip in testing)
    if settings.environment != "testing":
        scheduler.add_job(
            run_scheduled_cleanup,
            trigger=IntervalTrigger(minutes=settings.cleanup_interval_minutes),
            id="qr_cache_cleanup",
            name="Expired QR cache entry cleanup",
            replace_existing=True
        )
        scheduler.start()
        logger.info("scheduler_started", interval_minutes=settings.cleanup_interval_minutes, job="qr_cache_cleanup")


@app.on_event("shutdown")
async def shutdown_event():
    """Application Shutdown"""
    logger.info("shutdown")

    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")

    redis_client.close_redis()


@app.get("/")
async def root():
    """Root Endpoint"""
    return {
        "message": "QR Check-in Service API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health_check(service: Optional[TokenService] = Depends(get_token_service)):
    """
    Health Check Endpoint
    Reports Redis reachability; the service is degraded without it
    """
    redis_status = "not_configured"
    if service is not None:
        redis_status = "healthy" if service.cache.is_healthy() else "unreachable"

    health_status = {
        "status": "healthy" if redis_status == "healthy" else "degraded",
        "environment": settings.environment,
        "services": {
            "api": "running",
            "scheduler": "running" if scheduler.running else "stopped",
            "redis": redis_status,
        }
    }

    if settings.database_url:
        health_status["services"]["database"] = "configured"

    return JSONResponse(
        content=health_status,
        status_code=200 if redis_status == "healthy" else 503
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development"
    )
