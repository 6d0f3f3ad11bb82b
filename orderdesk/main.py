"""
FastAPI Application Entry Point

OrderDesk - multi-tenant restaurant ordering backend.
Supports both Mock services (development) and Real APIs (production).

Routers:
    - Public: store registration, storefront menu/checkout, tracking, KDS link
    - Store: staff back office (X-Store-Token)
    - Driver: driver app (X-Driver-Token)
    - Admin: platform administration (X-Admin-Token)
    - WebSockets: change feed for dashboards and drivers
    - GET /health: System health check
"""

import logging
from contextlib import asynccontextmanager

import redis
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.config import get_settings, setup_logging
from orderdesk.core.exceptions import register_exception_handlers
from orderdesk.database import async_session_maker, engine, get_db, init_db
from orderdesk.models import utcnow
from orderdesk.routers import admin, catalog, driver, public, store, ws
from orderdesk.schemas import HealthResponse
from orderdesk.services.billing import seed_default_plans
from orderdesk.services.notifications import get_notification_service
from orderdesk.services.payment import get_payment_service

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    async with async_session_maker() as session:
        await seed_default_plans(session)
    logger.info("✅ Database initialized")

    logger.info(f"✅ Payment Service: {get_payment_service().provider_name}")
    logger.info(f"✅ Notification Service: {get_notification_service().provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        for key in missing:
            logger.warning(f"⚠️ Missing production config: {key}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Multi-tenant restaurant ordering: digital menus, delivery, pickup, "
        "table and point-of-sale orders, driver dispatch, kitchen display and "
        "subscription billing."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(public.router)
app.include_router(store.router)
app.include_router(catalog.router)
app.include_router(driver.router)
app.include_router(admin.router)
app.include_router(ws.router)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍕 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except redis.RedisError as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    payment_status = "healthy" if await get_payment_service().health_check() else "unhealthy"
    notification_status = "healthy" if await get_notification_service().health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, payment_status, notification_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        payments=payment_status,
        notifications=notification_status,
        timestamp=utcnow(),
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orderdesk.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
