"""
app/main.py

Purpose: Application entry point

- Initializes FastAPI app
- Loads configuration and logging
- Registers API routes (webhook) and exception handlers
- No business logic should be written here
- Manages application lifecycle (startup/shutdown, scheduler, webhook)
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import time

from app.core.config import settings, validate_settings
from app.core.errors import add_exception_handlers
from app.core.logging import setup_logging, get_logger
from app.db.mongo import connect_to_mongo, close_mongo_connection, check_database_health
from app.db.indexes import create_indexes
from app.flow.dispatcher import get_dispatcher
from app.schemas.response import HealthResponse
from app.services.completion_service import close_completion_service
from app.services.health_service import get_health_monitor
from app.services.scheduler_service import close_scheduler, get_scheduler, register_jobs
from app.services.telegram_service import close_telegram_service, get_telegram_service
from app.api import webhook

# Initialize logging first
setup_logging()
logger = get_logger(__name__)

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("🚀 Starting NutriPal application...")

    try:
        logger.info("Validating configuration...")
        validate_settings()
        logger.info("✅ Configuration validated")

        logger.info("Connecting to MongoDB...")
        await connect_to_mongo()
        logger.info("✅ MongoDB connected")

        logger.info("Creating database indexes...")
        await create_indexes()
        logger.info("✅ Database indexes created")

        if settings.SERVER_URL:
            url = f"{settings.SERVER_URL.rstrip('/')}{settings.API_PREFIX}/telegram-webhook"
            result = await get_telegram_service().set_webhook(url, settings.TELEGRAM_WEBHOOK_SECRET)
            if not result.get("ok"):
                logger.warning(f"⚠️ Webhook registration failed: {result}")

        if settings.SCHEDULER_ENABLED:
            scheduler = get_scheduler()
            register_jobs(scheduler, get_dispatcher(), get_health_monitor())
            scheduler.start()

        logger.info("🎉 NutriPal application started successfully!")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Debug Mode: {settings.DEBUG}")

    except Exception as e:
        logger.critical(f"Failed to start application: {str(e)}", exc_info=True)
        raise

    yield  # Application runs here

    # Shutdown
    logger.info("🛑 Shutting down NutriPal application...")

    try:
        close_scheduler()
        await close_telegram_service()
        await close_completion_service()
        logger.info("✅ HTTP clients closed")

        await close_mongo_connection()
        logger.info("✅ MongoDB connection closed")

        logger.info("👋 NutriPal application shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}", exc_info=True)


app = FastAPI(
    title="NutriPal - Personal Health Assistant",
    description="Telegram bot backend for meal, water and activity tracking",
    version=APP_VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time header to all responses."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    if process_time > 5.0:
        logger.warning(
            f"Slow request detected: {request.method} {request.url.path}",
            extra={"process_time": process_time}
        )

    return response


app.include_router(webhook.router, prefix=settings.API_PREFIX, tags=["Webhook"])


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - basic info."""
    return {
        "name": "NutriPal API",
        "version": APP_VERSION,
        "description": "Telegram personal health assistant",
        "status": "running",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Probe status from the last scheduled run plus a live database ping.
    """
    probe = get_health_monitor().snapshot()
    health = HealthResponse(
        status=probe["status"],
        timestamp=time.time(),
        environment=settings.ENVIRONMENT,
        version=APP_VERSION,
        checks=probe["checks"],
        last_probe_at=probe["checked_at"],
    )

    try:
        db_healthy = await check_database_health()
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        db_healthy = False

    health.checks["database"] = "healthy" if db_healthy else "unhealthy"
    if not db_healthy:
        health.status = "degraded"

    status_code = 200 if health.status == "ok" else 503
    return JSONResponse(content=health.model_dump(), status_code=status_code)


@app.get("/live", tags=["Health"])
async def liveness_check():
    """
    Liveness probe - indicates if app is alive.
    """
    return {"status": "alive"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower()
    )
