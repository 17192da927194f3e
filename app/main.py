"""
app/main.py

Purpose: Application entry point

- Initializes FastAPI app
- Loads configuration and logging
- Registers API routes (gateway webhook, web onboarding, probes)
- No business logic should be written here
- Manages application lifecycle (store backend, HTTP clients)
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import time

from app.core.config import settings, validate_settings
from app.core.errors import add_exception_handlers
from app.core.logging import setup_logging, get_logger
from app.db.mongo import connect_to_mongo, close_mongo_connection
from app.db.indexes import create_indexes
from app.db.store import get_store, init_store
from app.services.claude_service import close_claude_service
from app.services.linq_service import close_linq_service
from app.services.resy_service import close_resy_service
from app.api import auth_setup, webhook

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
    logger.info("🚀 Starting TableText application...")

    try:
        logger.info("Validating configuration...")
        validate_settings()
        logger.info("✅ Configuration validated")

        if settings.STORE_BACKEND == "mongo":
            logger.info("Connecting to MongoDB...")
            await connect_to_mongo()
            logger.info("✅ MongoDB connected")

            logger.info("Creating database indexes...")
            await create_indexes()
            logger.info("✅ Database indexes created")

        await init_store()
        logger.info(f"✅ Store backend ready ({settings.STORE_BACKEND})")

        logger.info("🎉 TableText application started successfully!")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Debug Mode: {settings.DEBUG}")

    except Exception as e:
        logger.critical(f"Failed to start application: {str(e)}", exc_info=True)
        raise

    yield  # Application runs here

    # Shutdown
    logger.info("🛑 Shutting down TableText application...")

    try:
        await close_resy_service()
        await close_linq_service()
        await close_claude_service()
        logger.info("✅ HTTP clients closed")

        if settings.STORE_BACKEND == "mongo":
            await close_mongo_connection()
            logger.info("✅ MongoDB connection closed")

        logger.info("👋 TableText application shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}", exc_info=True)


# Create FastAPI app with lifespan
app = FastAPI(
    title="TableText - Restaurant Reservations by Text",
    description="Text-message reservation agent for Resy over iMessage, RCS and SMS",
    version=APP_VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG,
    docs_url="/docs" if settings.is_development else None,  # Disable docs in production
    redoc_url="/redoc" if settings.is_development else None,
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time header to all responses."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    # The webhook must acknowledge quickly; processing runs after the response
    if process_time > 5.0:
        logger.warning(f"Slow request detected: {request.method} {request.url.path} ({process_time:.2f}s)")

    return response


add_exception_handlers(app)

# Register API routes
app.include_router(webhook.router, prefix=settings.API_PREFIX, tags=["Webhook"])
app.include_router(auth_setup.router, tags=["Onboarding"])


# Root endpoint
@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - basic info."""
    return {
        "name": "TableText API",
        "version": APP_VERSION,
        "description": "Restaurant reservations over text message",
        "status": "running",
        "environment": settings.ENVIRONMENT
    }


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.
    Checks store connectivity and reports which integrations are configured.
    """
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.ENVIRONMENT,
        "version": APP_VERSION,
        "checks": {}
    }

    store_healthy = await get_store().ping()
    health_status["checks"]["store"] = "healthy" if store_healthy else "unhealthy"
    if not store_healthy:
        health_status["status"] = "unhealthy"

    health_status["checks"]["linq"] = "configured" if settings.LINQ_API_TOKEN else "not_configured"
    health_status["checks"]["anthropic"] = "configured" if settings.ANTHROPIC_API_KEY else "not_configured"

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JSONResponse(content=health_status, status_code=status_code)


# Readiness probe (for Kubernetes/orchestration)
@app.get("/ready", tags=["Health"])
async def readiness_check():
    """
    Readiness probe - indicates if app is ready to receive traffic.
    """
    if await get_store().ping():
        return {"status": "ready"}
    return JSONResponse(
        status_code=503,
        content={"status": "not_ready", "reason": "store_unavailable"}
    )


# Liveness probe (for Kubernetes/orchestration)
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
