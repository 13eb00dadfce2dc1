"""FastAPI application entry point."""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from transitnav.config import settings
from transitnav.api.v1.router import api_router
from transitnav.db.session import engine
from transitnav.models.base import Base
from transitnav.middleware import RequestLoggingMiddleware, setup_logging
from transitnav.core.exceptions import register_exception_handlers
from transitnav.dependencies import get_background, get_provider, get_response_cache


# Setup logging early
setup_logging()
logger = logging.getLogger(__name__)


def validate_startup() -> None:
    """
    Validate configuration at startup.
    Exits with error in production if requirements are not met.
    """
    errors = settings.validate_production_settings()

    if errors:
        logger.error("=" * 60)
        logger.error("CONFIGURATION ERRORS")
        logger.error("=" * 60)
        for error in errors:
            logger.error(f"  - {error}")
        logger.error("=" * 60)

        if settings.is_production():
            logger.critical("Refusing to start in production with this configuration!")
            sys.exit(1)
        else:
            logger.warning("Running in development mode with insecure defaults.")

    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"Directions provider: {'configured' if settings.google_maps_api_key else 'not configured'}")
    logger.info(f"Plan cache: {get_response_cache().backend}")
    logger.info(f"Debug Mode: {settings.debug}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info(f"Starting {settings.app_name}...")

    validate_startup()

    # Create database tables if they don't exist
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database connection established")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        if settings.is_production():
            sys.exit(1)

    logger.info(f"{settings.app_name} started successfully")

    yield

    logger.info("Shutting down...")
    await get_background().drain()
    await get_provider().aclose()
    await get_response_cache().close()
    await engine.dispose()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.app_name,
    description="""
Route discovery and planning for crowdsourced Nigerian transit
(bus, taxi, keke, okada and walking legs).

## Error Responses

All errors follow a consistent format:
```json
{
  "error": {
    "code": "ERROR_CODE",
    "message": "Human-readable message",
    "request_id": "abc123"
  }
}
```
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production() else None,
    redoc_url="/redoc" if not settings.is_production() else None,
    openapi_url="/openapi.json" if not settings.is_production() else None,
)

# ============================================================================
# Register Exception Handlers (before middleware)
# ============================================================================
register_exception_handlers(app)

# ============================================================================
# Middleware Stack (order matters - first added = last executed)
# ============================================================================

# 1. Request logging (outermost - captures everything)
app.add_middleware(RequestLoggingMiddleware)

# 2. CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=["X-Request-ID"],
    max_age=600,
)


# ============================================================================
# API Routes
# ============================================================================

app.include_router(api_router, prefix="/api/v1")


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint with API information.
    """
    response = {
        "name": settings.app_name,
        "version": "1.0.0",
        "health": "/health",
    }

    if not settings.is_production():
        response["docs"] = "/docs"
        response["redoc"] = "/redoc"

    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
