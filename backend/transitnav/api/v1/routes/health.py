"""Health check endpoints."""

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from transitnav.db.session import get_db
from transitnav.dependencies import get_response_cache
from transitnav.services.cache import ResponseCache

router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "healthy"}


@router.get("/db")
async def database_health(response: Response, db: AsyncSession = Depends(get_db)):
    """Check database connection health.

    Returns HTTP 503 if database is unavailable.
    """
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        response.status_code = 503
        return {"status": "unhealthy", "database": "disconnected", "error": str(e)}


@router.get("/ready")
async def readiness_check(
    response: Response,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_response_cache),
):
    """Readiness check for the database and the plan cache backend.

    Returns HTTP 503 if either is unavailable.
    """
    checks = {
        "database": False,
        "cache": False,
    }
    errors = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        errors["database"] = str(e)

    try:
        checks["cache"] = await cache.ping()
        if not checks["cache"]:
            errors["cache"] = f"{cache.backend} cache did not answer ping"
    except Exception as e:
        errors["cache"] = str(e)

    all_healthy = all(checks.values())
    if not all_healthy:
        response.status_code = 503

    result = {
        "status": "ready" if all_healthy else "not_ready",
        "checks": checks,
        "cache_backend": cache.backend,
    }
    if errors:
        result["errors"] = errors
    return result
