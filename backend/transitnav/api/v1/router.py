"""API v1 router aggregation."""

from fastapi import APIRouter

from transitnav.api.v1.routes import planning, fares, locations, health

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["Health"])
api_router.include_router(planning.router, prefix="/routes", tags=["Planning"])
api_router.include_router(fares.router, prefix="/fares", tags=["Fares"])
api_router.include_router(locations.router, prefix="/locations", tags=["Locations"])
