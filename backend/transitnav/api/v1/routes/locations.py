"""Location resolution and lookup endpoints."""

from fastapi import APIRouter, Depends, Query, Request

from transitnav.core.audit import audit_log, AuditAction
from transitnav.core.exceptions import LocationNotFound, ResolutionFailed, ResourceNotFoundException, ValidationException
from transitnav.dependencies import get_resolver
from transitnav.middleware.request_logging import get_client_ip
from transitnav.schemas.common import Coordinate
from transitnav.schemas.location import LocationInput, LocationOut, NearbyLocation, NearbyLocationsResponse
from transitnav.services.location_resolver import LocationResolver

router = APIRouter()


@router.post("/resolve", response_model=LocationOut)
async def resolve_location(
    location_input: LocationInput,
    request: Request,
    resolver: LocationResolver = Depends(get_resolver),
) -> LocationOut:
    """
    Resolve an id, coordinates or free text to a stored location.

    Unknown places inside the service area are geocoded and stored as
    unverified locations.
    """
    request_id = getattr(request.state, "request_id", "unknown")
    client_ip = get_client_ip(request)

    try:
        location = await resolver.resolve(location_input)
    except LocationNotFound:
        raise ResourceNotFoundException(resource="Location", resource_id=str(location_input.location_id))
    except ResolutionFailed as e:
        audit_log.log(
            AuditAction.LOCATION_RESOLVE,
            request_id=request_id,
            client_ip=client_ip,
            details={"input": location_input.describe()},
            success=False,
            error_message=str(e),
        )
        raise ValidationException(detail=str(e), field="location")

    audit_log.log(
        AuditAction.LOCATION_RESOLVE,
        request_id=request_id,
        client_ip=client_ip,
        resource_type="location",
        resource_id=str(location.id),
        details={"input": location_input.describe()},
    )
    return LocationOut.model_validate(location)


@router.get("/nearby", response_model=NearbyLocationsResponse)
async def nearby_locations(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius: float = Query(500.0, gt=0, le=5000, description="Search radius in metres"),
    limit: int = Query(20, ge=1, le=100),
    resolver: LocationResolver = Depends(get_resolver),
) -> NearbyLocationsResponse:
    """Active locations around a point, nearest first."""
    audit_log.log(
        AuditAction.LOCATION_NEARBY,
        request_id=getattr(request.state, "request_id", "unknown"),
        client_ip=get_client_ip(request),
        details={"center": f"{lat:.5f},{lng:.5f}", "radius": radius},
    )
    nearby = await resolver.find_nearby(lat, lng, radius, limit=limit)
    return NearbyLocationsResponse(
        center=Coordinate(latitude=lat, longitude=lng),
        radius_meters=radius,
        locations=[
            NearbyLocation(
                **LocationOut.model_validate(location).model_dump(),
                distance_meters=round(distance, 1),
            )
            for location, distance in nearby
        ],
    )
