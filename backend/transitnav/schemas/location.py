"""Location request and response schemas."""

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from transitnav.models.location import LocationType
from transitnav.schemas.common import Coordinate


class LocationInput(BaseModel):
    """A location given as exactly one of: stored identifier, coordinates, free text."""

    location_id: Optional[UUID] = Field(default=None, description="Identifier of a stored location")
    coordinates: Optional[Coordinate] = Field(default=None, description="Latitude/longitude pair")
    text: Optional[str] = Field(
        default=None,
        min_length=2,
        max_length=300,
        description="Free-text address or place name",
    )

    @model_validator(mode="after")
    def check_exactly_one(self) -> "LocationInput":
        given = [v for v in (self.location_id, self.coordinates, self.text) if v is not None]
        if len(given) != 1:
            raise ValueError("Provide exactly one of location_id, coordinates or text")
        return self

    def describe(self) -> str:
        """Short form for logs and audit entries."""
        if self.location_id is not None:
            return f"id:{self.location_id}"
        if self.coordinates is not None:
            return f"{self.coordinates.latitude:.5f},{self.coordinates.longitude:.5f}"
        return f"text:{self.text[:40]}"


class LocationOut(BaseModel):
    """A resolved location."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    latitude: float
    longitude: float
    location_type: LocationType
    is_verified: bool = False


class NearbyLocation(LocationOut):
    """A location with its distance from the query point."""

    distance_meters: float


class NearbyLocationsResponse(BaseModel):
    """Locations around a point, nearest first."""

    center: Coordinate
    radius_meters: float
    locations: List[NearbyLocation] = Field(default_factory=list)
