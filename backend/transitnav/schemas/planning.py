"""Route planning request and response schemas."""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from transitnav.models.route import TransportMode
from transitnav.schemas.location import LocationInput, LocationOut


class ConfidenceLevel(str, Enum):
    """How far a step's fare and duration can be trusted."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> float:
        return {"high": 1.0, "medium": 0.6, "low": 0.2}[self.value]


class StepSource(str, Enum):
    """Where an assembled step came from."""

    ROUTE = "route"
    REVERSED_ROUTE = "reversed_route"
    SEGMENT = "segment"
    PROVIDER = "provider"
    HEURISTIC = "heuristic"
    WALK_TO_DESTINATION = "walk_to_destination"


class DataAvailability(BaseModel):
    """Provenance tag attached to every step."""

    has_vehicle_data: bool
    confidence: ConfidenceLevel
    reason: str
    fallback: bool = False


class AlternativeOptions(BaseModel):
    """Hints for legs with no known vehicle data."""

    ask_locals: bool = True
    local_phrases: List[str] = Field(default_factory=list)
    walkable: bool


class AlternativeTransport(BaseModel):
    """Suggested vehicle for a leg that would otherwise be walked or guessed."""

    type: TransportMode
    estimated_fare_min: float
    estimated_fare_max: float
    estimated_duration_minutes: int
    instructions: str


class WalkingDirections(BaseModel):
    """Directions for a walking leg."""

    distance_meters: float
    duration_minutes: int
    steps: List[str] = Field(default_factory=list)


class StepEndpoint(BaseModel):
    """Compact location reference used inside steps."""

    id: Optional[UUID] = None
    name: str
    latitude: float
    longitude: float


class EnhancedRouteStep(BaseModel):
    """One leg of a planned route."""

    step_number: int
    transport_mode: TransportMode
    instructions: str
    from_location: StepEndpoint
    to_location: StepEndpoint
    estimated_fare: float = Field(..., ge=0, description="Point fare estimate in NGN")
    fare_min: Optional[float] = None
    fare_max: Optional[float] = None
    estimated_duration_minutes: int
    distance_km: float
    pickup_point: Optional[str] = None
    dropoff_point: Optional[str] = None
    step_id: Optional[UUID] = None
    report_count: int = 0
    accuracy_score: float = Field(default=0.0, ge=0, le=5)
    peak_pricing: bool = False
    data_availability: DataAvailability
    walking_directions: Optional[WalkingDirections] = None
    alternative_transport: List[AlternativeTransport] = Field(default_factory=list)
    alternative_options: Optional[AlternativeOptions] = None


class FinalDestinationInfo(BaseModel):
    """Gap between where the last vehicle leg stops and the requested destination."""

    drop_off: StepEndpoint
    destination: StepEndpoint
    distance_meters: float
    walkable: bool
    instructions: str


class EnhancedRoute(BaseModel):
    """A ranked, fully assembled planning result."""

    route_id: Optional[UUID] = None
    name: str
    source: StepSource
    is_verified: bool = False
    is_reversed: bool = False
    steps: List[EnhancedRouteStep]
    total_estimated_fare: float
    total_fare_min: float
    total_fare_max: float
    total_duration_minutes: int
    total_distance_km: float
    confidence: ConfidenceLevel
    rank_score: float = 0.0
    final_destination_info: Optional[FinalDestinationInfo] = None


class PlanRequest(BaseModel):
    """Request body for route planning."""

    start: LocationInput
    end: LocationInput
    preferred_modes: Optional[List[TransportMode]] = Field(
        default=None,
        description="Restrict graph results to these modes (walking is always allowed)",
    )
    max_fare: Optional[float] = Field(default=None, gt=0, description="Upper bound on total fare, NGN")
    departure_time: Optional[datetime] = Field(
        default=None,
        description="Departure time, used for peak-hour fare adjustment",
    )

    @field_validator("preferred_modes")
    @classmethod
    def drop_unknown_mode(cls, v: Optional[List[TransportMode]]) -> Optional[List[TransportMode]]:
        if v is None:
            return None
        modes = [m for m in dict.fromkeys(v) if m != TransportMode.UNKNOWN]
        return modes or None


class PlanMetadata(BaseModel):
    """How a plan was produced."""

    strategy: str
    tiers_attempted: List[str] = Field(default_factory=list)
    cached: bool = False
    generated_at: datetime


class PlanResponse(BaseModel):
    """Response for a successful plan."""

    start_location: LocationOut
    end_location: LocationOut
    routes: List[EnhancedRoute]
    metadata: PlanMetadata
