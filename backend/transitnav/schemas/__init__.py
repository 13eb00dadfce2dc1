# Pydantic schemas
from transitnav.schemas.common import Coordinate
from transitnav.schemas.location import LocationInput, LocationOut, NearbyLocation, NearbyLocationsResponse
from transitnav.schemas.planning import (
    AlternativeOptions,
    AlternativeTransport,
    ConfidenceLevel,
    DataAvailability,
    EnhancedRoute,
    EnhancedRouteStep,
    FinalDestinationInfo,
    PlanMetadata,
    PlanRequest,
    PlanResponse,
    StepEndpoint,
    StepSource,
    WalkingDirections,
)
from transitnav.schemas.feedback import (
    CrowdsourcedAggregate,
    FareFeedbackRequest,
    FareReport,
    StepFareSummary,
)

__all__ = [
    "Coordinate",
    "LocationInput",
    "LocationOut",
    "NearbyLocation",
    "NearbyLocationsResponse",
    "AlternativeOptions",
    "AlternativeTransport",
    "ConfidenceLevel",
    "DataAvailability",
    "EnhancedRoute",
    "EnhancedRouteStep",
    "FinalDestinationInfo",
    "PlanMetadata",
    "PlanRequest",
    "PlanResponse",
    "StepEndpoint",
    "StepSource",
    "WalkingDirections",
    "CrowdsourcedAggregate",
    "FareFeedbackRequest",
    "FareReport",
    "StepFareSummary",
]
