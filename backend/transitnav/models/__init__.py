# Database models
from transitnav.models.base import Base
from transitnav.models.location import Location, LocationType
from transitnav.models.route import Route, RouteStep, TransportMode
from transitnav.models.route_segment import RouteSegment
from transitnav.models.fare_feedback import FareFeedback

__all__ = [
    "Base",
    "Location",
    "LocationType",
    "Route",
    "RouteStep",
    "TransportMode",
    "RouteSegment",
    "FareFeedback",
]
