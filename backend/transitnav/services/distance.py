"""Geometric and travel-time helpers. Pure functions, no I/O."""

import math
from typing import Tuple

from shapely import prepared
from shapely.geometry import Point, box

EARTH_RADIUS_KM = 6371.0

# 1 degree of latitude is ~111.32 km everywhere; longitude shrinks with cos(lat)
KM_PER_DEGREE = 111.32

WALKING_SPEED_KMH = 5.0
DRIVING_SPEED_KMH = 30.0
TRAFFIC_FACTOR = 1.3

CARDINAL_DIRECTIONS = [
    "north",
    "north-east",
    "east",
    "south-east",
    "south",
    "south-west",
    "west",
    "north-west",
]


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return haversine_km(lat1, lng1, lat2, lng2) * 1000.0


def bounding_box(lat: float, lng: float, radius_km: float) -> Tuple[float, float, float, float]:
    """Box around a point as ``(min_lat, max_lat, min_lng, max_lng)``.

    The box contains the whole circle of ``radius_km``, so it can be used as an
    index-friendly prefilter before an exact haversine check.
    """
    lat_delta = radius_km / KM_PER_DEGREE
    cos_lat = max(math.cos(math.radians(lat)), 1e-6)
    lng_delta = radius_km / (KM_PER_DEGREE * cos_lat)
    return (lat - lat_delta, lat + lat_delta, lng - lng_delta, lng + lng_delta)


def bearing(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Initial bearing from point 1 to point 2 in degrees [0, 360)."""
    d_lng = math.radians(lng2 - lng1)
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    y = math.sin(d_lng) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lng)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def cardinal_direction(bearing_degrees: float) -> str:
    """Eight-point compass name for a bearing."""
    index = int(math.floor((bearing_degrees % 360.0) / 45.0 + 0.5)) % 8
    return CARDINAL_DIRECTIONS[index]


def walking_minutes(distance_km: float, speed_kmh: float = WALKING_SPEED_KMH) -> int:
    """Walking time in whole minutes, rounded up."""
    if distance_km <= 0:
        return 0
    return int(math.ceil(distance_km / speed_kmh * 60))


def driving_minutes(
    distance_km: float,
    speed_kmh: float = DRIVING_SPEED_KMH,
    traffic_factor: float = TRAFFIC_FACTOR,
) -> int:
    """Driving time in whole minutes including a congestion multiplier, rounded up."""
    if distance_km <= 0:
        return 0
    return int(math.ceil(distance_km / speed_kmh * 60 * traffic_factor))


def format_distance(distance_km: float) -> str:
    if distance_km < 1:
        return f"{int(round(distance_km * 1000))} m"
    return f"{distance_km:.1f} km"


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min"
    hours, rest = divmod(minutes, 60)
    return f"{hours} hr {rest} min" if rest else f"{hours} hr"


class ServiceArea:
    """Rectangular service region (defaults to Nigeria)."""

    def __init__(
        self,
        min_lat: float = 4.0,
        max_lat: float = 14.0,
        min_lng: float = 2.5,
        max_lng: float = 15.0,
    ):
        self.min_lat = min_lat
        self.max_lat = max_lat
        self.min_lng = min_lng
        self.max_lng = max_lng
        self._polygon = box(min_lng, min_lat, max_lng, max_lat)
        self._prepared = prepared.prep(self._polygon)

    @classmethod
    def from_settings(cls, settings) -> "ServiceArea":
        return cls(
            min_lat=settings.service_min_lat,
            max_lat=settings.service_max_lat,
            min_lng=settings.service_min_lng,
            max_lng=settings.service_max_lng,
        )

    def contains(self, lat: float, lng: float) -> bool:
        # covers() keeps points on the boundary inside the area
        return self._prepared.covers(Point(lng, lat))

    def bias_bounds(self) -> str:
        """Bounds string in the ``south,west|north,east`` form geocoders accept."""
        return f"{self.min_lat},{self.min_lng}|{self.max_lat},{self.max_lng}"
