"""Geometry-only plans when the route graph has nothing."""

import asyncio
import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from transitnav.core.exceptions import NoPathFound, ProviderUnavailable
from transitnav.models.route import TransportMode
from transitnav.schemas.planning import StepEndpoint
from transitnav.services import distance as geo
from transitnav.services.geocoding import GeocodingProvider

logger = logging.getLogger(__name__)


class GeometricRoute(BaseModel):
    """Distance and duration between two points without any vehicle data."""

    origin: StepEndpoint
    destination: StepEndpoint
    mode: TransportMode
    distance_km: float
    duration_minutes: int
    instructions: List[str] = Field(default_factory=list)
    fallback: bool = False
    reason: Optional[str] = None


class ExternalDirectionsFallback:
    """Wraps the directions provider, then the straight-line heuristic."""

    def __init__(
        self,
        provider: GeocodingProvider,
        timeout: float = 8.0,
        walking_speed_kmh: float = geo.WALKING_SPEED_KMH,
        walkable_threshold_meters: float = 2000.0,
    ):
        self.provider = provider
        self.timeout = timeout
        self.walking_speed_kmh = walking_speed_kmh
        self.walkable_threshold_meters = walkable_threshold_meters

    def straight_line_km(self, origin: StepEndpoint, destination: StepEndpoint) -> float:
        return geo.haversine_km(origin.latitude, origin.longitude, destination.latitude, destination.longitude)

    def is_walkable(self, distance_km: float) -> bool:
        return distance_km * 1000.0 < self.walkable_threshold_meters

    async def get_directions(
        self,
        origin: StepEndpoint,
        destination: StepEndpoint,
        mode: Optional[TransportMode] = None,
    ) -> GeometricRoute:
        """Provider directions. Raises ProviderUnavailable or NoPathFound.

        Without an explicit mode, short trips are requested on foot and longer
        ones by road.
        """
        if mode is None:
            walkable = self.is_walkable(self.straight_line_km(origin, destination))
            mode = TransportMode.WALK if walkable else TransportMode.UNKNOWN

        try:
            result = await asyncio.wait_for(
                self.provider.directions(
                    (origin.latitude, origin.longitude),
                    (destination.latitude, destination.longitude),
                    mode,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable("directions", "timeout") from e

        if result is None:
            raise NoPathFound(f"Provider has no route from {origin.name} to {destination.name}")

        return GeometricRoute(
            origin=origin,
            destination=destination,
            mode=mode,
            distance_km=round(result.distance_meters / 1000.0, 3),
            duration_minutes=max(int(round(result.duration_seconds / 60.0)), 1),
            instructions=[s.instruction for s in result.steps if s.instruction],
        )

    def estimate(
        self,
        origin: StepEndpoint,
        destination: StepEndpoint,
        reason: Optional[str] = None,
    ) -> GeometricRoute:
        """Straight-line distance at walking speed. Always succeeds."""
        distance_km = self.straight_line_km(origin, destination)
        walkable = self.is_walkable(distance_km)
        direction = geo.cardinal_direction(
            geo.bearing(origin.latitude, origin.longitude, destination.latitude, destination.longitude)
        )
        if walkable:
            text = f"Walk about {geo.format_distance(distance_km)} {direction} to {destination.name}"
        else:
            text = (
                f"{destination.name} is about {geo.format_distance(distance_km)} {direction}; "
                f"ask locals for a bus, keke or okada heading there"
            )
        return GeometricRoute(
            origin=origin,
            destination=destination,
            mode=TransportMode.WALK if walkable else TransportMode.UNKNOWN,
            distance_km=round(distance_km, 3),
            duration_minutes=geo.walking_minutes(distance_km, self.walking_speed_kmh),
            instructions=[text],
            fallback=True,
            reason=reason,
        )

    async def route(
        self,
        origin: StepEndpoint,
        destination: StepEndpoint,
        mode: Optional[TransportMode] = None,
    ) -> GeometricRoute:
        """Provider directions when they work, otherwise the heuristic estimate."""
        try:
            return await self.get_directions(origin, destination, mode)
        except (ProviderUnavailable, NoPathFound) as e:
            logger.info(f"Directions fallback to heuristic for {origin.name} -> {destination.name}: {e}")
            return self.estimate(origin, destination, reason=str(e))
