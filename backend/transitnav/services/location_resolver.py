"""Turns identifiers, coordinates and free text into stored Location records."""

import difflib
import logging
import re
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from transitnav.core.audit import audit_log, AuditAction
from transitnav.core.exceptions import LocationNotFound, ProviderUnavailable, ResolutionFailed
from transitnav.models.location import Location, LocationType
from transitnav.models.route import TransportMode
from transitnav.schemas.location import LocationInput
from transitnav.services.background import BackgroundTaskRegistry
from transitnav.services.distance import ServiceArea, bounding_box, haversine_meters
from transitnav.services.geocoding import GeocodeResult, GeocodingProvider

logger = logging.getLogger(__name__)

# Checked in order so that specific transit types win over generic ones
PLACE_TYPE_PRIORITY: List[Tuple[str, LocationType]] = [
    ("bus_station", LocationType.BUS_STOP),
    ("train_station", LocationType.TRAIN_STATION),
    ("subway_station", LocationType.TRAIN_STATION),
    ("light_rail_station", LocationType.TRAIN_STATION),
    ("transit_station", LocationType.MOTOR_PARK),
    ("taxi_stand", LocationType.TAXI_STAND),
    ("market", LocationType.MARKET),
    ("supermarket", LocationType.MARKET),
    ("hospital", LocationType.HOSPITAL),
    ("school", LocationType.SCHOOL),
    ("university", LocationType.SCHOOL),
    ("shopping_mall", LocationType.COMMERCIAL),
    ("point_of_interest", LocationType.LANDMARK),
    ("establishment", LocationType.COMMERCIAL),
]

NAME_COMPONENT_TYPES = ("establishment", "point_of_interest", "premise")
FALLBACK_NAME_COMPONENT_TYPES = ("route", "sublocality", "neighborhood")

FUZZY_MATCH_THRESHOLD = 0.6
_TOKEN = re.compile(r"[a-z0-9]+")


def parse_address_components(result: GeocodeResult) -> Dict[str, Optional[str]]:
    """City, state and country from provider address components."""
    parsed = {"city": None, "state": None, "country": None}
    for component in result.address_components:
        types = component.types
        if "locality" in types or ("administrative_area_level_2" in types and not parsed["city"]):
            parsed["city"] = component.long_name
        elif "administrative_area_level_1" in types:
            parsed["state"] = component.long_name
        elif "country" in types:
            parsed["country"] = component.long_name
    return parsed


def extract_location_name(result: GeocodeResult) -> str:
    """Most specific human name available in a geocoder result."""
    for wanted in (NAME_COMPONENT_TYPES, FALLBACK_NAME_COMPONENT_TYPES):
        for component in result.address_components:
            if any(t in component.types for t in wanted):
                return component.long_name
    head = (result.formatted_address or "").split(",")[0].strip()
    return head or "Unnamed location"


def determine_location_type(place_types: List[str]) -> LocationType:
    for place_type, location_type in PLACE_TYPE_PRIORITY:
        if place_type in place_types:
            return location_type
    return LocationType.RESIDENTIAL


def determine_transport_modes(place_types: List[str]) -> List[str]:
    modes = []
    if "bus_station" in place_types or "transit_station" in place_types:
        modes.append(TransportMode.BUS.value)
    modes.extend([TransportMode.WALK.value, TransportMode.TAXI.value])
    if "establishment" in place_types:
        modes.append(TransportMode.KEKE.value)
    return modes


def name_similarity(query: str, candidate: str) -> float:
    return difflib.SequenceMatcher(None, query.lower().strip(), candidate.lower().strip()).ratio()


def location_from_geocode(
    result: GeocodeResult,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> Location:
    """Unsaved, unverified Location built from a geocoder result.

    When explicit coordinates are given (reverse geocoding) they win over the
    provider's snapped point.
    """
    address = parse_address_components(result)
    return Location(
        name=extract_location_name(result)[:200],
        display_name=(result.formatted_address or None),
        address=result.formatted_address or None,
        city=address["city"],
        state=address["state"],
        country=address["country"] or "Nigeria",
        latitude=latitude if latitude is not None else result.latitude,
        longitude=longitude if longitude is not None else result.longitude,
        location_type=determine_location_type(result.types),
        transport_modes=determine_transport_modes(result.types),
        landmarks=[],
        google_place_id=result.place_id,
        is_verified=False,
        is_active=True,
        search_count=0,
        route_count=0,
    )


class LocationResolver:
    """Resolves location inputs, creating unverified Locations on demand.

    Each resolution uses its own session, so both endpoints of a plan can be
    resolved concurrently.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        provider: GeocodingProvider,
        background: BackgroundTaskRegistry,
        match_radius_meters: float = 100.0,
        service_area: Optional[ServiceArea] = None,
        max_text_matches: int = 5,
    ):
        self._session_factory = session_factory
        self.provider = provider
        self.background = background
        self.match_radius_meters = match_radius_meters
        self.service_area = service_area or ServiceArea()
        self.max_text_matches = max_text_matches

    async def resolve(self, location_input: LocationInput) -> Location:
        """Resolve any supported input. Raises ResolutionFailed (or LocationNotFound)."""
        if location_input.location_id is not None:
            location = await self.resolve_by_id(location_input.location_id)
        elif location_input.coordinates is not None:
            location = await self.resolve_by_coordinates(
                location_input.coordinates.latitude,
                location_input.coordinates.longitude,
            )
        else:
            location = await self.resolve_by_text(location_input.text)

        self.background.spawn(
            self.increment_search_count(location.id),
            name=f"location-search-count:{location.id}",
        )
        return location

    async def resolve_by_id(self, location_id: UUID) -> Location:
        async with self._session_factory() as session:
            location = await session.get(Location, location_id)
        if location is None or not location.is_active:
            raise LocationNotFound(location_id)
        return location

    async def resolve_by_coordinates(self, latitude: float, longitude: float) -> Location:
        if not self.service_area.contains(latitude, longitude):
            raise ResolutionFailed(f"Coordinates {latitude},{longitude} are outside the service area")

        nearby = await self.find_nearby(latitude, longitude, self.match_radius_meters, limit=1)
        if nearby:
            location, distance = nearby[0]
            logger.debug(f"Matched {latitude},{longitude} to {location.name} ({distance:.0f}m)")
            return location

        try:
            results = await self.provider.reverse_geocode(latitude, longitude)
        except ProviderUnavailable as e:
            raise ResolutionFailed(f"Reverse geocoding failed: {e.reason}") from e
        if not results:
            raise ResolutionFailed(f"No address found for {latitude},{longitude}")

        return await self._persist(location_from_geocode(results[0], latitude, longitude))

    async def resolve_by_text(self, text: str) -> Location:
        query = (text or "").strip()
        if not query:
            raise ResolutionFailed("Empty location text")

        matches = await self.search_by_name(query)
        if matches:
            return matches[0]

        try:
            results = await self.provider.geocode(query)
        except ProviderUnavailable as e:
            raise ResolutionFailed(f"Geocoding failed: {e.reason}") from e

        results = [r for r in results if self.service_area.contains(r.latitude, r.longitude)]
        if not results:
            raise ResolutionFailed(f"No match for '{query}'")

        best = results[0]
        nearby = await self.find_nearby(best.latitude, best.longitude, self.match_radius_meters, limit=1)
        if nearby:
            return nearby[0][0]

        return await self._persist(location_from_geocode(best))

    async def find_nearby(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float,
        limit: int = 20,
    ) -> List[Tuple[Location, float]]:
        """Active locations within ``radius_meters``, nearest first, with distances."""
        min_lat, max_lat, min_lng, max_lng = bounding_box(latitude, longitude, radius_meters / 1000.0)
        query = select(Location).where(
            Location.is_active == True,
            Location.latitude.between(min_lat, max_lat),
            Location.longitude.between(min_lng, max_lng),
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            candidates = result.scalars().all()

        within = []
        for location in candidates:
            distance = haversine_meters(latitude, longitude, location.latitude, location.longitude)
            if distance <= radius_meters:
                within.append((location, distance))
        within.sort(key=lambda pair: pair[1])
        return within[:limit]

    async def search_by_name(self, text: str) -> List[Location]:
        """Substring match first, then token match ranked by name similarity."""
        pattern = f"%{text}%"
        async with self._session_factory() as session:
            result = await session.execute(
                select(Location)
                .where(
                    Location.is_active == True,
                    or_(Location.name.ilike(pattern), Location.address.ilike(pattern)),
                )
                .order_by(Location.is_verified.desc(), Location.search_count.desc())
                .limit(self.max_text_matches)
            )
            substring_matches = list(result.scalars().all())
            if substring_matches:
                return substring_matches

            tokens = [t for t in _TOKEN.findall(text.lower()) if len(t) >= 3]
            if not tokens:
                return []
            result = await session.execute(
                select(Location)
                .where(
                    Location.is_active == True,
                    or_(*[Location.name.ilike(f"%{t}%") for t in tokens]),
                )
                .limit(50)
            )
            token_matches = list(result.scalars().all())

        scored = [(name_similarity(text, loc.name), loc) for loc in token_matches]
        scored = [pair for pair in scored if pair[0] >= FUZZY_MATCH_THRESHOLD]
        scored.sort(key=lambda pair: (-pair[0], -(pair[1].search_count or 0)))
        return [loc for _, loc in scored[: self.max_text_matches]]

    async def increment_search_count(self, location_id: UUID) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Location)
                .where(Location.id == location_id)
                .values(search_count=Location.search_count + 1)
            )
            await session.commit()

    async def _persist(self, location: Location) -> Location:
        async with self._session_factory() as session:
            session.add(location)
            await session.commit()
        logger.info(f"Created unverified location {location.name} ({location.latitude}, {location.longitude})")
        audit_log.log_contribution(
            AuditAction.LOCATION_CREATE,
            request_id="resolver",
            resource_type="location",
            resource_id=str(location.id),
            details={"name": location.name, "place_id": location.google_place_id},
        )
        return location
