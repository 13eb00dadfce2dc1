"""Shared fixtures: a throwaway SQLite database, a scriptable provider and seed helpers."""

import asyncio
from typing import List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from transitnav.core.exceptions import ProviderUnavailable
from transitnav.models import Base, Location, LocationType, Route, RouteSegment, RouteStep, TransportMode
from transitnav.services.background import BackgroundTaskRegistry
from transitnav.services.geocoding import DirectionsResult, DirectionsStep, GeocodeResult


class FakeProvider:
    """In-process stand-in for the maps provider.

    Each operation returns its configured answer, raises ProviderUnavailable
    when ``fail`` is set, or sleeps for ``delay`` seconds first.
    """

    def __init__(
        self,
        geocode_results: Optional[List[GeocodeResult]] = None,
        reverse_results: Optional[List[GeocodeResult]] = None,
        directions_result: Optional[DirectionsResult] = None,
        delay: float = 0.0,
        fail: bool = False,
    ):
        self.geocode_results = geocode_results or []
        self.reverse_results = reverse_results or []
        self.directions_result = directions_result
        self.delay = delay
        self.fail = fail
        self.calls = []

    async def _pause(self, operation: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ProviderUnavailable(operation, "offline")

    async def geocode(self, address):
        self.calls.append(("geocode", address))
        await self._pause("geocode")
        return list(self.geocode_results)

    async def reverse_geocode(self, latitude, longitude):
        self.calls.append(("reverse_geocode", (latitude, longitude)))
        await self._pause("reverse_geocode")
        return list(self.reverse_results)

    async def directions(self, origin, destination, mode):
        self.calls.append(("directions", (origin, destination, mode)))
        await self._pause("directions")
        return self.directions_result

    async def aclose(self):
        return None


def driving_directions(distance_meters: float = 9000.0, duration_seconds: float = 1500.0) -> DirectionsResult:
    return DirectionsResult(
        distance_meters=distance_meters,
        duration_seconds=duration_seconds,
        steps=[
            DirectionsStep(instruction="Head north on Broad Street", distance_meters=400, duration_seconds=60),
            DirectionsStep(instruction="Turn left onto Marina", distance_meters=distance_meters - 400, duration_seconds=duration_seconds - 60),
        ],
    )


class Seeder:
    """Writes fixture rows through its own sessions."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def location(
        self,
        name: str,
        latitude: float,
        longitude: float,
        location_type: LocationType = LocationType.BUS_STOP,
        is_verified: bool = True,
        is_active: bool = True,
        address: Optional[str] = None,
    ) -> Location:
        location = Location(
            name=name,
            latitude=latitude,
            longitude=longitude,
            location_type=location_type,
            is_verified=is_verified,
            is_active=is_active,
            address=address,
            city="Lagos",
            state="Lagos",
        )
        async with self.session_factory() as session:
            session.add(location)
            await session.commit()
        return location

    async def route(
        self,
        start: Location,
        end: Location,
        legs: Optional[List[dict]] = None,
        name: Optional[str] = None,
        is_verified: bool = False,
        average_rating: float = 0.0,
    ) -> Route:
        """A route whose legs chain start -> (each leg's ``to``) -> end.

        A leg is a dict with ``mode``, ``fare_min``, ``fare_max``, ``duration``
        and an optional ``to`` location (the last leg always ends at ``end``).
        """
        legs = legs or [{"mode": TransportMode.BUS, "fare_min": 100, "fare_max": 150, "duration": 20}]
        route = Route(
            name=name or f"{start.name} to {end.name}",
            start_location_id=start.id,
            end_location_id=end.id,
            transport_modes=sorted({leg["mode"].value for leg in legs}),
            is_verified=is_verified,
            average_rating=average_rating,
        )
        current = start
        for number, leg in enumerate(legs, start=1):
            target = end if number == len(legs) else leg["to"]
            route.steps.append(
                RouteStep(
                    step_number=leg.get("step_number", number),
                    from_location_id=current.id,
                    to_location_id=target.id,
                    transport_mode=leg["mode"],
                    instructions=leg.get("instructions", f"Take a {leg['mode'].value} from {current.name} to {target.name}"),
                    fare_min=leg.get("fare_min"),
                    fare_max=leg.get("fare_max"),
                    estimated_duration_minutes=leg.get("duration"),
                    distance_km=leg.get("distance_km"),
                )
            )
            current = target
        async with self.session_factory() as session:
            session.add(route)
            await session.commit()
        return route

    async def segment(
        self,
        start: Location,
        end: Location,
        modes: List[TransportMode],
        duration: int = 10,
        fare_min: Optional[float] = 100,
        fare_max: Optional[float] = 200,
        is_verified: bool = True,
    ) -> RouteSegment:
        segment = RouteSegment(
            name=f"{start.name} - {end.name}",
            start_location_id=start.id,
            end_location_id=end.id,
            transport_modes=[m.value for m in modes],
            distance_km=2.0,
            estimated_duration_minutes=duration,
            min_fare=fare_min,
            max_fare=fare_max,
            is_verified=is_verified,
        )
        async with self.session_factory() as session:
            session.add(segment)
            await session.commit()
        return segment


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'transitnav.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
async def background(engine):
    registry = BackgroundTaskRegistry()
    yield registry
    await registry.drain()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
async def lagos(seed):
    """Two stops about 8 km apart in Lagos."""
    market = await seed.location("Market Square", 6.45, 3.39)
    park = await seed.location("Central Park", 6.52, 3.37)
    return market, park
