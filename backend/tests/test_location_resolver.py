"""Tests for location resolution: ids, coordinates, free text and geocoder parsing."""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from transitnav.core.exceptions import LocationNotFound, ResolutionFailed
from transitnav.models import Location, LocationType
from transitnav.schemas.location import LocationInput
from transitnav.services.geocoding import AddressComponent, GeocodeResult
from transitnav.services.location_resolver import (
    LocationResolver,
    determine_location_type,
    determine_transport_modes,
    extract_location_name,
    name_similarity,
    parse_address_components,
)

from conftest import FakeProvider


def oshodi_result(lat=6.5550, lng=3.3430):
    return GeocodeResult(
        latitude=lat,
        longitude=lng,
        formatted_address="Oshodi Bus Terminal, Oshodi, Lagos, Nigeria",
        place_id="oshodi-1",
        types=["bus_station", "transit_station", "establishment"],
        address_components=[
            AddressComponent(long_name="Oshodi Bus Terminal", types=["establishment"]),
            AddressComponent(long_name="Oshodi", types=["sublocality"]),
            AddressComponent(long_name="Lagos", types=["locality"]),
            AddressComponent(long_name="Lagos State", types=["administrative_area_level_1"]),
            AddressComponent(long_name="Nigeria", types=["country"]),
        ],
    )


async def count_locations(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(Location.id)))).scalar_one()


@pytest.fixture
def make_resolver(session_factory, background):
    def build(provider=None):
        return LocationResolver(session_factory, provider or FakeProvider(), background)
    return build


# =============================================================================
# Geocoder result parsing
# =============================================================================

class TestGeocodeParsing:

    def test_address_components(self):
        parsed = parse_address_components(oshodi_result())
        assert parsed == {"city": "Lagos", "state": "Lagos State", "country": "Nigeria"}

    def test_name_prefers_establishment(self):
        assert extract_location_name(oshodi_result()) == "Oshodi Bus Terminal"

    def test_name_falls_back_to_formatted_address(self):
        result = GeocodeResult(latitude=6.5, longitude=3.4, formatted_address="12 Allen Avenue, Ikeja, Lagos")
        assert extract_location_name(result) == "12 Allen Avenue"

    @pytest.mark.parametrize("types,expected", [
        (["bus_station", "establishment"], LocationType.BUS_STOP),
        (["transit_station"], LocationType.MOTOR_PARK),
        (["hospital", "point_of_interest"], LocationType.HOSPITAL),
        (["university"], LocationType.SCHOOL),
        (["street_address"], LocationType.RESIDENTIAL),
    ])
    def test_location_type(self, types, expected):
        assert determine_location_type(types) == expected

    def test_transport_modes_for_bus_station(self):
        modes = determine_transport_modes(["bus_station", "establishment"])
        assert modes[0] == "bus"
        assert "walk" in modes and "keke" in modes

    def test_name_similarity(self):
        assert name_similarity("Markit Squar", "Market Square") > 0.8
        assert name_similarity("Yaba", "Lekki Phase 1") < 0.4


# =============================================================================
# Resolution
# =============================================================================

class TestResolveById:

    async def test_existing(self, make_resolver, lagos):
        market, _ = lagos
        location = await make_resolver().resolve_by_id(market.id)
        assert location.name == "Market Square"

    async def test_unknown_id(self, make_resolver):
        with pytest.raises(LocationNotFound):
            await make_resolver().resolve_by_id(uuid4())

    async def test_inactive_location_is_not_found(self, make_resolver, seed):
        retired = await seed.location("Old Garage", 6.5, 3.35, is_active=False)
        with pytest.raises(LocationNotFound):
            await make_resolver().resolve_by_id(retired.id)

    async def test_not_found_is_a_resolution_failure(self):
        assert issubclass(LocationNotFound, ResolutionFailed)


class TestResolveByCoordinates:

    async def test_matches_existing_within_radius(self, make_resolver, lagos):
        market, _ = lagos
        provider = FakeProvider()
        # ~55 m north of Market Square
        location = await make_resolver(provider).resolve_by_coordinates(6.4505, 3.39)
        assert location.id == market.id
        assert provider.calls == []

    async def test_creates_unverified_location_once(self, make_resolver, session_factory):
        provider = FakeProvider(reverse_results=[oshodi_result(6.5551, 3.3431)])
        resolver = make_resolver(provider)

        first = await resolver.resolve_by_coordinates(6.5550, 3.3430)
        second = await resolver.resolve_by_coordinates(6.5550, 3.3430)

        assert first.id == second.id
        assert first.is_verified is False
        assert first.name == "Oshodi Bus Terminal"
        assert first.location_type == LocationType.BUS_STOP
        # Requested coordinates win over the geocoder's snapped point
        assert first.latitude == pytest.approx(6.5550)
        assert await count_locations(session_factory) == 1
        assert len(provider.calls) == 1

    async def test_outside_service_area(self, make_resolver):
        provider = FakeProvider(reverse_results=[oshodi_result()])
        with pytest.raises(ResolutionFailed):
            await make_resolver(provider).resolve_by_coordinates(51.5, -0.12)
        assert provider.calls == []

    async def test_provider_failure(self, make_resolver):
        with pytest.raises(ResolutionFailed):
            await make_resolver(FakeProvider(fail=True)).resolve_by_coordinates(6.6, 3.5)

    async def test_no_address_found(self, make_resolver):
        with pytest.raises(ResolutionFailed):
            await make_resolver(FakeProvider(reverse_results=[])).resolve_by_coordinates(6.6, 3.5)


class TestResolveByText:

    async def test_substring_match(self, make_resolver, lagos):
        market, _ = lagos
        location = await make_resolver().resolve_by_text("market")
        assert location.id == market.id

    async def test_fuzzy_match(self, make_resolver, lagos):
        market, _ = lagos
        provider = FakeProvider()
        location = await make_resolver(provider).resolve_by_text("Markit Squar")
        assert location.id == market.id
        assert provider.calls == []

    async def test_geocodes_unknown_place_once(self, make_resolver, session_factory):
        provider = FakeProvider(geocode_results=[oshodi_result()])
        resolver = make_resolver(provider)

        created = await resolver.resolve_by_text("Oshodi Bus Terminal")
        again = await resolver.resolve_by_text("Oshodi Bus Terminal")

        assert created.id == again.id
        assert created.google_place_id == "oshodi-1"
        assert created.city == "Lagos"
        assert await count_locations(session_factory) == 1
        assert [c[0] for c in provider.calls] == ["geocode"]

    async def test_geocode_result_near_existing_is_reused(self, make_resolver, seed, session_factory):
        terminal = await seed.location("Oshodi Terminal 1", 6.5551, 3.3431)
        provider = FakeProvider(geocode_results=[oshodi_result()])

        location = await make_resolver(provider).resolve_by_text("Bolade junction")
        assert location.id == terminal.id
        assert await count_locations(session_factory) == 1

    async def test_results_outside_service_area_are_ignored(self, make_resolver):
        provider = FakeProvider(geocode_results=[oshodi_result(lat=51.5, lng=-0.12)])
        with pytest.raises(ResolutionFailed):
            await make_resolver(provider).resolve_by_text("Oshodi")

    async def test_geocoder_down(self, make_resolver):
        with pytest.raises(ResolutionFailed):
            await make_resolver(FakeProvider(fail=True)).resolve_by_text("Somewhere new")


class TestResolveDispatch:

    async def test_resolve_counts_searches(self, make_resolver, lagos, background, session_factory):
        market, _ = lagos
        resolver = make_resolver()

        await resolver.resolve(LocationInput(location_id=market.id))
        await resolver.resolve(LocationInput(text="Market Square"))
        await background.drain()

        async with session_factory() as session:
            refreshed = await session.get(Location, market.id)
        assert refreshed.search_count == 2

    async def test_resolve_by_coordinates_input(self, make_resolver, lagos):
        _, park = lagos
        location = await make_resolver().resolve(
            LocationInput(coordinates={"latitude": 6.52, "longitude": 3.37})
        )
        assert location.id == park.id

    def test_input_requires_exactly_one_form(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            LocationInput()
        with pytest.raises(ValidationError):
            LocationInput(text="Yaba", coordinates={"latitude": 6.5, "longitude": 3.37})


class TestFindNearby:

    async def test_nearest_first_within_radius(self, make_resolver, seed):
        near = await seed.location("Near", 6.4510, 3.3900)
        nearer = await seed.location("Nearer", 6.4502, 3.3900)
        await seed.location("Far", 6.4700, 3.3900)

        results = await make_resolver().find_nearby(6.45, 3.39, radius_meters=500)

        assert [loc.id for loc, _ in results] == [nearer.id, near.id]
        assert results[0][1] < results[1][1] <= 500

    async def test_excludes_inactive(self, make_resolver, seed):
        await seed.location("Closed", 6.4501, 3.3900, is_active=False)
        assert await make_resolver().find_nearby(6.45, 3.39, radius_meters=500) == []
