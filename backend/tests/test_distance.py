"""Tests for the geometric helpers and the service area."""

import pytest

from transitnav.services import distance as geo
from transitnav.services.distance import ServiceArea


class TestHaversine:
    """Great-circle distances between stops."""

    def test_zero_distance(self):
        assert geo.haversine_km(6.45, 3.39, 6.45, 3.39) == 0

    def test_market_square_to_central_park(self):
        d = geo.haversine_km(6.45, 3.39, 6.52, 3.37)
        assert 7.5 < d < 8.5

    def test_meters_is_km_times_thousand(self):
        km = geo.haversine_km(6.45, 3.39, 6.46, 3.39)
        assert geo.haversine_meters(6.45, 3.39, 6.46, 3.39) == pytest.approx(km * 1000)

    def test_one_degree_of_latitude(self):
        assert geo.haversine_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.1)


class TestBoundingBox:

    def test_box_contains_circle(self):
        min_lat, max_lat, min_lng, max_lng = geo.bounding_box(6.5, 3.4, 1.0)
        assert min_lat < 6.5 < max_lat
        assert min_lng < 3.4 < max_lng
        # A point 0.9 km due north is inside the box
        assert max_lat > 6.5 + 0.9 / 111.32

    def test_box_grows_with_radius(self):
        small = geo.bounding_box(6.5, 3.4, 0.1)
        large = geo.bounding_box(6.5, 3.4, 2.0)
        assert large[0] < small[0]
        assert large[1] > small[1]


class TestDirections:

    def test_bearing_north_and_east(self):
        assert geo.bearing(0, 0, 1, 0) == pytest.approx(0.0)
        assert geo.bearing(0, 0, 0, 1) == pytest.approx(90.0)

    @pytest.mark.parametrize("degrees,name", [
        (0, "north"),
        (44, "north-east"),
        (90, "east"),
        (180, "south"),
        (225, "south-west"),
        (350, "north"),
    ])
    def test_cardinal_direction(self, degrees, name):
        assert geo.cardinal_direction(degrees) == name


class TestTravelTime:

    def test_walking_minutes_rounds_up(self):
        assert geo.walking_minutes(1.0) == 12
        assert geo.walking_minutes(0.01) == 1
        assert geo.walking_minutes(0) == 0

    def test_driving_minutes_applies_traffic(self):
        assert geo.driving_minutes(15, traffic_factor=1.0) == 30
        assert geo.driving_minutes(15) > 30

    def test_format_distance(self):
        assert geo.format_distance(0.35) == "350 m"
        assert geo.format_distance(2.345) == "2.3 km"

    def test_format_duration(self):
        assert geo.format_duration(45) == "45 min"
        assert geo.format_duration(60) == "1 hr"
        assert geo.format_duration(135) == "2 hr 15 min"


class TestServiceArea:
    """Default area covers Nigeria."""

    def test_lagos_inside(self):
        assert ServiceArea().contains(6.45, 3.39)

    def test_london_outside(self):
        assert not ServiceArea().contains(51.5, -0.12)

    def test_boundary_is_inside(self):
        assert ServiceArea().contains(4.0, 3.0)

    def test_bias_bounds(self):
        assert ServiceArea().bias_bounds() == "4.0,2.5|14.0,15.0"

    def test_from_settings(self):
        from transitnav.config import Settings

        area = ServiceArea.from_settings(
            Settings(service_min_lat=6.0, service_max_lat=7.0, service_min_lng=3.0, service_max_lng=4.0)
        )
        assert area.contains(6.45, 3.39)
        assert not area.contains(9.07, 7.49)  # Abuja
