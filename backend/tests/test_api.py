"""HTTP-level tests for the v1 API.

The application runs in-process over httpx's ASGI transport; the database,
provider, cache and background registry are swapped through
``app.dependency_overrides``.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from transitnav.db.session import get_db
from transitnav.dependencies import get_background, get_provider, get_response_cache, get_session_factory
from transitnav.main import app
from transitnav.services.cache import InMemoryTTLCache


@pytest.fixture
async def client(session_factory, provider, background):
    cache = InMemoryTTLCache()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_response_cache] = lambda: cache
    app.dependency_overrides[get_background] = lambda: background
    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


class TestHealth:
    async def test_root_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_database_health(self, client):
        response = await client.get("/api/v1/health/db")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    async def test_readiness_reports_cache_backend(self, client):
        response = await client.get("/api/v1/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["checks"] == {"database": True, "cache": True}
        assert body["cache_backend"] == "memory"

    async def test_request_id_header(self, client):
        response = await client.get("/api/v1/health")

        assert len(response.headers["X-Request-ID"]) == 8


class TestPlanEndpoint:
    async def test_plan_by_location_ids(self, client, seed, lagos):
        market, park = lagos
        await seed.route(market, park, is_verified=True)

        response = await client.post(
            "/api/v1/routes/plan",
            json={"start": {"location_id": str(market.id)}, "end": {"location_id": str(park.id)}},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["metadata"]["strategy"] == "direct_route"
        assert body["metadata"]["cached"] is False
        assert body["start_location"]["name"] == "Market Square"
        route = body["routes"][0]
        assert route["total_estimated_fare"] == 150
        assert route["steps"][0]["transport_mode"] == "bus"
        assert route["steps"][0]["data_availability"]["confidence"] == "medium"

    async def test_repeat_plan_is_served_from_cache(self, client, seed, lagos):
        market, park = lagos
        await seed.route(market, park, is_verified=True)
        payload = {"start": {"location_id": str(market.id)}, "end": {"location_id": str(park.id)}}

        await client.post("/api/v1/routes/plan", json=payload)
        response = await client.post("/api/v1/routes/plan", json=payload)

        assert response.status_code == 200
        assert response.json()["metadata"]["cached"] is True

    async def test_plan_by_text(self, client, seed, lagos):
        market, park = lagos
        await seed.route(market, park)

        response = await client.post(
            "/api/v1/routes/plan",
            json={"start": {"text": "Market Square"}, "end": {"text": "Central Park"}},
        )

        assert response.status_code == 200
        assert response.json()["end_location"]["id"] == str(park.id)

    async def test_same_location_is_unresolvable(self, client, lagos):
        market, _ = lagos

        response = await client.post(
            "/api/v1/routes/plan",
            json={"start": {"location_id": str(market.id)}, "end": {"location_id": str(market.id)}},
        )

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "ROUTE_UNRESOLVABLE"
        assert error["request_id"] == response.headers["X-Request-ID"]

    async def test_unknown_text_is_unresolvable(self, client, lagos):
        market, _ = lagos

        response = await client.post(
            "/api/v1/routes/plan",
            json={"start": {"location_id": str(market.id)}, "end": {"text": "Nowhere Junction"}},
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "ROUTE_UNRESOLVABLE"

    async def test_location_input_needs_exactly_one_form(self, client):
        response = await client.post(
            "/api/v1/routes/plan",
            json={
                "start": {"text": "Market Square", "coordinates": {"latitude": 6.45, "longitude": 3.39}},
                "end": {"text": "Central Park"},
            },
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_rejects_non_positive_max_fare(self, client):
        response = await client.post(
            "/api/v1/routes/plan",
            json={"start": {"text": "Market Square"}, "end": {"text": "Central Park"}, "max_fare": 0},
        )

        assert response.status_code == 422
        fields = [f["field"] for f in response.json()["error"]["details"]["fields"]]
        assert "max_fare" in fields


class TestFareEndpoints:
    @pytest.fixture
    async def step_id(self, seed, lagos):
        market, park = lagos
        route = await seed.route(market, park, is_verified=True)
        return route.steps[0].id

    async def test_submit_feedback(self, client, step_id):
        response = await client.post(
            "/api/v1/fares/feedback",
            json={
                "step_id": str(step_id),
                "actual_fare_paid": 200,
                "vehicle_type_used": "bus",
                "date_of_travel": today(),
                "rating": 4,
                "duration_minutes": 25,
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["step_id"] == str(step_id)
        assert body["crowdsourced_fare"]["report_count"] == 1
        assert body["crowdsourced_fare"]["average"] == 200
        assert body["crowdsourced_duration"]["average"] == 25

    async def test_feedback_for_unknown_step(self, client):
        response = await client.post(
            "/api/v1/fares/feedback",
            json={
                "step_id": str(uuid4()),
                "actual_fare_paid": 200,
                "vehicle_type_used": "bus",
                "date_of_travel": today(),
                "rating": 4,
            },
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_feedback_rejects_bad_rating(self, client, step_id):
        response = await client.post(
            "/api/v1/fares/feedback",
            json={
                "step_id": str(step_id),
                "actual_fare_paid": 200,
                "vehicle_type_used": "bus",
                "date_of_travel": today(),
                "rating": 6,
            },
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_feedback_rejects_future_travel_date(self, client, step_id):
        response = await client.post(
            "/api/v1/fares/feedback",
            json={
                "step_id": str(step_id),
                "actual_fare_paid": 200,
                "vehicle_type_used": "bus",
                "date_of_travel": "2999-01-01",
                "rating": 3,
            },
        )

        assert response.status_code == 422

    async def test_step_summary(self, client, step_id):
        response = await client.get(f"/api/v1/fares/steps/{step_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["fare_min"] == 100
        assert body["fare_max"] == 150
        assert body["crowdsourced_fare"]["report_count"] == 0

    async def test_step_summary_unknown_step(self, client):
        response = await client.get(f"/api/v1/fares/steps/{uuid4()}")

        assert response.status_code == 404


class TestLocationEndpoints:
    async def test_resolve_by_id(self, client, lagos):
        market, _ = lagos

        response = await client.post("/api/v1/locations/resolve", json={"location_id": str(market.id)})

        assert response.status_code == 200
        assert response.json()["name"] == "Market Square"

    async def test_resolve_unknown_id(self, client):
        response = await client.post("/api/v1/locations/resolve", json={"location_id": str(uuid4())})

        assert response.status_code == 404

    async def test_resolve_unknown_text(self, client):
        response = await client.post("/api/v1/locations/resolve", json={"text": "Nowhere Junction"})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"] == {"field": "location"}

    async def test_nearby_sorted_by_distance(self, client, seed, lagos):
        await seed.location("Broad Street", 6.452, 3.39)
        await seed.location("Closed Stop", 6.451, 3.39, is_active=False)

        response = await client.get("/api/v1/locations/nearby", params={"lat": 6.45, "lng": 3.39, "radius": 1000})

        assert response.status_code == 200
        body = response.json()
        names = [loc["name"] for loc in body["locations"]]
        assert names == ["Market Square", "Broad Street"]
        assert body["locations"][0]["distance_meters"] == 0
        assert body["radius_meters"] == 1000

    async def test_nearby_radius_is_bounded(self, client):
        response = await client.get("/api/v1/locations/nearby", params={"lat": 6.45, "lng": 3.39, "radius": 50000})

        assert response.status_code == 422
