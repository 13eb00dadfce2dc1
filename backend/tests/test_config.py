"""Tests for settings and the API error mapping."""

import pytest
from pydantic import ValidationError

from transitnav.config import Settings
from transitnav.core.exceptions import (
    RouteUnresolvableException,
    StepNotFound,
    Unresolvable,
    ValidationException,
    create_error_response,
    sanitize_error_message,
)


class TestSettings:
    def test_planner_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.segment_max_hops == 3
        assert settings.confidence_high_min_reports == 3
        assert settings.confidence_recent_days == 90
        assert settings.destination_walk_tolerance_meters == 150.0
        assert settings.max_alternatives == 3
        assert settings.fallback_cache_ttl_seconds == 300
        assert settings.service_timezone == "Africa/Lagos"
        assert (settings.driving_speed_kmh, settings.traffic_factor) == (30.0, 1.3)
        assert (
            settings.rank_weight_confidence,
            settings.rank_weight_fare,
            settings.rank_weight_duration,
        ) == (0.5, 0.25, 0.25)

    def test_log_level_is_normalized(self):
        assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_level="chatty")

    def test_hop_bound_limits(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, segment_max_hops=0)

    def test_development_has_no_production_errors(self):
        assert Settings(_env_file=None, app_env="development").validate_production_settings() == []

    def test_production_flags_insecure_defaults(self):
        settings = Settings(_env_file=None, app_env="production", debug=True)

        errors = settings.validate_production_settings()

        assert settings.is_production()
        assert any("DATABASE_URL" in e for e in errors)
        assert any("GOOGLE_MAPS_API_KEY" in e for e in errors)
        assert any("CORS_ORIGINS" in e for e in errors)
        assert any("DEBUG" in e for e in errors)

    def test_production_with_real_configuration(self):
        settings = Settings(
            _env_file=None,
            app_env="production",
            database_url="postgresql+asyncpg://transitnav:s3cure@db:5432/transitnav",
            google_maps_api_key="key",
            cors_origins=["https://transitnav.ng"],
        )

        assert settings.validate_production_settings() == []


class TestErrorMapping:
    def test_timeout_maps_to_504(self):
        exc = RouteUnresolvableException(Unresolvable.TIMEOUT)

        assert exc.status_code == 504
        assert exc.error_code == "ROUTE_PLANNING_TIMEOUT"

    def test_other_reasons_map_to_422(self):
        exc = RouteUnresolvableException("no strategy produced a route")

        assert exc.status_code == 422
        assert exc.error_code == "ROUTE_UNRESOLVABLE"
        assert "no strategy produced a route" in exc.detail

    def test_unresolvable_timeout_flag(self):
        assert Unresolvable(Unresolvable.TIMEOUT).is_timeout
        assert not Unresolvable("same location").is_timeout

    def test_step_not_found_names_field(self):
        exc = StepNotFound("abc")

        assert exc.field == "step_id"
        assert "abc" in exc.detail

    def test_validation_exception(self):
        exc = ValidationException("bad fare", field="actual_fare_paid")

        assert exc.status_code == 422
        assert exc.field == "actual_fare_paid"

    def test_error_response_shape(self):
        body = create_error_response(404, "NOT_FOUND", "Location not found", request_id="abcd1234")

        assert body == {
            "error": {"code": "NOT_FOUND", "message": "Location not found", "request_id": "abcd1234"}
        }

    def test_sanitize_hides_internals(self):
        assert sanitize_error_message("asyncpg connection refused") == (
            "An internal error occurred. Please try again later."
        )
        assert sanitize_error_message("plain failure") == "plain failure"
