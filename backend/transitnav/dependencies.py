"""Service wiring for the API layer.

Long-lived collaborators (HTTP client, response cache, background registry)
are process singletons; the per-request services around them are cheap to
build. Tests swap any of these through ``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends

from transitnav.config import Settings, get_settings
from transitnav.db.session import async_session_maker
from transitnav.services.background import BackgroundTaskRegistry
from transitnav.services.cache import ResponseCache, build_response_cache
from transitnav.services.confidence import ConfidenceScorer
from transitnav.services.directions_fallback import ExternalDirectionsFallback
from transitnav.services.distance import ServiceArea
from transitnav.services.fare_aggregator import FareAggregator
from transitnav.services.geocoding import GeocodingProvider, GoogleMapsProvider
from transitnav.services.location_resolver import LocationResolver
from transitnav.services.planner import RoutePlanner
from transitnav.services.route_graph import RouteGraphStore


@lru_cache()
def get_provider() -> GeocodingProvider:
    settings = get_settings()
    return GoogleMapsProvider(
        api_key=settings.google_maps_api_key,
        base_url=settings.google_maps_base_url,
        region=settings.google_maps_region,
        service_area=ServiceArea.from_settings(settings),
        timeout=settings.provider_timeout_seconds,
    )


@lru_cache()
def get_response_cache() -> ResponseCache:
    return build_response_cache(get_settings())


@lru_cache()
def get_background() -> BackgroundTaskRegistry:
    return BackgroundTaskRegistry()


def get_session_factory():
    return async_session_maker


def get_resolver(
    settings: Settings = Depends(get_settings),
    session_factory=Depends(get_session_factory),
    provider: GeocodingProvider = Depends(get_provider),
    background: BackgroundTaskRegistry = Depends(get_background),
) -> LocationResolver:
    return LocationResolver(
        session_factory,
        provider,
        background,
        match_radius_meters=settings.location_match_radius_meters,
        service_area=ServiceArea.from_settings(settings),
    )


def get_fare_aggregator(
    settings: Settings = Depends(get_settings),
    session_factory=Depends(get_session_factory),
) -> FareAggregator:
    return FareAggregator(
        session_factory,
        rounding_unit=settings.fare_rounding_unit,
        history_size=settings.fare_report_history_size,
        recent_days=settings.confidence_recent_days,
        peak_multiplier=settings.peak_fare_multiplier,
        timezone=settings.service_timezone,
    )


def get_planner(
    settings: Settings = Depends(get_settings),
    session_factory=Depends(get_session_factory),
    resolver: LocationResolver = Depends(get_resolver),
    aggregator: FareAggregator = Depends(get_fare_aggregator),
    provider: GeocodingProvider = Depends(get_provider),
    cache: ResponseCache = Depends(get_response_cache),
    background: BackgroundTaskRegistry = Depends(get_background),
) -> RoutePlanner:
    store = RouteGraphStore(
        session_factory,
        max_hops=settings.segment_max_hops,
        recent_days=settings.confidence_recent_days,
        path_limit=settings.segment_path_limit,
    )
    fallback = ExternalDirectionsFallback(
        provider,
        timeout=settings.provider_timeout_seconds,
        walking_speed_kmh=settings.walking_speed_kmh,
        walkable_threshold_meters=settings.walkable_threshold_meters,
    )
    scorer = ConfidenceScorer(
        high_min_reports=settings.confidence_high_min_reports,
        walkable_threshold_meters=settings.walkable_threshold_meters,
        driving_speed_kmh=settings.driving_speed_kmh,
        traffic_factor=settings.traffic_factor,
    )
    return RoutePlanner(
        resolver,
        store,
        aggregator,
        fallback,
        scorer,
        cache=cache,
        background=background,
        max_alternatives=settings.max_alternatives,
        deadline_seconds=settings.planning_deadline_seconds,
        cache_ttl_seconds=settings.route_cache_ttl_seconds,
        fallback_cache_ttl_seconds=settings.fallback_cache_ttl_seconds,
        destination_walk_tolerance_meters=settings.destination_walk_tolerance_meters,
        walking_speed_kmh=settings.walking_speed_kmh,
        rank_weights=(
            settings.rank_weight_confidence,
            settings.rank_weight_fare,
            settings.rank_weight_duration,
        ),
    )
