"""Route planning orchestrator.

resolve endpoints -> cached answer? -> ordered strategies (graph first, then
provider, then straight-line) -> enrich fares -> tag confidence -> finalize
(totals, walk to destination, ranking, top K).
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Set, Union

from pydantic import BaseModel

from transitnav.core.audit import audit_log, AuditAction
from transitnav.core.exceptions import NoPathFound, ProviderUnavailable, ResolutionFailed, Unresolvable
from transitnav.models.location import Location
from transitnav.models.route import TransportMode
from transitnav.schemas.location import LocationOut
from transitnav.schemas.planning import (
    EnhancedRoute,
    EnhancedRouteStep,
    FinalDestinationInfo,
    PlanMetadata,
    PlanRequest,
    PlanResponse,
    StepEndpoint,
    StepSource,
    WalkingDirections,
)
from transitnav.services import distance as geo
from transitnav.services.background import BackgroundTaskRegistry
from transitnav.services.cache import DEFAULT_TTL_SECONDS, NullCache, ResponseCache
from transitnav.services.confidence import ConfidenceScorer, estimate_fare_range
from transitnav.services.directions_fallback import ExternalDirectionsFallback, GeometricRoute
from transitnav.services.fare_aggregator import EnrichedStep, FareAggregator
from transitnav.services.location_resolver import LocationResolver
from transitnav.services.route_graph import (
    CandidatePath,
    ComposedPath,
    PathStep,
    RouteGraphStore,
    endpoint_for,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Strategies
# =============================================================================

class PlanContext:
    """Everything a strategy needs about one request."""

    def __init__(
        self,
        start: Location,
        end: Location,
        requested_end: StepEndpoint,
        preferred_modes: Optional[Set[TransportMode]] = None,
        max_fare: Optional[float] = None,
        departure_time: Optional[datetime] = None,
    ):
        self.start = start
        self.end = end
        self.start_point = endpoint_for(start)
        self.end_point = endpoint_for(end)
        self.requested_end = requested_end
        self.preferred_modes = preferred_modes
        self.max_fare = max_fare
        self.departure_time = departure_time


class NoData(BaseModel):
    """A strategy had nothing to offer; the planner moves to the next one."""

    strategy: str
    reason: str


StrategyOutcome = Union[List[CandidatePath], NoData]


class PlanningStrategy:
    """One fallback tier."""

    name = "strategy"
    # Graph-backed results are subject to the mode and fare filters
    graph_backed = True

    async def attempt_plan(self, ctx: PlanContext) -> StrategyOutcome:
        raise NotImplementedError

    def no_data(self, reason: str) -> NoData:
        return NoData(strategy=self.name, reason=reason)


class DirectRouteStrategy(PlanningStrategy):
    name = "direct_route"

    def __init__(self, store: RouteGraphStore, limit: int = 10):
        self.store = store
        self.limit = limit

    async def attempt_plan(self, ctx: PlanContext) -> StrategyOutcome:
        paths = await self.store.find_direct_candidates(ctx.start.id, ctx.end.id, limit=self.limit)
        return paths or self.no_data("no stored route between the endpoints")


class ReverseRouteStrategy(PlanningStrategy):
    name = "reverse_route"

    def __init__(self, store: RouteGraphStore, limit: int = 10):
        self.store = store
        self.limit = limit

    async def attempt_plan(self, ctx: PlanContext) -> StrategyOutcome:
        paths = await self.store.find_reversed_candidates(ctx.start.id, ctx.end.id, limit=self.limit)
        return paths or self.no_data("no stored route in the opposite direction")


class SegmentCompositionStrategy(PlanningStrategy):
    name = "segment_composition"

    def __init__(self, store: RouteGraphStore, limit: int = 3):
        self.store = store
        self.limit = limit

    async def attempt_plan(self, ctx: PlanContext) -> StrategyOutcome:
        paths = await self.store.find_segment_candidates(
            ctx.start.id, ctx.end.id, ctx.preferred_modes, limit=self.limit
        )
        if not paths:
            return self.no_data(f"no segment chain within {self.store.max_hops} hops")
        return paths


class NearbyDropOffStrategy(PlanningStrategy):
    """Routes from the start that stop within walking distance of the destination."""

    name = "nearby_drop_off"

    def __init__(self, store: RouteGraphStore, radius_meters: float = 2000.0):
        self.store = store
        self.radius_meters = radius_meters

    async def attempt_plan(self, ctx: PlanContext) -> StrategyOutcome:
        paths = await self.store.find_routes_ending_near(
            ctx.start.id,
            ctx.requested_end.latitude,
            ctx.requested_end.longitude,
            self.radius_meters,
        )
        paths = [p for p in paths if p.last_endpoint.id != ctx.end.id]
        return paths or self.no_data("no route drops off near the destination")


def geometric_path(route: GeometricRoute, source: StepSource, unit: int = 50) -> CandidatePath:
    """Single-leg path from a provider or heuristic result."""
    fare_min = fare_max = None
    if route.mode != TransportMode.WALK:
        # Cheapest street option sets the fare guess for an unknown vehicle
        fare_min, fare_max = estimate_fare_range(TransportMode.OKADA, route.distance_km, unit)

    instruction = route.instructions[0] if route.instructions else f"Head to {route.destination.name}"
    if len(route.instructions) > 1:
        instruction = f"{instruction} ({len(route.instructions)} steps)"

    step = PathStep(
        source=source,
        transport_mode=route.mode,
        instructions=instruction,
        from_location=route.origin,
        to_location=route.destination,
        fare_min=fare_min,
        fare_max=fare_max,
        duration_minutes=route.duration_minutes,
        distance_km=route.distance_km,
        directions=route.instructions,
        fallback=route.fallback,
    )
    return CandidatePath(
        source=source,
        name=f"{route.origin.name} to {route.destination.name}",
        steps=[step],
    )


class ExternalDirectionsStrategy(PlanningStrategy):
    name = "external_directions"
    graph_backed = False

    def __init__(self, fallback: ExternalDirectionsFallback):
        self.fallback = fallback

    async def attempt_plan(self, ctx: PlanContext) -> StrategyOutcome:
        try:
            route = await self.fallback.get_directions(ctx.start_point, ctx.end_point)
        except (ProviderUnavailable, NoPathFound) as e:
            return self.no_data(str(e))
        return [geometric_path(route, StepSource.PROVIDER)]


class GeometricEstimateStrategy(PlanningStrategy):
    """Last resort: straight-line distance at walking speed. Never fails."""

    name = "geometric_estimate"
    graph_backed = False

    def __init__(self, fallback: ExternalDirectionsFallback):
        self.fallback = fallback

    async def attempt_plan(self, ctx: PlanContext) -> StrategyOutcome:
        route = self.fallback.estimate(ctx.start_point, ctx.end_point, reason="no graph path or provider directions")
        return [geometric_path(route, StepSource.HEURISTIC)]


# =============================================================================
# Planner
# =============================================================================

class RoutePlanner:
    """Composes resolver, graph store, fare aggregator and fallbacks into ranked plans."""

    def __init__(
        self,
        resolver: LocationResolver,
        store: RouteGraphStore,
        aggregator: FareAggregator,
        fallback: ExternalDirectionsFallback,
        scorer: ConfidenceScorer,
        cache: Optional[ResponseCache] = None,
        background: Optional[BackgroundTaskRegistry] = None,
        strategies: Optional[List[PlanningStrategy]] = None,
        max_alternatives: int = 3,
        deadline_seconds: float = 20.0,
        cache_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        fallback_cache_ttl_seconds: int = 300,
        destination_walk_tolerance_meters: float = 150.0,
        walking_speed_kmh: float = geo.WALKING_SPEED_KMH,
        rank_weights: tuple = (0.5, 0.25, 0.25),
    ):
        self.resolver = resolver
        self.store = store
        self.aggregator = aggregator
        self.fallback = fallback
        self.scorer = scorer
        self.cache = cache if cache is not None else NullCache()
        self.background = background if background is not None else BackgroundTaskRegistry()
        self.max_alternatives = max_alternatives
        self.deadline_seconds = deadline_seconds
        self.cache_ttl_seconds = cache_ttl_seconds
        self.fallback_cache_ttl_seconds = fallback_cache_ttl_seconds
        self.destination_walk_tolerance_meters = destination_walk_tolerance_meters
        self.walking_speed_kmh = walking_speed_kmh
        self.rank_weights = rank_weights
        self.strategies = strategies if strategies is not None else self.default_strategies()

    def default_strategies(self) -> List[PlanningStrategy]:
        return [
            DirectRouteStrategy(self.store),
            ReverseRouteStrategy(self.store),
            SegmentCompositionStrategy(self.store, limit=self.max_alternatives),
            NearbyDropOffStrategy(self.store, radius_meters=self.scorer.walkable_threshold_meters),
            ExternalDirectionsStrategy(self.fallback),
            GeometricEstimateStrategy(self.fallback),
        ]

    async def plan(self, request: PlanRequest) -> PlanResponse:
        """Plan a trip. Raises Unresolvable, and nothing else for planning failures."""
        try:
            return await asyncio.wait_for(self._plan(request), timeout=self.deadline_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Planning exceeded {self.deadline_seconds}s deadline")
            raise Unresolvable(Unresolvable.TIMEOUT)

    async def _plan(self, request: PlanRequest) -> PlanResponse:
        start, end = await self._resolve_endpoints(request)
        if start.id == end.id:
            raise Unresolvable("start and end resolve to the same location")

        if request.end.coordinates is not None:
            requested_end = StepEndpoint(
                id=None,
                name=end.name,
                latitude=request.end.coordinates.latitude,
                longitude=request.end.coordinates.longitude,
            )
        else:
            requested_end = endpoint_for(end)

        ctx = PlanContext(
            start=start,
            end=end,
            requested_end=requested_end,
            preferred_modes=set(request.preferred_modes) if request.preferred_modes else None,
            max_fare=request.max_fare,
            departure_time=request.departure_time,
        )

        key = self.cache_key(ctx)
        cached = await self._cached(key)
        if cached is not None:
            logger.info(f"Plan cache hit {start.name} -> {end.name}")
            return cached

        tiers: List[str] = []
        for strategy in self.strategies:
            tiers.append(strategy.name)
            try:
                outcome = await strategy.attempt_plan(ctx)
            except Exception as e:
                logger.exception(f"Strategy {strategy.name} failed: {e}")
                continue

            if isinstance(outcome, NoData):
                logger.info(f"{strategy.name}: {outcome.reason}")
                continue

            routes = [await self._assemble(path, ctx) for path in outcome]
            if strategy.graph_backed:
                routes = self._apply_filters(routes, ctx)
                if not routes:
                    logger.info(f"{strategy.name}: every candidate was filtered out")
                    continue

            ranked = self.rank(routes)[: self.max_alternatives]
            response = PlanResponse(
                start_location=LocationOut.model_validate(start),
                end_location=LocationOut.model_validate(end),
                routes=ranked,
                metadata=PlanMetadata(
                    strategy=strategy.name,
                    tiers_attempted=tiers,
                    cached=False,
                    generated_at=datetime.now(timezone.utc),
                ),
            )
            logger.info(
                f"Planned {start.name} -> {end.name} via {strategy.name} "
                f"({len(ranked)} route(s), best {ranked[0].confidence.value})"
            )
            if not strategy.graph_backed:
                audit_log.log(
                    AuditAction.ROUTE_PLAN_FALLBACK,
                    resource_type="route_plan",
                    details={"strategy": strategy.name, "start": str(start.id), "end": str(end.id)},
                )
            ttl = self.cache_ttl_seconds if strategy.graph_backed else self.fallback_cache_ttl_seconds
            await self._store(key, response, ttl)
            self._record_usage(outcome)
            return response

        raise Unresolvable("no strategy produced a route")

    async def _resolve_endpoints(self, request: PlanRequest) -> tuple:
        """Resolve both endpoints concurrently; a failure on either side ends planning."""
        results = await asyncio.gather(
            self.resolver.resolve(request.start),
            self.resolver.resolve(request.end),
            return_exceptions=True,
        )
        for label, result in zip(("start", "end"), results):
            if isinstance(result, ResolutionFailed):
                logger.info(f"Could not resolve {label}: {result}")
                raise Unresolvable(f"{label} location could not be resolved")
            if isinstance(result, BaseException):
                raise result
        return results[0], results[1]

    # ---- assembly -----------------------------------------------------------

    async def _assemble(self, path: CandidatePath, ctx: PlanContext) -> EnhancedRoute:
        enriched: List[EnrichedStep] = [
            self.aggregator.enrich(step, ctx.departure_time) for step in path.steps
        ]

        final_info = None
        drop_off = path.last_endpoint
        gap_meters = geo.haversine_meters(
            drop_off.latitude, drop_off.longitude,
            ctx.requested_end.latitude, ctx.requested_end.longitude,
        )
        if gap_meters > self.destination_walk_tolerance_meters:
            walk = await self._walk_to_destination(drop_off, ctx.requested_end)
            enriched.append(self.aggregator.enrich(walk))
            final_info = FinalDestinationInfo(
                drop_off=drop_off,
                destination=ctx.requested_end,
                distance_meters=round(gap_meters, 1),
                walkable=self.scorer.is_walkable(gap_meters / 1000.0),
                instructions=walk.instructions,
            )

        steps = [self._to_response_step(number, step) for number, step in enumerate(enriched, start=1)]

        confidence = min((s.data_availability.confidence for s in steps), key=lambda c: c.weight)
        return EnhancedRoute(
            route_id=path.route_id,
            name=path.name,
            source=path.source,
            is_verified=path.is_verified,
            is_reversed=path.is_reversed,
            steps=steps,
            total_estimated_fare=sum(s.estimated_fare for s in steps),
            total_fare_min=sum(s.fare_min if s.fare_min is not None else s.estimated_fare for s in steps),
            total_fare_max=sum(s.fare_max if s.fare_max is not None else s.estimated_fare for s in steps),
            total_duration_minutes=sum(s.estimated_duration_minutes for s in steps),
            total_distance_km=round(sum(s.distance_km for s in steps), 3),
            confidence=confidence,
            final_destination_info=final_info,
        )

    async def _walk_to_destination(self, drop_off: StepEndpoint, destination: StepEndpoint) -> PathStep:
        route = await self.fallback.route(drop_off, destination, TransportMode.WALK)
        return PathStep(
            source=StepSource.WALK_TO_DESTINATION,
            transport_mode=TransportMode.WALK,
            instructions=route.instructions[0] if route.instructions else f"Walk to {destination.name}",
            from_location=drop_off,
            to_location=destination,
            duration_minutes=route.duration_minutes,
            distance_km=route.distance_km,
            directions=route.instructions,
            fallback=route.fallback,
        )

    def _to_response_step(self, number: int, step: EnrichedStep) -> EnhancedRouteStep:
        availability = self.scorer.score(step)
        distance_km = step.distance_km
        if distance_km is None:
            distance_km = geo.haversine_km(
                step.from_location.latitude, step.from_location.longitude,
                step.to_location.latitude, step.to_location.longitude,
            )
        duration = step.duration_minutes
        if duration is None:
            duration = geo.walking_minutes(distance_km, self.walking_speed_kmh)

        walking = None
        if step.transport_mode == TransportMode.WALK:
            walking = WalkingDirections(
                distance_meters=round(distance_km * 1000.0, 1),
                duration_minutes=duration,
                steps=step.directions or [step.instructions],
            )

        return EnhancedRouteStep(
            step_number=number,
            transport_mode=step.transport_mode,
            instructions=step.instructions,
            from_location=step.from_location,
            to_location=step.to_location,
            estimated_fare=step.estimated_fare,
            fare_min=step.fare_min,
            fare_max=step.fare_max,
            estimated_duration_minutes=duration,
            distance_km=round(distance_km, 3),
            pickup_point=step.pickup_point,
            dropoff_point=step.dropoff_point,
            step_id=step.step_id,
            report_count=step.fare_report_count,
            accuracy_score=step.accuracy_score,
            peak_pricing=step.peak_pricing,
            data_availability=availability,
            walking_directions=walking,
            alternative_transport=self.scorer.alternative_transport(step, availability),
            alternative_options=self.scorer.alternative_options(step, availability),
        )

    # ---- filtering and ranking ----------------------------------------------

    def _apply_filters(self, routes: List[EnhancedRoute], ctx: PlanContext) -> List[EnhancedRoute]:
        kept = []
        passthrough = {TransportMode.WALK, TransportMode.UNKNOWN}
        for route in routes:
            if ctx.preferred_modes:
                modes = {s.transport_mode for s in route.steps} - passthrough
                if not modes <= ctx.preferred_modes:
                    continue
            if ctx.max_fare is not None and route.total_estimated_fare > ctx.max_fare:
                continue
            kept.append(route)
        return kept

    def rank(self, routes: List[EnhancedRoute]) -> List[EnhancedRoute]:
        """Order by weighted confidence, cheapness and speed (each in [0, 1])."""
        if not routes:
            return []
        w_conf, w_fare, w_duration = self.rank_weights
        fares = [r.total_estimated_fare for r in routes if r.total_estimated_fare > 0]
        durations = [r.total_duration_minutes for r in routes if r.total_duration_minutes > 0]
        cheapest = min(fares) if fares else 0.0
        quickest = min(durations) if durations else 0

        for route in routes:
            confidence = sum(s.data_availability.confidence.weight for s in route.steps) / len(route.steps)
            fare_score = 1.0 if route.total_estimated_fare <= 0 or not cheapest else cheapest / route.total_estimated_fare
            duration_score = (
                1.0 if route.total_duration_minutes <= 0 or not quickest
                else quickest / route.total_duration_minutes
            )
            route.rank_score = round(w_conf * confidence + w_fare * fare_score + w_duration * duration_score, 4)

        return sorted(routes, key=lambda r: (r.rank_score, r.is_verified), reverse=True)

    # ---- cache and side effects ---------------------------------------------

    def cache_key(self, ctx: PlanContext) -> str:
        modes = ",".join(sorted(m.value for m in ctx.preferred_modes)) if ctx.preferred_modes else "any"
        fare = f"{ctx.max_fare:g}" if ctx.max_fare is not None else "any"
        peak = "peak" if self.aggregator.is_peak(ctx.departure_time) else "offpeak"
        return f"plan:{ctx.start.id}:{ctx.end.id}:{modes}:{fare}:{peak}"

    async def _cached(self, key: str) -> Optional[PlanResponse]:
        raw = await self.cache.get(key)
        if raw is None:
            return None
        try:
            response = PlanResponse.model_validate_json(raw)
        except ValueError as e:
            logger.warning(f"Discarding unreadable cached plan {key}: {e}")
            return None
        response.metadata.cached = True
        return response

    async def _store(self, key: str, response: PlanResponse, ttl: int) -> None:
        await self.cache.set(key, response.model_dump_json(), ttl)

    def _record_usage(self, paths: List[CandidatePath]) -> None:
        seen: Set[str] = set()
        for path in paths:
            if isinstance(path, ComposedPath):
                self.background.spawn(
                    self.store.increment_segment_usage(path.segment_ids),
                    name="segment-usage",
                )
            elif path.route_id is not None and str(path.route_id) not in seen:
                seen.add(str(path.route_id))
                self.background.spawn(
                    self.store.increment_route_search(path.route_id),
                    name=f"route-search:{path.route_id}",
                )
