"""Read access to the crowdsourced route graph.

Routes and their steps give direct (start, end) answers. RouteSegments are
the shared edges of a location graph that is searched breadth-first, with a
hop bound, when no direct route exists.
"""

import logging
import re
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from transitnav.models.base import ensure_utc, utcnow
from transitnav.models.fare_feedback import FareFeedback
from transitnav.models.location import Location
from transitnav.models.route import Route, RouteStep, TransportMode, normalize_mode
from transitnav.models.route_segment import RouteSegment
from transitnav.schemas.planning import StepEndpoint, StepSource
from transitnav.services.distance import bounding_box, haversine_meters

logger = logging.getLogger(__name__)

REVERSE_NOTE = "Reverse direction:"


# =============================================================================
# Path values handed to the planner
# =============================================================================

class PathStep(BaseModel):
    """A leg as found in the graph (or synthesized), before enrichment."""

    source: StepSource
    source_verified: bool = False
    transport_mode: TransportMode
    instructions: str
    from_location: StepEndpoint
    to_location: StepEndpoint
    fare_min: Optional[float] = None
    fare_max: Optional[float] = None
    duration_minutes: Optional[int] = None
    distance_km: Optional[float] = None
    pickup_point: Optional[str] = None
    dropoff_point: Optional[str] = None
    step_id: Optional[UUID] = None

    # Crowdsourced aggregates copied from the step row
    fare_report_count: int = 0
    fare_report_sum: float = 0.0
    fare_report_sum_sq: float = 0.0
    fare_last_reported_at: Optional[datetime] = None
    duration_report_count: int = 0
    duration_report_sum: float = 0.0
    duration_last_reported_at: Optional[datetime] = None
    recent_report_count: int = 0

    # Turn-by-turn text from the directions provider, when there is any
    directions: List[str] = Field(default_factory=list)
    fallback: bool = False
    is_reversed: bool = False


class CandidatePath(BaseModel):
    """An ordered list of legs from one graph source."""

    source: StepSource
    name: str
    route_id: Optional[UUID] = None
    is_verified: bool = False
    is_reversed: bool = False
    average_rating: float = 0.0
    usage_count: int = 0
    steps: List[PathStep]

    @property
    def last_endpoint(self) -> StepEndpoint:
        return self.steps[-1].to_location


class ComposedPath(CandidatePath):
    """A path chained from RouteSegments."""

    segment_ids: List[UUID] = Field(default_factory=list)

    @property
    def hops(self) -> int:
        return len(self.segment_ids)


def endpoint_for(location: Location) -> StepEndpoint:
    return StepEndpoint(
        id=location.id,
        name=location.name,
        latitude=float(location.latitude),
        longitude=float(location.longitude),
    )


def path_step_from_row(step: RouteStep, verified: bool, recent_reports: int = 0) -> PathStep:
    """Copy a stored step (with its locations loaded) into a PathStep."""
    return PathStep(
        source=StepSource.ROUTE,
        source_verified=verified,
        transport_mode=normalize_mode(step.transport_mode),
        instructions=step.instructions,
        from_location=endpoint_for(step.from_location),
        to_location=endpoint_for(step.to_location),
        fare_min=step.fare_min,
        fare_max=step.fare_max,
        duration_minutes=step.estimated_duration_minutes,
        distance_km=step.distance_km,
        pickup_point=step.pickup_point,
        dropoff_point=step.dropoff_point,
        step_id=step.id,
        fare_report_count=step.fare_report_count or 0,
        fare_report_sum=step.fare_report_sum or 0.0,
        fare_report_sum_sq=step.fare_report_sum_sq or 0.0,
        fare_last_reported_at=ensure_utc(step.fare_last_reported_at),
        duration_report_count=step.duration_report_count or 0,
        duration_report_sum=step.duration_report_sum or 0.0,
        duration_last_reported_at=ensure_utc(step.duration_last_reported_at),
        recent_report_count=recent_reports,
    )


# =============================================================================
# Step sequence helpers
# =============================================================================

def validate_step_sequence(steps: Sequence[RouteStep]) -> List[str]:
    """Problems with a route's steps; empty when they are numbered 1..n and contiguous."""
    if not steps:
        return ["route has no steps"]

    errors = []
    ordered = sorted(steps, key=lambda s: s.step_number)
    for expected, step in enumerate(ordered, start=1):
        if step.step_number != expected:
            errors.append(f"expected step {expected}, found {step.step_number}")
            break

    for current, following in zip(ordered, ordered[1:]):
        if current.to_location_id != following.from_location_id:
            errors.append(
                f"step {current.step_number} ends away from where step {following.step_number} starts"
            )
    return errors


_FROM_TO = re.compile(r"\bfrom (.+?) to (.+?)([:.,]|$)", re.IGNORECASE)
_LEFT_RIGHT = re.compile(r"\b(left|right)\b", re.IGNORECASE)


def reverse_instructions(instructions: str) -> str:
    """Best-effort rewrite of free-text directions for travel the other way."""
    if not instructions:
        return REVERSE_NOTE.rstrip(":")

    text = _FROM_TO.sub(lambda m: f"from {m.group(2)} to {m.group(1)}{m.group(3)}", instructions)

    def swap(match):
        word = match.group(1)
        other = "right" if word.lower() == "left" else "left"
        return other.capitalize() if word[0].isupper() else other

    text = _LEFT_RIGHT.sub(swap, text)
    return f"{REVERSE_NOTE} {text}"


def reverse_path(path: CandidatePath, name: Optional[str] = None) -> CandidatePath:
    """The same legs travelled end to start."""
    steps = []
    for original in reversed(path.steps):
        steps.append(
            original.model_copy(
                update={
                    "from_location": original.to_location,
                    "to_location": original.from_location,
                    "pickup_point": original.dropoff_point,
                    "dropoff_point": original.pickup_point,
                    "instructions": reverse_instructions(original.instructions),
                    "source": StepSource.REVERSED_ROUTE,
                    "is_reversed": True,
                }
            )
        )
    return path.model_copy(
        update={
            "source": StepSource.REVERSED_ROUTE,
            "name": name or f"{steps[0].from_location.name} to {steps[-1].to_location.name}",
            "is_reversed": True,
            "steps": steps,
        }
    )


# =============================================================================
# Segment graph
# =============================================================================

class SegmentEdge(BaseModel):
    segment_id: UUID
    start_id: UUID
    end_id: UUID
    modes: List[TransportMode]
    duration_minutes: int = 0
    is_verified: bool = False


def modes_compatible(previous: SegmentEdge, following: SegmentEdge) -> bool:
    """A rider can continue if both legs share a mode or either one is walked."""
    if TransportMode.WALK in previous.modes or TransportMode.WALK in following.modes:
        return True
    return bool(set(previous.modes) & set(following.modes))


class SegmentGraph:
    """Adjacency list of segments keyed by start location id."""

    def __init__(self, edges: Iterable[SegmentEdge] = ()):
        self._adjacency: Dict[UUID, List[SegmentEdge]] = defaultdict(list)
        self._edge_ids: Set[UUID] = set()
        for edge in edges:
            self.add_edge(edge)

    def add_edge(self, edge: SegmentEdge) -> None:
        if edge.segment_id in self._edge_ids or edge.start_id == edge.end_id:
            return
        self._edge_ids.add(edge.segment_id)
        self._adjacency[edge.start_id].append(edge)

    def neighbours(self, node: UUID) -> List[SegmentEdge]:
        return self._adjacency.get(node, [])

    def __len__(self) -> int:
        return len(self._edge_ids)

    def find_paths(
        self,
        start: UUID,
        end: UUID,
        max_hops: int = 3,
        allowed_modes: Optional[Set[TransportMode]] = None,
        limit: int = 20,
        max_expansions: int = 10000,
    ) -> List[List[SegmentEdge]]:
        """Simple paths from ``start`` to ``end`` with at most ``max_hops`` edges.

        Breadth-first, so shorter paths come first. Every path keeps its own
        visited set, so cycles in the data cannot cause revisits, and the
        expansion budget bounds work on dense graphs.
        """
        if start == end or max_hops < 1:
            return []

        usable = None
        if allowed_modes:
            usable = set(allowed_modes) | {TransportMode.WALK}

        found: List[List[SegmentEdge]] = []
        queue = deque([(start, [], frozenset([start]))])
        expansions = 0

        while queue and len(found) < limit:
            node, path, visited = queue.popleft()
            if len(path) >= max_hops:
                continue

            for edge in self.neighbours(node):
                expansions += 1
                if expansions > max_expansions:
                    logger.warning(f"Segment search stopped after {max_expansions} expansions")
                    return found
                if edge.end_id in visited:
                    continue
                if usable is not None and not (set(edge.modes) & usable):
                    continue
                if path and not modes_compatible(path[-1], edge):
                    continue

                extended = path + [edge]
                if edge.end_id == end:
                    found.append(extended)
                    if len(found) >= limit:
                        break
                else:
                    queue.append((edge.end_id, extended, visited | {edge.end_id}))

        return found


# =============================================================================
# Store
# =============================================================================

class RouteGraphStore:
    """Queries over routes, steps and segments for the planner."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        max_hops: int = 3,
        recent_days: int = 90,
        path_limit: int = 20,
        frontier_limit: int = 500,
    ):
        self._session_factory = session_factory
        self.max_hops = max_hops
        self.recent_days = recent_days
        self.path_limit = path_limit
        self.frontier_limit = frontier_limit

    # ---- direct routes ------------------------------------------------------

    async def find_direct(self, start_id: UUID, end_id: UUID) -> Optional[CandidatePath]:
        """Best direct route: verified first, then rating, then usage."""
        candidates = await self.find_direct_candidates(start_id, end_id, limit=1)
        return candidates[0] if candidates else None

    async def find_direct_candidates(
        self,
        start_id: UUID,
        end_id: UUID,
        limit: int = 10,
    ) -> List[CandidatePath]:
        routes = await self._load_routes(start_id, end_id, limit)
        return await self._to_paths(routes)

    async def find_reversed_candidates(
        self,
        start_id: UUID,
        end_id: UUID,
        limit: int = 10,
    ) -> List[CandidatePath]:
        """Routes stored for (end, start), turned around."""
        routes = await self._load_routes(end_id, start_id, limit)
        return [reverse_path(path) for path in await self._to_paths(routes)]

    async def _load_routes(self, start_id: UUID, end_id: UUID, limit: int) -> List[Route]:
        query = (
            select(Route)
            .where(
                Route.start_location_id == start_id,
                Route.end_location_id == end_id,
                Route.is_active == True,
            )
            .order_by(
                Route.is_verified.desc(),
                Route.average_rating.desc(),
                Route.usage_count.desc(),
            )
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def _to_paths(self, routes: List[Route]) -> List[CandidatePath]:
        valid = []
        for route in routes:
            steps = [s for s in route.steps if s.is_active]
            errors = validate_step_sequence(steps)
            if errors:
                logger.warning(f"Skipping malformed route {route.id} ({route.name}): {'; '.join(errors)}")
                continue
            valid.append((route, sorted(steps, key=lambda s: s.step_number)))

        step_ids = [step.id for _, steps in valid for step in steps]
        recent_counts = await self.recent_report_counts(step_ids)

        paths = []
        for route, steps in valid:
            paths.append(
                CandidatePath(
                    source=StepSource.ROUTE,
                    name=route.name,
                    route_id=route.id,
                    is_verified=bool(route.is_verified),
                    average_rating=float(route.average_rating or 0.0),
                    usage_count=int(route.usage_count or 0),
                    steps=[
                        path_step_from_row(step, bool(route.is_verified), recent_counts.get(step.id, 0))
                        for step in steps
                    ],
                )
            )
        return paths

    async def recent_report_counts(self, step_ids: List[UUID]) -> Dict[UUID, int]:
        """Feedback rows per step inside the recency window."""
        if not step_ids:
            return {}
        since = utcnow() - timedelta(days=self.recent_days)
        query = (
            select(FareFeedback.route_step_id, func.count(FareFeedback.id))
            .where(
                FareFeedback.route_step_id.in_(step_ids),
                FareFeedback.created_at >= since,
            )
            .group_by(FareFeedback.route_step_id)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return {step_id: count for step_id, count in result.all()}

    async def find_routes_ending_near(
        self,
        start_id: UUID,
        latitude: float,
        longitude: float,
        radius_meters: float,
        limit: int = 5,
    ) -> List[CandidatePath]:
        """Routes from ``start_id`` whose drop-off is within walking distance of a point.

        Nearest drop-off first. The walk from the drop-off is added by the planner.
        """
        min_lat, max_lat, min_lng, max_lng = bounding_box(latitude, longitude, radius_meters / 1000.0)
        query = (
            select(Route)
            .join(Location, Route.end_location_id == Location.id)
            .where(
                Route.start_location_id == start_id,
                Route.is_active == True,
                Location.is_active == True,
                Location.latitude.between(min_lat, max_lat),
                Location.longitude.between(min_lng, max_lng),
            )
            .order_by(Route.is_verified.desc(), Route.average_rating.desc())
            .limit(limit * 4)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            routes = list(result.scalars().unique().all())

        distances = {}
        for route in routes:
            end = route.end_location
            distances[route.id] = haversine_meters(latitude, longitude, end.latitude, end.longitude)
        nearby = [r for r in routes if distances[r.id] <= radius_meters]
        nearby.sort(key=lambda r: distances[r.id])
        return await self._to_paths(nearby[:limit])

    # ---- segment composition ------------------------------------------------

    async def load_segment_graph(self, start_id: UUID) -> Tuple[SegmentGraph, Dict[UUID, RouteSegment]]:
        """Segments reachable from ``start_id`` within the hop bound, loaded level by level."""
        graph = SegmentGraph()
        segments: Dict[UUID, RouteSegment] = {}
        seen = {start_id}
        frontier = {start_id}

        async with self._session_factory() as session:
            for _ in range(self.max_hops):
                if not frontier:
                    break
                result = await session.execute(
                    select(RouteSegment)
                    .where(
                        RouteSegment.start_location_id.in_(list(frontier)),
                        RouteSegment.is_active == True,
                    )
                    .limit(self.frontier_limit)
                )
                next_frontier = set()
                for segment in result.scalars().all():
                    graph.add_edge(self.segment_edge(segment))
                    segments[segment.id] = segment
                    if segment.end_location_id not in seen:
                        seen.add(segment.end_location_id)
                        next_frontier.add(segment.end_location_id)
                frontier = next_frontier

        return graph, segments

    @staticmethod
    def segment_edge(segment: RouteSegment) -> SegmentEdge:
        modes = [normalize_mode(m) for m in (segment.transport_modes or [])]
        return SegmentEdge(
            segment_id=segment.id,
            start_id=segment.start_location_id,
            end_id=segment.end_location_id,
            modes=list(dict.fromkeys(modes)) or [TransportMode.UNKNOWN],
            duration_minutes=int(segment.estimated_duration_minutes or 0),
            is_verified=bool(segment.is_verified),
        )

    async def find_via_segments(
        self,
        start_id: UUID,
        end_id: UUID,
        preferred_modes: Optional[Set[TransportMode]] = None,
    ) -> Optional[ComposedPath]:
        """Best segment chain within the hop bound; None when there is none."""
        candidates = await self.find_segment_candidates(start_id, end_id, preferred_modes, limit=1)
        return candidates[0] if candidates else None

    async def find_segment_candidates(
        self,
        start_id: UUID,
        end_id: UUID,
        preferred_modes: Optional[Set[TransportMode]] = None,
        limit: int = 3,
    ) -> List[ComposedPath]:
        graph, segments = await self.load_segment_graph(start_id)
        paths = graph.find_paths(
            start_id,
            end_id,
            max_hops=self.max_hops,
            allowed_modes=preferred_modes,
            limit=self.path_limit,
        )
        if not paths:
            logger.debug(f"No segment path {start_id} -> {end_id} within {self.max_hops} hops")
            return []

        # Fewest hops, then verified share, then shortest duration
        paths.sort(
            key=lambda p: (
                len(p),
                -sum(1 for e in p if e.is_verified),
                sum(e.duration_minutes for e in p),
            )
        )
        return [self._compose(p, segments, preferred_modes) for p in paths[:limit]]

    @staticmethod
    def _compose(
        edges: List[SegmentEdge],
        segments: Dict[UUID, RouteSegment],
        preferred_modes: Optional[Set[TransportMode]],
    ) -> ComposedPath:
        steps = []
        previous_mode = None
        for edge in edges:
            segment = segments[edge.segment_id]
            mode = choose_segment_mode(edge.modes, previous_mode, preferred_modes)
            previous_mode = mode
            start = endpoint_for(segment.start_location)
            end = endpoint_for(segment.end_location)
            steps.append(
                PathStep(
                    source=StepSource.SEGMENT,
                    source_verified=edge.is_verified,
                    transport_mode=mode,
                    instructions=segment.instructions
                    or f"Take a {mode.value} from {start.name} to {end.name}",
                    from_location=start,
                    to_location=end,
                    fare_min=segment.min_fare,
                    fare_max=segment.max_fare,
                    duration_minutes=segment.estimated_duration_minutes,
                    distance_km=segment.distance_km,
                    dropoff_point=end.name,
                )
            )

        return ComposedPath(
            source=StepSource.SEGMENT,
            name=f"{steps[0].from_location.name} to {steps[-1].to_location.name} via {len(edges)} segment(s)",
            is_verified=all(e.is_verified for e in edges),
            usage_count=sum(int(segments[e.segment_id].usage_count or 0) for e in edges),
            steps=steps,
            segment_ids=[e.segment_id for e in edges],
        )

    # ---- popularity counters ------------------------------------------------

    async def increment_route_search(self, route_id: UUID) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Route)
                .where(Route.id == route_id)
                .values(search_count=Route.search_count + 1)
            )
            await session.commit()

    async def increment_segment_usage(self, segment_ids: List[UUID]) -> None:
        if not segment_ids:
            return
        async with self._session_factory() as session:
            await session.execute(
                update(RouteSegment)
                .where(RouteSegment.id.in_(segment_ids))
                .values(usage_count=RouteSegment.usage_count + 1)
            )
            await session.commit()


def choose_segment_mode(
    modes: List[TransportMode],
    previous: Optional[TransportMode],
    preferred: Optional[Set[TransportMode]],
) -> TransportMode:
    """Pick one mode per segment, staying on the previous vehicle when possible."""
    options = list(modes)
    if preferred:
        allowed = [m for m in options if m in preferred or m == TransportMode.WALK]
        options = allowed or options
    if previous is not None and previous in options:
        return previous
    vehicles = [m for m in options if m != TransportMode.WALK]
    return vehicles[0] if vehicles else options[0]
