"""Data-availability tagging for assembled steps."""

import logging
from typing import List, Optional

from transitnav.models.route import TransportMode
from transitnav.schemas.planning import (
    AlternativeOptions,
    AlternativeTransport,
    ConfidenceLevel,
    DataAvailability,
    StepSource,
)
from transitnav.services import distance as geo
from transitnav.services.fare_aggregator import EnrichedStep, ceil_fare, floor_fare

logger = logging.getLogger(__name__)

GRAPH_SOURCES = {StepSource.ROUTE, StepSource.REVERSED_ROUTE, StepSource.SEGMENT}

# Negotiated street fares in NGN: base + per km, quoted as a -20%/+30% range
FARE_RATES = {
    TransportMode.KEKE: {"base": 100, "per_km": 50},
    TransportMode.OKADA: {"base": 100, "per_km": 30},
    TransportMode.TAXI: {"base": 200, "per_km": 100},
}

# Legs shorter than this are just walked, no vehicle suggestions
MIN_SUGGESTION_DISTANCE_KM = 0.5
TAXI_SUGGESTION_DISTANCE_KM = 3.0


def estimate_fare_range(mode: TransportMode, distance_km: float, unit: int = 50) -> tuple:
    rates = FARE_RATES.get(mode, FARE_RATES[TransportMode.TAXI])
    base = rates["base"] + distance_km * rates["per_km"]
    return floor_fare(base * 0.8, unit), ceil_fare(base * 1.3, unit)


def local_phrases(destination: str) -> List[str]:
    """Ways to ask for directions that locals will recognise."""
    return [
        f"Abeg, how I fit reach {destination}?",
        f"Which motor dey go {destination}?",
        f"Where I go stop to get keke or okada to {destination}?",
        f"Excuse me, please which way to {destination}?",
    ]


class ConfidenceScorer:
    """Deterministic confidence rules over step provenance.

    * high: verified route or segment with at least ``high_min_reports``
      fare reports inside the recency window
    * medium: verified with fewer reports, or unverified with enough
    * low: everything else, including provider and straight-line legs

    Reversed routes are capped at medium. A final walk to the destination
    is medium when it is walkable and low otherwise.
    """

    def __init__(
        self,
        high_min_reports: int = 3,
        walkable_threshold_meters: float = 2000.0,
        driving_speed_kmh: float = geo.DRIVING_SPEED_KMH,
        traffic_factor: float = geo.TRAFFIC_FACTOR,
    ):
        self.high_min_reports = high_min_reports
        self.walkable_threshold_meters = walkable_threshold_meters
        self.driving_speed_kmh = driving_speed_kmh
        self.traffic_factor = traffic_factor

    def score(self, step: EnrichedStep) -> DataAvailability:
        if step.source in GRAPH_SOURCES:
            return self._score_graph_step(step)

        walkable = self.is_walkable(step.distance_km or 0.0)
        if step.source == StepSource.WALK_TO_DESTINATION:
            return DataAvailability(
                has_vehicle_data=False,
                confidence=ConfidenceLevel.MEDIUM if walkable else ConfidenceLevel.LOW,
                reason="Walk from the last drop-off point to your destination",
            )

        if step.source == StepSource.PROVIDER:
            reason = "Directions from the map provider; no community fare data for this trip"
        else:
            reason = "Estimated from straight-line distance; no route data available"
        if step.fallback:
            reason += " (fallback)"
        return DataAvailability(
            has_vehicle_data=False,
            confidence=ConfidenceLevel.LOW,
            reason=reason,
            fallback=step.fallback,
        )

    def _score_graph_step(self, step: EnrichedStep) -> DataAvailability:
        enough_reports = step.recent_report_count >= self.high_min_reports
        kind = "segment" if step.source == StepSource.SEGMENT else "route"

        if step.source_verified and enough_reports:
            level = ConfidenceLevel.HIGH
            reason = f"Verified {kind} with {step.recent_report_count} recent fare reports"
        elif step.source_verified:
            level = ConfidenceLevel.MEDIUM
            reason = f"Verified {kind} with {step.recent_report_count} recent fare report(s)"
        elif enough_reports:
            level = ConfidenceLevel.MEDIUM
            reason = f"Unverified {kind} confirmed by {step.recent_report_count} recent fare reports"
        else:
            level = ConfidenceLevel.LOW
            reason = f"Unverified {kind} with few recent fare reports"

        if step.is_reversed and level == ConfidenceLevel.HIGH:
            level = ConfidenceLevel.MEDIUM
        if step.is_reversed:
            reason += "; travelled in reverse"

        return DataAvailability(has_vehicle_data=True, confidence=level, reason=reason)

    def is_walkable(self, distance_km: float) -> bool:
        return distance_km * 1000.0 < self.walkable_threshold_meters

    def alternative_options(self, step: EnrichedStep, availability: DataAvailability) -> Optional[AlternativeOptions]:
        """Ask-locals hints, only for legs without vehicle data."""
        if availability.has_vehicle_data:
            return None
        return AlternativeOptions(
            ask_locals=True,
            local_phrases=local_phrases(step.to_location.name),
            walkable=self.is_walkable(step.distance_km or 0.0),
        )

    def alternative_transport(self, step: EnrichedStep, availability: DataAvailability) -> List[AlternativeTransport]:
        """Keke/okada (and taxi for long legs) suggestions for walked or guessed legs."""
        distance = step.distance_km or 0.0
        vehicle_less = not availability.has_vehicle_data or step.transport_mode == TransportMode.WALK
        if not vehicle_less or distance < MIN_SUGGESTION_DISTANCE_KM:
            return []

        modes = [TransportMode.KEKE, TransportMode.OKADA]
        if distance >= TAXI_SUGGESTION_DISTANCE_KM:
            modes.append(TransportMode.TAXI)

        minutes = geo.driving_minutes(distance, self.driving_speed_kmh, self.traffic_factor)
        suggestions = []
        for mode in modes:
            low, high = estimate_fare_range(mode, distance)
            suggestions.append(
                AlternativeTransport(
                    type=mode,
                    estimated_fare_min=low,
                    estimated_fare_max=high,
                    estimated_duration_minutes=minutes,
                    instructions=f"Flag down a {mode.value} heading to {step.to_location.name}; agree the fare before you board",
                )
            )
        return suggestions
