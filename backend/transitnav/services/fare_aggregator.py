"""Folds crowdsourced fare and duration reports into per-step estimates."""

import logging
import math
from datetime import date, datetime, time, tzinfo
from typing import List, Optional, Tuple
from uuid import UUID
from zoneinfo import ZoneInfo

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from transitnav.core.exceptions import FeedbackValidationError, StepNotFound
from transitnav.models.base import ensure_utc, utcnow
from transitnav.models.fare_feedback import FareFeedback
from transitnav.models.route import RouteStep, TransportMode, normalize_mode
from transitnav.schemas.feedback import CrowdsourcedAggregate, FareReport, StepFareSummary
from transitnav.services.route_graph import PathStep, path_step_from_row

logger = logging.getLogger(__name__)

SERVICE_TIMEZONE = "Africa/Lagos"

# Morning and evening rush in service-local time, inclusive
PEAK_WINDOWS: List[Tuple[time, time]] = [
    (time(7, 0), time(9, 0)),
    (time(17, 0), time(19, 0)),
]

# Accuracy score parts, summing to 5
VOLUME_WEIGHT = 2.5
RECENCY_WEIGHT = 1.5
CONSISTENCY_WEIGHT = 1.0
FULL_VOLUME_REPORTS = 10
NO_REPORT_ACCURACY = 1.0

MAX_FEEDBACK_ATTEMPTS = 2


def round_fare(amount: float, unit: int = 50) -> float:
    """Round half-up to the nearest ``unit`` naira."""
    return float(math.floor(amount / unit + 0.5) * unit)


def floor_fare(amount: float, unit: int = 50) -> float:
    return float(math.floor(amount / unit) * unit)


def ceil_fare(amount: float, unit: int = 50) -> float:
    return float(math.ceil(amount / unit) * unit)


def is_peak_time(moment: Optional[datetime], tz: Optional[tzinfo] = None) -> bool:
    """Whether ``moment`` falls in a rush window on the service clock.

    Aware datetimes are converted to ``tz`` (Lagos by default); naive ones
    are taken as already local.
    """
    if moment is None:
        return False
    if moment.tzinfo is not None:
        moment = moment.astimezone(tz or ZoneInfo(SERVICE_TIMEZONE))
    clock = moment.time()
    return any(start <= clock <= end for start, end in PEAK_WINDOWS)


def accuracy_score(
    report_count: int,
    report_sum: float,
    report_sum_sq: float,
    last_reported_at: Optional[datetime],
    recent_days: int = 90,
    now: Optional[datetime] = None,
) -> float:
    """Trust in a crowdsourced average, in [0, 5].

    Grows with report volume and recency, shrinks with the coefficient of
    variation of the reports. A step without reports scores 1.0.
    """
    if report_count <= 0:
        return NO_REPORT_ACCURACY

    volume = min(report_count / FULL_VOLUME_REPORTS, 1.0) * VOLUME_WEIGHT

    recency = 0.0
    last = ensure_utc(last_reported_at)
    if last is not None:
        age_days = max(((now or utcnow()) - last).total_seconds() / 86400.0, 0.0)
        recency = max(0.0, 1.0 - age_days / recent_days) * RECENCY_WEIGHT

    mean = report_sum / report_count
    variance = max(report_sum_sq / report_count - mean * mean, 0.0)
    cv = math.sqrt(variance) / mean if mean > 0 else 1.0
    consistency = max(0.0, 1.0 - cv) * CONSISTENCY_WEIGHT

    return round(min(max(volume + recency + consistency, 0.0), 5.0), 2)


class EnrichedStep(PathStep):
    """A PathStep with crowdsourced averages folded in."""

    estimated_fare: float = 0.0
    fare_average: Optional[float] = None
    duration_average: Optional[float] = None
    accuracy_score: float = NO_REPORT_ACCURACY
    peak_pricing: bool = False


class FareAggregator:
    """Reads and writes the crowdsourced aggregates on route steps."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        rounding_unit: int = 50,
        history_size: int = 20,
        recent_days: int = 90,
        peak_multiplier: float = 1.25,
        timezone: str = SERVICE_TIMEZONE,
    ):
        self._session_factory = session_factory
        self.rounding_unit = rounding_unit
        self.history_size = history_size
        self.recent_days = recent_days
        self.peak_multiplier = peak_multiplier
        self.timezone = ZoneInfo(timezone)

    def is_peak(self, moment: Optional[datetime]) -> bool:
        return is_peak_time(moment, self.timezone)

    def enrich(self, step: PathStep, departure_time: Optional[datetime] = None) -> EnrichedStep:
        """Fare and duration estimate for a step.

        With reports the estimate is the mean of all of them; without, it is
        the midpoint of the admin-entered fare range.
        """
        unit = self.rounding_unit
        fare_min = step.fare_min
        fare_max = step.fare_max
        fare_average = None

        if step.fare_report_count > 0:
            fare_average = step.fare_report_sum / step.fare_report_count
            estimate = fare_average
            if fare_min is None or fare_max is None:
                variance = max(step.fare_report_sum_sq / step.fare_report_count - fare_average ** 2, 0.0)
                spread = math.sqrt(variance)
                fare_min = fare_min if fare_min is not None else max(fare_average - spread, 0.0)
                fare_max = fare_max if fare_max is not None else fare_average + spread
        elif fare_min is not None and fare_max is not None:
            estimate = (fare_min + fare_max) / 2.0
        else:
            estimate = fare_min if fare_min is not None else (fare_max or 0.0)

        peak = self.is_peak(departure_time) and estimate > 0
        if peak:
            estimate *= self.peak_multiplier
            fare_min = fare_min * self.peak_multiplier if fare_min is not None else None
            fare_max = fare_max * self.peak_multiplier if fare_max is not None else None

        duration = step.duration_minutes
        duration_average = None
        if step.duration_report_count > 0:
            duration_average = step.duration_report_sum / step.duration_report_count
            duration = int(round(duration_average))

        return EnrichedStep(
            **step.model_dump(exclude={"fare_min", "fare_max", "duration_minutes"}),
            fare_min=floor_fare(fare_min, unit) if fare_min is not None else None,
            fare_max=ceil_fare(fare_max, unit) if fare_max is not None else None,
            duration_minutes=duration,
            estimated_fare=round_fare(estimate, unit) if estimate > 0 else 0.0,
            fare_average=round(fare_average, 2) if fare_average is not None else None,
            duration_average=round(duration_average, 1) if duration_average is not None else None,
            accuracy_score=accuracy_score(
                step.fare_report_count,
                step.fare_report_sum,
                step.fare_report_sum_sq,
                step.fare_last_reported_at,
                recent_days=self.recent_days,
            ),
            peak_pricing=peak,
        )

    async def record_feedback(
        self,
        step_id: UUID,
        fare: float,
        *,
        rating: int,
        vehicle_type_used: str,
        date_of_travel: date,
        duration_minutes: Optional[int] = None,
        comments: Optional[str] = None,
    ) -> StepFareSummary:
        """Append one report and fold it into the step's running aggregates.

        The aggregate columns are incremented in SQL, so concurrent submissions
        for the same step do not lose updates. Prior reports are never touched.
        """
        self._validate(fare, rating, duration_minutes)
        vehicle = normalize_mode(vehicle_type_used)
        if vehicle == TransportMode.UNKNOWN:
            raise FeedbackValidationError(f"Unknown vehicle type: {vehicle_type_used}", field="vehicle_type_used")

        for attempt in range(1, MAX_FEEDBACK_ATTEMPTS + 1):
            try:
                await self._append(step_id, float(fare), vehicle, date_of_travel, rating, duration_minutes, comments)
                break
            except OperationalError as e:
                logger.warning(f"Feedback write for step {step_id} failed (attempt {attempt}): {e}")
                if attempt == MAX_FEEDBACK_ATTEMPTS:
                    raise

        logger.info(f"Recorded fare N{fare:.0f} for step {step_id}")
        return await self.summarize(step_id)

    @staticmethod
    def _validate(fare: float, rating: int, duration_minutes: Optional[int]) -> None:
        if isinstance(fare, bool) or not isinstance(fare, (int, float)) or not math.isfinite(fare):
            raise FeedbackValidationError("Fare must be a number", field="actual_fare_paid")
        if fare <= 0:
            raise FeedbackValidationError("Fare must be greater than zero", field="actual_fare_paid")
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise FeedbackValidationError("Rating must be between 1 and 5", field="rating")
        if duration_minutes is not None and duration_minutes <= 0:
            raise FeedbackValidationError("Duration must be positive", field="duration_minutes")

    async def _append(
        self,
        step_id: UUID,
        fare: float,
        vehicle: TransportMode,
        date_of_travel: date,
        rating: int,
        duration_minutes: Optional[int],
        comments: Optional[str],
    ) -> None:
        now = utcnow()
        async with self._session_factory() as session:
            exists = await session.execute(
                select(RouteStep.id).where(RouteStep.id == step_id, RouteStep.is_active == True)
            )
            if exists.scalar_one_or_none() is None:
                raise StepNotFound(step_id)

            session.add(
                FareFeedback(
                    route_step_id=step_id,
                    actual_fare_paid=fare,
                    duration_minutes=duration_minutes,
                    vehicle_type_used=vehicle.value,
                    date_of_travel=date_of_travel,
                    rating=rating,
                    comments=comments,
                    created_at=now,
                )
            )

            values = {
                "fare_report_count": RouteStep.fare_report_count + 1,
                "fare_report_sum": RouteStep.fare_report_sum + fare,
                "fare_report_sum_sq": RouteStep.fare_report_sum_sq + fare * fare,
                "fare_last_reported_at": now,
            }
            if duration_minutes is not None:
                values.update(
                    {
                        "duration_report_count": RouteStep.duration_report_count + 1,
                        "duration_report_sum": RouteStep.duration_report_sum + duration_minutes,
                        "duration_last_reported_at": now,
                    }
                )
            await session.execute(update(RouteStep).where(RouteStep.id == step_id).values(**values))
            await session.commit()

    async def summarize(self, step_id: UUID) -> StepFareSummary:
        """Enriched aggregate plus the most recent reports for one step."""
        async with self._session_factory() as session:
            step = await session.get(RouteStep, step_id, populate_existing=True)
            if step is None or not step.is_active:
                raise StepNotFound(step_id)
            result = await session.execute(
                select(FareFeedback)
                .where(FareFeedback.route_step_id == step_id)
                .order_by(FareFeedback.created_at.desc())
                .limit(self.history_size)
            )
            recent = list(result.scalars().all())

        enriched = self.enrich(path_step_from_row(step, verified=False))

        fare_reports = [
            FareReport(
                amount=r.actual_fare_paid,
                duration_minutes=r.duration_minutes,
                vehicle_type_used=r.vehicle_type_used,
                rating=r.rating,
                reported_at=ensure_utc(r.created_at),
            )
            for r in recent
        ]

        return StepFareSummary(
            step_id=step.id,
            transport_mode=enriched.transport_mode,
            fare_min=enriched.fare_min,
            fare_max=enriched.fare_max,
            estimated_fare=enriched.estimated_fare,
            estimated_duration_minutes=enriched.duration_minutes,
            accuracy_score=enriched.accuracy_score,
            crowdsourced_fare=CrowdsourcedAggregate(
                report_count=enriched.fare_report_count,
                average=enriched.fare_average,
                last_updated=enriched.fare_last_reported_at,
                recent_reports=fare_reports,
            ),
            crowdsourced_duration=CrowdsourcedAggregate(
                report_count=enriched.duration_report_count,
                average=enriched.duration_average,
                last_updated=enriched.duration_last_reported_at,
                recent_reports=[r for r in fare_reports if r.duration_minutes is not None],
            ),
        )
