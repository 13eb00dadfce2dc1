"""Fare feedback request and response schemas."""

from datetime import date, datetime, timezone
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from transitnav.models.route import TransportMode


class FareFeedbackRequest(BaseModel):
    """Request body for submitting an observed fare."""

    step_id: UUID = Field(..., description="Route step the fare was paid on")
    actual_fare_paid: float = Field(..., gt=0, le=1_000_000, description="Fare paid in NGN")
    vehicle_type_used: TransportMode = Field(..., description="Vehicle actually used")
    date_of_travel: date = Field(..., description="Day of travel")
    rating: int = Field(..., ge=1, le=5, description="Trip rating 1-5")
    comments: Optional[str] = Field(default=None, max_length=1000)
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=24 * 60)

    @field_validator("date_of_travel")
    @classmethod
    def not_in_future(cls, v: date) -> date:
        if v > datetime.now(timezone.utc).date():
            raise ValueError("date_of_travel cannot be in the future")
        return v


class FareReport(BaseModel):
    """One recent report as shown alongside the aggregate."""

    amount: float
    duration_minutes: Optional[int] = None
    vehicle_type_used: str
    rating: int
    reported_at: datetime


class CrowdsourcedAggregate(BaseModel):
    """Running average over every report, with the most recent samples."""

    report_count: int
    average: Optional[float] = None
    last_updated: Optional[datetime] = None
    recent_reports: List[FareReport] = Field(default_factory=list)


class StepFareSummary(BaseModel):
    """Enriched fare and duration view of a route step."""

    step_id: UUID
    transport_mode: TransportMode
    fare_min: Optional[float] = None
    fare_max: Optional[float] = None
    estimated_fare: float
    estimated_duration_minutes: Optional[int] = None
    accuracy_score: float = Field(..., ge=0, le=5)
    crowdsourced_fare: CrowdsourcedAggregate
    crowdsourced_duration: CrowdsourcedAggregate
