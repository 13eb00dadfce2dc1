"""Crowdsourced fare feedback endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from transitnav.core.audit import audit_log, AuditAction
from transitnav.core.exceptions import (
    FeedbackValidationError,
    ResourceNotFoundException,
    StepNotFound,
    ValidationException,
)
from transitnav.dependencies import get_fare_aggregator
from transitnav.middleware.request_logging import get_client_ip
from transitnav.schemas.feedback import FareFeedbackRequest, StepFareSummary
from transitnav.services.fare_aggregator import FareAggregator

router = APIRouter()


@router.post("/feedback", response_model=StepFareSummary, status_code=status.HTTP_201_CREATED)
async def submit_fare_feedback(
    feedback: FareFeedbackRequest,
    request: Request,
    aggregator: FareAggregator = Depends(get_fare_aggregator),
) -> StepFareSummary:
    """
    Report the fare actually paid on a route step.

    The report is appended to the step's history and folded into its
    running averages; the updated aggregate is returned.
    """
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        summary = await aggregator.record_feedback(
            feedback.step_id,
            feedback.actual_fare_paid,
            rating=feedback.rating,
            vehicle_type_used=feedback.vehicle_type_used.value,
            date_of_travel=feedback.date_of_travel,
            duration_minutes=feedback.duration_minutes,
            comments=feedback.comments,
        )
    except StepNotFound:
        raise ResourceNotFoundException(resource="Route step", resource_id=str(feedback.step_id))
    except FeedbackValidationError as e:
        raise ValidationException(detail=e.detail, field=e.field)

    audit_log.log_contribution(
        AuditAction.FARE_FEEDBACK_SUBMIT,
        request_id=request_id,
        resource_type="route_step",
        resource_id=str(feedback.step_id),
        client_ip=get_client_ip(request),
        details={
            "fare": feedback.actual_fare_paid,
            "vehicle": feedback.vehicle_type_used.value,
            "report_count": summary.crowdsourced_fare.report_count,
        },
    )
    return summary


@router.get("/steps/{step_id}", response_model=StepFareSummary)
async def get_step_fares(
    step_id: UUID,
    request: Request,
    aggregator: FareAggregator = Depends(get_fare_aggregator),
) -> StepFareSummary:
    """Current fare and duration aggregate for one route step."""
    audit_log.log(
        AuditAction.FARE_SUMMARY_READ,
        request_id=getattr(request.state, "request_id", "unknown"),
        client_ip=get_client_ip(request),
        resource_type="route_step",
        resource_id=str(step_id),
    )
    try:
        return await aggregator.summarize(step_id)
    except StepNotFound:
        raise ResourceNotFoundException(resource="Route step", resource_id=str(step_id))
