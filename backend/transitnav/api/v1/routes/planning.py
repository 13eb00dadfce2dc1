"""Route planning endpoint."""

import logging

from fastapi import APIRouter, Depends, Request

from transitnav.core.audit import audit_log
from transitnav.core.exceptions import RouteUnresolvableException, Unresolvable
from transitnav.dependencies import get_planner
from transitnav.middleware.request_logging import get_client_ip
from transitnav.schemas.planning import PlanRequest, PlanResponse
from transitnav.services.planner import RoutePlanner

logger = logging.getLogger(__name__)

router = APIRouter()


def get_request_id(request: Request) -> str:
    """Get request ID from request state."""
    return getattr(request.state, "request_id", "unknown")


@router.post("/plan", response_model=PlanResponse)
async def plan_route(
    plan_request: PlanRequest,
    request: Request,
    planner: RoutePlanner = Depends(get_planner),
) -> PlanResponse:
    """
    Plan a multi-modal trip between two locations.

    Each endpoint may be a stored location id, coordinates, or free text.
    Stored routes are preferred; when none connect the endpoints the
    planner composes segments, then falls back to provider directions and
    finally a straight-line estimate. Every step says how much to trust it.
    """
    request_id = get_request_id(request)
    client_ip = get_client_ip(request)
    details = {
        "start": plan_request.start.describe(),
        "end": plan_request.end.describe(),
        "preferred_modes": [m.value for m in plan_request.preferred_modes or []],
        "max_fare": plan_request.max_fare,
    }

    try:
        response = await planner.plan(plan_request)
    except Unresolvable as e:
        audit_log.log_plan(request_id, client_ip, details, success=False, error_message=e.reason)
        raise RouteUnresolvableException(e.reason)

    details["strategy"] = response.metadata.strategy
    details["cached"] = response.metadata.cached
    details["routes"] = len(response.routes)
    audit_log.log_plan(request_id, client_ip, details)
    return response
