# Core utilities
from transitnav.core.exceptions import (
    APIException,
    FeedbackValidationError,
    LocationNotFound,
    NoPathFound,
    PlanningError,
    ProviderUnavailable,
    ResolutionFailed,
    ResourceNotFoundException,
    RouteUnresolvableException,
    StepNotFound,
    Unresolvable,
    ValidationException,
    register_exception_handlers,
)
from transitnav.core.audit import audit_log, AuditAction, AuditSeverity

__all__ = [
    "APIException",
    "FeedbackValidationError",
    "LocationNotFound",
    "NoPathFound",
    "PlanningError",
    "ProviderUnavailable",
    "ResolutionFailed",
    "ResourceNotFoundException",
    "RouteUnresolvableException",
    "StepNotFound",
    "Unresolvable",
    "ValidationException",
    "register_exception_handlers",
    "audit_log",
    "AuditAction",
    "AuditSeverity",
]
