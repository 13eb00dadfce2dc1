"""Audit logging for planning requests and crowdsourced contributions."""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

logger = logging.getLogger("api.audit")


class AuditAction(str, Enum):
    """Audit action types."""

    # Planning
    ROUTE_PLAN = "route.plan"
    ROUTE_PLAN_FALLBACK = "route.plan_fallback"

    # Locations
    LOCATION_RESOLVE = "location.resolve"
    LOCATION_CREATE = "location.create"
    LOCATION_NEARBY = "location.nearby"

    # Crowdsourced fares
    FARE_FEEDBACK_SUBMIT = "fare.feedback_submit"
    FARE_SUMMARY_READ = "fare.summary_read"


class AuditSeverity(str, Enum):
    """Audit event severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEntry(BaseModel):
    """Audit log entry structure."""

    timestamp: datetime
    action: AuditAction
    severity: AuditSeverity
    request_id: Optional[str] = None
    client_ip: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    success: bool = True
    error_message: Optional[str] = None


class AuditLogger:
    """
    Structured audit trail written through the ``api.audit`` logger.

    Auditing is fire-and-forget: a failure to write an entry is reported on
    the module logger and never reaches the caller.
    """

    def __init__(self):
        self._logger = logging.getLogger("api.audit")
        self._logger.setLevel(logging.INFO)

    def _format_entry(self, entry: AuditEntry) -> str:
        """Format audit entry as JSON for structured logging."""
        return json.dumps(entry.model_dump(mode="json"), default=str)

    def log(
        self,
        action: AuditAction,
        *,
        severity: AuditSeverity = AuditSeverity.INFO,
        request_id: Optional[str] = None,
        client_ip: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> None:
        """
        Log an audit event.

        Args:
            action: The action being audited
            severity: Event severity level
            request_id: Unique request identifier
            client_ip: Client IP address
            resource_type: Type of resource accessed
            resource_id: ID of resource accessed
            details: Additional context
            success: Whether the action succeeded
            error_message: Error message if failed
        """
        try:
            entry = AuditEntry(
                timestamp=datetime.now(timezone.utc),
                action=action,
                severity=severity,
                request_id=request_id,
                client_ip=client_ip,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details,
                success=success,
                error_message=error_message,
            )
            log_message = self._format_entry(entry)
        except Exception as e:
            logger.warning(f"Dropped audit entry for {action}: {e}")
            return

        if severity == AuditSeverity.CRITICAL:
            self._logger.critical(f"AUDIT: {log_message}")
        elif severity == AuditSeverity.ERROR:
            self._logger.error(f"AUDIT: {log_message}")
        elif severity == AuditSeverity.WARNING:
            self._logger.warning(f"AUDIT: {log_message}")
        else:
            self._logger.info(f"AUDIT: {log_message}")

    def log_plan(
        self,
        request_id: str,
        client_ip: str,
        details: Dict[str, Any],
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> None:
        """Log a planning request and its outcome."""
        self.log(
            AuditAction.ROUTE_PLAN,
            severity=AuditSeverity.INFO if success else AuditSeverity.WARNING,
            request_id=request_id,
            client_ip=client_ip,
            resource_type="route_plan",
            details=details,
            success=success,
            error_message=error_message,
        )

    def log_contribution(
        self,
        action: AuditAction,
        request_id: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        client_ip: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log crowdsourced writes (feedback, auto-created locations)."""
        self.log(
            action,
            request_id=request_id,
            resource_type=resource_type,
            resource_id=resource_id,
            client_ip=client_ip,
            details=details,
        )


# Global audit logger instance
audit_log = AuditLogger()
