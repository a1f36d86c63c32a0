"""Audit data models.

Access-check records emitted by the authorization core.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of auditable events."""

    # Authorization decisions
    AUTHZ_GRANTED = "authz_granted"
    AUTHZ_DENIED = "authz_denied"
    ACCESS_DENIED = "access_denied"

    # Failures surfaced to the caller
    AUTHZ_ERROR = "authz_error"

    # Absorbed failures operators must still see
    AUTHZ_DEGRADED = "authz_degraded"
    POLICY_MALFORMED = "policy_malformed"


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """A single audit record."""

    # Identity
    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique identifier for this record",
    )
    event_id: str = Field(
        default_factory=lambda: f"EVT-{int(datetime.now(UTC).timestamp() * 1_000_000)}",
        description="Sortable human-facing event id",
    )
    organization_id: str | None = Field(
        default=None,
        description="Tenant this record belongs to",
    )

    # Timing
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When this event occurred",
    )

    # Event details
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Actor
    principal_id: str | None = None
    principal_type: str | None = None

    # Target
    action: str = Field(description="Action that was checked")
    resource: str | None = None

    # Outcome
    result: str = Field(
        default="allowed",
        description="Outcome: 'allowed', 'denied', 'failure', 'degraded'",
    )
    reason: str | None = Field(
        default=None,
        description="Decision reason; never shown to the requester",
    )
    details: dict[str, Any] = Field(default_factory=dict)


class AuditQuery(BaseModel):
    """Query parameters for audit log search."""

    organization_id: str
    event_types: list[AuditEventType] | None = None
    principal_id: str | None = None
    resource: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    limit: int = 100
    offset: int = 0

    def matches(self, event: AuditEvent) -> bool:
        if event.organization_id != self.organization_id:
            return False
        if self.event_types and event.event_type not in self.event_types:
            return False
        if self.principal_id and event.principal_id != self.principal_id:
            return False
        if self.resource and event.resource != self.resource:
            return False
        if self.start_time and event.timestamp < self.start_time:
            return False
        if self.end_time and event.timestamp > self.end_time:
            return False
        return True
