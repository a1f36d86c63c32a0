"""Grant storage models.

Roles, groups and their assignments. These only exist inside the grant
store; the engine sees the flattened result of resolving them.
"""

from datetime import datetime, UTC
from enum import Enum

from pydantic import BaseModel, Field

from iamcore.authz.models import as_utc


class AssigneeType(str, Enum):
    """Targets a role can be assigned to."""

    USER = "user"
    SERVICE_ACCOUNT = "service_account"
    GROUP = "group"


class Role(BaseModel):
    """A named bundle of policies within one organization."""

    id: str = Field(description="Unique role identifier")
    organization_id: str
    name: str = Field(default="", description="Human-readable role name")
    description: str = ""
    policy_ids: set[str] = Field(
        default_factory=set,
        description="Policies attached to this role",
    )


class Group(BaseModel):
    """A membership container within one organization."""

    id: str
    organization_id: str
    name: str = ""
    parent_id: str | None = Field(
        default=None,
        description="Parent group; only followed when hierarchy traversal is enabled",
    )


class RoleAssignment(BaseModel):
    """A role granted to a principal or a group."""

    organization_id: str
    role_id: str
    assignee_id: str
    assignee_type: AssigneeType
    expires_at: datetime | None = None
    assigned_by: str | None = None

    def is_active(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return True
        return as_utc(self.expires_at) > (now or datetime.now(UTC))


class PolicyAttachment(BaseModel):
    """A policy attached straight to a principal, without a role."""

    organization_id: str
    policy_id: str
    principal_id: str
    principal_type: AssigneeType
