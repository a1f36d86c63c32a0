"""Authorization data models.

Defines policy documents (wire format and compiled form), the grant rows
read from storage, and the request/decision types of the engine.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PrincipalType(str, Enum):
    """Kinds of principal that can request access."""

    USER = "user"
    SERVICE_ACCOUNT = "service_account"


class Decision(str, Enum):
    """Outcome of evaluating a policy or a whole request."""

    ALLOW = "allow"
    DENY = "deny"
    NOT_APPLICABLE = "not_applicable"


class DecisionSource(str, Enum):
    """Which grant source produced the final decision."""

    POLICY = "policy"
    RESOURCE_PERMISSION = "resource_permission"
    RESOURCE_SHARE = "resource_share"
    DEFAULT = "default"


class Effect(str, Enum):
    """Effect of a policy statement (wire values)."""

    ALLOW = "Allow"
    DENY = "Deny"


class GrantEffect(str, Enum):
    """Effect of a resource permission row."""

    ALLOW = "allow"
    DENY = "deny"


class AccessLevel(str, Enum):
    """Relationship tiers for resource shares."""

    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _as_pattern_list(value: Any) -> Any:
    """Normalize the string-or-array wire shape to a list."""
    if isinstance(value, str):
        return [value]
    return value


# =============================================================================
# Policy documents
# =============================================================================


class Statement(BaseModel):
    """A single rule within a policy document.

    Wire keys are capitalized (Sid, Effect, Action, Resource, Condition);
    Action and Resource accept either a string or an array of strings.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    sid: str | None = Field(default=None, alias="Sid")
    effect: Effect = Field(alias="Effect")
    actions: list[str] = Field(alias="Action", min_length=1)
    resources: list[str] = Field(alias="Resource", min_length=1)
    condition: dict[str, dict[str, Any]] | None = Field(
        default=None,
        alias="Condition",
        description="operator -> context key -> expected value(s)",
    )

    @field_validator("effect", mode="before")
    @classmethod
    def normalize_effect(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered == "allow":
                return Effect.ALLOW
            if lowered == "deny":
                return Effect.DENY
        return value

    @field_validator("actions", "resources", mode="before")
    @classmethod
    def normalize_patterns(cls, value: Any) -> Any:
        return _as_pattern_list(value)

    @field_validator("actions", "resources")
    @classmethod
    def reject_blank_patterns(cls, value: list[str]) -> list[str]:
        if any(not pattern for pattern in value):
            raise ValueError("patterns must be non-empty strings")
        return value


class PolicyDocument(BaseModel):
    """A validated policy document."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    version: str = Field(alias="Version")
    statements: list[Statement] = Field(alias="Statement")

    def to_wire(self) -> dict[str, Any]:
        """Serialize back to the JSON wire shape."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# =============================================================================
# Grant rows
# =============================================================================


class Policy(BaseModel):
    """A policy as stored; the document is still raw."""

    id: str
    organization_id: str
    name: str = ""
    document: str | dict[str, Any]


class CompiledPolicy(BaseModel):
    """A policy whose document has been parsed and validated once."""

    policy_id: str
    organization_id: str
    name: str = ""
    document: PolicyDocument


class ResourcePermission(BaseModel):
    """A resource-scoped allow/deny, independent of policy documents."""

    id: str
    organization_id: str
    principal_id: str
    principal_type: PrincipalType
    resource_id: str
    permission: str = Field(description="Action pattern, wildcards allowed")
    effect: GrantEffect = GrantEffect.ALLOW

    @field_validator("effect", mode="before")
    @classmethod
    def lower_effect(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class ResourceShare(BaseModel):
    """A relationship between a principal and one resource instance."""

    id: str
    organization_id: str
    principal_id: str
    principal_type: PrincipalType
    resource_id: str
    access_level: AccessLevel
    expires_at: datetime | None = None
    shared_by: str | None = None

    @field_validator("access_level", mode="before")
    @classmethod
    def lower_access_level(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) <= (now or datetime.now(UTC))


class MalformedPolicyRecord(BaseModel):
    """A policy skipped during aggregation because it did not compile."""

    policy_id: str
    error: str


class GrantSnapshot(BaseModel):
    """Everything that applies to one principal within one organization."""

    principal_id: str
    principal_type: PrincipalType
    organization_id: str
    policies: list[CompiledPolicy] = Field(default_factory=list)
    malformed_policies: list[MalformedPolicyRecord] = Field(default_factory=list)
    resource_permissions: list[ResourcePermission] = Field(default_factory=list)
    resource_shares: list[ResourceShare] = Field(default_factory=list)
    failed_sources: list[str] = Field(
        default_factory=list,
        description="Sources that could not be read and contributed nothing",
    )

    @property
    def is_complete(self) -> bool:
        return not self.failed_sources


# =============================================================================
# Requests and decisions
# =============================================================================


class AuthorizationRequest(BaseModel):
    """One access check."""

    principal_id: str
    principal_type: PrincipalType
    organization_id: str
    action: str
    resource: str
    context: dict[str, Any] = Field(default_factory=dict)


class AuthzDecision(BaseModel):
    """Result of an authorization decision, with evidence for audit."""

    allowed: bool = Field(description="Whether access is allowed")
    decision: Decision
    action: str
    resource: str
    reason: str = Field(default="", description="Explanation (audit only)")
    source: DecisionSource = DecisionSource.DEFAULT
    matched_policy_id: str | None = None
    matched_statement_sid: str | None = None
    matched_grant_id: str | None = Field(
        default=None,
        description="Resource permission or share that decided",
    )
    evaluated_policies: int = 0
    skipped_policies: list[str] = Field(default_factory=list)
    degraded_sources: list[str] = Field(default_factory=list)


class AuthenticatedPrincipal(BaseModel):
    """Verified caller identity placed on request.state by authentication."""

    principal_id: str = Field(description="Unique principal identifier")
    principal_type: PrincipalType = PrincipalType.USER
    organization_id: str = Field(description="Verified organization identifier")


# =============================================================================
# Simulation
# =============================================================================


class SimulationTestCase(BaseModel):
    """A what-if check run against a candidate policy document."""

    name: str = ""
    action: str
    resource: str
    context: dict[str, Any] = Field(default_factory=dict)
    expected: Decision | None = Field(
        default=None,
        description="Expected decision; None records the outcome without asserting",
    )


class SimulationTestResult(BaseModel):
    name: str
    action: str
    resource: str
    decision: Decision
    matched_statement_sid: str | None = None
    expected: Decision | None = None
    passed: bool = True


class SimulationResult(BaseModel):
    """Outcome of simulating a candidate document."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    results: list[SimulationTestResult] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.valid and all(r.passed for r in self.results)
