"""Authorization decision engine.

Reconciles the three grant sources under deny-overrides-allow with
default deny.

Evaluation order:
1. Attached policies: any Deny is final, any Allow is pending
2. Resource permissions on the exact resource: Deny is final, Allow pending
3. Resource shares on the exact resource: capability match is pending Allow
4. Pending Allow and no Deny -> Allow, otherwise Deny
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from iamcore.audit.models import AuditEvent, AuditEventType, AuditSeverity
from iamcore.audit.service import AuditEmitter
from iamcore.authz.errors import (
    AuthorizationCancelledError,
    InvalidRequestError,
    MalformedPolicyError,
)
from iamcore.authz.evaluator import PolicyEvaluator
from iamcore.authz.matcher import matches
from iamcore.authz.models import (
    AuthorizationRequest,
    AuthzDecision,
    Decision,
    DecisionSource,
    GrantEffect,
    GrantSnapshot,
    PrincipalType,
)
from iamcore.authz.shares import ShareCapabilities
from iamcore.grants.aggregator import GrantAggregator

logger = logging.getLogger(__name__)

# service:verb, concrete (no wildcards)
_ACTION = re.compile(r"^[A-Za-z0-9_.\-]+:[A-Za-z0-9_.\-/]+$")

# arn:<partition>:resource:<organization>:<type>/<id>
_ORGANIZATION_ARN = re.compile(r"^arn:[^:]*:resource:([^:]+):")

REASON_POLICY_DENY = "explicit policy deny"
REASON_PERMISSION_DENY = "explicit resource permission deny"
REASON_DEFAULT_DENY = "no grant allows this action"


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


@dataclass
class _Evidence:
    source: DecisionSource
    reason: str
    policy_id: str | None = None
    statement_sid: str | None = None
    grant_id: str | None = None


class AuthzEngine:
    """Authorization engine combining PBAC, resource permissions and ReBAC.

    Holds no per-request state; safe to share across concurrent callers.

    Usage:
        engine = AuthzEngine(GrantAggregator(store), audit=audit_service)

        decision = await engine.authorize(
            "user-1", PrincipalType.USER, "org-a", "blog:update", "blog/123"
        )
        if not decision.allowed:
            # Respond with a generic 403; decision.reason is for audit only
            ...
    """

    def __init__(
        self,
        aggregator: GrantAggregator,
        evaluator: PolicyEvaluator | None = None,
        shares: ShareCapabilities | None = None,
        audit: AuditEmitter | None = None,
    ):
        self.aggregator = aggregator
        self.evaluator = evaluator or aggregator.evaluator
        self.shares = shares or ShareCapabilities()
        self.audit = audit

        logger.info("AuthzEngine initialized (audit: %s)", "on" if audit else "off")

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def authorize(
        self,
        principal_id: str,
        principal_type: PrincipalType | str,
        organization_id: str,
        action: str,
        resource: str,
        context: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> AuthzDecision:
        """Decide whether a principal may perform an action on a resource.

        Raises:
            InvalidRequestError: malformed input or organization mismatch
            AuthorizationCancelledError: the timeout fired during aggregation
        """
        principal = self._check_principal(principal_id, principal_type, organization_id, action, resource)
        self._check_target(principal_id, principal, organization_id, action, resource)

        snapshot = await self._collect(principal_id, principal, organization_id, action, resource, timeout)
        self._audit_degradation(snapshot, action, resource)

        decision = self.decide(snapshot, action, resource, context or {})
        self._audit_decision(snapshot, decision)
        return decision

    async def authorize_request(
        self, request: AuthorizationRequest, timeout: float | None = None
    ) -> AuthzDecision:
        return await self.authorize(
            request.principal_id,
            request.principal_type,
            request.organization_id,
            request.action,
            request.resource,
            request.context,
            timeout=timeout,
        )

    async def authorize_batch(
        self,
        principal_id: str,
        principal_type: PrincipalType | str,
        organization_id: str,
        checks: Iterable[tuple[str, str]],
        context: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> list[AuthzDecision]:
        """Evaluate many (action, resource) pairs with a single grant fetch.

        Every pair is validated before anything is evaluated; one invalid
        pair rejects the whole batch.
        """
        checks = list(checks)
        if not checks:
            return []

        first_action, first_resource = checks[0]
        principal = self._check_principal(
            principal_id, principal_type, organization_id, first_action, first_resource
        )
        for action, resource in checks:
            self._check_target(principal_id, principal, organization_id, action, resource)

        snapshot = await self._collect(
            principal_id, principal, organization_id, f"batch[{len(checks)}]", "*", timeout
        )
        self._audit_degradation(snapshot, f"batch[{len(checks)}]", "*")

        decisions = []
        for action, resource in checks:
            decision = self.decide(snapshot, action, resource, context or {})
            self._audit_decision(snapshot, decision)
            decisions.append(decision)

        logger.debug(
            "Batch authorization: principal=%s org=%s checks=%d allowed=%d",
            principal_id,
            organization_id,
            len(decisions),
            sum(1 for d in decisions if d.allowed),
        )
        return decisions

    # -------------------------------------------------------------------------
    # Decision reducer
    # -------------------------------------------------------------------------

    def decide(
        self,
        snapshot: GrantSnapshot,
        action: str,
        resource: str,
        context: Mapping[str, Any],
    ) -> AuthzDecision:
        """Reduce a grant snapshot to a decision. Deny is absorbing."""
        pending: _Evidence | None = None
        evaluated = 0
        skipped = [record.policy_id for record in snapshot.malformed_policies]

        def finish(decision: Decision, evidence: _Evidence) -> AuthzDecision:
            return AuthzDecision(
                allowed=decision == Decision.ALLOW,
                decision=decision,
                action=action,
                resource=resource,
                reason=evidence.reason,
                source=evidence.source,
                matched_policy_id=evidence.policy_id,
                matched_statement_sid=evidence.statement_sid,
                matched_grant_id=evidence.grant_id,
                evaluated_policies=evaluated,
                skipped_policies=skipped,
                degraded_sources=list(snapshot.failed_sources),
            )

        for policy in snapshot.policies:
            try:
                result = self.evaluator.evaluate_detailed(policy.document, action, resource, context)
            except MalformedPolicyError as e:
                logger.error("Skipping policy during evaluation: policy=%s error=%s", policy.policy_id, e)
                skipped.append(policy.policy_id)
                continue

            evaluated += 1
            if result.decision == Decision.DENY:
                return finish(Decision.DENY, _Evidence(
                    DecisionSource.POLICY, REASON_POLICY_DENY, policy.policy_id, result.sid
                ))
            if result.decision == Decision.ALLOW and pending is None:
                pending = _Evidence(
                    DecisionSource.POLICY,
                    f"allowed by policy {policy.name or policy.policy_id}",
                    policy.policy_id,
                    result.sid,
                )

        for permission in snapshot.resource_permissions:
            if permission.resource_id != resource or not matches(permission.permission, action):
                continue
            if permission.effect == GrantEffect.DENY:
                return finish(Decision.DENY, _Evidence(
                    DecisionSource.RESOURCE_PERMISSION, REASON_PERMISSION_DENY, grant_id=permission.id
                ))
            if pending is None:
                pending = _Evidence(
                    DecisionSource.RESOURCE_PERMISSION,
                    f"allowed by resource permission {permission.permission}",
                    grant_id=permission.id,
                )

        for share in snapshot.resource_shares:
            if share.resource_id != resource or share.is_expired():
                continue
            if pending is None and self.shares.authorizes(share.access_level, action):
                pending = _Evidence(
                    DecisionSource.RESOURCE_SHARE,
                    f"allowed by resource share ({share.access_level.value})",
                    grant_id=share.id,
                )

        if pending is not None:
            return finish(Decision.ALLOW, pending)

        return finish(Decision.DENY, _Evidence(DecisionSource.DEFAULT, REASON_DEFAULT_DENY))

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _check_principal(
        self,
        principal_id: str,
        principal_type: PrincipalType | str,
        organization_id: str,
        action: str,
        resource: str,
    ) -> PrincipalType:
        try:
            if not isinstance(principal_id, str) or not principal_id.strip():
                raise InvalidRequestError("principal_id is required")
            if not isinstance(organization_id, str) or not organization_id.strip():
                raise InvalidRequestError("organization_id is required")
            try:
                return PrincipalType(principal_type)
            except ValueError:
                raise InvalidRequestError(f"Unknown principal type: {principal_type!r}") from None
        except InvalidRequestError as e:
            self._audit_error(organization_id, principal_id, str(principal_type), action, resource, e)
            raise

    def _check_target(
        self,
        principal_id: str,
        principal_type: PrincipalType,
        organization_id: str,
        action: str,
        resource: str,
    ) -> None:
        try:
            if not isinstance(action, str) or not _ACTION.match(action):
                raise InvalidRequestError(f"Action must be a concrete service:verb, got {action!r}")
            if not isinstance(resource, str) or not resource or any(c.isspace() for c in resource):
                raise InvalidRequestError(f"Invalid resource: {resource!r}")

            arn_match = _ORGANIZATION_ARN.match(resource)
            if arn_match and arn_match.group(1) != organization_id:
                raise InvalidRequestError(
                    f"Resource belongs to organization {arn_match.group(1)!r}, "
                    f"request is scoped to {organization_id!r}"
                )
        except InvalidRequestError as e:
            self._audit_error(organization_id, principal_id, principal_type.value, action, resource, e)
            raise

    async def _collect(
        self,
        principal_id: str,
        principal_type: PrincipalType,
        organization_id: str,
        action: str,
        resource: str,
        timeout: float | None,
    ) -> GrantSnapshot:
        try:
            return await self.aggregator.collect(principal_id, principal_type, organization_id, timeout=timeout)
        except AuthorizationCancelledError as e:
            logger.warning(
                "Authorization cancelled: principal=%s org=%s action=%s error=%s",
                principal_id, organization_id, action, e,
            )
            self._audit_error(organization_id, principal_id, principal_type.value, action, resource, e)
            raise

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    def _emit(self, method: str, *args: Any) -> None:
        if self.audit is None:
            return
        try:
            getattr(self.audit, method)(*args)
        except Exception as e:
            logger.error("Audit emission failed (%s): %s", method, e)

    def _audit_decision(self, snapshot: GrantSnapshot, decision: AuthzDecision) -> None:
        args = (
            snapshot.organization_id,
            snapshot.principal_id,
            snapshot.principal_type.value,
            decision.action,
            decision.resource,
        )

        if decision.allowed:
            logger.debug(
                "Access ALLOWED: principal=%s action=%s resource=%s source=%s",
                snapshot.principal_id, decision.action, decision.resource, decision.source.value,
            )
        else:
            logger.info(
                "Access DENIED: principal=%s action=%s resource=%s reason=%s",
                snapshot.principal_id, decision.action, decision.resource, decision.reason,
            )

        self._emit("log_access_check", *args, decision.allowed, decision.reason)
        if decision.decision == Decision.DENY and decision.source != DecisionSource.DEFAULT:
            self._emit("log_access_denied", *args, decision.reason)

    def _audit_degradation(self, snapshot: GrantSnapshot, action: str, resource: str) -> None:
        for source in snapshot.failed_sources:
            self._emit("log_event", AuditEvent(
                organization_id=snapshot.organization_id,
                principal_id=snapshot.principal_id,
                principal_type=snapshot.principal_type.value,
                event_type=AuditEventType.AUTHZ_DEGRADED,
                severity=AuditSeverity.WARNING,
                action=action,
                resource=resource,
                result="degraded",
                reason=f"grant source unavailable: {source}",
                details={"source": source},
            ))

        for record in snapshot.malformed_policies:
            self._emit("log_event", AuditEvent(
                organization_id=snapshot.organization_id,
                principal_id=snapshot.principal_id,
                principal_type=snapshot.principal_type.value,
                event_type=AuditEventType.POLICY_MALFORMED,
                severity=AuditSeverity.ERROR,
                action=action,
                resource=resource,
                result="degraded",
                reason=record.error,
                details={"policy_id": record.policy_id},
            ))

    def _audit_error(
        self,
        organization_id: str,
        principal_id: str,
        principal_type: str,
        action: str,
        resource: str,
        error: Exception,
    ) -> None:
        self._emit("log_event", AuditEvent(
            organization_id=_text(organization_id),
            principal_id=_text(principal_id),
            principal_type=principal_type,
            event_type=AuditEventType.AUTHZ_ERROR,
            severity=AuditSeverity.ERROR,
            action=_text(action) or "",
            resource=_text(resource),
            result="failure",
            reason=f"{type(error).__name__}: {error}",
        ))
