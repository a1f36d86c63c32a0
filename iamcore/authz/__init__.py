"""Authorization primitives.

Policy documents, wildcard matching, condition operators and the
relationship capability table. The decision engine lives in
``iamcore.authz.engine`` and the FastAPI helpers in
``iamcore.authz.dependencies``.

Usage:
    from iamcore.authz import PolicyEvaluator, Decision

    evaluator = PolicyEvaluator()
    document = evaluator.parse(raw_json)
    if evaluator.evaluate(document, "blog:update", "blog/123") == Decision.DENY:
        ...
"""

from iamcore.authz.errors import (
    AuthorizationError,
    StorageUnavailableError,
    MalformedPolicyError,
    InvalidRequestError,
    AuthorizationCancelledError,
)
from iamcore.authz.models import (
    PrincipalType,
    Decision,
    DecisionSource,
    Effect,
    GrantEffect,
    AccessLevel,
    Statement,
    PolicyDocument,
    Policy,
    CompiledPolicy,
    ResourcePermission,
    ResourceShare,
    GrantSnapshot,
    AuthorizationRequest,
    AuthzDecision,
    AuthenticatedPrincipal,
)
from iamcore.authz.matcher import matches, matches_any
from iamcore.authz.conditions import ConditionEvaluator
from iamcore.authz.evaluator import PolicyEvaluator
from iamcore.authz.shares import ShareCapabilities

__all__ = [
    "AuthorizationError",
    "StorageUnavailableError",
    "MalformedPolicyError",
    "InvalidRequestError",
    "AuthorizationCancelledError",
    "PrincipalType",
    "Decision",
    "DecisionSource",
    "Effect",
    "GrantEffect",
    "AccessLevel",
    "Statement",
    "PolicyDocument",
    "Policy",
    "CompiledPolicy",
    "ResourcePermission",
    "ResourceShare",
    "GrantSnapshot",
    "AuthorizationRequest",
    "AuthzDecision",
    "AuthenticatedPrincipal",
    "matches",
    "matches_any",
    "ConditionEvaluator",
    "PolicyEvaluator",
    "ShareCapabilities",
]
