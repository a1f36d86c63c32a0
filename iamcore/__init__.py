"""Multi-tenant authorization core.

Decides whether a principal may perform an action on a resource inside an
organization by combining attached policies (PBAC), per-resource
permissions and relationship shares (ReBAC) under deny-overrides-allow.

Usage:
    from iamcore import AuthzEngine, InMemoryGrantStore, build_engine, get_settings

    store = InMemoryGrantStore.from_yaml("seed.yaml")
    engine = build_engine(get_settings(), store)

    decision = await engine.authorize(
        "user-1", "user", "org-a", "blog:update", "arn:monkeys:resource:org-a:blog/1"
    )
"""

from iamcore.authz import (
    AuthzDecision,
    Decision,
    PolicyEvaluator,
    PrincipalType,
)
from iamcore.grants import GrantAggregator, GrantCache, InMemoryGrantStore
from iamcore.audit import AuditService
from iamcore.authz.engine import AuthzEngine
from iamcore.authz.simulator import PolicySimulator
from iamcore.config import AuthzSettings, build_engine, build_store, get_settings

__version__ = "0.1.0"

__all__ = [
    "AuthzDecision",
    "Decision",
    "PolicyEvaluator",
    "PrincipalType",
    "GrantAggregator",
    "GrantCache",
    "InMemoryGrantStore",
    "AuditService",
    "AuthzEngine",
    "PolicySimulator",
    "AuthzSettings",
    "build_engine",
    "build_store",
    "get_settings",
]
