"""Grant storage and aggregation.

Usage:
    from iamcore.grants import GrantAggregator, InMemoryGrantStore

    store = InMemoryGrantStore.from_yaml("seed.yaml")
    snapshot = await GrantAggregator(store).collect("user-1", PrincipalType.USER, "org-a")
"""

from iamcore.grants.models import (
    AssigneeType,
    Role,
    Group,
    RoleAssignment,
    PolicyAttachment,
)
from iamcore.grants.store import GrantStore, InMemoryGrantStore
from iamcore.grants.cache import GrantCache
from iamcore.grants.aggregator import GrantAggregator

__all__ = [
    "AssigneeType",
    "Role",
    "Group",
    "RoleAssignment",
    "PolicyAttachment",
    "GrantStore",
    "InMemoryGrantStore",
    "GrantCache",
    "GrantAggregator",
]
