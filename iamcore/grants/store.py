"""Grant storage contract and in-memory reference store.

The storage layer only has to answer three organization-scoped reads. CRUD
for users, roles, groups and resources lives elsewhere; the mutation methods
on InMemoryGrantStore exist for embedding, seeding and tests.
"""

import logging
import threading
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Callable, Protocol

import yaml

from iamcore.authz.models import (
    AccessLevel,
    GrantEffect,
    Policy,
    PrincipalType,
    ResourcePermission,
    ResourceShare,
)
from iamcore.grants.models import (
    AssigneeType,
    Group,
    PolicyAttachment,
    Role,
    RoleAssignment,
)

logger = logging.getLogger(__name__)

# (organization_id, principal_id or None for organization-wide changes)
MutationListener = Callable[[str, str | None], None]


class GrantStore(Protocol):
    """Read contract the authorization core needs from storage.

    Every method must return only rows belonging to ``organization_id``.
    """

    async def get_principal_policies(
        self, principal_id: str, principal_type: PrincipalType, organization_id: str
    ) -> list[Policy]:
        """Policies attached directly, via roles, or via group roles."""
        ...

    async def get_principal_resource_permissions(
        self, principal_id: str, principal_type: PrincipalType, organization_id: str
    ) -> list[ResourcePermission]:
        """Resource permission rows naming the principal."""
        ...

    async def get_principal_resource_shares(
        self, principal_id: str, principal_type: PrincipalType, organization_id: str
    ) -> list[ResourceShare]:
        """Resource share rows naming the principal."""
        ...


def _assignee(principal_type: PrincipalType | AssigneeType | str) -> AssigneeType:
    value = principal_type.value if hasattr(principal_type, "value") else principal_type
    return AssigneeType(value)


class InMemoryGrantStore:
    """Dict-backed grant store.

    Entities are keyed by (organization_id, id) so colliding identifiers in
    different organizations never see each other.

    Usage:
        store = InMemoryGrantStore()
        store.put_policy(Policy(id="p1", organization_id="org-a", document=doc))
        store.put_role(Role(id="editors", organization_id="org-a", policy_ids={"p1"}))
        store.assign_role("org-a", "editors", "user-1", PrincipalType.USER)
    """

    def __init__(self, inherit_group_hierarchy: bool = False):
        self.inherit_group_hierarchy = inherit_group_hierarchy

        self._policies: dict[tuple[str, str], Policy] = {}
        self._roles: dict[tuple[str, str], Role] = {}
        self._groups: dict[tuple[str, str], Group] = {}
        self._memberships: dict[tuple[str, str], set[tuple[str, AssigneeType]]] = {}
        self._assignments: list[RoleAssignment] = []
        self._attachments: list[PolicyAttachment] = []
        self._resource_permissions: list[ResourcePermission] = []
        self._resource_shares: list[ResourceShare] = []

        self._listeners: list[MutationListener] = []
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Change notification
    # -------------------------------------------------------------------------

    def add_listener(self, listener: MutationListener) -> None:
        """Register a callback invoked after every grant mutation."""
        self._listeners.append(listener)

    def _notify(self, organization_id: str, principal_id: str | None = None) -> None:
        for listener in self._listeners:
            listener(organization_id, principal_id)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def put_policy(self, policy: Policy) -> None:
        with self._lock:
            self._policies[(policy.organization_id, policy.id)] = policy
        self._notify(policy.organization_id)

    def delete_policy(self, organization_id: str, policy_id: str) -> bool:
        with self._lock:
            removed = self._policies.pop((organization_id, policy_id), None)
        if removed is not None:
            self._notify(organization_id)
        return removed is not None

    def put_role(self, role: Role) -> None:
        with self._lock:
            self._roles[(role.organization_id, role.id)] = role
        self._notify(role.organization_id)

    def attach_policy_to_role(self, organization_id: str, role_id: str, policy_id: str) -> None:
        with self._lock:
            role = self._require(self._roles, organization_id, role_id, "role")
            self._require(self._policies, organization_id, policy_id, "policy")
            role.policy_ids.add(policy_id)
        self._notify(organization_id)

    def attach_policy(
        self,
        organization_id: str,
        policy_id: str,
        principal_id: str,
        principal_type: PrincipalType | AssigneeType | str,
    ) -> None:
        """Attach a policy directly to a principal or group."""
        with self._lock:
            self._require(self._policies, organization_id, policy_id, "policy")
            self._attachments.append(
                PolicyAttachment(
                    organization_id=organization_id,
                    policy_id=policy_id,
                    principal_id=principal_id,
                    principal_type=_assignee(principal_type),
                )
            )
        self._notify(organization_id, principal_id)

    def put_group(self, group: Group) -> None:
        with self._lock:
            if group.parent_id is not None:
                self._require(self._groups, group.organization_id, group.parent_id, "group")
            self._groups[(group.organization_id, group.id)] = group
            self._memberships.setdefault((group.organization_id, group.id), set())
        self._notify(group.organization_id)

    def add_group_member(
        self,
        organization_id: str,
        group_id: str,
        principal_id: str,
        principal_type: PrincipalType | str,
    ) -> None:
        with self._lock:
            self._require(self._groups, organization_id, group_id, "group")
            self._memberships[(organization_id, group_id)].add(
                (principal_id, _assignee(principal_type))
            )
        self._notify(organization_id, principal_id)

    def remove_group_member(
        self,
        organization_id: str,
        group_id: str,
        principal_id: str,
        principal_type: PrincipalType | str,
    ) -> None:
        with self._lock:
            members = self._memberships.get((organization_id, group_id), set())
            members.discard((principal_id, _assignee(principal_type)))
        self._notify(organization_id, principal_id)

    def assign_role(
        self,
        organization_id: str,
        role_id: str,
        assignee_id: str,
        assignee_type: PrincipalType | AssigneeType | str,
        expires_at: datetime | None = None,
        assigned_by: str | None = None,
    ) -> RoleAssignment:
        """Assign a role to a principal or group."""
        with self._lock:
            self._require(self._roles, organization_id, role_id, "role")
            assignment = RoleAssignment(
                organization_id=organization_id,
                role_id=role_id,
                assignee_id=assignee_id,
                assignee_type=_assignee(assignee_type),
                expires_at=expires_at,
                assigned_by=assigned_by,
            )
            self._assignments.append(assignment)

        if assignment.assignee_type == AssigneeType.GROUP:
            self._notify(organization_id)
        else:
            self._notify(organization_id, assignee_id)
        return assignment

    def revoke_role(
        self,
        organization_id: str,
        role_id: str,
        assignee_id: str,
        assignee_type: PrincipalType | AssigneeType | str,
    ) -> bool:
        target = _assignee(assignee_type)
        with self._lock:
            before = len(self._assignments)
            self._assignments = [
                a for a in self._assignments
                if not (
                    a.organization_id == organization_id
                    and a.role_id == role_id
                    and a.assignee_id == assignee_id
                    and a.assignee_type == target
                )
            ]
            removed = len(self._assignments) != before

        if removed:
            self._notify(organization_id, None if target == AssigneeType.GROUP else assignee_id)
        return removed

    def put_resource_permission(self, permission: ResourcePermission) -> None:
        with self._lock:
            self._resource_permissions = [
                p for p in self._resource_permissions
                if not (p.organization_id == permission.organization_id and p.id == permission.id)
            ]
            self._resource_permissions.append(permission)
        self._notify(permission.organization_id, permission.principal_id)

    def put_resource_share(self, share: ResourceShare) -> None:
        with self._lock:
            self._resource_shares = [
                s for s in self._resource_shares
                if not (s.organization_id == share.organization_id and s.id == share.id)
            ]
            self._resource_shares.append(share)
        self._notify(share.organization_id, share.principal_id)

    def delete_resource_share(self, organization_id: str, share_id: str) -> bool:
        with self._lock:
            match = next(
                (s for s in self._resource_shares
                 if s.organization_id == organization_id and s.id == share_id),
                None,
            )
            if match is not None:
                self._resource_shares.remove(match)
        if match is not None:
            self._notify(organization_id, match.principal_id)
        return match is not None

    @staticmethod
    def _require(table: dict[tuple[str, str], Any], organization_id: str, key: str, kind: str) -> Any:
        try:
            return table[(organization_id, key)]
        except KeyError:
            raise KeyError(f"Unknown {kind} {key!r} in organization {organization_id!r}") from None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _principal_groups(
        self, principal_id: str, assignee_type: AssigneeType, organization_id: str
    ) -> set[str]:
        direct = {
            group_id
            for (org, group_id), members in self._memberships.items()
            if org == organization_id and (principal_id, assignee_type) in members
        }
        if not self.inherit_group_hierarchy:
            return direct

        resolved = set(direct)
        for group_id in direct:
            parent = self._groups[(organization_id, group_id)].parent_id
            while parent is not None and parent not in resolved:
                resolved.add(parent)
                group = self._groups.get((organization_id, parent))
                parent = group.parent_id if group else None
        return resolved

    async def get_principal_policies(
        self, principal_id: str, principal_type: PrincipalType, organization_id: str
    ) -> list[Policy]:
        assignee_type = _assignee(principal_type)
        now = datetime.now(UTC)

        with self._lock:
            groups = self._principal_groups(principal_id, assignee_type, organization_id)

            def names_target(target_id: str, target_type: AssigneeType) -> bool:
                if target_type == AssigneeType.GROUP:
                    return target_id in groups
                return target_id == principal_id and target_type == assignee_type

            role_ids = {
                a.role_id
                for a in self._assignments
                if a.organization_id == organization_id
                and a.is_active(now)
                and names_target(a.assignee_id, a.assignee_type)
            }

            policy_ids: set[str] = set()
            for role_id in role_ids:
                role = self._roles.get((organization_id, role_id))
                if role is not None:
                    policy_ids.update(role.policy_ids)

            policy_ids.update(
                attachment.policy_id
                for attachment in self._attachments
                if attachment.organization_id == organization_id
                and names_target(attachment.principal_id, attachment.principal_type)
            )

            return [
                self._policies[(organization_id, policy_id)]
                for policy_id in sorted(policy_ids)
                if (organization_id, policy_id) in self._policies
            ]

    async def get_principal_resource_permissions(
        self, principal_id: str, principal_type: PrincipalType, organization_id: str
    ) -> list[ResourcePermission]:
        with self._lock:
            return [
                p for p in self._resource_permissions
                if p.organization_id == organization_id
                and p.principal_id == principal_id
                and p.principal_type == principal_type
            ]

    async def get_principal_resource_shares(
        self, principal_id: str, principal_type: PrincipalType, organization_id: str
    ) -> list[ResourceShare]:
        now = datetime.now(UTC)
        with self._lock:
            return [
                s for s in self._resource_shares
                if s.organization_id == organization_id
                and s.principal_id == principal_id
                and s.principal_type == principal_type
                and not s.is_expired(now)
            ]

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def load_seed(self, data: dict[str, Any]) -> None:
        """Populate the store from a seed mapping.

        Format:
            organizations:
              org-a:
                policies: [{id, name, document}]
                roles: [{id, name, policies: [policy ids]}]
                groups: [{id, name, parent, members: [{id, type}]}]
                role_assignments: [{role, principal_id, principal_type, expires_at}]
                policy_attachments: [{policy, principal_id, principal_type}]
                resource_permissions: [{id, principal_id, principal_type,
                                        resource_id, permission, effect}]
                resource_shares: [{id, principal_id, principal_type,
                                   resource_id, access_level, expires_at}]
        """
        for organization_id, org in (data.get("organizations") or {}).items():
            for item in org.get("policies", []):
                self.put_policy(Policy(
                    id=item["id"],
                    organization_id=organization_id,
                    name=item.get("name", ""),
                    document=item["document"],
                ))

            for item in org.get("roles", []):
                self.put_role(Role(
                    id=item["id"],
                    organization_id=organization_id,
                    name=item.get("name", ""),
                    description=item.get("description", ""),
                    policy_ids=set(item.get("policies", [])),
                ))

            # Parents must exist before children
            pending = list(org.get("groups", []))
            while pending:
                ready = [
                    g for g in pending
                    if not g.get("parent") or (organization_id, g["parent"]) in self._groups
                ]
                if not ready:
                    raise ValueError(f"Unresolvable group parents in {organization_id!r}")
                for item in ready:
                    pending.remove(item)
                    self.put_group(Group(
                        id=item["id"],
                        organization_id=organization_id,
                        name=item.get("name", ""),
                        parent_id=item.get("parent"),
                    ))
                    for member in item.get("members", []):
                        self.add_group_member(
                            organization_id, item["id"], member["id"], member.get("type", "user")
                        )

            for item in org.get("role_assignments", []):
                self.assign_role(
                    organization_id,
                    item["role"],
                    item["principal_id"],
                    item.get("principal_type", "user"),
                    expires_at=item.get("expires_at"),
                )

            for item in org.get("policy_attachments", []):
                self.attach_policy(
                    organization_id,
                    item["policy"],
                    item["principal_id"],
                    item.get("principal_type", "user"),
                )

            for item in org.get("resource_permissions", []):
                self.put_resource_permission(ResourcePermission(
                    organization_id=organization_id,
                    principal_type=item.get("principal_type", PrincipalType.USER),
                    effect=item.get("effect", GrantEffect.ALLOW),
                    **{k: item[k] for k in ("id", "principal_id", "resource_id", "permission")},
                ))

            for item in org.get("resource_shares", []):
                self.put_resource_share(ResourceShare(
                    organization_id=organization_id,
                    principal_type=item.get("principal_type", PrincipalType.USER),
                    access_level=item.get("access_level", AccessLevel.VIEWER),
                    expires_at=item.get("expires_at"),
                    **{k: item[k] for k in ("id", "principal_id", "resource_id")},
                ))

        logger.info(
            "Seeded grant store: organizations=%d policies=%d roles=%d",
            len(data.get("organizations") or {}),
            len(self._policies),
            len(self._roles),
        )

    @classmethod
    def from_yaml(cls, path: str | Path, inherit_group_hierarchy: bool = False) -> "InMemoryGrantStore":
        """Build a store from a YAML seed file (see load_seed for the format)."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        store = cls(inherit_group_hierarchy=inherit_group_hierarchy)
        store.load_seed(data)
        return store
