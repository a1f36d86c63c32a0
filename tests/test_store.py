"""Tests for the in-memory grant store."""

from datetime import datetime, timedelta, UTC

import pytest

from iamcore.authz.models import (
    AccessLevel,
    Policy,
    PrincipalType,
    ResourcePermission,
    ResourceShare,
)
from iamcore.grants.models import Group, Role
from iamcore.grants.store import InMemoryGrantStore

SEED = """
organizations:
  org-a:
    policies:
      - id: readers
        name: Readers
        document:
          Version: "2012-10-17"
          Statement:
            - Effect: Allow
              Action: "blog:read"
              Resource: "*"
    roles:
      - id: reader
        policies: [readers]
    groups:
      - id: staff
        members:
          - id: alice
      - id: engineering
        parent: staff
        members:
          - id: bob
    role_assignments:
      - role: reader
        principal_id: staff
        principal_type: group
    resource_shares:
      - id: s1
        principal_id: carol
        resource_id: blog/1
        access_level: editor
"""


class TestPolicyResolution:
    """Test policy collection through roles, groups and attachments."""

    @pytest.fixture
    def populated(self, store, make_document):
        store.put_policy(Policy(id="p-read", organization_id="org-a", document=make_document(("Allow", "blog:read", "*"))))
        store.put_policy(Policy(id="p-write", organization_id="org-a", document=make_document(("Allow", "blog:update", "*"))))
        store.put_policy(Policy(id="p-admin", organization_id="org-a", document=make_document(("Allow", "*", "*"))))
        store.put_role(Role(id="reader", organization_id="org-a", policy_ids={"p-read"}))
        store.put_role(Role(id="writer", organization_id="org-a", policy_ids={"p-write"}))
        return store

    @pytest.mark.asyncio
    async def test_direct_role(self, populated):
        populated.assign_role("org-a", "reader", "alice", PrincipalType.USER)

        policies = await populated.get_principal_policies("alice", PrincipalType.USER, "org-a")
        assert [p.id for p in policies] == ["p-read"]

    @pytest.mark.asyncio
    async def test_group_role_and_direct_attachment(self, populated):
        populated.put_group(Group(id="writers", organization_id="org-a"))
        populated.add_group_member("org-a", "writers", "alice", PrincipalType.USER)
        populated.assign_role("org-a", "writer", "writers", "group")
        populated.attach_policy("org-a", "p-admin", "alice", PrincipalType.USER)

        policies = await populated.get_principal_policies("alice", PrincipalType.USER, "org-a")
        assert [p.id for p in policies] == ["p-admin", "p-write"]

    @pytest.mark.asyncio
    async def test_expired_assignment_ignored(self, populated):
        populated.assign_role(
            "org-a", "reader", "alice", PrincipalType.USER,
            expires_at=datetime.now(UTC) - timedelta(minutes=1),
        )
        assert await populated.get_principal_policies("alice", PrincipalType.USER, "org-a") == []

    @pytest.mark.asyncio
    async def test_principal_type_is_part_of_identity(self, populated):
        populated.assign_role("org-a", "reader", "bot-1", PrincipalType.SERVICE_ACCOUNT)

        assert await populated.get_principal_policies("bot-1", PrincipalType.USER, "org-a") == []
        assert len(await populated.get_principal_policies("bot-1", PrincipalType.SERVICE_ACCOUNT, "org-a")) == 1

    @pytest.mark.asyncio
    async def test_colliding_ids_across_organizations(self, populated, make_document):
        populated.put_policy(Policy(id="p-read", organization_id="org-b", document=make_document(("Deny", "*", "*"))))
        populated.put_role(Role(id="reader", organization_id="org-b", policy_ids={"p-read"}))
        populated.assign_role("org-b", "reader", "alice", PrincipalType.USER)

        assert await populated.get_principal_policies("alice", PrincipalType.USER, "org-a") == []
        policies = await populated.get_principal_policies("alice", PrincipalType.USER, "org-b")
        assert [p.organization_id for p in policies] == ["org-b"]

    def test_unknown_references_rejected(self, populated):
        with pytest.raises(KeyError):
            populated.assign_role("org-a", "missing", "alice", PrincipalType.USER)
        with pytest.raises(KeyError):
            populated.put_group(Group(id="child", organization_id="org-a", parent_id="missing"))


class TestGroupHierarchy:
    """Test parent-group inheritance flag."""

    @pytest.mark.asyncio
    async def test_direct_membership_only_by_default(self):
        store = InMemoryGrantStore()
        store.load_seed(_seed())

        assert await store.get_principal_policies("bob", PrincipalType.USER, "org-a") == []
        assert len(await store.get_principal_policies("alice", PrincipalType.USER, "org-a")) == 1

    @pytest.mark.asyncio
    async def test_inheritance_when_enabled(self):
        store = InMemoryGrantStore(inherit_group_hierarchy=True)
        store.load_seed(_seed())

        policies = await store.get_principal_policies("bob", PrincipalType.USER, "org-a")
        assert [p.id for p in policies] == ["readers"]


class TestResourceRows:
    """Test resource permission and share reads."""

    @pytest.mark.asyncio
    async def test_permissions_filtered_by_principal_and_org(self, store):
        store.put_resource_permission(ResourcePermission(
            id="rp1", organization_id="org-a", principal_id="alice",
            principal_type=PrincipalType.USER, resource_id="blog/1", permission="blog:read",
        ))
        store.put_resource_permission(ResourcePermission(
            id="rp2", organization_id="org-b", principal_id="alice",
            principal_type=PrincipalType.USER, resource_id="blog/1", permission="blog:read",
        ))

        rows = await store.get_principal_resource_permissions("alice", PrincipalType.USER, "org-a")
        assert [r.id for r in rows] == ["rp1"]
        assert await store.get_principal_resource_permissions("bob", PrincipalType.USER, "org-a") == []

    @pytest.mark.asyncio
    async def test_expired_shares_excluded(self, store):
        store.put_resource_share(ResourceShare(
            id="s1", organization_id="org-a", principal_id="alice", principal_type=PrincipalType.USER,
            resource_id="blog/1", access_level=AccessLevel.EDITOR,
            expires_at=datetime.now(UTC) - timedelta(seconds=1),
        ))
        store.put_resource_share(ResourceShare(
            id="s2", organization_id="org-a", principal_id="alice", principal_type=PrincipalType.USER,
            resource_id="blog/2", access_level=AccessLevel.VIEWER,
        ))

        rows = await store.get_principal_resource_shares("alice", PrincipalType.USER, "org-a")
        assert [r.id for r in rows] == ["s2"]

    def test_delete_share(self, store):
        store.put_resource_share(ResourceShare(
            id="s1", organization_id="org-a", principal_id="alice", principal_type=PrincipalType.USER,
            resource_id="blog/1", access_level="OWNER",
        ))
        assert store.delete_resource_share("org-a", "s1")
        assert not store.delete_resource_share("org-a", "s1")


class TestMutationListeners:
    """Test change notification."""

    def test_listeners_receive_scope(self, store, make_document):
        events = []
        store.add_listener(lambda org, principal: events.append((org, principal)))

        store.put_policy(Policy(id="p1", organization_id="org-a", document=make_document(("Allow", "*", "*"))))
        store.attach_policy("org-a", "p1", "alice", PrincipalType.USER)
        store.put_role(Role(id="r1", organization_id="org-a"))
        store.assign_role("org-a", "r1", "bob", PrincipalType.USER)

        assert events == [("org-a", None), ("org-a", "alice"), ("org-a", None), ("org-a", "bob")]


class TestYamlSeed:
    """Test loading a store from YAML."""

    @pytest.mark.asyncio
    async def test_from_yaml(self, tmp_path):
        path = tmp_path / "seed.yaml"
        path.write_text(SEED)

        store = InMemoryGrantStore.from_yaml(path)

        policies = await store.get_principal_policies("alice", PrincipalType.USER, "org-a")
        assert [p.id for p in policies] == ["readers"]
        shares = await store.get_principal_resource_shares("carol", PrincipalType.USER, "org-a")
        assert shares[0].access_level == AccessLevel.EDITOR


def _seed():
    import yaml

    return yaml.safe_load(SEED)
