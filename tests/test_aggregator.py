"""Tests for grant aggregation."""

import asyncio

import pytest

from iamcore.authz.errors import AuthorizationCancelledError
from iamcore.authz.models import (
    AccessLevel,
    Policy,
    PrincipalType,
    ResourcePermission,
    ResourceShare,
)
from iamcore.grants.aggregator import (
    GrantAggregator,
    SOURCE_POLICIES,
    SOURCE_RESOURCE_SHARES,
)
from iamcore.grants.cache import GrantCache
from iamcore.grants.store import InMemoryGrantStore


class FailingShareStore(InMemoryGrantStore):
    """Store whose share lookup is down."""

    async def get_principal_resource_shares(self, principal_id, principal_type, organization_id):
        raise ConnectionError("shares database unreachable")


class SlowStore(InMemoryGrantStore):
    """Store whose policy lookup never answers in time."""

    async def get_principal_policies(self, principal_id, principal_type, organization_id):
        await asyncio.sleep(5)
        return []


class LeakyStore:
    """Store that violates the organization contract."""

    def __init__(self, make_document):
        self.doc = make_document(("Allow", "*", "*"))

    async def get_principal_policies(self, principal_id, principal_type, organization_id):
        return [
            Policy(id="own", organization_id=organization_id, document=self.doc),
            Policy(id="foreign", organization_id="org-b", document=self.doc),
        ]

    async def get_principal_resource_permissions(self, principal_id, principal_type, organization_id):
        return [ResourcePermission(
            id="rp-foreign", organization_id="org-b", principal_id=principal_id,
            principal_type=principal_type, resource_id="blog/1", permission="*",
        )]

    async def get_principal_resource_shares(self, principal_id, principal_type, organization_id):
        return [ResourceShare(
            id="s-own", organization_id=organization_id, principal_id=principal_id,
            principal_type=principal_type, resource_id="blog/1", access_level=AccessLevel.VIEWER,
        )]


class TestCollect:
    """Test snapshot assembly."""

    @pytest.mark.asyncio
    async def test_collects_all_sources(self, store, attach, make_document):
        attach("org-a", "alice", "p1", make_document(("Allow", "blog:read", "*")))
        store.put_resource_share(ResourceShare(
            id="s1", organization_id="org-a", principal_id="alice", principal_type=PrincipalType.USER,
            resource_id="blog/1", access_level=AccessLevel.OWNER,
        ))

        snapshot = await GrantAggregator(store).collect("alice", PrincipalType.USER, "org-a")

        assert [p.policy_id for p in snapshot.policies] == ["p1"]
        assert [s.id for s in snapshot.resource_shares] == ["s1"]
        assert snapshot.is_complete

    @pytest.mark.asyncio
    async def test_failed_source_is_absorbed(self, make_document):
        store = FailingShareStore()
        store.put_policy(Policy(id="p1", organization_id="org-a", document=make_document(("Allow", "*", "*"))))
        store.attach_policy("org-a", "p1", "alice", PrincipalType.USER)

        snapshot = await GrantAggregator(store).collect("alice", PrincipalType.USER, "org-a")

        assert snapshot.failed_sources == [SOURCE_RESOURCE_SHARES]
        assert len(snapshot.policies) == 1
        assert snapshot.resource_shares == []

    @pytest.mark.asyncio
    async def test_malformed_policy_skipped(self, store, attach, make_document):
        attach("org-a", "alice", "good", make_document(("Allow", "blog:read", "*")))
        attach("org-a", "alice", "bad", {"Version": "2012-10-17", "Statement": [{"Effect": "Sometimes"}]})

        snapshot = await GrantAggregator(store).collect("alice", PrincipalType.USER, "org-a")

        assert [p.policy_id for p in snapshot.policies] == ["good"]
        assert [m.policy_id for m in snapshot.malformed_policies] == ["bad"]
        assert snapshot.is_complete

    @pytest.mark.asyncio
    async def test_cross_organization_rows_discarded(self, make_document):
        snapshot = await GrantAggregator(LeakyStore(make_document)).collect("alice", PrincipalType.USER, "org-a")

        assert [p.policy_id for p in snapshot.policies] == ["own"]
        assert snapshot.resource_permissions == []
        assert [s.id for s in snapshot.resource_shares] == ["s-own"]

    @pytest.mark.asyncio
    async def test_timeout_cancels(self):
        aggregator = GrantAggregator(SlowStore())

        with pytest.raises(AuthorizationCancelledError):
            await aggregator.collect("alice", PrincipalType.USER, "org-a", timeout=0.01)

    @pytest.mark.asyncio
    async def test_default_timeout(self):
        aggregator = GrantAggregator(SlowStore(), default_timeout=0.01)

        with pytest.raises(AuthorizationCancelledError):
            await aggregator.collect("alice", PrincipalType.USER, "org-a")


class TestCachedCollect:
    """Test read-through caching."""

    @pytest.mark.asyncio
    async def test_second_collect_hits_cache(self, store, attach, make_document):
        attach("org-a", "alice", "p1", make_document(("Allow", "blog:read", "*")))
        cache = GrantCache(ttl_seconds=60)
        aggregator = GrantAggregator(store, cache=cache)

        first = await aggregator.collect("alice", PrincipalType.USER, "org-a")
        second = await aggregator.collect("alice", PrincipalType.USER, "org-a")

        assert second is first
        assert cache.get_stats().total_hits == 1

    @pytest.mark.asyncio
    async def test_degraded_snapshot_not_cached(self, make_document):
        cache = GrantCache(ttl_seconds=60)
        aggregator = GrantAggregator(FailingShareStore(), cache=cache)

        await aggregator.collect("alice", PrincipalType.USER, "org-a")

        assert cache.get_stats().total_entries == 0

    @pytest.mark.asyncio
    async def test_store_mutation_invalidates(self, store, attach, make_document):
        cache = GrantCache(ttl_seconds=60)
        store.add_listener(cache.invalidate)
        aggregator = GrantAggregator(store, cache=cache)

        assert (await aggregator.collect("alice", PrincipalType.USER, "org-a")).policies == []

        attach("org-a", "alice", "p1", make_document(("Allow", "blog:read", "*")))
        snapshot = await aggregator.collect("alice", PrincipalType.USER, "org-a")

        assert [p.policy_id for p in snapshot.policies] == ["p1"]
        assert SOURCE_POLICIES not in snapshot.failed_sources
