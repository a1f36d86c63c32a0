"""Tests for the grant snapshot cache."""

import time

from iamcore.authz.models import GrantSnapshot, PrincipalType
from iamcore.grants.cache import GrantCache


def _snapshot(principal_id="alice", organization_id="org-a", failed=None):
    return GrantSnapshot(
        principal_id=principal_id,
        principal_type=PrincipalType.USER,
        organization_id=organization_id,
        failed_sources=failed or [],
    )


def _key(principal_id="alice", organization_id="org-a"):
    return GrantCache.make_key(principal_id, PrincipalType.USER, organization_id)


class TestGrantCache:
    """Test TTL cache behaviour."""

    def test_put_and_get(self):
        cache = GrantCache()
        snapshot = _snapshot()
        cache.put(_key(), snapshot)

        assert cache.get(_key()) is snapshot

    def test_key_includes_principal_type(self):
        assert GrantCache.make_key("x", PrincipalType.USER, "o") != GrantCache.make_key(
            "x", PrincipalType.SERVICE_ACCOUNT, "o"
        )
        assert GrantCache.make_key("x", "user", "o") == GrantCache.make_key("x", PrincipalType.USER, "o")

    def test_entries_expire(self):
        cache = GrantCache(ttl_seconds=0.01)
        cache.put(_key(), _snapshot())
        time.sleep(0.02)

        assert cache.get(_key()) is None

    def test_incomplete_snapshot_not_stored(self):
        cache = GrantCache()
        cache.put(_key(), _snapshot(failed=["resource_shares"]))

        assert cache.get(_key()) is None

    def test_invalidate_principal(self):
        cache = GrantCache()
        cache.put(_key("alice"), _snapshot("alice"))
        cache.put(_key("bob"), _snapshot("bob"))

        assert cache.invalidate("org-a", "alice") == 1
        assert cache.get(_key("alice")) is None
        assert cache.get(_key("bob")) is not None

    def test_invalidate_organization(self):
        cache = GrantCache()
        cache.put(_key("alice"), _snapshot("alice"))
        cache.put(_key("bob"), _snapshot("bob"))
        cache.put(_key("alice", "org-b"), _snapshot("alice", "org-b"))

        assert cache.invalidate("org-a") == 2
        assert cache.get(_key("alice", "org-b")) is not None

    def test_lru_eviction(self):
        cache = GrantCache(max_entries=2)
        cache.put(_key("a"), _snapshot("a"))
        cache.put(_key("b"), _snapshot("b"))
        cache.get(_key("a"))
        cache.put(_key("c"), _snapshot("c"))

        assert cache.get(_key("b")) is None
        assert cache.get(_key("a")) is not None
        assert cache.get(_key("c")) is not None

    def test_stats(self):
        cache = GrantCache()
        cache.put(_key(), _snapshot())
        cache.get(_key())
        cache.get(_key("nobody"))

        stats = cache.get_stats()
        assert stats.total_entries == 1
        assert stats.total_hits == 1
        assert stats.total_misses == 1
        assert stats.hit_rate == 0.5

    def test_put_after_invalidation_is_discarded(self):
        """A snapshot fetched before a grant change must not be cached."""
        cache = GrantCache()
        generation = cache.generation("org-a")
        cache.invalidate("org-a", "alice")

        assert not cache.put(_key(), _snapshot(), generation)
        assert cache.get(_key()) is None
        assert cache.get_stats().stale_puts == 1

    def test_generation_is_per_organization(self):
        cache = GrantCache()
        generation = cache.generation("org-a")
        cache.invalidate("org-b")

        assert cache.put(_key(), _snapshot(), generation)
        assert cache.get(_key()) is not None
