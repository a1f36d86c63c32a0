"""Read-through cache for grant snapshots.

Keyed by (principal_id, principal_type, organization_id). Entries expire
after a TTL and are dropped explicitly when grants change. Only complete
snapshots are stored; a snapshot with a failed source is never cached.
"""

from __future__ import annotations

import logging
import threading
import time

from pydantic import BaseModel, Field

from iamcore.authz.models import GrantSnapshot, PrincipalType

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, str]


class CacheEntry(BaseModel):
    """A cached snapshot."""

    snapshot: GrantSnapshot
    created_at: float = Field(default_factory=time.monotonic)
    expires_at: float
    last_accessed: float = Field(default_factory=time.monotonic)


class CacheStats(BaseModel):
    """Cache statistics."""

    total_entries: int = 0
    total_hits: int = 0
    total_misses: int = 0
    total_invalidations: int = 0
    stale_puts: int = 0
    hit_rate: float = 0.0


class GrantCache:
    """In-memory TTL cache for grant snapshots."""

    def __init__(self, ttl_seconds: float = 60.0, max_entries: int = 10000):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries

        self._entries: dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()

        # Bumped on every invalidation; puts from fetches that started earlier are stale
        self._generations: dict[str, int] = {}

        self._hits = 0
        self._misses = 0
        self._invalidations = 0
        self._stale_puts = 0

    @staticmethod
    def make_key(
        principal_id: str, principal_type: PrincipalType | str, organization_id: str
    ) -> CacheKey:
        type_value = principal_type.value if isinstance(principal_type, PrincipalType) else principal_type
        return (principal_id, type_value, organization_id)

    def get(self, key: CacheKey) -> GrantSnapshot | None:
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= now:
                if entry is not None:
                    del self._entries[key]
                self._misses += 1
                return None

            entry.last_accessed = now
            self._hits += 1
            return entry.snapshot

    def generation(self, organization_id: str) -> int:
        """Current invalidation generation for an organization.

        Read it before fetching and pass it to put().
        """
        with self._lock:
            return self._generations.get(organization_id, 0)

    def put(self, key: CacheKey, snapshot: GrantSnapshot, generation: int | None = None) -> bool:
        """Store a snapshot.

        A snapshot fetched before the last invalidation of its organization
        is discarded.

        Returns:
            Whether the snapshot was stored
        """
        if not snapshot.is_complete:
            return False

        now = time.monotonic()
        with self._lock:
            if generation is not None and generation != self._generations.get(key[2], 0):
                self._stale_puts += 1
                logger.debug("Discarded stale snapshot: principal=%s org=%s", key[0], key[2])
                return False

            self._evict_if_needed(now)
            self._entries[key] = CacheEntry(
                snapshot=snapshot,
                created_at=now,
                expires_at=now + self.ttl_seconds,
                last_accessed=now,
            )
        return True

    def _evict_if_needed(self, now: float) -> None:
        """Evict expired, then least recently used entries. Caller holds the lock."""
        if len(self._entries) < self.max_entries:
            return

        for key in [k for k, v in self._entries.items() if v.expires_at <= now]:
            del self._entries[key]

        while len(self._entries) >= self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].last_accessed)
            del self._entries[oldest]

    def invalidate(self, organization_id: str, principal_id: str | None = None) -> int:
        """Drop one principal's entries, or a whole organization's.

        Returns:
            Number of entries removed
        """
        with self._lock:
            doomed = [
                key for key in self._entries
                if key[2] == organization_id and (principal_id is None or key[0] == principal_id)
            ]
            for key in doomed:
                del self._entries[key]
            self._generations[organization_id] = self._generations.get(organization_id, 0) + 1
            self._invalidations += 1

        if doomed:
            logger.debug(
                "Invalidated %d cached snapshot(s): org=%s principal=%s",
                len(doomed), organization_id, principal_id or "*",
            )
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> CacheStats:
        with self._lock:
            lookups = self._hits + self._misses
            return CacheStats(
                total_entries=len(self._entries),
                total_hits=self._hits,
                total_misses=self._misses,
                total_invalidations=self._invalidations,
                stale_puts=self._stale_puts,
                hit_rate=self._hits / lookups if lookups else 0.0,
            )
