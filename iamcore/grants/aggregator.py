"""Principal grant aggregation.

Collects every grant that applies to a principal within one organization:
attached policies, resource permissions and resource shares. The three
reads run concurrently and fail independently; a failed source contributes
nothing and is reported in the snapshot instead of failing the request.
"""

import asyncio
import logging
from typing import Any, TypeVar

from iamcore.authz.errors import (
    AuthorizationCancelledError,
    MalformedPolicyError,
    StorageUnavailableError,
)
from iamcore.authz.evaluator import PolicyEvaluator
from iamcore.authz.models import (
    CompiledPolicy,
    GrantSnapshot,
    MalformedPolicyRecord,
    Policy,
    PrincipalType,
)
from iamcore.grants.cache import GrantCache
from iamcore.grants.store import GrantStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

SOURCE_POLICIES = "policies"
SOURCE_RESOURCE_PERMISSIONS = "resource_permissions"
SOURCE_RESOURCE_SHARES = "resource_shares"


class GrantAggregator:
    """Builds GrantSnapshots from a GrantStore.

    Usage:
        aggregator = GrantAggregator(store)
        snapshot = await aggregator.collect("user-1", PrincipalType.USER, "org-a")
        if snapshot.failed_sources:
            # Degraded: evaluate with what succeeded
            ...
    """

    def __init__(
        self,
        store: GrantStore,
        evaluator: PolicyEvaluator | None = None,
        cache: GrantCache | None = None,
        default_timeout: float | None = None,
    ):
        self.store = store
        self.evaluator = evaluator or PolicyEvaluator()
        self.cache = cache
        self.default_timeout = default_timeout

    async def collect(
        self,
        principal_id: str,
        principal_type: PrincipalType,
        organization_id: str,
        timeout: float | None = None,
    ) -> GrantSnapshot:
        """Fetch and compile all grants for a principal.

        Raises:
            AuthorizationCancelledError: the timeout elapsed before all
                sources answered, or a source was cancelled
        """
        key = GrantCache.make_key(principal_id, principal_type, organization_id)
        generation = None
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
            generation = self.cache.generation(organization_id)

        timeout = self.default_timeout if timeout is None else timeout
        fetches = asyncio.gather(
            self.store.get_principal_policies(principal_id, principal_type, organization_id),
            self.store.get_principal_resource_permissions(principal_id, principal_type, organization_id),
            self.store.get_principal_resource_shares(principal_id, principal_type, organization_id),
            return_exceptions=True,
        )

        try:
            if timeout is None:
                results = await fetches
            else:
                results = await asyncio.wait_for(fetches, timeout)
        except asyncio.TimeoutError as e:
            raise AuthorizationCancelledError(
                f"Grant aggregation exceeded {timeout}s for principal {principal_id}"
            ) from e

        snapshot = GrantSnapshot(
            principal_id=principal_id,
            principal_type=principal_type,
            organization_id=organization_id,
        )

        policies = self._unwrap(SOURCE_POLICIES, results[0], snapshot)
        permissions = self._unwrap(SOURCE_RESOURCE_PERMISSIONS, results[1], snapshot)
        shares = self._unwrap(SOURCE_RESOURCE_SHARES, results[2], snapshot)

        compiled, malformed = self._compile(self._same_organization(SOURCE_POLICIES, policies, organization_id))
        snapshot.policies = compiled
        snapshot.malformed_policies = malformed
        snapshot.resource_permissions = self._same_organization(
            SOURCE_RESOURCE_PERMISSIONS, permissions, organization_id
        )
        snapshot.resource_shares = self._same_organization(
            SOURCE_RESOURCE_SHARES, shares, organization_id
        )

        logger.debug(
            "Collected grants: principal=%s org=%s policies=%d permissions=%d shares=%d failed=%s",
            principal_id,
            organization_id,
            len(snapshot.policies),
            len(snapshot.resource_permissions),
            len(snapshot.resource_shares),
            snapshot.failed_sources,
        )

        if self.cache is not None:
            self.cache.put(key, snapshot, generation)

        return snapshot

    def _unwrap(self, source: str, result: Any, snapshot: GrantSnapshot) -> list[Any]:
        """Turn one gather() result into rows, recording failures."""
        if isinstance(result, asyncio.CancelledError):
            raise AuthorizationCancelledError(f"Grant source {source} was cancelled") from result

        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result

            error = result if isinstance(result, StorageUnavailableError) else StorageUnavailableError(
                source, f"{type(result).__name__}: {result}"
            )
            logger.warning(
                "Grant source unavailable, continuing without it: source=%s principal=%s org=%s error=%s",
                source,
                snapshot.principal_id,
                snapshot.organization_id,
                error,
            )
            snapshot.failed_sources.append(source)
            return []

        return list(result or [])

    @staticmethod
    def _same_organization(source: str, rows: list[T], organization_id: str) -> list[T]:
        kept = [row for row in rows if getattr(row, "organization_id", None) == organization_id]
        if len(kept) != len(rows):
            logger.error(
                "Discarded %d cross-organization row(s) from %s for org=%s",
                len(rows) - len(kept),
                source,
                organization_id,
            )
        return kept

    def _compile(
        self, policies: list[Policy]
    ) -> tuple[list[CompiledPolicy], list[MalformedPolicyRecord]]:
        compiled: list[CompiledPolicy] = []
        malformed: list[MalformedPolicyRecord] = []
        seen: set[str] = set()

        for policy in policies:
            if policy.id in seen:
                continue
            seen.add(policy.id)

            try:
                compiled.append(self.evaluator.compile(policy))
            except MalformedPolicyError as e:
                logger.error(
                    "Skipping malformed policy: policy=%s org=%s error=%s",
                    policy.id,
                    policy.organization_id,
                    e,
                )
                malformed.append(MalformedPolicyRecord(policy_id=policy.id, error=str(e)))

        return compiled, malformed
