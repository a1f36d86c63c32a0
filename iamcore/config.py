"""Authorization core configuration via pydantic-settings."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from iamcore.audit.service import AuditService
from iamcore.audit.storage import AuditStorage, FileAuditStorage, InMemoryAuditStorage
from iamcore.authz.engine import AuthzEngine
from iamcore.grants.aggregator import GrantAggregator
from iamcore.grants.cache import GrantCache
from iamcore.grants.store import GrantStore, InMemoryGrantStore

logger = logging.getLogger(__name__)


class AuthzSettings(BaseSettings):
    """Authorization settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="IAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Resource naming
    arn_partition: str = "monkeys"

    # === GRANT AGGREGATION ===
    fetch_timeout_seconds: float | None = Field(
        default=None,
        description="Default deadline for grant aggregation (None waits indefinitely)",
    )
    inherit_group_hierarchy: bool = Field(
        default=False,
        description="Members of a group inherit grants of its ancestor groups",
    )

    # === GRANT CACHE ===
    cache_enabled: bool = False
    cache_ttl_seconds: float = Field(default=60.0, gt=0)
    cache_max_entries: int = Field(default=10000, gt=0)

    # === AUDIT SETTINGS ===
    audit_enabled: bool = True
    audit_queue_size: int = Field(default=1000, gt=0)
    audit_storage_type: Literal["memory", "file"] = "memory"
    audit_storage_path: str = "data/audit"
    system_organization_id: str | None = Field(
        default=None,
        description="Organization that owns audit events raised without one",
    )


# Singleton instance
_settings: AuthzSettings | None = None


def get_settings() -> AuthzSettings:
    """Get the settings singleton."""
    global _settings
    if _settings is None:
        _settings = AuthzSettings()
    return _settings


def build_store(settings: AuthzSettings, seed_path: str | Path | None = None) -> InMemoryGrantStore:
    """Create the in-memory grant store, optionally seeded from YAML."""
    if seed_path is not None:
        return InMemoryGrantStore.from_yaml(seed_path, settings.inherit_group_hierarchy)
    return InMemoryGrantStore(inherit_group_hierarchy=settings.inherit_group_hierarchy)


def build_audit_storage(settings: AuthzSettings) -> AuditStorage:
    if settings.audit_storage_type == "file":
        return FileAuditStorage(settings.audit_storage_path)
    return InMemoryAuditStorage()


def build_engine(
    settings: AuthzSettings,
    store: GrantStore,
    audit: AuditService | None = None,
) -> AuthzEngine:
    """Wire store, cache, aggregator, audit service and engine.

    The audit service is created but not started; call ``engine.audit.start()``
    from inside the running event loop (e.g. an application lifespan).
    """
    cache = None
    if settings.cache_enabled:
        cache = GrantCache(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
        )
        add_listener = getattr(store, "add_listener", None)
        if add_listener is not None:
            add_listener(cache.invalidate)
        else:
            logger.warning(
                "Grant store %s has no mutation listeners; cached grants expire by TTL only",
                type(store).__name__,
            )

    if audit is None and settings.audit_enabled:
        audit = AuditService(
            build_audit_storage(settings),
            queue_size=settings.audit_queue_size,
            system_organization_id=settings.system_organization_id,
        )

    aggregator = GrantAggregator(
        store,
        cache=cache,
        default_timeout=settings.fetch_timeout_seconds,
    )

    logger.info(
        "Authorization engine configured: cache=%s audit=%s timeout=%s",
        "on" if cache else "off",
        settings.audit_storage_type if audit else "off",
        settings.fetch_timeout_seconds,
    )
    return AuthzEngine(aggregator, audit=audit)
