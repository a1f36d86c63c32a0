"""Audit storage backends.

Append-only sinks for audit events, one logical log per organization.
"""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Protocol

from iamcore.audit.models import AuditEvent, AuditQuery

logger = logging.getLogger(__name__)


class AuditStorage(Protocol):
    """Protocol for audit storage backends.

    Implementations must provide append-only semantics.
    """

    async def append(self, event: AuditEvent) -> None:
        """Append an event (insert only, no updates)."""
        ...

    async def get_all(self, organization_id: str, limit: int = 10000) -> list[AuditEvent]:
        """Get all events for an organization, oldest first."""
        ...

    async def count(self, organization_id: str) -> int:
        """Get total event count for an organization."""
        ...

    async def query(self, query: AuditQuery) -> list[AuditEvent]:
        """Filter events."""
        ...


class InMemoryAuditStorage:
    """Process-local audit storage for tests and embedded use."""

    def __init__(self) -> None:
        self._events: dict[str, list[AuditEvent]] = {}

    async def append(self, event: AuditEvent) -> None:
        self._events.setdefault(event.organization_id or "", []).append(event)

    async def get_all(self, organization_id: str, limit: int = 10000) -> list[AuditEvent]:
        return list(self._events.get(organization_id, [])[:limit])

    async def count(self, organization_id: str) -> int:
        return len(self._events.get(organization_id, []))

    async def query(self, query: AuditQuery) -> list[AuditEvent]:
        events = self._events.get(query.organization_id, [])
        filtered = [e for e in events if query.matches(e)]
        return filtered[query.offset:query.offset + query.limit]


class FileAuditStorage:
    """File-based audit storage for development and small deployments.

    Stores events in JSONL (JSON Lines) format, one event per line.
    Each organization gets its own file for isolation.
    """

    def __init__(self, storage_path: str | Path):
        """Initialize file storage.

        Args:
            storage_path: Directory to store audit files
        """
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        logger.info("FileAuditStorage initialized at %s", self.storage_path)

    def _organization_file(self, organization_id: str) -> Path:
        """Get the file path for an organization's audit log.

        The readable prefix is sanitized to prevent path traversal; the digest
        keeps ids that sanitize alike (``org.a``, ``orga``) in separate files.
        """
        safe_id = "".join(c for c in organization_id if c.isalnum() or c in "-_")
        digest = hashlib.sha256(organization_id.encode("utf-8")).hexdigest()[:12]
        return self.storage_path / f"audit_{safe_id or 'unscoped'}_{digest}.jsonl"

    def _write_line(self, path: Path, line: str) -> None:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def _read_events(self, organization_id: str, limit: int | None) -> list[AuditEvent]:
        path = self._organization_file(organization_id)
        if not path.exists():
            return []

        events = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                event = AuditEvent.model_validate_json(line)
                if (event.organization_id or "") != organization_id:
                    continue
                events.append(event)
                if limit is not None and len(events) >= limit:
                    break
        return events

    async def append(self, event: AuditEvent) -> None:
        """Append an event to its organization's file."""
        path = self._organization_file(event.organization_id or "")
        await asyncio.to_thread(self._write_line, path, event.model_dump_json())

        logger.debug(
            "Appended audit event: org=%s type=%s",
            event.organization_id,
            event.event_type.value,
        )

    async def get_all(self, organization_id: str, limit: int = 10000) -> list[AuditEvent]:
        return await asyncio.to_thread(self._read_events, organization_id, limit)

    async def count(self, organization_id: str) -> int:
        """Get total event count for an organization."""
        events = await asyncio.to_thread(self._read_events, organization_id, None)
        return len(events)

    async def query(self, query: AuditQuery) -> list[AuditEvent]:
        """Query audit events with filters."""
        events = await asyncio.to_thread(self._read_events, query.organization_id, None)
        filtered = [e for e in events if query.matches(e)]
        return filtered[query.offset:query.offset + query.limit]
