"""Audit package.

Fire-and-forget audit emission for authorization decisions.

Features:
- Bounded queue; a full queue drops events instead of blocking callers
- Single background writer with a final drain on shutdown
- Per-organization storage (in-memory or JSONL files)

Usage:
    from iamcore.audit import AuditService, FileAuditStorage

    service = AuditService(FileAuditStorage("data/audit"))
    service.start()
    ...
    await service.stop()
"""

from iamcore.audit.models import (
    AuditEvent,
    AuditEventType,
    AuditQuery,
    AuditSeverity,
)
from iamcore.audit.service import AuditEmitter, AuditService
from iamcore.audit.storage import (
    AuditStorage,
    FileAuditStorage,
    InMemoryAuditStorage,
)

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditQuery",
    "AuditSeverity",
    "AuditEmitter",
    "AuditService",
    "AuditStorage",
    "FileAuditStorage",
    "InMemoryAuditStorage",
]
