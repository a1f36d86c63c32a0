"""Asynchronous audit emission.

Authorization decisions are audited without blocking the request path:
events go into a bounded queue and a single background worker writes them
to storage. A full queue drops the event with a warning. Stopping the
service closes intake and drains whatever is already queued.
"""

import asyncio
import logging
from typing import Protocol

from iamcore.audit.models import AuditEvent, AuditEventType, AuditSeverity
from iamcore.audit.storage import AuditStorage

logger = logging.getLogger(__name__)

_STOP = object()


class AuditEmitter(Protocol):
    """What the authorization core needs from an audit pipeline.

    Implementations must never raise to the caller.
    """

    def log_event(self, event: AuditEvent) -> None:
        ...

    def log_access_check(
        self,
        organization_id: str,
        principal_id: str,
        principal_type: str,
        action: str,
        resource: str,
        allowed: bool,
        reason: str,
    ) -> None:
        ...

    def log_access_denied(
        self,
        organization_id: str,
        principal_id: str,
        principal_type: str,
        action: str,
        resource: str,
        reason: str,
    ) -> None:
        ...


class AuditService:
    """Bounded-queue audit writer with a single background worker.

    Usage:
        service = AuditService(FileAuditStorage("data/audit"), queue_size=1000)
        service.start()

        service.log_access_check(org_id, user_id, "user", "blog:read", arn, True, "policy allow")

        await service.stop()  # stops intake, drains the queue
    """

    def __init__(
        self,
        storage: AuditStorage,
        queue_size: int = 1000,
        system_organization_id: str | None = None,
    ):
        self.storage = storage
        self.system_organization_id = system_organization_id

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task | None = None
        self._accepting = True

        self.dropped = 0
        self.written = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the background worker on the running event loop."""
        if self.running:
            return
        self._accepting = True
        self._worker = asyncio.get_running_loop().create_task(
            self._run(), name="audit-worker"
        )

    async def stop(self) -> None:
        """Stop intake, write everything already queued, then exit."""
        self._accepting = False

        if not self.running:
            await self._drain()
            return

        await self._queue.put(_STOP)
        await self._worker
        self._worker = None

    async def flush(self) -> None:
        """Wait until every queued event has been written."""
        if self.running:
            await self._queue.join()
        else:
            await self._drain()

    async def _run(self) -> None:
        logger.info("Audit worker started")
        try:
            while True:
                item = await self._queue.get()
                try:
                    if item is _STOP:
                        break
                    await self._write(item)
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            logger.info("Audit worker cancelled, draining %d event(s)", self._queue.qsize())
            self._accepting = False
            await self._drain()
            raise

        logger.info("Audit worker stopped: written=%d dropped=%d", self.written, self.dropped)

    async def _drain(self) -> None:
        """Write whatever is left in the queue, in order."""
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                if item is not _STOP:
                    await self._write(item)
            finally:
                self._queue.task_done()

    async def _write(self, event: AuditEvent) -> None:
        try:
            await self.storage.append(event)
            self.written += 1
        except Exception as e:
            self.failed += 1
            logger.error("Failed to write audit event [%s]: %s", event.action, e)

    # -------------------------------------------------------------------------
    # Emission
    # -------------------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> None:
        """Queue an event without waiting. Never raises."""
        if not self._accepting:
            self.dropped += 1
            logger.warning("Audit service stopped, dropping event: %s", event.action)
            return

        if event.organization_id is None:
            if self.system_organization_id is None:
                self.dropped += 1
                logger.warning(
                    "Audit event has no organization and no system organization is configured, "
                    "dropping event: %s",
                    event.action,
                )
                return
            event = event.model_copy(update={"organization_id": self.system_organization_id})

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Audit queue full, dropping event: %s", event.action)

    def log_access_check(
        self,
        organization_id: str,
        principal_id: str,
        principal_type: str,
        action: str,
        resource: str,
        allowed: bool,
        reason: str,
    ) -> None:
        self.log_event(AuditEvent(
            organization_id=organization_id or None,
            principal_id=principal_id,
            principal_type=principal_type,
            event_type=AuditEventType.AUTHZ_GRANTED if allowed else AuditEventType.AUTHZ_DENIED,
            severity=AuditSeverity.INFO if allowed else AuditSeverity.ERROR,
            action=action,
            resource=resource,
            result="allowed" if allowed else "denied",
            reason=reason,
        ))

    def log_access_denied(
        self,
        organization_id: str,
        principal_id: str,
        principal_type: str,
        action: str,
        resource: str,
        reason: str,
    ) -> None:
        self.log_event(AuditEvent(
            organization_id=organization_id or None,
            principal_id=principal_id,
            principal_type=principal_type,
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.CRITICAL,
            action=action,
            resource=resource,
            result="failure",
            reason=reason,
        ))
