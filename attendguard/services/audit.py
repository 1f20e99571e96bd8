"""Post-commit audit events, delivered in the background."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from attendguard.models.audit import AuditLog

logger = logging.getLogger(__name__)

ATTENDANCE_SUBMITTED = "attendance_submitted"
ATTENDANCE_REJECTED = "attendance_rejected"
MANUAL_ATTENDANCE_MARKED = "manual_attendance_marked"
SESSION_STARTED = "session_started"
SESSION_ENDED = "session_ended"


class AuditEvent(BaseModel):
    action: str
    actor_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=datetime.utcnow)


AuditSink = Callable[[AuditEvent], Awaitable[None]]


async def persist_audit_event(event: AuditEvent) -> None:
    await AuditLog(
        action=event.action,
        actor_id=event.actor_id,
        payload=event.payload,
        created_at=event.occurred_at,
    ).insert()


class AuditDispatcher:
    """Fire-and-forget delivery; a failing sink is logged and never reaches the caller."""

    def __init__(self, sink: AuditSink = persist_audit_event):
        self._sink = sink
        self._pending: set[asyncio.Task] = set()

    def emit(self, event: AuditEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping audit event {event.action}")
            return
        task = loop.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: AuditEvent) -> None:
        try:
            await self._sink(event)
        except Exception:
            logger.exception(f"Audit logging failed for {event.action}")

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
