"""
Audit sink.

The auth core emits one event per gate decision plus login / logout
events.  Persisting and reporting them is someone else's job; the
default sink writes them to the `audit` logger.  Recording is
best-effort: callers go through `emit`, which never lets a sink
failure affect the decision being audited.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Protocol

logger = logging.getLogger("backoffice.audit")


@dataclass(frozen=True)
class AuditEvent:
    actor: uuid.UUID | None
    action: str
    resource: str
    decision: str  # "allowed" | "denied"
    reason: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        data = asdict(self)
        data["actor"] = str(self.actor) if self.actor else None
        data["timestamp"] = self.timestamp.isoformat()
        return data


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Writes each event as one structured line on the `audit` logger."""

    def __init__(self, name: str = "audit") -> None:
        self._logger = logging.getLogger(name)

    def record(self, event: AuditEvent) -> None:
        data = event.as_dict()
        self._logger.info(
            "actor=%s action=%s resource=%s decision=%s reason=%s",
            data["actor"],
            data["action"],
            data["resource"],
            data["decision"],
            data["reason"],
            extra={"audit": data},
        )


class RecordingAuditSink:
    """Keeps events in memory; handy for tests and local inspection."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)


def emit(sink: AuditSink, event: AuditEvent) -> None:
    """Fire-and-forget: a failing sink is logged, never raised."""
    try:
        sink.record(event)
    except Exception:
        logger.warning(
            "Audit sink failed for action=%s resource=%s decision=%s",
            event.action,
            event.resource,
            event.decision,
            exc_info=True,
        )
