from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Protocol

from authcycle.logging import get_logger
from authcycle.storage.models import utcnow

logger = get_logger(__name__)


class AuthEventType(str, Enum):
    LOGGED_IN = "logged_in"
    LOGGED_OUT = "logged_out"


@dataclass(frozen=True)
class AuthEvent:
    type: AuthEventType
    user_id: str
    occurred_at: datetime = field(default_factory=utcnow)

    @classmethod
    def logged_in(cls, user_id: str) -> "AuthEvent":
        return cls(AuthEventType.LOGGED_IN, user_id)

    @classmethod
    def logged_out(cls, user_id: str) -> "AuthEvent":
        return cls(AuthEventType.LOGGED_OUT, user_id)


class AuditSink(Protocol):
    """Outbound port for lifecycle events; publication is fire-and-forget."""

    def publish(self, event: AuthEvent) -> None: ...


class LoggingAuditSink:
    """Write audit events to the structured log."""

    def __init__(self) -> None:
        self.logger = get_logger("authcycle.audit")

    def publish(self, event: AuthEvent) -> None:
        self.logger.info(
            "auth_event",
            event_type=event.type.value,
            user_id=event.user_id,
            occurred_at=event.occurred_at.isoformat(),
        )


class RecordingAuditSink:
    """Keep published events in memory; used by tests and local tooling."""

    def __init__(self) -> None:
        self.events: List[AuthEvent] = []

    def publish(self, event: AuthEvent) -> None:
        self.events.append(event)
