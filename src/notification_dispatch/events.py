"""
Notification Dispatch - Audit Events.

Events recorded for every notification request and channel attempt,
and the audit log sinks that receive them. Sinks are fire-and-forget:
a failing sink is logged and never changes a dispatch outcome.

Architecture Layer: Domain
Principles: Event-Driven Audit Trail
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol
from uuid import UUID, uuid4

from pydantic import BaseModel, Field
import structlog

logger = structlog.get_logger(__name__)


class NotificationEventType(str, Enum):
    NOTIFICATION_REQUESTED = "notification.requested"
    NOTIFICATION_SENT = "notification.sent"
    NOTIFICATION_FAILED = "notification.failed"
    NOTIFICATION_SKIPPED = "notification.skipped"
    NOTIFICATION_COMPLETED = "notification.completed"
    BATCH_COMPLETED = "notification.batch.completed"


class NotificationEvent(BaseModel):
    """Base class for audit events."""
    event_id: UUID = Field(default_factory=uuid4)
    event_type: NotificationEventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: UUID | None = None
    user_identity: str | None = None
    notification_type: str | None = None
    source: str = "notification-dispatch"
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> NotificationEvent:
        return cls.model_validate_json(data)


class NotificationRequestedEvent(NotificationEvent):
    event_type: NotificationEventType = NotificationEventType.NOTIFICATION_REQUESTED
    channels: list[str] = Field(default_factory=list)


class NotificationSentEvent(NotificationEvent):
    """A channel accepted the message."""
    event_type: NotificationEventType = NotificationEventType.NOTIFICATION_SENT
    channel: str
    recipient: str | None = None
    message_id: str | None = None
    language: str | None = None


class NotificationFailedEvent(NotificationEvent):
    """A channel attempt failed."""
    event_type: NotificationEventType = NotificationEventType.NOTIFICATION_FAILED
    channel: str | None = None
    recipient: str | None = None
    error_kind: str | None = None
    error_code: str | None = None
    error_message: str = ""


class NotificationSkippedEvent(NotificationEvent):
    """The request ended before any channel was attempted."""
    event_type: NotificationEventType = NotificationEventType.NOTIFICATION_SKIPPED
    reason: str
    error_code: str | None = None


class NotificationCompletedEvent(NotificationEvent):
    event_type: NotificationEventType = NotificationEventType.NOTIFICATION_COMPLETED
    status: str
    attempted_channels: list[str] = Field(default_factory=list)
    successful_channels: list[str] = Field(default_factory=list)


class BatchCompletedEvent(NotificationEvent):
    event_type: NotificationEventType = NotificationEventType.BATCH_COMPLETED
    total: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0


class AuditLog(Protocol):
    def log(self, event: NotificationEvent) -> None: ...


class StructlogAuditLog:
    """Writes each event to the structured log."""

    def __init__(self, logger_name: str = "notification_dispatch.audit") -> None:
        self._logger = structlog.get_logger(logger_name)

    def log(self, event: NotificationEvent) -> None:
        from .domain.validation import mask_recipient

        payload = event.model_dump(mode="json", exclude={"event_type", "metadata"})
        if payload.get("recipient"):
            payload["recipient"] = mask_recipient(payload["recipient"])
        self._logger.info(event.event_type.value, **{**event.metadata, **payload})


class InMemoryAuditLog:
    """Keeps events in a list."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def log(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: NotificationEventType) -> list[NotificationEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def for_user(self, user_identity: str) -> list[NotificationEvent]:
        return [e for e in self.events if e.user_identity == user_identity]

    def clear(self) -> None:
        self.events.clear()


def emit(audit_log: AuditLog | None, event: NotificationEvent) -> None:
    """Send an event to the audit log, logging and dropping sink failures."""
    if audit_log is None:
        return
    try:
        audit_log.log(event)
    except Exception as e:
        logger.warning("audit_log_failed", event_type=event.event_type.value, error=str(e),
                       error_type=type(e).__name__)
