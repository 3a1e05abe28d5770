"""
Notification Dispatch - Channel Transports.

Closed set of delivery channels and the transports that send rendered
content over them. Real network protocols (SMTP, carrier APIs, FCM) live
outside this package; the transports here are the mock and logging
implementations used for local runs and tests.

Architecture Layer: Domain
Principles: Template Method Pattern, Registry Pattern
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import BaseModel, Field
import structlog

from .errors import DeliveryError
from .validation import mask_recipient

if TYPE_CHECKING:
    from .personalization import RenderedContent

logger = structlog.get_logger(__name__)


class ChannelType(str, Enum):
    """Supported delivery channels, in dispatch order."""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"

    @classmethod
    def ordered(cls, channels: Iterable[ChannelType]) -> tuple[ChannelType, ...]:
        """Return the given channels sorted by declaration order."""
        wanted = set(channels)
        return tuple(c for c in cls if c in wanted)


class ChannelStatus(str, Enum):
    ACTIVE = "active"
    UNAVAILABLE = "unavailable"


class FailureMode(str, Enum):
    """Failure injection for mock transports."""
    NEVER = "never"
    ALWAYS = "always"
    RECIPIENTS = "recipients"


class TransportReceipt(BaseModel):
    """Acknowledgement returned by a transport after a successful send."""
    message_id: str
    status: str = "sent"
    channel: ChannelType
    recipient: str
    sent_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = Field(default_factory=dict)


class SentMessage(BaseModel):
    """A message recorded by a mock transport."""
    message_id: str
    recipient: str
    content: Any
    options: dict[str, Any] = Field(default_factory=dict)


def _content_preview(content: RenderedContent | Any, limit: int = 80) -> str:
    if isinstance(content, str):
        text = content
    else:
        subject = getattr(content, "subject", None)
        body = getattr(content, "body", None)
        text = f"{subject}: {body}" if subject else str(body if body is not None else content)
    return text if len(text) <= limit else text[: limit - 3] + "..."


class ChannelTransport(ABC):
    """
    Abstract base class for channel transports.

    ``send`` wraps the concrete ``_deliver`` with availability checks and
    logging. Failures surface as DeliveryError; nothing is retried here.
    """
    def __init__(self, *, enabled: bool = True) -> None:
        self._status = ChannelStatus.ACTIVE if enabled else ChannelStatus.UNAVAILABLE

    @property
    @abstractmethod
    def channel_type(self) -> ChannelType:
        """Return the channel this transport delivers over."""

    @property
    def status(self) -> ChannelStatus:
        return self._status

    @property
    def is_available(self) -> bool:
        return self._status == ChannelStatus.ACTIVE

    async def send(
        self,
        recipient: str,
        content: RenderedContent,
        options: dict[str, Any] | None = None,
    ) -> TransportReceipt:
        """
        Send rendered content to a recipient.

        Args:
            recipient: Canonical recipient (email address, phone, device token)
            content: Rendered string or structured message
            options: Transport options (language, notification type, ...)

        Returns:
            TransportReceipt with the provider message id

        Raises:
            DeliveryError: If the channel is unavailable or the send fails
        """
        if not self.is_available:
            raise DeliveryError(self.channel_type.value, recipient, "channel unavailable")
        try:
            receipt = await self._deliver(recipient, content, options or {})
        except DeliveryError as e:
            logger.warning("transport_send_failed", channel=self.channel_type.value,
                           recipient=mask_recipient(recipient), error=e.reason)
            raise
        logger.info("transport_send_succeeded", channel=self.channel_type.value,
                    recipient=mask_recipient(recipient), message_id=receipt.message_id)
        return receipt

    @abstractmethod
    async def _deliver(
        self,
        recipient: str,
        content: RenderedContent,
        options: dict[str, Any],
    ) -> TransportReceipt:
        """Actual delivery implementation."""


class MockTransport(ChannelTransport):
    """
    In-memory transport that records every message it accepts.

    Failures are injected explicitly: ``FailureMode.ALWAYS`` fails every
    send, ``FailureMode.RECIPIENTS`` fails only for the listed recipients.
    """
    def __init__(
        self,
        channel_type: ChannelType,
        *,
        failure_mode: FailureMode = FailureMode.NEVER,
        failing_recipients: Iterable[str] = (),
        failure_reason: str = "simulated delivery failure",
        enabled: bool = True,
    ) -> None:
        super().__init__(enabled=enabled)
        self._channel_type = channel_type
        self.failure_mode = failure_mode
        self.failing_recipients = set(failing_recipients)
        self.failure_reason = failure_reason
        self.sent: list[SentMessage] = []
        self.attempts = 0

    @property
    def channel_type(self) -> ChannelType:
        return self._channel_type

    def _should_fail(self, recipient: str) -> bool:
        if self.failure_mode == FailureMode.ALWAYS:
            return True
        if self.failure_mode == FailureMode.RECIPIENTS:
            return recipient in self.failing_recipients
        return False

    async def _deliver(
        self,
        recipient: str,
        content: RenderedContent,
        options: dict[str, Any],
    ) -> TransportReceipt:
        self.attempts += 1
        if self._should_fail(recipient):
            raise DeliveryError(self._channel_type.value, recipient, self.failure_reason)
        message_id = f"mock-{self._channel_type.value}-{len(self.sent) + 1}"
        self.sent.append(SentMessage(message_id=message_id, recipient=recipient,
                                     content=content, options=dict(options)))
        return TransportReceipt(message_id=message_id, channel=self._channel_type,
                                recipient=recipient)

    def reset(self) -> None:
        self.sent.clear()
        self.attempts = 0


class LoggingTransport(ChannelTransport):
    """Transport that writes a preview of each message to the log."""

    def __init__(self, channel_type: ChannelType, *, sender: str | None = None,
                 enabled: bool = True) -> None:
        super().__init__(enabled=enabled)
        self._channel_type = channel_type
        self._sender = sender

    @property
    def channel_type(self) -> ChannelType:
        return self._channel_type

    async def _deliver(
        self,
        recipient: str,
        content: RenderedContent,
        options: dict[str, Any],
    ) -> TransportReceipt:
        message_id = f"{self._channel_type.value}-{uuid4().hex[:12]}"
        logger.info("message_logged", channel=self._channel_type.value, sender=self._sender,
                    recipient=mask_recipient(recipient), message_id=message_id,
                    preview=_content_preview(content))
        return TransportReceipt(message_id=message_id, channel=self._channel_type,
                                recipient=recipient, status="logged")


class ChannelRegistry:
    """Maps each channel type to the transport that delivers it."""

    def __init__(self, transports: Iterable[ChannelTransport] = ()) -> None:
        self._transports: dict[ChannelType, ChannelTransport] = {}
        for transport in transports:
            self.register(transport)

    def register(self, transport: ChannelTransport) -> None:
        self._transports[transport.channel_type] = transport
        logger.debug("transport_registered", channel=transport.channel_type.value,
                     transport=type(transport).__name__, status=transport.status.value)

    def get(self, channel_type: ChannelType) -> ChannelTransport | None:
        return self._transports.get(channel_type)

    def has(self, channel_type: ChannelType) -> bool:
        return channel_type in self._transports

    def list_channels(self) -> list[tuple[ChannelType, ChannelStatus]]:
        """List registered channels with their status, in dispatch order."""
        return [(c, self._transports[c].status) for c in ChannelType.ordered(self._transports)]
