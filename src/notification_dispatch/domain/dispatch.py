"""
Notification Dispatch - Dispatch Engine.

Sends rendered content over each eligible channel and folds the
per-channel outcomes into one aggregate result. Channels are isolated:
a failure on one never stops the others or the aggregation.

Per-channel flow::

    PENDING -> FAILED(validation)        invalid recipient
            -> FAILED(no_template)       nothing rendered for the channel
            -> SENT | FAILED(transport_error)

Architecture Layer: Domain
Principles: Failure Isolation, Deterministic Aggregation
"""
from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
import structlog

from .channels import ChannelRegistry, ChannelType
from .errors import DeliveryError, RecipientValidationError, TemplateNotFoundError, UnsupportedChannelError
from .personalization import RenderedContent
from .resolver import ResolvedTemplate
from .validation import is_valid_email, is_valid_phone, is_valid_push_token, normalize_phone_number

logger = structlog.get_logger(__name__)


class ErrorKind(str, Enum):
    """Why a channel attempt failed."""
    VALIDATION = "validation"
    NO_TEMPLATE = "no_template"
    TRANSPORT_ERROR = "transport_error"
    UNEXPECTED = "unexpected"


class ResultStatus(str, Enum):
    """Overall status of a notification request."""
    DELIVERED = "delivered"
    PARTIALLY_DELIVERED = "partially_delivered"
    FAILED = "failed"
    NO_ENABLED_CHANNELS = "no_enabled_channels"
    CONFIGURATION_ERROR = "configuration_error"
    UNEXPECTED_ERROR = "unexpected_error"


NO_ENABLED_CHANNELS = "NO_ENABLED_CHANNELS"


class DispatchOutcome(BaseModel):
    """Result of one channel attempt."""
    model_config = ConfigDict(frozen=True)

    channel: ChannelType
    success: bool
    message_id: str | None = None
    error_kind: ErrorKind | None = None
    error_code: str | None = None
    error_detail: str | None = None
    recipient: str | None = None
    language: str | None = None
    fallback_used: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def failed(cls, channel: ChannelType, kind: ErrorKind, code: str, detail: str,
               **kwargs: Any) -> DispatchOutcome:
        return cls(channel=channel, success=False, error_kind=kind, error_code=code,
                   error_detail=detail, **kwargs)


class AggregateResult(BaseModel):
    """
    Combined view of all channel outcomes for one request.

    ``outcomes`` is ordered by channel, never by completion order.
    """
    model_config = ConfigDict(frozen=True)

    status: ResultStatus
    overall_success: bool
    partial_success: bool = False
    attempted_channels: frozenset[ChannelType] = frozenset()
    successful_channels: frozenset[ChannelType] = frozenset()
    outcomes: tuple[DispatchOutcome, ...] = ()
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[DispatchOutcome]) -> AggregateResult:
        by_channel = {o.channel: o for o in outcomes}
        ordered = tuple(by_channel[c] for c in ChannelType.ordered(by_channel))
        if not ordered:
            return cls.no_enabled_channels()
        successes = [o.success for o in ordered]
        overall = any(successes)
        partial = overall and not all(successes)
        if not overall:
            status = ResultStatus.FAILED
        elif partial:
            status = ResultStatus.PARTIALLY_DELIVERED
        else:
            status = ResultStatus.DELIVERED
        return cls(
            status=status,
            overall_success=overall,
            partial_success=partial,
            attempted_channels=frozenset(o.channel for o in ordered),
            successful_channels=frozenset(o.channel for o in ordered if o.success),
            outcomes=ordered,
        )

    @classmethod
    def no_enabled_channels(cls, message: str = "No notification channels enabled") -> AggregateResult:
        return cls(status=ResultStatus.NO_ENABLED_CHANNELS, overall_success=False,
                   error_code=NO_ENABLED_CHANNELS, error_message=message)

    @classmethod
    def error(cls, status: ResultStatus, code: str, message: str) -> AggregateResult:
        return cls(status=status, overall_success=False, error_code=code, error_message=message)

    @property
    def failed_channels(self) -> frozenset[ChannelType]:
        return self.attempted_channels - self.successful_channels

    def outcome_for(self, channel: ChannelType) -> DispatchOutcome | None:
        return next((o for o in self.outcomes if o.channel == channel), None)

    def language_report(self) -> dict[str, Any]:
        """Languages used per channel and whether any channel fell back."""
        return {
            "languages_used": sorted({o.language for o in self.outcomes if o.language}),
            "fallback_used": any(o.fallback_used for o in self.outcomes),
            "channels": {
                o.channel.value: {
                    "language": o.language,
                    "fallback_used": o.fallback_used,
                    "success": o.success,
                }
                for o in self.outcomes
            },
        }


def validate_recipient(channel: ChannelType, recipient: str | None) -> str:
    """
    Check a recipient against the channel's canonical format.

    Returns the canonical recipient.

    Raises:
        RecipientValidationError: If the recipient is missing or malformed.
    """
    if not recipient:
        raise RecipientValidationError(channel.value, recipient, "recipient missing")
    if channel == ChannelType.EMAIL:
        if not is_valid_email(recipient):
            raise RecipientValidationError(channel.value, recipient, "invalid email format")
        return recipient.strip()
    if channel == ChannelType.SMS:
        if not is_valid_phone(recipient):
            raise RecipientValidationError(channel.value, recipient, "invalid phone format")
        return normalize_phone_number(recipient)  # type: ignore[return-value]
    if not is_valid_push_token(recipient):
        raise RecipientValidationError(channel.value, recipient, "invalid device token")
    return recipient


class DispatchEngine:
    """Dispatches rendered content per channel and aggregates the outcomes."""

    def __init__(self, registry: ChannelRegistry, *, parallel: bool = True) -> None:
        self._registry = registry
        self._parallel = parallel

    @property
    def registry(self) -> ChannelRegistry:
        return self._registry

    async def dispatch(
        self,
        channels: Iterable[ChannelType],
        rendered_by_channel: Mapping[ChannelType, RenderedContent | None],
        recipients: Mapping[ChannelType, str | None],
        user_language: str,
        resolutions: Mapping[ChannelType, ResolvedTemplate | TemplateNotFoundError] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> AggregateResult:
        """
        Attempt every channel and aggregate.

        Args:
            channels: Eligible channels
            rendered_by_channel: Rendered content; a missing or None entry
                means no template was found for that channel
            recipients: Recipient per channel
            user_language: Language requested for the user
            resolutions: Template resolution per channel, used for the
                language report and the no-template detail
            options: Extra options passed to each transport

        Raises:
            UnsupportedChannelError: A channel has no registered transport.
                Raised before any channel is attempted.
        """
        ordered = ChannelType.ordered(channels)
        for channel in ordered:
            if not self._registry.has(channel):
                raise UnsupportedChannelError(channel.value)
        if not ordered:
            return AggregateResult.no_enabled_channels()

        resolutions = resolutions or {}
        attempts = [
            self._dispatch_channel(
                channel,
                rendered_by_channel.get(channel),
                recipients.get(channel),
                user_language,
                resolutions.get(channel),
                dict(options or {}),
            )
            for channel in ordered
        ]

        if self._parallel:
            results = await asyncio.gather(*attempts, return_exceptions=True)
        else:
            results = []
            for attempt in attempts:
                try:
                    results.append(await attempt)
                except Exception as e:
                    results.append(e)

        outcomes: list[DispatchOutcome] = []
        for channel, result in zip(ordered, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error("channel_dispatch_crashed", channel=channel.value, error=str(result))
                outcomes.append(DispatchOutcome.failed(channel, ErrorKind.UNEXPECTED,
                                                       "UNEXPECTED_ERROR", str(result)))
            else:
                outcomes.append(result)

        aggregate = AggregateResult.from_outcomes(outcomes)
        logger.info("dispatch_completed", status=aggregate.status.value,
                    attempted=[c.value for c in ordered],
                    successful=sorted(c.value for c in aggregate.successful_channels))
        return aggregate

    async def _dispatch_channel(
        self,
        channel: ChannelType,
        content: RenderedContent | None,
        recipient: str | None,
        user_language: str,
        resolution: ResolvedTemplate | TemplateNotFoundError | None,
        options: dict[str, Any],
    ) -> DispatchOutcome:
        resolved = resolution if isinstance(resolution, ResolvedTemplate) else None
        language = resolved.selected_language if resolved else user_language
        context: dict[str, Any] = {
            "recipient": recipient,
            "language": language,
            "fallback_used": resolved.fallback_used if resolved else False,
        }

        try:
            canonical = validate_recipient(channel, recipient)
        except RecipientValidationError as e:
            logger.warning("channel_recipient_invalid", channel=channel.value, reason=e.reason)
            return DispatchOutcome.failed(channel, ErrorKind.VALIDATION, e.error_code, e.message, **context)

        if content is None:
            detail = str(resolution) if isinstance(resolution, TemplateNotFoundError) \
                else f"No {channel.value} template available"
            logger.warning("channel_template_missing", channel=channel.value, detail=detail)
            return DispatchOutcome.failed(channel, ErrorKind.NO_TEMPLATE,
                                          TemplateNotFoundError.error_code, detail, **context)

        transport = self._registry.get(channel)
        if transport is None:
            raise UnsupportedChannelError(channel.value)
        context["recipient"] = canonical
        try:
            receipt = await transport.send(canonical, content, {**options, "language": language})
        except DeliveryError as e:
            return DispatchOutcome.failed(channel, ErrorKind.TRANSPORT_ERROR, e.error_code, e.reason,
                                          **context)
        except Exception as e:
            logger.error("channel_dispatch_unexpected_error", channel=channel.value,
                         error=str(e), error_type=type(e).__name__)
            return DispatchOutcome.failed(channel, ErrorKind.UNEXPECTED, "UNEXPECTED_ERROR", str(e),
                                          **context)

        return DispatchOutcome(channel=channel, success=True, message_id=receipt.message_id,
                               **context)
