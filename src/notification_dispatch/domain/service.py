"""
Notification Dispatch - Notification Service.

Orchestrates one notification request end to end: preference resolution,
template resolution, personalization and per-channel dispatch. Every call
returns a structured NotificationResult; nothing escapes to the caller.

Architecture Layer: Domain
Principles: Facade Pattern, Failure Containment
"""
from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError
import structlog

from ..config import NotificationDispatchConfig
from ..events import (
    AuditLog,
    BatchCompletedEvent,
    NotificationCompletedEvent,
    NotificationFailedEvent,
    NotificationRequestedEvent,
    NotificationSentEvent,
    NotificationSkippedEvent,
    StructlogAuditLog,
    emit,
)
from .channels import ChannelRegistry, ChannelTransport, ChannelType, LoggingTransport, MockTransport
from .dispatch import AggregateResult, DispatchEngine, DispatchOutcome, ResultStatus
from .errors import ConfigurationError, TemplateNotFoundError, UserNotFoundError
from .personalization import DefaultValueTable, PersonalizationEngine, RenderedContent, RenderOptions
from .preferences import (
    ChannelEligibility,
    InMemoryPreferenceStore,
    JsonFilePreferenceStore,
    PreferenceResolver,
    PreferenceStore,
)
from .resolver import ResolvedTemplate, ResolveOptions, TemplateResolver
from .templates import FileTemplateSource, InMemoryTemplateSource, TemplateSource, TemplateStore

logger = structlog.get_logger(__name__)

Scalar = Union[str, int, float, bool, None]


class NotificationRequest(BaseModel):
    """A single notification request."""
    model_config = ConfigDict(frozen=True)

    request_id: UUID = Field(default_factory=uuid4)
    user_identity: str = Field(..., min_length=1)
    notification_type: str = Field(..., min_length=1)
    dynamic_data: dict[str, Scalar] = Field(default_factory=dict)
    language: str | None = None


class NotificationResult(BaseModel):
    """Outcome of one notification request."""
    request_id: UUID
    user_identity: str
    notification_type: str
    aggregate: AggregateResult
    started_at: datetime
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> ResultStatus:
        return self.aggregate.status

    @property
    def overall_success(self) -> bool:
        return self.aggregate.overall_success

    @property
    def partial_success(self) -> bool:
        return self.aggregate.partial_success

    @property
    def error_code(self) -> str | None:
        return self.aggregate.error_code

    @property
    def error_message(self) -> str | None:
        return self.aggregate.error_message

    @property
    def outcomes(self) -> tuple[DispatchOutcome, ...]:
        return self.aggregate.outcomes

    @property
    def processing_time_ms(self) -> float:
        return (self.completed_at - self.started_at).total_seconds() * 1000


class BatchResult(BaseModel):
    """Outcome of a batch of notification requests of one type."""
    notification_type: str
    results: list[NotificationResult] = Field(default_factory=list)
    total: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    stopped_early: bool = False

    @property
    def success_rate(self) -> float:
        processed = len(self.results)
        return round(self.succeeded / processed * 100, 1) if processed else 0.0


SKIPPED_ERROR_CODES = frozenset({"NO_ENABLED_CHANNELS", UserNotFoundError.error_code})


def classify(result: NotificationResult) -> str:
    """Bucket a result as ``succeeded``, ``skipped`` or ``failed`` for batch counts."""
    if result.overall_success:
        return "succeeded"
    if result.error_code in SKIPPED_ERROR_CODES:
        return "skipped"
    return "failed"


class NotificationService:
    """
    Entry point for sending notifications to users.

    Combines the preference resolver, template resolver, personalization
    engine and dispatch engine. Audit events go to ``audit_log`` without
    affecting results.
    """
    def __init__(
        self,
        preferences: PreferenceResolver,
        templates: TemplateResolver,
        personalization: PersonalizationEngine,
        dispatcher: DispatchEngine,
        *,
        audit_log: AuditLog | None = None,
        resolve_options: ResolveOptions | None = None,
        render_options: RenderOptions | None = None,
        batch_concurrency: int = 10,
    ) -> None:
        self._preferences = preferences
        self._templates = templates
        self._personalization = personalization
        self._dispatcher = dispatcher
        self._audit_log = audit_log
        self._resolve_options = resolve_options or ResolveOptions()
        self._render_options = render_options or RenderOptions()
        self._batch_concurrency = batch_concurrency
        logger.info("notification_service_initialized")

    @property
    def templates(self) -> TemplateResolver:
        return self._templates

    @property
    def dispatcher(self) -> DispatchEngine:
        return self._dispatcher

    async def process_notification(
        self,
        user_identity: str,
        notification_type: str,
        dynamic_data: Mapping[str, Any] | None = None,
        *,
        language: str | None = None,
    ) -> NotificationResult:
        """
        Send ``notification_type`` to a user over every eligible channel.

        Args:
            user_identity: User to notify
            notification_type: Template name, e.g. "welcome" or "otp"
            dynamic_data: Placeholder values; these win over profile values
            language: Override the user's preferred language

        Returns:
            NotificationResult. Configuration errors, an empty channel set
            and unexpected failures are all reported through its status.
        """
        started_at = datetime.now(timezone.utc)
        try:
            request = NotificationRequest(
                user_identity=user_identity,
                notification_type=notification_type,
                dynamic_data=dict(dynamic_data or {}),
                language=language,
            )
        except ValidationError as e:
            logger.warning("notification_request_invalid", user_identity=user_identity,
                           notification_type=notification_type, errors=e.error_count())
            return NotificationResult(
                request_id=uuid4(), user_identity=str(user_identity),
                notification_type=str(notification_type), started_at=started_at,
                aggregate=AggregateResult.error(ResultStatus.CONFIGURATION_ERROR, "INVALID_REQUEST",
                                                f"Invalid notification request: {e.error_count()} error(s)"),
            )

        log = logger.bind(request_id=str(request.request_id), user_identity=request.user_identity,
                          notification_type=request.notification_type)
        log.info("notification_process_started")
        try:
            aggregate = await self._process(request)
        except ConfigurationError as e:
            log.warning("notification_configuration_error", error_code=e.error_code, error=e.message)
            self._emit(NotificationSkippedEvent(
                request_id=request.request_id, user_identity=request.user_identity,
                notification_type=request.notification_type, reason=e.message, error_code=e.error_code,
            ))
            aggregate = AggregateResult.error(ResultStatus.CONFIGURATION_ERROR, e.error_code, e.message)
        except Exception as e:
            log.error("notification_process_failed", error=str(e), error_type=type(e).__name__)
            self._emit(NotificationFailedEvent(
                request_id=request.request_id, user_identity=request.user_identity,
                notification_type=request.notification_type, error_kind="unexpected",
                error_code="UNEXPECTED_ERROR", error_message=str(e),
            ))
            aggregate = AggregateResult.error(ResultStatus.UNEXPECTED_ERROR, "UNEXPECTED_ERROR",
                                              f"Unexpected error while processing notification: {e}")

        result = NotificationResult(
            request_id=request.request_id,
            user_identity=request.user_identity,
            notification_type=request.notification_type,
            aggregate=aggregate,
            started_at=started_at,
        )
        log.info("notification_process_completed", status=result.status.value,
                 successful=sorted(c.value for c in aggregate.successful_channels),
                 processing_time_ms=round(result.processing_time_ms, 2))
        return result

    async def _process(self, request: NotificationRequest) -> AggregateResult:
        eligibility = self._preferences.eligible_channels(request.user_identity,
                                                           request.notification_type)
        if not eligibility.has_channels:
            aggregate = AggregateResult.no_enabled_channels(
                f"No notification channels enabled for '{request.notification_type}'")
            self._emit(NotificationSkippedEvent(
                request_id=request.request_id, user_identity=request.user_identity,
                notification_type=request.notification_type, reason=aggregate.error_message or "",
                error_code=aggregate.error_code,
            ))
            return aggregate

        self._emit(NotificationRequestedEvent(
            request_id=request.request_id, user_identity=request.user_identity,
            notification_type=request.notification_type,
            channels=[c.value for c in eligibility.channels],
        ))

        data = self.build_data_context(eligibility, request.dynamic_data)
        language = (request.language or eligibility.language).lower()
        rendered, resolutions = self.prepare_content(eligibility.channels, request.notification_type,
                                                     language, data)

        aggregate = await self._dispatcher.dispatch(
            eligibility.channels,
            rendered,
            eligibility.recipients,
            language,
            resolutions=resolutions,
            options={"notification_type": request.notification_type,
                     "request_id": str(request.request_id)},
        )
        for outcome in aggregate.outcomes:
            self._emit_outcome(request, outcome)
        self._emit(NotificationCompletedEvent(
            request_id=request.request_id, user_identity=request.user_identity,
            notification_type=request.notification_type, status=aggregate.status.value,
            attempted_channels=sorted(c.value for c in aggregate.attempted_channels),
            successful_channels=sorted(c.value for c in aggregate.successful_channels),
        ))
        return aggregate

    @staticmethod
    def build_data_context(eligibility: ChannelEligibility,
                           dynamic_data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Profile values first, request data on top."""
        data: dict[str, Any] = {"userName": eligibility.display_name}
        if eligibility.email_address:
            data["email"] = eligibility.email_address
        if eligibility.phone_number:
            data["phone"] = eligibility.phone_number
        data.update(dynamic_data or {})
        return data

    def prepare_content(
        self,
        channels: Sequence[ChannelType],
        notification_type: str,
        language: str,
        data: Mapping[str, Any],
    ) -> tuple[dict[ChannelType, RenderedContent | None],
               dict[ChannelType, ResolvedTemplate | TemplateNotFoundError]]:
        """Resolve and render a template for each channel. Misses map to None."""
        rendered: dict[ChannelType, RenderedContent | None] = {}
        resolutions: dict[ChannelType, ResolvedTemplate | TemplateNotFoundError] = {}
        for channel in channels:
            try:
                resolved = self._templates.resolve(channel, notification_type, [language],
                                                   self._resolve_options)
            except TemplateNotFoundError as e:
                resolutions[channel] = e
                rendered[channel] = None
                continue
            resolutions[channel] = resolved
            missing = self._personalization.missing_placeholders(resolved.raw_template, data,
                                                                 self._render_options)
            if missing:
                logger.debug("placeholders_unresolved", channel=channel.value,
                             notification_type=notification_type, names=sorted(missing))
            rendered[channel] = self._personalization.render(resolved.raw_template, data,
                                                             self._render_options)
        return rendered, resolutions

    async def process_batch(
        self,
        user_identities: Iterable[str],
        notification_type: str,
        dynamic_data: Mapping[str, Any] | None = None,
        *,
        parallel: bool = True,
        fail_fast: bool = False,
        validate_templates: bool = False,
    ) -> BatchResult:
        """
        Send the same notification to many users.

        ``fail_fast`` processes users one at a time and stops after the first
        failed user; skipped users (unknown, or no channels enabled) do not
        stop the batch. ``validate_templates`` checks up front that at least
        one channel has a template named ``notification_type``.

        Raises:
            TemplateNotFoundError: ``validate_templates`` is set and no
                channel has the template.
        """
        users = list(user_identities)
        if validate_templates:
            store = self._templates.store
            if not any(store.exists(channel, notification_type) for channel in ChannelType):
                raise TemplateNotFoundError("any", notification_type)

        batch = BatchResult(notification_type=notification_type, total=len(users))
        logger.info("notification_batch_started", notification_type=notification_type,
                    users=len(users), parallel=parallel and not fail_fast, fail_fast=fail_fast)

        if parallel and not fail_fast:
            semaphore = asyncio.Semaphore(self._batch_concurrency)

            async def _bounded(user: str) -> NotificationResult:
                async with semaphore:
                    return await self.process_notification(user, notification_type, dynamic_data)

            results = list(await asyncio.gather(*(_bounded(u) for u in users)))
        else:
            results = []
            for user in users:
                result = await self.process_notification(user, notification_type, dynamic_data)
                results.append(result)
                if fail_fast and classify(result) == "failed":
                    batch.stopped_early = True
                    logger.warning("notification_batch_stopped", user_identity=user,
                                   error_code=result.error_code)
                    break

        for result in results:
            bucket = classify(result)
            setattr(batch, bucket, getattr(batch, bucket) + 1)
        batch.results = results

        self._emit(BatchCompletedEvent(
            notification_type=notification_type, total=batch.total, succeeded=batch.succeeded,
            skipped=batch.skipped, failed=batch.failed,
        ))
        logger.info("notification_batch_completed", notification_type=notification_type,
                    succeeded=batch.succeeded, skipped=batch.skipped, failed=batch.failed,
                    stopped_early=batch.stopped_early)
        return batch

    def _emit_outcome(self, request: NotificationRequest, outcome: DispatchOutcome) -> None:
        if outcome.success:
            event = NotificationSentEvent(
                request_id=request.request_id, user_identity=request.user_identity,
                notification_type=request.notification_type, channel=outcome.channel.value,
                recipient=outcome.recipient, message_id=outcome.message_id, language=outcome.language,
            )
        else:
            event = NotificationFailedEvent(
                request_id=request.request_id, user_identity=request.user_identity,
                notification_type=request.notification_type, channel=outcome.channel.value,
                recipient=outcome.recipient,
                error_kind=outcome.error_kind.value if outcome.error_kind else None,
                error_code=outcome.error_code, error_message=outcome.error_detail or "",
            )
        self._emit(event)

    def _emit(self, event: Any) -> None:
        emit(self._audit_log, event)


def create_notification_service(
    config: NotificationDispatchConfig | None = None,
    *,
    preference_store: PreferenceStore | None = None,
    template_source: TemplateSource | None = None,
    transports: Iterable[ChannelTransport] | None = None,
    audit_log: AuditLog | None = None,
    default_values: DefaultValueTable | None = None,
) -> NotificationService:
    """
    Build a NotificationService from configuration.

    Explicit collaborators override what the configuration would build.
    """
    config = config or NotificationDispatchConfig()

    if template_source is None:
        template_source = (FileTemplateSource(config.template.templates_dir)
                           if config.template.templates_dir else InMemoryTemplateSource.builtin())
    store = TemplateStore(template_source, cache_enabled=config.template.cache_enabled)

    if preference_store is None:
        preference_store = (JsonFilePreferenceStore(config.preferences.file)
                            if config.preferences.file else InMemoryPreferenceStore())

    if transports is None:
        transports = _transports_from_config(config)
    registry = ChannelRegistry(transports)

    if audit_log is None and config.observability.audit_enabled:
        audit_log = StructlogAuditLog()

    service = NotificationService(
        PreferenceResolver(preference_store),
        TemplateResolver(store, canonical_language=config.template.default_locale),
        PersonalizationEngine(default_values,
                              keep_missing_placeholders=config.dispatch.keep_missing_placeholders),
        DispatchEngine(registry, parallel=config.dispatch.parallel),
        audit_log=audit_log,
        resolve_options=ResolveOptions(strict_mode=config.dispatch.strict_language),
        batch_concurrency=config.dispatch.batch_concurrency,
    )
    logger.info("notification_service_created",
                channels=[c.value for c, _ in registry.list_channels()],
                template_source=type(template_source).__name__,
                preference_store=type(preference_store).__name__)
    return service


def _transports_from_config(config: NotificationDispatchConfig) -> list[ChannelTransport]:
    transports: list[ChannelTransport] = []
    for channel, channel_config, sender in (
        (ChannelType.EMAIL, config.email, config.email.from_email),
        (ChannelType.SMS, config.sms, config.sms.from_number or None),
        (ChannelType.PUSH, config.push, None),
    ):
        if channel_config.mode == "mock":
            transports.append(MockTransport(channel, enabled=channel_config.enabled))
        else:
            transports.append(LoggingTransport(channel, sender=sender,
                                              enabled=channel_config.enabled))
    return transports
