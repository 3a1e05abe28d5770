"""
Notification Dispatch - Domain Layer.

Templates, personalization, preferences, channel transports, dispatch
and the orchestrating notification service.
"""
from .errors import (
    NotificationError,
    ConfigurationError,
    UserNotFoundError,
    NotificationTypeNotConfiguredError,
    UnsupportedChannelError,
    TemplateNotFoundError,
    RecipientValidationError,
    DeliveryError,
)
from .channels import (
    ChannelType,
    ChannelStatus,
    FailureMode,
    TransportReceipt,
    ChannelTransport,
    MockTransport,
    LoggingTransport,
    ChannelRegistry,
)
from .templates import (
    CANONICAL_LANGUAGE,
    StructuredTemplate,
    Template,
    TemplateSource,
    InMemoryTemplateSource,
    FileTemplateSource,
    TemplateStore,
    TemplateDescriptor,
    LanguageCoverage,
)
from .resolver import ResolveOptions, ResolvedTemplate, TemplateResolver
from .personalization import (
    DEFAULT_VALUES,
    DefaultValueTable,
    PersonalizationEngine,
    RenderedContent,
    RenderedMessage,
    RenderOptions,
)
from .preferences import (
    NotificationTypePreference,
    UserChannelProfile,
    ChannelEligibility,
    PreferenceStore,
    InMemoryPreferenceStore,
    JsonFilePreferenceStore,
    PreferenceResolver,
)
from .dispatch import (
    ErrorKind,
    ResultStatus,
    DispatchOutcome,
    AggregateResult,
    DispatchEngine,
    validate_recipient,
)
from .service import (
    NotificationRequest,
    NotificationResult,
    BatchResult,
    NotificationService,
    create_notification_service,
)

__all__ = [
    # Errors
    "NotificationError",
    "ConfigurationError",
    "UserNotFoundError",
    "NotificationTypeNotConfiguredError",
    "UnsupportedChannelError",
    "TemplateNotFoundError",
    "RecipientValidationError",
    "DeliveryError",
    # Channels
    "ChannelType",
    "ChannelStatus",
    "FailureMode",
    "TransportReceipt",
    "ChannelTransport",
    "MockTransport",
    "LoggingTransport",
    "ChannelRegistry",
    # Templates
    "CANONICAL_LANGUAGE",
    "StructuredTemplate",
    "Template",
    "TemplateSource",
    "InMemoryTemplateSource",
    "FileTemplateSource",
    "TemplateStore",
    "TemplateDescriptor",
    "LanguageCoverage",
    "ResolveOptions",
    "ResolvedTemplate",
    "TemplateResolver",
    # Personalization
    "DEFAULT_VALUES",
    "DefaultValueTable",
    "PersonalizationEngine",
    "RenderedContent",
    "RenderedMessage",
    "RenderOptions",
    # Preferences
    "NotificationTypePreference",
    "UserChannelProfile",
    "ChannelEligibility",
    "PreferenceStore",
    "InMemoryPreferenceStore",
    "JsonFilePreferenceStore",
    "PreferenceResolver",
    # Dispatch
    "ErrorKind",
    "ResultStatus",
    "DispatchOutcome",
    "AggregateResult",
    "DispatchEngine",
    "validate_recipient",
    # Service
    "NotificationRequest",
    "NotificationResult",
    "BatchResult",
    "NotificationService",
    "create_notification_service",
]
