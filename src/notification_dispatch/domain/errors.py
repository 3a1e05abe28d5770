"""
Notification Dispatch - Error Hierarchy.

Structured exceptions raised by the notification pipeline. Every error
carries a stable error code and a details mapping so the orchestration
layer can convert it into a structured result instead of a crash.

Architecture Layer: Domain
Principles: Explicit Error Taxonomy, Fail Fast on Configuration
"""
from __future__ import annotations

from enum import Enum
from typing import Any

from .validation import mask_recipient


class ErrorCategory(str, Enum):
    CONFIGURATION = "configuration"
    RESOLUTION = "resolution"
    VALIDATION = "validation"
    TRANSPORT = "transport"
    INTERNAL = "internal"


class NotificationError(Exception):
    """Base exception for all notification pipeline errors."""
    error_code: str = "NOTIFICATION_ERROR"
    category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(self, message: str, *, details: dict[str, Any] | None = None,
                 cause: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "code": self.error_code,
            "category": self.category.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.cause is not None:
            result["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}
        return result


# Request-level errors, surfaced before any channel is attempted
class ConfigurationError(NotificationError):
    error_code = "CONFIGURATION_ERROR"
    category = ErrorCategory.CONFIGURATION


class UserNotFoundError(ConfigurationError):
    error_code = "USER_NOT_FOUND"

    def __init__(self, user_identity: str) -> None:
        self.user_identity = user_identity
        super().__init__(
            f"User preferences not found: {user_identity}",
            details={"user_identity": user_identity},
        )


class NotificationTypeNotConfiguredError(ConfigurationError):
    error_code = "NOTIFICATION_TYPE_NOT_CONFIGURED"

    def __init__(self, user_identity: str, notification_type: str) -> None:
        self.user_identity = user_identity
        self.notification_type = notification_type
        super().__init__(
            f"Notification type '{notification_type}' not configured for user {user_identity}",
            details={"user_identity": user_identity, "notification_type": notification_type},
        )


class UnsupportedChannelError(ConfigurationError):
    error_code = "UNSUPPORTED_CHANNEL"

    def __init__(self, channel: str) -> None:
        self.channel = channel
        super().__init__(f"No transport registered for channel: {channel}",
                         details={"channel": channel})


# Channel-level errors, contained by the dispatch engine
class TemplateNotFoundError(NotificationError):
    """Raised when no template matches in any attempted language."""
    error_code = "TEMPLATE_NOT_FOUND"
    category = ErrorCategory.RESOLUTION

    def __init__(self, channel: str, name: str, tried_languages: list[str] | None = None) -> None:
        self.channel = channel
        self.name = name
        self.tried_languages = list(tried_languages or [])
        super().__init__(
            f"Template not found: {channel}/{name} (tried: {', '.join(self.tried_languages) or 'none'})",
            details={"channel": channel, "name": name, "tried_languages": self.tried_languages},
        )


class RecipientValidationError(NotificationError):
    error_code = "INVALID_RECIPIENT"
    category = ErrorCategory.VALIDATION

    def __init__(self, channel: str, recipient: str | None, reason: str) -> None:
        self.channel = channel
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Invalid {channel} recipient: {reason}",
                         details={"channel": channel, "reason": reason})


class DeliveryError(NotificationError):
    """Raised by a transport when the underlying send fails."""
    error_code = "TRANSPORT_ERROR"
    category = ErrorCategory.TRANSPORT

    def __init__(self, channel: str, recipient: str, reason: str) -> None:
        self.channel = channel
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Delivery failed via {channel} to {mask_recipient(recipient)}: {reason}",
                         details={"channel": channel, "reason": reason})
