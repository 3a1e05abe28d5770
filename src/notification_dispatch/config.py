"""
Notification Dispatch - Configuration.

Environment-driven settings for templates, preferences, channels,
dispatch behavior and logging.

Architecture Layer: Infrastructure
Principles: 12-Factor App, Configuration Externalization, Type Safety
"""
from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog

logger = structlog.get_logger(__name__)

TransportMode = Literal["mock", "log"]


class Environment(str, Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class ServiceConfiguration(BaseSettings):
    """Core service configuration."""
    name: str = Field(default="notification-dispatch")
    version: str = Field(default="1.0.0")
    env: Environment = Field(default=Environment.DEVELOPMENT)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATION_DISPATCH_",
        env_file=".env",
        extra="ignore",
    )


class EmailChannelConfig(BaseSettings):
    """Email channel configuration."""
    enabled: bool = Field(default=True)
    mode: TransportMode = Field(default="log")
    from_email: str = Field(default="noreply@example.com")

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("from_email", mode="before")
    @classmethod
    def validate_from_email(cls, v: str) -> str:
        if v and "@" not in v:
            raise ValueError("Invalid email format")
        return v.strip().lower() if v else v


class SMSChannelConfig(BaseSettings):
    """SMS channel configuration."""
    enabled: bool = Field(default=True)
    mode: TransportMode = Field(default="log")
    from_number: str = Field(default="")

    model_config = SettingsConfigDict(
        env_prefix="SMS_",
        env_file=".env",
        extra="ignore",
    )


class PushChannelConfig(BaseSettings):
    """Push channel configuration."""
    enabled: bool = Field(default=False)
    mode: TransportMode = Field(default="log")

    model_config = SettingsConfigDict(
        env_prefix="PUSH_",
        env_file=".env",
        extra="ignore",
    )


class TemplateConfig(BaseSettings):
    """Template store configuration. Without ``templates_dir`` the built-in set is used."""
    templates_dir: str | None = Field(default=None)
    cache_enabled: bool = Field(default=True)
    default_locale: str = Field(default="en")

    model_config = SettingsConfigDict(
        env_prefix="TEMPLATE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("default_locale", mode="before")
    @classmethod
    def lower_locale(cls, v: str) -> str:
        return v.strip().lower() if v else "en"


class PreferenceConfig(BaseSettings):
    """User preference store configuration."""
    file: str | None = Field(default=None)

    model_config = SettingsConfigDict(
        env_prefix="PREFERENCES_",
        env_file=".env",
        extra="ignore",
    )


class DispatchConfig(BaseSettings):
    """Dispatch and rendering behavior."""
    parallel: bool = Field(default=True)
    strict_language: bool = Field(default=False)
    keep_missing_placeholders: bool = Field(default=False)
    batch_concurrency: int = Field(default=10, ge=1, le=1000)

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        env_file=".env",
        extra="ignore",
    )


class ObservabilityConfig(BaseSettings):
    """Logging configuration."""
    log_format: Literal["json", "console"] = Field(default="json")
    audit_enabled: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_prefix="OBSERVABILITY_",
        env_file=".env",
        extra="ignore",
    )


class NotificationDispatchConfig(BaseSettings):
    """Aggregate configuration."""
    service: ServiceConfiguration = Field(default_factory=ServiceConfiguration)
    email: EmailChannelConfig = Field(default_factory=EmailChannelConfig)
    sms: SMSChannelConfig = Field(default_factory=SMSChannelConfig)
    push: PushChannelConfig = Field(default_factory=PushChannelConfig)
    template: TemplateConfig = Field(default_factory=TemplateConfig)
    preferences: PreferenceConfig = Field(default_factory=PreferenceConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @staticmethod
    def load() -> NotificationDispatchConfig:
        """Load configuration from environment."""
        config = NotificationDispatchConfig()
        logger.info(
            "notification_config_loaded",
            service=config.service.name,
            env=config.service.env.value,
            enabled_channels=config.get_enabled_channels(),
            templates_dir=config.template.templates_dir,
            parallel_dispatch=config.dispatch.parallel,
        )
        return config

    def get_enabled_channels(self) -> list[str]:
        groups = {"email": self.email, "sms": self.sms, "push": self.push}
        return [name for name, group in groups.items() if group.enabled]


_config: NotificationDispatchConfig | None = None


def get_config() -> NotificationDispatchConfig:
    """Get singleton configuration instance."""
    global _config
    if _config is None:
        _config = NotificationDispatchConfig.load()
    return _config


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    global _config
    _config = None
