"""
Notification Dispatch - User Channel Preferences.

Per-user channel opt-ins and contact details, the stores that hold them,
and the resolver that turns a user and notification type into the set of
channels a notification may be sent over.

Architecture Layer: Domain
Principles: Repository Pattern, Read-Only Input
"""
from __future__ import annotations

import json
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
import structlog

from .channels import ChannelType
from .errors import NotificationTypeNotConfiguredError, UserNotFoundError
from .templates import CANONICAL_LANGUAGE
from .validation import normalize_phone_number

logger = structlog.get_logger(__name__)

DEFAULT_DISPLAY_NAME = "Valued Customer"


class NotificationTypePreference(BaseModel):
    """Per-notification-type channel toggles."""
    model_config = ConfigDict(frozen=True)

    email: bool = False
    sms: bool = False
    push: bool = False

    def allows(self, channel: ChannelType) -> bool:
        return bool(getattr(self, channel.value))


class UserChannelProfile(BaseModel):
    """
    Channel opt-ins and contact details for one user.

    Accepts both snake_case fields and the camelCase keys of the stored
    JSON format (``emailEnabled``, ``phone``, ``notificationTypes`` ...).
    Phone numbers are normalized to canonical form on intake.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_identity: str = Field(..., min_length=1, alias="userId")
    email_enabled: bool = Field(default=False, alias="emailEnabled")
    sms_enabled: bool = Field(default=False, alias="smsEnabled")
    push_enabled: bool = Field(default=False, alias="pushEnabled")
    email_address: str | None = Field(default=None, alias="email")
    phone_number: str | None = Field(default=None, alias="phone")
    device_token: str | None = Field(default=None, alias="deviceToken")
    preferred_language: str = Field(default=CANONICAL_LANGUAGE, alias="language")
    display_name: str = Field(default=DEFAULT_DISPLAY_NAME, alias="name")
    notification_types: dict[str, NotificationTypePreference] = Field(
        default_factory=dict, alias="notificationTypes")

    @model_validator(mode="before")
    @classmethod
    def default_identity_to_email(cls, data: Any) -> Any:
        if isinstance(data, dict) and not (data.get("userId") or data.get("user_identity")):
            email = data.get("email") or data.get("email_address")
            if email:
                return {**data, "user_identity": email}
        return data

    @field_validator("email_address", mode="before")
    @classmethod
    def normalize_email(cls, v: Any) -> str | None:
        if v is None:
            return None
        v = str(v).strip().lower()
        return v or None

    @field_validator("phone_number", mode="before")
    @classmethod
    def normalize_phone(cls, v: Any) -> str | None:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        normalized = normalize_phone_number(str(v))
        if normalized is None:
            raise ValueError(f"Invalid phone number: {v!r}")
        return normalized

    @field_validator("preferred_language", mode="before")
    @classmethod
    def normalize_language(cls, v: Any) -> str:
        v = str(v or "").strip().lower()
        return v or CANONICAL_LANGUAGE

    @field_validator("display_name", mode="before")
    @classmethod
    def default_display_name(cls, v: Any) -> str:
        v = str(v or "").strip()
        return v or DEFAULT_DISPLAY_NAME

    def is_channel_enabled(self, channel: ChannelType) -> bool:
        return {
            ChannelType.EMAIL: self.email_enabled,
            ChannelType.SMS: self.sms_enabled,
            ChannelType.PUSH: self.push_enabled,
        }[channel]

    def recipient_for(self, channel: ChannelType) -> str | None:
        return {
            ChannelType.EMAIL: self.email_address,
            ChannelType.SMS: self.phone_number,
            ChannelType.PUSH: self.device_token,
        }[channel]

    def to_record(self) -> dict[str, Any]:
        """Serialize using the stored JSON key names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ChannelEligibility(BaseModel):
    """Channels a notification may use for one user, with their recipients."""
    model_config = ConfigDict(frozen=True)

    user_identity: str
    notification_type: str
    channels: tuple[ChannelType, ...] = ()
    recipients: dict[ChannelType, str] = Field(default_factory=dict)
    language: str = CANONICAL_LANGUAGE
    display_name: str = DEFAULT_DISPLAY_NAME
    email_address: str | None = None
    phone_number: str | None = None

    @property
    def has_channels(self) -> bool:
        return bool(self.channels)


class PreferenceStore(Protocol):
    def get_profile(self, user_identity: str) -> UserChannelProfile | None: ...


class InMemoryPreferenceStore:
    """Profiles held in a dict keyed by user identity."""

    def __init__(self, profiles: Iterable[UserChannelProfile] = ()) -> None:
        self._profiles: dict[str, UserChannelProfile] = {}
        self._lock = threading.Lock()
        for profile in profiles:
            self.upsert(profile)

    def get_profile(self, user_identity: str) -> UserChannelProfile | None:
        return self._profiles.get(user_identity)

    def upsert(self, profile: UserChannelProfile) -> None:
        with self._lock:
            self._profiles[profile.user_identity] = profile

    def remove(self, user_identity: str) -> bool:
        with self._lock:
            return self._profiles.pop(user_identity, None) is not None

    def find_by_channel(self, channel: ChannelType) -> list[UserChannelProfile]:
        """Profiles with ``channel`` globally enabled."""
        return [p for p in self._profiles.values() if p.is_channel_enabled(channel)]

    def all_profiles(self) -> list[UserChannelProfile]:
        return list(self._profiles.values())


class JsonFilePreferenceStore(InMemoryPreferenceStore):
    """
    Profiles persisted as a JSON array of records.

    The file is read once at construction (a missing file starts empty)
    and written back by ``save``.
    """
    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self.load()

    def load(self) -> int:
        if not self.path.is_file():
            logger.info("preference_file_missing", path=str(self.path))
            return 0
        records = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(records, list):
            raise ValueError(f"Preference file must hold a JSON array: {self.path}")
        loaded = 0
        for index, record in enumerate(records):
            try:
                profile = UserChannelProfile.model_validate(record)
            except ValidationError as e:
                logger.warning("preference_record_invalid", path=str(self.path), index=index,
                               errors=e.error_count())
                continue
            self.upsert(profile)
            loaded += 1
        logger.info("preferences_loaded", path=str(self.path), count=loaded,
                    skipped=len(records) - loaded)
        return loaded

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        records = [p.to_record() for p in self.all_profiles()]
        self.path.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info("preferences_saved", path=str(self.path), count=len(records))


class PreferenceResolver:
    """Turns a user identity and notification type into eligible channels."""

    def __init__(self, store: PreferenceStore) -> None:
        self._store = store

    def eligible_channels(self, user_identity: str, notification_type: str) -> ChannelEligibility:
        """
        Determine which channels may carry ``notification_type`` to a user.

        A channel is eligible when it is enabled globally, enabled for the
        notification type, and has a recipient (phone number for SMS,
        device token for push). An empty result is a valid outcome.

        Raises:
            UserNotFoundError: No profile for ``user_identity``.
            NotificationTypeNotConfiguredError: The profile has no entry for
                ``notification_type``.
        """
        profile = self._store.get_profile(user_identity)
        if profile is None:
            logger.warning("user_preferences_not_found", user_identity=user_identity)
            raise UserNotFoundError(user_identity)

        type_preference = profile.notification_types.get(notification_type)
        if type_preference is None:
            logger.warning("notification_type_not_configured", user_identity=user_identity,
                           notification_type=notification_type)
            raise NotificationTypeNotConfiguredError(user_identity, notification_type)

        channels: list[ChannelType] = []
        recipients: dict[ChannelType, str] = {}
        for channel in ChannelType:
            if not (profile.is_channel_enabled(channel) and type_preference.allows(channel)):
                continue
            recipient = profile.recipient_for(channel)
            if channel != ChannelType.EMAIL and not recipient:
                logger.debug("channel_skipped_no_recipient", user_identity=user_identity,
                             channel=channel.value)
                continue
            channels.append(channel)
            recipients[channel] = recipient or ""

        logger.debug("eligible_channels_resolved", user_identity=user_identity,
                     notification_type=notification_type, channels=[c.value for c in channels])
        return ChannelEligibility(
            user_identity=profile.user_identity,
            notification_type=notification_type,
            channels=tuple(channels),
            recipients=recipients,
            language=profile.preferred_language,
            display_name=profile.display_name,
            email_address=profile.email_address,
            phone_number=profile.phone_number if profile.sms_enabled else None,
        )
