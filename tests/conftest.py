"""
Pytest configuration and fixtures for notification dispatch tests.
"""
import pytest

from notification_dispatch.domain.channels import ChannelRegistry, ChannelType, MockTransport
from notification_dispatch.domain.dispatch import DispatchEngine
from notification_dispatch.domain.personalization import DefaultValueTable, PersonalizationEngine
from notification_dispatch.domain.preferences import (
    InMemoryPreferenceStore,
    PreferenceResolver,
    UserChannelProfile,
)
from notification_dispatch.domain.resolver import TemplateResolver
from notification_dispatch.domain.service import NotificationService
from notification_dispatch.domain.templates import InMemoryTemplateSource, TemplateStore
from notification_dispatch.events import InMemoryAuditLog


@pytest.fixture
def template_store():
    """Template store backed by the built-in templates."""
    return TemplateStore(InMemoryTemplateSource.builtin())


@pytest.fixture
def template_resolver(template_store):
    return TemplateResolver(template_store)


@pytest.fixture
def personalization():
    """Engine with its own default value table."""
    return PersonalizationEngine(DefaultValueTable())


@pytest.fixture
def email_transport():
    return MockTransport(ChannelType.EMAIL)


@pytest.fixture
def sms_transport():
    return MockTransport(ChannelType.SMS)


@pytest.fixture
def push_transport():
    return MockTransport(ChannelType.PUSH)


@pytest.fixture
def channel_registry(email_transport, sms_transport, push_transport):
    return ChannelRegistry([email_transport, sms_transport, push_transport])


@pytest.fixture
def dispatch_engine(channel_registry):
    return DispatchEngine(channel_registry)


@pytest.fixture
def alice():
    """User with email and SMS enabled for welcome and otp."""
    return UserChannelProfile(
        user_identity="alice",
        email_enabled=True,
        sms_enabled=True,
        email_address="alice@example.com",
        phone_number="+15551234567",
        preferred_language="es",
        display_name="Alice",
        notification_types={
            "welcome": {"email": True, "sms": True},
            "otp": {"email": False, "sms": True},
        },
    )


@pytest.fixture
def bob():
    """User with every channel disabled."""
    return UserChannelProfile(
        user_identity="bob",
        email_enabled=False,
        sms_enabled=False,
        email_address="bob@example.com",
        notification_types={"welcome": {"email": True, "sms": True}},
    )


@pytest.fixture
def preference_store(alice, bob):
    return InMemoryPreferenceStore([alice, bob])


@pytest.fixture
def audit_log():
    return InMemoryAuditLog()


@pytest.fixture
def notification_service(preference_store, template_resolver, personalization, dispatch_engine, audit_log):
    """Notification service wired with mock transports and an in-memory audit log."""
    return NotificationService(
        PreferenceResolver(preference_store),
        template_resolver,
        personalization,
        dispatch_engine,
        audit_log=audit_log,
    )
