"""
Unit tests for the error hierarchy.
"""
from notification_dispatch.domain.errors import (
    ConfigurationError,
    DeliveryError,
    ErrorCategory,
    NotificationError,
    NotificationTypeNotConfiguredError,
    RecipientValidationError,
    TemplateNotFoundError,
    UnsupportedChannelError,
    UserNotFoundError,
)


class TestErrorHierarchy:
    def test_configuration_errors(self):
        for error in (UserNotFoundError("u"), NotificationTypeNotConfiguredError("u", "t"),
                      UnsupportedChannelError("fax")):
            assert isinstance(error, ConfigurationError)
            assert error.category == ErrorCategory.CONFIGURATION

    def test_channel_errors_are_not_configuration_errors(self):
        for error in (TemplateNotFoundError("email", "welcome"), RecipientValidationError("sms", "1", "bad"),
                      DeliveryError("sms", "+1555", "down")):
            assert isinstance(error, NotificationError)
            assert not isinstance(error, ConfigurationError)

    def test_error_codes(self):
        assert UserNotFoundError("u").error_code == "USER_NOT_FOUND"
        assert TemplateNotFoundError("sms", "otp").error_code == "TEMPLATE_NOT_FOUND"
        assert RecipientValidationError("sms", None, "missing").error_code == "INVALID_RECIPIENT"
        assert DeliveryError("email", "a@b.co", "x").error_code == "TRANSPORT_ERROR"


class TestToDict:
    def test_to_dict(self):
        data = TemplateNotFoundError("email", "welcome", ["es", "en"]).to_dict()
        assert data["code"] == "TEMPLATE_NOT_FOUND"
        assert data["category"] == "resolution"
        assert data["details"]["tried_languages"] == ["es", "en"]

    def test_cause_included(self):
        error = NotificationError("wrapped", cause=OSError("disk"))
        assert error.to_dict()["cause"] == {"type": "OSError", "message": "disk"}

    def test_message(self):
        assert "welcome" in str(NotificationTypeNotConfiguredError("alice", "welcome"))
