"""
Unit tests for recipient validation.
"""
import pytest

from notification_dispatch.domain.validation import (
    MAX_PHONE_DIGITS,
    MIN_PHONE_DIGITS,
    is_valid_email,
    is_valid_phone,
    is_valid_push_token,
    mask_recipient,
    normalize_phone_number,
)


class TestEmailValidation:
    """Tests for email address checks."""

    @pytest.mark.parametrize("address", [
        "user@example.com",
        "first.last@sub.example.co.uk",
        "user+tag@example.org",
    ])
    def test_valid_addresses(self, address):
        """Test well-formed addresses are accepted."""
        assert is_valid_email(address) is True

    @pytest.mark.parametrize("address", [
        "",
        None,
        "plainaddress",
        "@missing-local.com",
        "user@nodot",
        "user name@example.com",
        "user@@example.com",
    ])
    def test_invalid_addresses(self, address):
        """Test malformed addresses are rejected."""
        assert is_valid_email(address) is False


class TestPhoneNormalization:
    """Tests for canonical phone number handling."""

    def test_e164_input_unchanged(self):
        """Test E.164 numbers are already canonical."""
        assert normalize_phone_number("+15551234567") == "+15551234567"

    def test_display_format_normalized(self):
        """Test display-formatted numbers are stripped to digits."""
        assert normalize_phone_number("(555) 123-4567") == "5551234567"
        assert normalize_phone_number("+1 555.123.4567") == "+15551234567"

    @pytest.mark.parametrize("number", ["123456", "+1234567890123456", "555-CALL-NOW", "", "   ", "++15551234567"])
    def test_implausible_numbers_rejected(self, number):
        """Test numbers outside 7-15 digits or with letters are rejected."""
        assert normalize_phone_number(number) is None
        assert is_valid_phone(number) is False

    def test_none_is_invalid(self):
        """Test a missing number is invalid."""
        assert normalize_phone_number(None) is None
        assert is_valid_phone(None) is False

    def test_bounds(self):
        """Test the digit count bounds are inclusive."""
        assert is_valid_phone("1234567") is True
        assert is_valid_phone("+123456789012345") is True
        assert is_valid_phone("9" * MIN_PHONE_DIGITS) is True
        assert is_valid_phone("9" * (MIN_PHONE_DIGITS - 1)) is False
        assert is_valid_phone("9" * (MAX_PHONE_DIGITS + 1)) is False


class TestPushTokenValidation:
    """Tests for device token checks."""

    def test_token_without_whitespace(self):
        assert is_valid_push_token("fcm-token-abc123") is True

    def test_blank_or_spaced_token(self):
        assert is_valid_push_token("") is False
        assert is_valid_push_token(None) is False
        assert is_valid_push_token("has space") is False


class TestRecipientMasking:
    """Tests for recipient masking in log output."""

    @pytest.mark.parametrize("recipient,expected", [
        ("alice@example.com", "ali***@example.com"),
        ("+15551234567", "******4567"),
        ("(555) 123-4567", "******4567"),
        ("device-token-123", "device***"),
        ("abc", "***"),
        (None, "unknown"),
    ])
    def test_mask_recipient(self, recipient, expected):
        assert mask_recipient(recipient) == expected
