"""
Notification Dispatch - Recipient Validation.

Canonical recipient formats shared by profile intake and dispatch.
Phone numbers are normalized to an E.164-style form: separators
(spaces, dashes, dots, parentheses) are stripped, a single leading
``+`` is kept, and 7-15 digits must remain.

Architecture Layer: Domain
"""
from __future__ import annotations

import re

MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_SEPARATORS = re.compile(r"[\s\-.()]")
_CANONICAL_PHONE = re.compile(rf"^\+?[0-9]{{{MIN_PHONE_DIGITS},{MAX_PHONE_DIGITS}}}$")
_PUSH_TOKEN_PATTERN = re.compile(r"^\S+$")
_NON_DIGITS = re.compile(r"\D")


def is_valid_email(value: str | None) -> bool:
    """Check an address against the local-part@domain.tld shape."""
    if not value:
        return False
    return bool(_EMAIL_PATTERN.match(value.strip()))


def normalize_phone_number(value: str | None) -> str | None:
    """
    Convert a phone number to canonical form.

    Returns None when the input cannot be a plausible phone number.
    Accepts both display-formatted ("(555) 123-4567") and E.164
    ("+15551234567") input.
    """
    if value is None:
        return None
    stripped = _PHONE_SEPARATORS.sub("", value.strip())
    if not stripped:
        return None
    if _CANONICAL_PHONE.match(stripped):
        return stripped
    return None


def is_valid_phone(value: str | None) -> bool:
    return normalize_phone_number(value) is not None


def is_valid_push_token(value: str | None) -> bool:
    if not value:
        return False
    return bool(_PUSH_TOKEN_PATTERN.match(value))


def mask_recipient(value: str | None) -> str:
    """
    Obscure a recipient for log output.

    Emails keep the first three characters of the local part and the
    domain (``ali***@example.com``), phone numbers keep their last four
    digits (``******4567``) and device tokens keep a six-character prefix.
    """
    if not value:
        return "unknown"
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:3]}***@{domain}"
    if _CANONICAL_PHONE.match(_PHONE_SEPARATORS.sub("", value)):
        return f"******{_NON_DIGITS.sub('', value)[-4:]}"
    return f"{value[:6]}***" if len(value) > 6 else "***"
