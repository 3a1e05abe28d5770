"""
Notification Dispatch - Personalization Engine.

Renders ``{{placeholder}}`` tokens in string and subject/body templates.
Each placeholder is looked up in this order:

1. the per-request data context
2. the call-scoped default-value override
3. the global DefaultValueTable
4. missing-placeholder policy: keep ``{{name}}`` literally, or use ""

``None`` counts as absent at every tier. Each distinct token is resolved
once and all occurrences are substituted in a single pass.

Architecture Layer: Domain
Principles: Pure Functions, Injectable State
"""
from __future__ import annotations

import re
import threading
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field
import structlog

from .templates import StructuredTemplate, Template

logger = structlog.get_logger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")

DEFAULT_VALUES: Mapping[str, str] = MappingProxyType({
    # user
    "userName": "Guest",
    "userEmail": "Not provided",
    "userFirstName": "User",
    "userLastName": "",
    # service
    "serviceName": "Our Service",
    "companyName": "Our Company",
    "supportEmail": "support@example.com",
    "supportPhone": "Contact Support",
    # links
    "verificationLink": "#verification-link#",
    "resetLink": "#reset-link#",
    "loginLink": "#login-link#",
    # time
    "expiryTime": "24",
    "appointmentDate": "your scheduled date",
    "appointmentTime": "the scheduled time",
    # security
    "otpCode": "#code#",
    # payment
    "amount": "your payment",
    "referenceNumber": "N/A",
})


class RenderedMessage(BaseModel):
    """Rendered subject/body content. Extra rendered fields are kept."""
    model_config = ConfigDict(extra="allow", frozen=True)

    subject: str
    body: str


RenderedContent = Union[str, RenderedMessage]


class RenderOptions(BaseModel):
    """
    Per-call rendering options.

    default_values_override: values consulted after the data context and
        before the global default table.
    keep_missing_placeholders: leave unresolved tokens as-is instead of
        replacing them with an empty string. None uses the engine default.
    """
    model_config = ConfigDict(frozen=True)

    default_values_override: dict[str, Any] = Field(default_factory=dict)
    keep_missing_placeholders: bool | None = None


class DefaultValueTable:
    """
    Global fallback values for placeholders.

    Readers take an immutable snapshot, so updates never affect a render
    that is already in progress.
    """
    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._initial = dict(DEFAULT_VALUES if values is None else values)
        self._values: Mapping[str, Any] = MappingProxyType(dict(self._initial))
        self._lock = threading.Lock()

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def snapshot(self) -> Mapping[str, Any]:
        return self._values

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def update(self, values: Mapping[str, Any]) -> None:
        with self._lock:
            merged = dict(self._values)
            merged.update(values)
            self._values = MappingProxyType(merged)
        logger.debug("default_values_updated", keys=sorted(values))

    def reset(self) -> None:
        with self._lock:
            self._values = MappingProxyType(dict(self._initial))

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)


def stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value if isinstance(value, str) else str(value)


def placeholders(template: Template | str) -> set[str]:
    """Return the distinct placeholder names referenced by a template."""
    texts = [template] if isinstance(template, str) else [
        v for v in template.model_dump().values() if isinstance(v, str)
    ]
    return {m.group(1).strip() for text in texts for m in PLACEHOLDER_PATTERN.finditer(text)}


class PersonalizationEngine:
    """Renders templates against a data context. Safe to share across requests."""

    def __init__(self, defaults: DefaultValueTable | None = None, *,
                 keep_missing_placeholders: bool = False) -> None:
        self._defaults = defaults or DefaultValueTable()
        self._keep_missing = keep_missing_placeholders

    @property
    def defaults(self) -> DefaultValueTable:
        return self._defaults

    def _lookup(self, name: str, layers: tuple[Mapping[str, Any], ...]) -> Any:
        for layer in layers:
            value = layer.get(name)
            if value is not None:
                return value
        return None

    def render_text(
        self,
        text: str,
        data: Mapping[str, Any] | None = None,
        options: RenderOptions | None = None,
    ) -> str:
        options = options or RenderOptions()
        keep_missing = self._keep_missing if options.keep_missing_placeholders is None \
            else options.keep_missing_placeholders
        layers = (data or {}, options.default_values_override, self._defaults.snapshot())

        replacements: dict[str, str] = {}
        for match in PLACEHOLDER_PATTERN.finditer(text):
            token = match.group(0)
            if token in replacements:
                continue
            name = match.group(1).strip()
            value = self._lookup(name, layers)
            if value is None:
                replacements[token] = token if keep_missing else ""
            else:
                replacements[token] = stringify(value)

        if not replacements:
            return text
        return PLACEHOLDER_PATTERN.sub(lambda m: replacements[m.group(0)], text)

    def render(
        self,
        template: Template | Mapping[str, Any],
        data: Mapping[str, Any] | None = None,
        options: RenderOptions | None = None,
    ) -> RenderedContent:
        """
        Render a string or structured template.

        Structured templates have every string field rendered with the same
        rules; other fields are passed through untouched.
        """
        if isinstance(template, str):
            return self.render_text(template, data, options)
        fields = template.model_dump() if isinstance(template, StructuredTemplate) else dict(template)
        rendered = {
            key: self.render_text(value, data, options) if isinstance(value, str) else value
            for key, value in fields.items()
        }
        return RenderedMessage.model_validate(rendered)

    def missing_placeholders(
        self,
        template: Template,
        data: Mapping[str, Any] | None = None,
        options: RenderOptions | None = None,
    ) -> set[str]:
        """Placeholder names that no tier can resolve."""
        options = options or RenderOptions()
        layers = (data or {}, options.default_values_override, self._defaults.snapshot())
        return {name for name in placeholders(template) if self._lookup(name, layers) is None}
