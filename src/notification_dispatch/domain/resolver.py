"""
Notification Dispatch - Template Resolution.

Picks the single best template for a channel and notification name from
an ordered list of language preferences. User-preferred languages are
tried first, in order; the canonical language is tried last, and only
when strict mode is off and it was not already among the preferences.

Architecture Layer: Domain
"""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict
import structlog

from .channels import ChannelType
from .errors import TemplateNotFoundError
from .templates import CANONICAL_LANGUAGE, Template, TemplateStore

logger = structlog.get_logger(__name__)


class ResolveOptions(BaseModel):
    """
    Options for a single resolution.

    strict_mode: never fall back to the canonical language.
    include_metadata: attach a metadata mapping describing the lookup.
    """
    model_config = ConfigDict(frozen=True)

    strict_mode: bool = False
    include_metadata: bool = False


class ResolvedTemplate(BaseModel):
    """Outcome of a successful resolution. Built fresh for every call."""
    model_config = ConfigDict(frozen=True)

    raw_template: Template
    channel: ChannelType
    name: str
    selected_language: str
    requested_language: str
    requested_languages: list[str]
    fallback_used: bool = False
    metadata: dict[str, Any] | None = None


def normalize_languages(languages: str | Sequence[str] | None) -> list[str]:
    """Lower-case language codes and drop blanks and duplicates, keeping order."""
    if languages is None:
        candidates: Sequence[str] = []
    elif isinstance(languages, str):
        candidates = [languages]
    else:
        candidates = languages
    seen: list[str] = []
    for lang in candidates:
        code = (lang or "").strip().lower()
        if code and code not in seen:
            seen.append(code)
    return seen or [CANONICAL_LANGUAGE]


class TemplateResolver:
    """Resolves templates against a TemplateStore with deterministic fallback."""

    def __init__(self, store: TemplateStore, *, canonical_language: str = CANONICAL_LANGUAGE) -> None:
        self._store = store
        self._canonical = canonical_language.lower()

    @property
    def store(self) -> TemplateStore:
        return self._store

    def resolve(
        self,
        channel: ChannelType,
        name: str,
        language_preferences: str | Sequence[str] | None,
        options: ResolveOptions | None = None,
    ) -> ResolvedTemplate:
        """
        Resolve the best template for ``channel``/``name``.

        Raises:
            TemplateNotFoundError: No attempted language has the template,
                or the name is unknown for the channel.
        """
        options = options or ResolveOptions()
        languages = normalize_languages(language_preferences)
        tried: list[str] = []

        if not self._store.exists(channel, name):
            logger.warning("template_name_unknown", channel=channel.value, name=name)
            raise TemplateNotFoundError(channel.value, name, tried)

        selected: str | None = None
        template: Template | None = None
        for lang in languages:
            tried.append(lang)
            template = self._store.get(channel, name, lang)
            if template is not None:
                selected = lang
                break

        fallback_used = False
        if template is None and not options.strict_mode and self._canonical not in tried:
            tried.append(self._canonical)
            template = self._store.get(channel, name, self._canonical)
            if template is not None:
                selected = self._canonical
                fallback_used = True
                logger.info("template_language_fallback", channel=channel.value, name=name,
                            requested=languages, selected=selected)

        if template is None or selected is None:
            logger.warning("template_not_resolved", channel=channel.value, name=name,
                           tried=tried, strict_mode=options.strict_mode)
            raise TemplateNotFoundError(channel.value, name, tried)

        metadata = None
        if options.include_metadata:
            metadata = {
                "channel": channel.value,
                "name": name,
                "requested_languages": list(languages),
                "tried_languages": list(tried),
                "selected_language": selected,
                "fallback_used": fallback_used,
                "strict_mode": options.strict_mode,
                "available_languages": sorted(self._store.languages_available(channel, name)),
                "resolved_at": datetime.now(timezone.utc).isoformat(),
            }

        return ResolvedTemplate(
            raw_template=template,
            channel=channel,
            name=name,
            selected_language=selected,
            requested_language=languages[0],
            requested_languages=languages,
            fallback_used=fallback_used,
            metadata=metadata,
        )

    def find(
        self,
        channel: ChannelType,
        name: str,
        language_preferences: str | Sequence[str] | None,
        options: ResolveOptions | None = None,
    ) -> ResolvedTemplate | None:
        """Like ``resolve`` but returns None on a miss."""
        try:
            return self.resolve(channel, name, language_preferences, options)
        except TemplateNotFoundError:
            return None
