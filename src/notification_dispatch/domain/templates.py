"""
Notification Dispatch - Template Store.

Template content keyed by channel, notification name and language, with
pluggable backing sources and a lazily primed in-memory cache.

Persisted layout (file-backed source)::

    <root>/<channel>/<language>/<name>.json

Each file holds either a JSON string (SMS) or an object with ``subject``
and ``body`` string fields (email, push).

Architecture Layer: Domain
Principles: Repository Pattern, Lazy Initialization
"""
from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field
import structlog

from .channels import ChannelType

logger = structlog.get_logger(__name__)

CANONICAL_LANGUAGE = "en"


class StructuredTemplate(BaseModel):
    """Subject/body template used by email and push. Extra string fields are allowed."""
    model_config = ConfigDict(extra="allow", frozen=True)

    subject: str
    body: str

    def as_dict(self) -> dict[str, Any]:
        return self.model_dump()


Template = Union[str, StructuredTemplate]

# channel -> name -> language -> template
TemplateTree = dict[ChannelType, dict[str, dict[str, Template]]]


def parse_template(raw: Any) -> Template:
    """Convert a raw stored value into a Template."""
    if isinstance(raw, (str, StructuredTemplate)):
        return raw
    if isinstance(raw, Mapping):
        return StructuredTemplate.model_validate(dict(raw))
    raise ValueError(f"Unsupported template value: {type(raw).__name__}")


def serialize_template(template: Template) -> Any:
    return template if isinstance(template, str) else template.model_dump()


def _coerce_channel(channel: ChannelType | str) -> ChannelType:
    return channel if isinstance(channel, ChannelType) else ChannelType(channel.lower())


def _empty_tree() -> TemplateTree:
    return {channel: {} for channel in ChannelType}


BUILTIN_TEMPLATES: dict[str, dict[str, dict[str, Any]]] = {
    "email": {
        "en": {
            "welcome": {
                "subject": "Welcome to {{serviceName}}!",
                "body": (
                    "Hello {{userName}},\n\nWelcome to {{serviceName}}! We're excited to have you join us.\n\n"
                    "To get started, please verify your email by clicking on the link below:\n"
                    "{{verificationLink}}\n\nIf you have any questions, feel free to contact our support "
                    "team at {{supportEmail}}.\n\nBest regards,\nThe {{serviceName}} Team"
                ),
            },
            "otp": {
                "subject": "Your {{serviceName}} Verification Code",
                "body": (
                    "Hello {{userName}},\n\nYour verification code for {{serviceName}} is: {{otpCode}}\n\n"
                    "This code will expire in {{expiryTime}} minutes.\n\nIf you did not request this code, "
                    "please ignore this email.\n\nBest regards,\nThe {{serviceName}} Team"
                ),
            },
            "password_reset": {
                "subject": "Password Reset Request for {{serviceName}}",
                "body": (
                    "Hello {{userName}},\n\nWe received a request to reset your password for your "
                    "{{serviceName}} account.\n\nPlease click the link below to reset your password:\n"
                    "{{resetLink}}\n\nThis link will expire in {{expiryTime}} hours.\n\nIf you didn't "
                    "request this, you can safely ignore this email.\n\nBest regards,\nThe {{serviceName}} Team"
                ),
            },
        },
        "es": {
            "welcome": {
                "subject": "¡Bienvenido a {{serviceName}}!",
                "body": (
                    "Hola {{userName}},\n\n¡Bienvenido a {{serviceName}}! Estamos emocionados de que te unas "
                    "a nosotros.\n\nPara comenzar, verifica tu correo electrónico haciendo clic en el "
                    "siguiente enlace:\n{{verificationLink}}\n\nSi tienes alguna pregunta, no dudes en "
                    "contactar a nuestro equipo de soporte en {{supportEmail}}.\n\nSaludos cordiales,\n"
                    "El Equipo de {{serviceName}}"
                ),
            },
            "otp": {
                "subject": "Tu código de verificación de {{serviceName}}",
                "body": (
                    "Hola {{userName}},\n\nTu código de verificación para {{serviceName}} es: {{otpCode}}\n\n"
                    "Este código caducará en {{expiryTime}} minutos.\n\nSi no solicitaste este código, "
                    "ignora este correo electrónico.\n\nSaludos cordiales,\nEl Equipo de {{serviceName}}"
                ),
            },
        },
        "fr": {
            "welcome": {
                "subject": "Bienvenue sur {{serviceName}} !",
                "body": (
                    "Bonjour {{userName}},\n\nBienvenue sur {{serviceName}} ! Nous sommes ravis de vous "
                    "compter parmi nous.\n\nPour commencer, veuillez vérifier votre email en cliquant sur "
                    "le lien ci-dessous :\n{{verificationLink}}\n\nSi vous avez des questions, n'hésitez "
                    "pas à contacter notre équipe d'assistance à {{supportEmail}}.\n\nCordialement,\n"
                    "L'équipe {{serviceName}}"
                ),
            },
            "otp": {
                "subject": "Votre code de vérification {{serviceName}}",
                "body": (
                    "Bonjour {{userName}},\n\nVotre code de vérification pour {{serviceName}} est : "
                    "{{otpCode}}\n\nCe code expirera dans {{expiryTime}} minutes.\n\nSi vous n'avez pas "
                    "demandé ce code, veuillez ignorer cet email.\n\nCordialement,\nL'équipe {{serviceName}}"
                ),
            },
        },
    },
    "sms": {
        "en": {
            "welcome": (
                "Welcome to {{serviceName}}, {{userName}}! Your account has been created successfully. "
                "Reply HELP for assistance."
            ),
            "otp": "Your {{serviceName}} verification code is {{otpCode}}. This code will expire in {{expiryTime}} minutes.",
        },
        "es": {
            "welcome": (
                "¡Bienvenido a {{serviceName}}, {{userName}}! Tu cuenta ha sido creada exitosamente. "
                "Responde AYUDA para obtener asistencia."
            ),
            "otp": "Tu código de verificación de {{serviceName}} es {{otpCode}}. Este código caducará en {{expiryTime}} minutos.",
        },
        "fr": {
            "welcome": (
                "Bienvenue sur {{serviceName}}, {{userName}} ! Votre compte a été créé avec succès. "
                "Répondez AIDE pour obtenir de l'assistance."
            ),
            "otp": "Votre code de vérification {{serviceName}} est {{otpCode}}. Ce code expirera dans {{expiryTime}} minutes.",
        },
    },
    "push": {
        "en": {
            "welcome": {"subject": "Welcome to {{serviceName}}", "body": "Hi {{userName}}, your account is ready."},
            "otp": {"subject": "{{serviceName}} code", "body": "Your verification code is {{otpCode}}."},
        },
        "es": {
            "welcome": {"subject": "Bienvenido a {{serviceName}}", "body": "Hola {{userName}}, tu cuenta está lista."},
        },
    },
}


class TemplateDescriptor(BaseModel):
    """Summary of one (channel, name) template family."""
    channel: ChannelType
    name: str
    languages: list[str]
    has_canonical: bool


class ChannelCoverage(BaseModel):
    available: int
    total: int
    percentage: float
    missing: list[str] = Field(default_factory=list)


class LanguageCoverage(BaseModel):
    """How many templates exist in a language, per channel."""
    language: str
    channels: dict[ChannelType, ChannelCoverage]

    @property
    def percentage(self) -> float:
        total = sum(c.total for c in self.channels.values())
        available = sum(c.available for c in self.channels.values())
        return round(available / total * 100, 1) if total else 0.0


class TemplateSource(ABC):
    """Backing store for templates."""

    @abstractmethod
    def load_all(self) -> TemplateTree:
        """Load every template. Raises OSError or ValueError on read failure."""

    def load(self, channel: ChannelType, name: str, language: str) -> Template | None:
        return self.load_all()[channel].get(name, {}).get(language)

    def save(self, channel: ChannelType, name: str, language: str, template: Template) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support writes")


class InMemoryTemplateSource(TemplateSource):
    """
    Templates held in a nested mapping.

    Accepts the persisted layout: channel -> language -> name -> template.
    """
    def __init__(self, templates: Mapping[str, Mapping[str, Mapping[str, Any]]] | None = None) -> None:
        self._tree = _empty_tree()
        for channel_key, by_language in (templates or {}).items():
            channel = _coerce_channel(channel_key)
            for language, by_name in by_language.items():
                for name, raw in by_name.items():
                    self._tree[channel].setdefault(name, {})[language.lower()] = parse_template(raw)

    @classmethod
    def builtin(cls) -> InMemoryTemplateSource:
        return cls(BUILTIN_TEMPLATES)

    def load_all(self) -> TemplateTree:
        return {channel: {name: dict(langs) for name, langs in names.items()}
                for channel, names in self._tree.items()}

    def load(self, channel: ChannelType, name: str, language: str) -> Template | None:
        return self._tree[channel].get(name, {}).get(language)

    def save(self, channel: ChannelType, name: str, language: str, template: Template) -> None:
        self._tree[channel].setdefault(name, {})[language] = template


class FileTemplateSource(TemplateSource):
    """Templates stored as JSON files under ``<root>/<channel>/<language>/<name>.json``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, channel: ChannelType, name: str, language: str) -> Path:
        for part in (name, language):
            if not part or part in (".", "..") or "/" in part or "\\" in part:
                raise ValueError(f"Invalid template path component: {part!r}")
        return self.root / channel.value / language / f"{name}.json"

    def load_all(self) -> TemplateTree:
        tree = _empty_tree()
        if not self.root.is_dir():
            raise FileNotFoundError(f"Template directory not found: {self.root}")
        for channel in ChannelType:
            channel_dir = self.root / channel.value
            if not channel_dir.is_dir():
                continue
            for language_dir in sorted(p for p in channel_dir.iterdir() if p.is_dir()):
                for path in sorted(language_dir.glob("*.json")):
                    try:
                        template = parse_template(json.loads(path.read_text(encoding="utf-8")))
                    except (OSError, ValueError) as e:
                        logger.warning("template_file_unreadable", path=str(path), error=str(e))
                        continue
                    tree[channel].setdefault(path.stem, {})[language_dir.name.lower()] = template
        return tree

    def load(self, channel: ChannelType, name: str, language: str) -> Template | None:
        path = self._path(channel, name, language)
        if not path.is_file():
            return None
        return parse_template(json.loads(path.read_text(encoding="utf-8")))

    def save(self, channel: ChannelType, name: str, language: str, template: Template) -> None:
        path = self._path(channel, name, language)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(serialize_template(template), ensure_ascii=False, indent=2),
                        encoding="utf-8")


class TemplateStore:
    """
    Template lookup backed by a TemplateSource.

    The cache is primed once, on first access, under a lock; later reads
    never touch the source. A failed prime leaves the store unprimed so
    the next access tries again. With caching disabled every lookup reads
    the source directly. Read failures are logged and reported as misses.
    """
    def __init__(self, source: TemplateSource | None = None, *, cache_enabled: bool = True) -> None:
        self._source = source or InMemoryTemplateSource.builtin()
        self._cache_enabled = cache_enabled
        self._cache: TemplateTree | None = None
        self._lock = threading.Lock()

    @property
    def source(self) -> TemplateSource:
        return self._source

    @property
    def cache_enabled(self) -> bool:
        return self._cache_enabled

    @property
    def is_primed(self) -> bool:
        return self._cache is not None

    def prime(self) -> bool:
        """Populate the cache if it is not already populated."""
        if self._cache is not None:
            return True
        with self._lock:
            if self._cache is not None:
                return True
            try:
                tree = self._source.load_all()
            except (OSError, ValueError) as e:
                logger.error("template_cache_prime_failed", source=type(self._source).__name__,
                             error=str(e))
                return False
            self._cache = tree
        logger.info("template_cache_primed", source=type(self._source).__name__,
                    templates=sum(len(langs) for names in tree.values() for langs in names.values()))
        return True

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None
        logger.debug("template_cache_invalidated")

    def _tree(self) -> TemplateTree:
        if not self._cache_enabled:
            try:
                return self._source.load_all()
            except (OSError, ValueError) as e:
                logger.warning("template_source_read_failed", error=str(e))
                return _empty_tree()
        if not self.prime():
            return _empty_tree()
        return self._cache  # type: ignore[return-value]

    def get(self, channel: ChannelType | str, name: str, language: str) -> Template | None:
        """Return the template for an exact (channel, name, language) key, or None."""
        channel = _coerce_channel(channel)
        language = language.lower()
        if self._cache_enabled:
            return self._tree()[channel].get(name, {}).get(language)
        try:
            return self._source.load(channel, name, language)
        except (OSError, ValueError) as e:
            logger.warning("template_read_failed", channel=channel.value, name=name,
                           language=language, error=str(e))
            return None

    def exists(self, channel: ChannelType | str, name: str) -> bool:
        return bool(self.languages_available(channel, name))

    def languages_available(self, channel: ChannelType | str, name: str) -> set[str]:
        channel = _coerce_channel(channel)
        return set(self._tree()[channel].get(name, {}))

    def names(self, channel: ChannelType | str) -> set[str]:
        return set(self._tree()[_coerce_channel(channel)])

    def save(self, channel: ChannelType | str, name: str, language: str, template: Template | Mapping[str, Any]) -> None:
        """Write a template through to the source and update the cache."""
        channel = _coerce_channel(channel)
        language = language.lower()
        parsed = parse_template(template)
        self._source.save(channel, name, language, parsed)
        with self._lock:
            if self._cache is not None:
                self._cache[channel].setdefault(name, {})[language] = parsed
        logger.info("template_saved", channel=channel.value, name=name, language=language)

    def list_templates(self, channel: ChannelType | str | None = None) -> list[TemplateDescriptor]:
        channels = [_coerce_channel(channel)] if channel is not None else list(ChannelType)
        tree = self._tree()
        return [
            TemplateDescriptor(
                channel=c,
                name=name,
                languages=sorted(tree[c][name]),
                has_canonical=CANONICAL_LANGUAGE in tree[c][name],
            )
            for c in channels
            for name in sorted(tree[c])
        ]

    def coverage(self, language: str) -> LanguageCoverage:
        """Count, per channel, how many template names exist in ``language``."""
        language = language.lower()
        tree = self._tree()
        channels: dict[ChannelType, ChannelCoverage] = {}
        for channel in ChannelType:
            names = sorted(tree[channel])
            missing = [n for n in names if language not in tree[channel][n]]
            total = len(names)
            available = total - len(missing)
            channels[channel] = ChannelCoverage(
                available=available,
                total=total,
                percentage=round(available / total * 100, 1) if total else 0.0,
                missing=missing,
            )
        return LanguageCoverage(language=language, channels=channels)
