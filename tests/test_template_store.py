"""
Unit tests for the template store and its sources.
"""
import json
import threading

import pytest

from notification_dispatch.domain.channels import ChannelType
from notification_dispatch.domain.templates import (
    FileTemplateSource,
    InMemoryTemplateSource,
    StructuredTemplate,
    TemplateSource,
    TemplateStore,
    parse_template,
)


class CountingSource(TemplateSource):
    """Source that counts full loads."""

    def __init__(self, inner):
        self.inner = inner
        self.loads = 0

    def load_all(self):
        self.loads += 1
        return self.inner.load_all()


class BrokenSource(TemplateSource):
    """Source whose reads always fail."""

    def load_all(self):
        raise OSError("disk unavailable")

    def load(self, channel, name, language):
        raise OSError("disk unavailable")


class TestParseTemplate:
    """Tests for raw template conversion."""

    def test_string_template(self):
        assert parse_template("Hi {{userName}}") == "Hi {{userName}}"

    def test_mapping_becomes_structured(self):
        template = parse_template({"subject": "S", "body": "B", "preheader": "P"})
        assert isinstance(template, StructuredTemplate)
        assert template.subject == "S"
        assert template.as_dict()["preheader"] == "P"

    def test_unsupported_value(self):
        with pytest.raises(ValueError):
            parse_template(42)


class TestTemplateStoreLookup:
    """Tests for get, exists and languages_available."""

    def test_get_email_template(self, template_store):
        """Test built-in email templates are structured."""
        template = template_store.get(ChannelType.EMAIL, "welcome", "en")
        assert isinstance(template, StructuredTemplate)
        assert template.subject == "Welcome to {{serviceName}}!"

    def test_get_sms_template_is_string(self, template_store):
        template = template_store.get(ChannelType.SMS, "otp", "fr")
        assert isinstance(template, str)
        assert "{{otpCode}}" in template

    def test_get_missing_language(self, template_store):
        """Test a language without the template is a miss."""
        assert template_store.get(ChannelType.EMAIL, "password_reset", "es") is None

    def test_get_unknown_name(self, template_store):
        assert template_store.get(ChannelType.EMAIL, "nope", "en") is None

    def test_language_code_case_insensitive(self, template_store):
        assert template_store.get("email", "welcome", "ES") is not None

    def test_exists(self, template_store):
        assert template_store.exists(ChannelType.SMS, "welcome") is True
        assert template_store.exists(ChannelType.SMS, "password_reset") is False

    def test_languages_available(self, template_store):
        assert template_store.languages_available(ChannelType.EMAIL, "welcome") == {"en", "es", "fr"}
        assert template_store.languages_available(ChannelType.EMAIL, "password_reset") == {"en"}
        assert template_store.languages_available(ChannelType.EMAIL, "nope") == set()


class TestTemplateStoreCache:
    """Tests for the cache lifecycle."""

    def test_lazy_prime(self):
        """Test the source is not read until first access."""
        source = CountingSource(InMemoryTemplateSource.builtin())
        store = TemplateStore(source)
        assert store.is_primed is False
        assert source.loads == 0
        store.get(ChannelType.EMAIL, "welcome", "en")
        assert store.is_primed is True
        assert source.loads == 1

    def test_prime_happens_once(self):
        """Test repeated lookups reuse the primed cache."""
        source = CountingSource(InMemoryTemplateSource.builtin())
        store = TemplateStore(source)
        for _ in range(5):
            store.get(ChannelType.SMS, "otp", "en")
            store.exists(ChannelType.EMAIL, "welcome")
        assert store.prime() is True
        assert source.loads == 1

    def test_concurrent_prime_loads_once(self):
        """Test concurrent first access populates the cache a single time."""
        source = CountingSource(InMemoryTemplateSource.builtin())
        store = TemplateStore(source)
        threads = [threading.Thread(target=store.prime) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert source.loads == 1
        assert store.get(ChannelType.EMAIL, "otp", "es") is not None

    def test_invalidate_reprimes(self):
        source = CountingSource(InMemoryTemplateSource.builtin())
        store = TemplateStore(source)
        store.prime()
        store.invalidate()
        assert store.is_primed is False
        store.get(ChannelType.EMAIL, "welcome", "en")
        assert source.loads == 2

    def test_cache_disabled_reads_source_each_time(self):
        source = CountingSource(InMemoryTemplateSource.builtin())
        store = TemplateStore(source, cache_enabled=False)
        store.exists(ChannelType.EMAIL, "welcome")
        store.exists(ChannelType.EMAIL, "welcome")
        assert source.loads == 2
        assert store.is_primed is False

    def test_read_error_degrades_to_not_found(self):
        """Test a failing source never raises from lookups."""
        store = TemplateStore(BrokenSource())
        assert store.get(ChannelType.EMAIL, "welcome", "en") is None
        assert store.exists(ChannelType.EMAIL, "welcome") is False
        assert store.is_primed is False

    def test_read_error_without_cache(self):
        store = TemplateStore(BrokenSource(), cache_enabled=False)
        assert store.get(ChannelType.SMS, "otp", "en") is None
        assert store.languages_available(ChannelType.SMS, "otp") == set()


class TestTemplateStoreManagement:
    """Tests for save, list and coverage."""

    def test_save_updates_cache_and_source(self):
        source = InMemoryTemplateSource.builtin()
        store = TemplateStore(source)
        store.prime()
        store.save(ChannelType.EMAIL, "password_reset", "es",
                   {"subject": "Restablecer", "body": "Hola {{userName}}"})
        assert store.get(ChannelType.EMAIL, "password_reset", "es").subject == "Restablecer"
        assert source.load(ChannelType.EMAIL, "password_reset", "es") is not None

    def test_list_templates(self, template_store):
        descriptors = template_store.list_templates(ChannelType.SMS)
        assert [d.name for d in descriptors] == ["otp", "welcome"]
        assert all(d.has_canonical for d in descriptors)
        assert descriptors[0].languages == ["en", "es", "fr"]

    def test_list_all_channels(self, template_store):
        channels = {d.channel for d in template_store.list_templates()}
        assert channels == {ChannelType.EMAIL, ChannelType.SMS, ChannelType.PUSH}

    def test_coverage(self, template_store):
        """Test coverage counts templates per channel for a language."""
        coverage = template_store.coverage("es")
        email = coverage.channels[ChannelType.EMAIL]
        assert email.total == 3
        assert email.available == 2
        assert email.missing == ["password_reset"]
        assert email.percentage == pytest.approx(66.7)
        assert coverage.channels[ChannelType.SMS].percentage == 100.0

    def test_coverage_unknown_language(self, template_store):
        coverage = template_store.coverage("de")
        assert coverage.percentage == 0.0


class TestFileTemplateSource:
    """Tests for the JSON file tree source."""

    def _write(self, root, channel, language, name, value):
        path = root / channel / language / f"{name}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(value), encoding="utf-8")

    def test_load_tree(self, tmp_path):
        self._write(tmp_path, "email", "en", "welcome", {"subject": "Hi", "body": "Hello {{userName}}"})
        self._write(tmp_path, "sms", "de", "otp", "Code {{otpCode}}")
        store = TemplateStore(FileTemplateSource(tmp_path))
        assert store.get(ChannelType.EMAIL, "welcome", "en").body == "Hello {{userName}}"
        assert store.get(ChannelType.SMS, "otp", "de") == "Code {{otpCode}}"
        assert store.languages_available(ChannelType.SMS, "otp") == {"de"}

    def test_unreadable_file_skipped(self, tmp_path):
        """Test a corrupt file only hides that entry."""
        self._write(tmp_path, "sms", "en", "welcome", "Welcome")
        bad = tmp_path / "sms" / "en" / "otp.json"
        bad.write_text("{not json", encoding="utf-8")
        store = TemplateStore(FileTemplateSource(tmp_path))
        assert store.get(ChannelType.SMS, "welcome", "en") == "Welcome"
        assert store.get(ChannelType.SMS, "otp", "en") is None

    def test_missing_root_is_not_found(self, tmp_path):
        store = TemplateStore(FileTemplateSource(tmp_path / "absent"))
        assert store.get(ChannelType.EMAIL, "welcome", "en") is None

    def test_save_writes_file(self, tmp_path):
        store = TemplateStore(FileTemplateSource(tmp_path), cache_enabled=False)
        store.save(ChannelType.SMS, "welcome", "it", "Benvenuto {{userName}}")
        path = tmp_path / "sms" / "it" / "welcome.json"
        assert json.loads(path.read_text(encoding="utf-8")) == "Benvenuto {{userName}}"
        assert store.get(ChannelType.SMS, "welcome", "it") == "Benvenuto {{userName}}"

    def test_direct_read_of_corrupt_file(self, tmp_path):
        """Test uncached lookups also degrade to not found."""
        path = tmp_path / "email" / "en" / "welcome.json"
        path.parent.mkdir(parents=True)
        path.write_text("[1, 2", encoding="utf-8")
        store = TemplateStore(FileTemplateSource(tmp_path), cache_enabled=False)
        assert store.get(ChannelType.EMAIL, "welcome", "en") is None

    @pytest.mark.parametrize("name,language", [
        ("../../secrets", "en"),
        ("welcome", "../en"),
        ("nested/welcome", "en"),
        ("..", "en"),
    ])
    def test_path_components_stay_under_root(self, tmp_path, name, language):
        """Test names and languages cannot escape the template root."""
        root = tmp_path / "templates"
        outside = tmp_path / "secrets.json"
        outside.write_text('"leaked"', encoding="utf-8")
        store = TemplateStore(FileTemplateSource(root), cache_enabled=False)
        assert store.get(ChannelType.SMS, name, language) is None
        with pytest.raises(ValueError):
            store.save(ChannelType.SMS, name, language, "Hi")
        assert not root.exists()
