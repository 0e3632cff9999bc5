"""Tests for centralized Settings, startup validation, and get_settings cache.

Covers: defaults, env-override, the production configuration gate, dev-mode
warnings, and lru_cache behavior.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from quotation.config import Settings, get_settings, validate_settings

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    """Clear get_settings lru_cache before each test."""
    get_settings.cache_clear()


def _complete(**overrides) -> Settings:
    values = {
        "pricing_engine_url": "https://pricing.example.test/v1/price",
        "delivery_url": "https://relay.example.test/send",
        "document_service_url": "https://docs.example.test/render",
        "api_tokens": {"s3cr3t-bearer": "agent-42"},
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[call-arg]


# ---------------------------------------------------------------------------
# Settings defaults
# ---------------------------------------------------------------------------

class TestSettingsDefaults:
    """Verify that Settings fields have the expected default values."""

    def test_settings_defaults(self) -> None:
        s = Settings(_env_file=None)  # type: ignore[call-arg]

        assert s.production is False
        assert s.port == 8000
        assert s.db_path == Path("data/quotation.db")
        assert s.pricing_completeness_threshold == 0.8
        assert s.block_unchanged_reanalysis is False
        assert s.upstream_timeout_seconds == 15.0
        assert s.upstream_max_retries == 1
        assert s.token_map() == {}

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PRODUCTION", "true")
        monkeypatch.setenv("PORT", "9090")
        monkeypatch.setenv("BLOCK_UNCHANGED_REANALYSIS", "1")
        monkeypatch.setenv("API_TOKENS", '{"tok": "agent-42"}')

        s = Settings(_env_file=None)  # type: ignore[call-arg]

        assert s.production is True
        assert s.port == 9090
        assert s.block_unchanged_reanalysis is True
        assert s.token_map() == {"tok": "agent-42"}

    def test_tokens_are_masked(self) -> None:
        s = _complete()
        assert "s3cr3t-bearer" not in repr(s)
        assert "s3cr3t-bearer" not in str(s.model_dump())
        assert s.token_map() == {"s3cr3t-bearer": "agent-42"}

    def test_tokens_accept_a_json_string(self) -> None:
        s = _complete(api_tokens='{"tok-1": "agent-1", "tok-2": "agent-2"}')
        assert s.token_map() == {"tok-1": "agent-1", "tok-2": "agent-2"}

    @pytest.mark.parametrize("raw", ["not json", "[\"tok\"]", '{"tok": 42}'])
    def test_malformed_tokens_rejected_without_echoing_them(self, raw: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            _complete(api_tokens=raw)
        assert raw not in str(exc_info.value)

    def test_trailing_slash_stripped_from_urls(self) -> None:
        s = _complete(pricing_engine_url="https://pricing.example.test/v1/")
        assert s.pricing_engine_url == "https://pricing.example.test/v1"

    def test_threshold_must_be_a_fraction(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, pricing_completeness_threshold=1.5)  # type: ignore[call-arg]


# ---------------------------------------------------------------------------
# Startup validation
# ---------------------------------------------------------------------------

class TestValidateSettings:
    """Verify validate_settings behaviour in production and dev modes."""

    def test_production_missing_collaborators_exits(self) -> None:
        settings = _complete(production=True, delivery_url="")

        with pytest.raises(SystemExit) as exc_info:
            validate_settings(settings)

        assert exc_info.value.code == 1

    def test_production_without_tokens_exits(self) -> None:
        with pytest.raises(SystemExit):
            validate_settings(_complete(production=True, api_tokens={}))

    def test_production_complete_passes(self) -> None:
        # Should NOT raise or exit
        validate_settings(_complete(production=True))

    def test_dev_mode_warns_without_exiting(self) -> None:
        settings = Settings(_env_file=None, production=False)  # type: ignore[call-arg]

        # Should NOT raise or exit
        validate_settings(settings)


# ---------------------------------------------------------------------------
# get_settings cache
# ---------------------------------------------------------------------------

class TestGetSettingsCached:
    """Verify lru_cache on get_settings."""

    def test_get_settings_cached(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Calling get_settings() twice returns the exact same object."""
        monkeypatch.delenv("PRODUCTION", raising=False)

        first = get_settings()
        second = get_settings()

        assert first is second
