"""
Tests for environment-backed settings.
"""
import pytest
from pydantic import ValidationError

from src.shared.config import EngineSettings, HttpSettings, LoggingSettings, get_settings, validate_configuration


class TestSettings:
    """Test settings defaults and validation."""

    def test_engine_defaults(self, monkeypatch):
        """Defaults apply without environment overrides."""
        monkeypatch.delenv("RECIPE_PAGE_LOAD_TIMEOUT_MS", raising=False)

        engine = EngineSettings(_env_file=None)

        assert engine.page_load_timeout_ms == 30000
        assert engine.default_wait_policy == "dom_ready"
        assert engine.max_loop_iterations == 500

    def test_environment_override(self, monkeypatch):
        """RECIPE_ variables override defaults."""
        monkeypatch.setenv("RECIPE_SYSTEM_LANGUAGE", "hr")
        monkeypatch.setenv("RECIPE_MAX_LOOP_ITERATIONS", "25")

        engine = EngineSettings(_env_file=None)

        assert engine.system_language == "hr"
        assert engine.max_loop_iterations == 25

    def test_invalid_wait_policy(self):
        """Unknown wait policies are rejected."""
        with pytest.raises(ValidationError):
            EngineSettings(default_wait_policy="eventually")

    def test_invalid_values(self):
        """Out-of-range values are rejected."""
        with pytest.raises(ValidationError):
            EngineSettings(max_loop_iterations=0)
        with pytest.raises(ValidationError):
            HttpSettings(timeout=0)
        with pytest.raises(ValidationError):
            LoggingSettings(format="xml")

    def test_global_settings(self):
        """The global settings validate cleanly by default."""
        assert get_settings().engine.min_page_load_timeout_ms <= get_settings().engine.page_load_timeout_ms
        assert validate_configuration() == []
