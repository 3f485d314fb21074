"""
Tests for settings and logging configuration.
"""

import logging
import os

import pytest
from dealpilot.config import Settings, configure_logging
from dealpilot.errors import ConfigurationError
from pydantic import ValidationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("DEALPILOT_"):
            monkeypatch.delenv(key)


def make_settings(**kwargs):
    return Settings(_env_file=None, **kwargs)


class TestSettings:
    def test_defaults(self):
        settings = make_settings()

        assert settings.provider == "gemini"
        assert settings.primary_model == "gemini-2.5-flash"
        assert settings.step_budget == 5
        assert settings.failover_delay == 0.0
        assert settings.store_dir is None
        assert settings.log_level is None

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DEALPILOT_PROVIDER", "openai")
        monkeypatch.setenv("DEALPILOT_PRIMARY_API_KEY", "sk-1")
        monkeypatch.setenv("DEALPILOT_STEP_BUDGET", "3")

        settings = make_settings()

        assert settings.provider == "openai"
        assert settings.step_budget == 3
        assert settings.primary_api_key.get_secret_value() == "sk-1"

    def test_reads_env_file(self, temp_dir):
        env_file = temp_dir / ".env"
        env_file.write_text("DEALPILOT_PRIMARY_MODEL=gemini-2.0-flash\n", encoding="utf-8")

        settings = Settings(_env_file=env_file)

        assert settings.primary_model == "gemini-2.0-flash"

    def test_rejects_invalid_values(self):
        with pytest.raises(ValidationError):
            make_settings(step_budget=0)
        with pytest.raises(ValidationError):
            make_settings(provider="palm")

    def test_primary_credential(self):
        credential = make_settings(primary_api_key="k-1").primary_credential()
        assert credential.api_key.get_secret_value() == "k-1"
        assert credential.model == "gemini-2.5-flash"

    @pytest.mark.parametrize("key", [None, ""])
    def test_missing_primary_key(self, key):
        with pytest.raises(ConfigurationError, match="DEALPILOT_PRIMARY_API_KEY"):
            make_settings(primary_api_key=key).primary_credential()

    def test_secondary_credential_is_optional(self):
        assert make_settings(primary_api_key="k-1").secondary_credential() is None

    def test_secondary_model_defaults_to_primary(self):
        settings = make_settings(
            primary_api_key="k-1", primary_model="m-1", secondary_api_key="k-2"
        )

        credential = settings.secondary_credential()

        assert credential.api_key.get_secret_value() == "k-2"
        assert credential.model == "m-1"

    def test_secondary_model_override(self):
        settings = make_settings(secondary_api_key="k-2", secondary_model="m-2")
        assert settings.secondary_credential().model == "m-2"


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def restore_logger(self):
        logger = logging.getLogger("dealpilot")
        handlers, level = list(logger.handlers), logger.level
        yield
        logger.handlers = handlers
        logger.setLevel(level)

    def test_adds_one_stream_handler(self):
        logger = configure_logging("debug")
        configure_logging("info")

        stream_handlers = [
            h for h in logger.handlers if isinstance(h, logging.StreamHandler)
        ]
        assert len(stream_handlers) == 1
        assert logger.level == logging.INFO
