"""Tests for settings loading and logging setup."""

import logging

from mantis_mcp.config import DEFAULT_API_URL, Settings, load_settings
from mantis_mcp.logging_setup import setup_logging


class TestLoadSettings:

    def test_defaults(self):
        settings = load_settings({})

        assert settings.mantis_api_url == DEFAULT_API_URL
        assert settings.mantis_api_key is None
        assert settings.cache_enabled is True
        assert settings.cache_ttl_seconds == 300
        assert settings.enable_soap is False
        assert not settings.is_configured

    def test_values_from_environment(self):
        settings = load_settings({
            "MANTIS_API_URL": "https://mantis.example.com/api/rest/",
            "MANTIS_API_KEY": "abc",
            "CACHE_ENABLED": "false",
            "CACHE_TTL_SECONDS": "60",
            "ENABLE_SOAP": "true",
            "LOG_LEVEL": "warn",
        })

        assert settings.mantis_api_url == "https://mantis.example.com/api/rest"
        assert settings.is_configured
        assert settings.cache_enabled is False
        assert settings.cache_ttl_seconds == 60
        assert settings.enable_soap is True
        assert settings.log_level == "WARNING"

    def test_invalid_values_fall_back_to_defaults(self, caplog):
        with caplog.at_level(logging.WARNING, logger="mantis_mcp.config"):
            settings = load_settings({"MANTIS_API_KEY": "abc", "CACHE_TTL_SECONDS": "soon"})

        assert settings == Settings()
        assert "Configuration validation failed" in caplog.text

    def test_missing_key_is_reported(self, caplog):
        with caplog.at_level(logging.WARNING, logger="mantis_mcp.config"):
            load_settings({"MANTIS_API_URL": "https://mantis.example.com/api/rest"})

        assert "MANTIS_API_KEY is not set" in caplog.text


class TestSetupLogging:

    def test_console_only_by_default(self):
        logger = setup_logging(Settings(log_level="DEBUG"))

        assert logger.level == logging.DEBUG
        assert [type(h) for h in logger.handlers] == [logging.StreamHandler]

    def test_file_logging_writes_combined_and_error_logs(self, tmp_path):
        log_dir = tmp_path / "logs"
        logger = setup_logging(Settings(enable_file_logging=True, log_dir=str(log_dir)))

        logger.error("something broke")
        for handler in logger.handlers:
            handler.flush()

        names = sorted(p.name for p in log_dir.iterdir())
        assert len(names) == 2
        assert names[0].startswith("mantis-mcp-server-error.")
        assert names[1].startswith("mantis-mcp-server.")

        setup_logging(Settings())
