"""Tests for environment-driven settings."""

from pydantic import ValidationError
import pytest

from converter_api.config import Environment, Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.dispatch_mode == "inline"
        assert settings.task_ttl_seconds == settings.task_ttl_hours * 3600
        assert settings.max_retries >= 0

    def test_choices_are_normalized(self):
        settings = Settings(_env_file=None, conversion_backend=" Remote_API ", dispatch_mode="QUEUE")

        assert settings.conversion_backend == "remote_api"
        assert settings.dispatch_mode == "queue"

    @pytest.mark.parametrize(
        "field, value",
        [("conversion_backend", "ftp"), ("dispatch_mode", "cron"), ("performance_mode", "turbo")],
    )
    def test_invalid_choices(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})

    def test_production_disables_debug_and_reload(self):
        settings = Settings(
            _env_file=None, environment=Environment.PRODUCTION, debug=True, reload=True
        )

        assert settings.debug is False
        assert settings.reload is False
        assert settings.is_production()

    def test_cors_origins_from_env(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")

        settings = Settings(_env_file=None)

        assert settings.cors_origins == ["https://a.example", "https://b.example"]

    def test_production_cors_drops_wildcard(self):
        settings = Settings(
            _env_file=None,
            environment=Environment.PRODUCTION,
            cors_origins=["*", "https://app.example"],
        )

        assert settings.get_cors_config()["allow_origins"] == ["https://app.example"]
