"""
Settings tests
"""
import pytest

from lead_automation.config import EngineSettings


class TestEngineSettings:

    def test_defaults_fit_inside_lease(self):
        settings = EngineSettings()

        assert settings.openai_call_budget == 90.0
        assert settings.openai_call_budget < settings.claim_lease_seconds

    def test_generation_outliving_lease_is_rejected(self):
        with pytest.raises(ValueError, match="claim lease"):
            EngineSettings(claim_lease_seconds=60, openai_timeout_seconds=30.0, openai_max_retries=1)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CLAIM_LEASE_SECONDS", "600")
        monkeypatch.setenv("OPENAI_TIMEOUT_SECONDS", "45.5")
        monkeypatch.setenv("OPENAI_MAX_RETRIES", "1")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = EngineSettings.from_env(dotenv=False)

        assert settings.claim_lease_seconds == 600
        assert settings.openai_timeout_seconds == 45.5
        assert settings.openai_max_retries == 1
        assert settings.log_level == "DEBUG"

    def test_from_env_rejects_slow_generation(self, monkeypatch):
        monkeypatch.setenv("CLAIM_LEASE_SECONDS", "60")
        monkeypatch.setenv("OPENAI_TIMEOUT_SECONDS", "120")

        with pytest.raises(ValueError):
            EngineSettings.from_env(dotenv=False)
