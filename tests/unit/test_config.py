"""Tests for env-driven Settings and the frozen configs built from them."""

from __future__ import annotations

from pathlib import Path

import pytest

from deployplan.config import DEFAULT_PLAN, Settings


@pytest.fixture
def settings(monkeypatch) -> Settings:
    for name in ("ENVIRONMENT", "LOG_LEVEL", "DEBUG", "MAX_ATTEMPTS", "STORE_PATH", "CHAIN_ID"):
        monkeypatch.delenv(f"DEPLOYPLAN_{name}", raising=False)
    return Settings(_env_file=None)


class TestDefaults:
    def test_defaults(self, settings):
        assert settings.environment == "local"
        assert settings.chain_id == 31337
        assert settings.plan == DEFAULT_PLAN
        assert settings.store_path == Path(".deployplan/deployments.db")
        assert settings.accounts_path is None

    def test_effective_log_level(self, settings):
        assert settings.effective_log_level == "INFO"
        assert Settings(_env_file=None, log_level="warning").effective_log_level == "WARNING"
        assert Settings(_env_file=None, debug=True).effective_log_level == "DEBUG"


class TestEnvOverrides:
    def test_prefixed_variables_override(self, monkeypatch):
        monkeypatch.setenv("DEPLOYPLAN_ENVIRONMENT", "staging")
        monkeypatch.setenv("DEPLOYPLAN_MAX_ATTEMPTS", "6")
        monkeypatch.setenv("DEPLOYPLAN_CHAIN_ID", "5")
        settings = Settings(_env_file=None)
        assert settings.environment == "staging"
        assert settings.max_attempts == 6
        assert settings.chain_id == 5

    def test_env_file_is_read(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DEPLOYPLAN_ENVIRONMENT", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("DEPLOYPLAN_ENVIRONMENT=localhost\nUNRELATED=1\n")
        assert Settings(_env_file=env_file).environment == "localhost"


class TestDerivedConfig:
    def test_environment_config(self, settings):
        env = settings.environment_config()
        assert env.name == "local"
        assert env.chain_id == 31337
        assert settings.environment_config("sepolia").name == "sepolia"

    def test_environment_config_is_frozen(self, settings):
        env = settings.environment_config()
        with pytest.raises(Exception):
            env.name = "other"

    def test_engine_config(self, settings):
        cfg = settings.engine_config(["Oracle"])
        assert cfg.redeploy == frozenset({"Oracle"})
        assert cfg.retry.max_attempts == settings.max_attempts
        assert cfg.retry.delay_for(1) == settings.backoff_base_seconds
        assert cfg.network_timeout_seconds == settings.network_timeout_seconds
        assert settings.engine_config().redeploy == frozenset()
