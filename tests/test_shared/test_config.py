"""Tests for environment-driven settings."""
from __future__ import annotations

import pytest

from src.shared.config import DeploySettings, SharedConfig


class TestSharedConfig:
    def test_default_values(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        config = SharedConfig()
        assert config.log_level == "info"
        assert config.json_logs is True

    def test_env_override_log_level(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        config = SharedConfig()
        assert config.log_level == "debug"

    def test_text_log_format(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LOG_FORMAT", "text")
        assert SharedConfig().json_logs is False


class TestDeploySettings:
    def test_default_values(self, monkeypatch: pytest.MonkeyPatch):
        for name in ("DEPLOY_CONFIG", "DEPLOY_SSH_KEY", "REGISTRY_USERNAME", "REGISTRY_PASSWORD"):
            monkeypatch.delenv(name, raising=False)
        settings = DeploySettings()
        assert settings.config_path == "deploy.yaml"
        assert settings.ssh_key_path == ""
        assert settings.has_registry_credentials is False

    def test_secrets_from_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("REGISTRY_USERNAME", "ci-bot")
        monkeypatch.setenv("REGISTRY_PASSWORD", "hunter2-token")
        monkeypatch.setenv("DEPLOY_SSH_KEY", "/keys/deploy")
        settings = DeploySettings()
        assert settings.registry_username == "ci-bot"
        assert settings.registry_password.get_secret_value() == "hunter2-token"
        assert settings.ssh_key_path == "/keys/deploy"
        assert settings.has_registry_credentials is True

    def test_password_hidden_in_repr(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("REGISTRY_PASSWORD", "hunter2-token")
        settings = DeploySettings()
        assert "hunter2-token" not in repr(settings)
        assert "hunter2-token" not in str(settings.model_dump())
