"""Environment-driven settings using pydantic-settings.

Secrets (registry password, SSH key path) only ever enter a run through
these settings; the YAML deploy config never holds them.
"""
from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class SharedConfig(BaseSettings):
    """Base configuration shared by every entry point."""
    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    @property
    def json_logs(self) -> bool:
        return self.log_format.lower() != "text"


class DeploySettings(SharedConfig):
    """Invocation-time settings and injected secrets for a deployment."""
    config_path: str = Field(default="deploy.yaml", validation_alias="DEPLOY_CONFIG")
    ssh_key_path: str = Field(default="", validation_alias="DEPLOY_SSH_KEY")
    registry_username: str = Field(default="", validation_alias="REGISTRY_USERNAME")
    registry_password: SecretStr = Field(
        default=SecretStr(""), validation_alias="REGISTRY_PASSWORD"
    )

    @property
    def has_registry_credentials(self) -> bool:
        return bool(self.registry_username and self.registry_password.get_secret_value())
