"""Configuration dataclasses and loader for the deployment tool."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.deploy_shared.constants import (
    CACHE_COMMANDS,
    DEFAULT_APP_MAX_ATTEMPTS,
    DEFAULT_APP_PORT,
    DEFAULT_BUILD_RETRIES,
    DEFAULT_BUILD_TIMEOUT,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_DB_MAX_ATTEMPTS,
    DEFAULT_HEALTH_INTERVAL,
    DEFAULT_HEALTH_PATH,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_PIPELINE_TIMEOUT,
    DEFAULT_STOP_TIMEOUT,
    SERVICE_APP,
    SERVICE_CACHE,
    SERVICE_DB,
    SERVICE_QUEUE,
    SERVICE_SCHEDULER,
    STATE_DIR,
)
from src.deploy_shared.exceptions import ConfigurationError
from src.deploy_shared.models import DeploymentTarget, ServiceSet


@dataclass
class TargetConfig:
    """The remote host and the paths the deployment owns on it."""

    host: str = ""
    user: str = "deploy"
    port: int = 22
    ssh_key: str = ""
    deploy_path: str = "/opt/kangbeef"
    backup_path: str = "/opt/kangbeef/backups"
    env_file: str = ".env"
    compose_file: str = "docker-compose.yml"
    project_name: str = "kangbeef"
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT


@dataclass
class ImageConfig:
    """Where the release image lives and how it is built."""

    registry: str = ""
    image_name: str = ""
    tag_suffix: str = ""
    platform: str = ""
    build_context: str = "."
    dockerfile: str = "Dockerfile"
    pull_timeout: int = 900


@dataclass
class ServicesConfig:
    """Compose service names on the host."""

    database: str = SERVICE_DB
    cache: str = SERVICE_CACHE
    app: str = SERVICE_APP
    queue: str = SERVICE_QUEUE
    scheduler: str = SERVICE_SCHEDULER
    stop_timeout: int = DEFAULT_STOP_TIMEOUT


@dataclass
class HealthConfig:
    """Health gate settings."""

    interval: float = DEFAULT_HEALTH_INTERVAL
    db_max_attempts: int = DEFAULT_DB_MAX_ATTEMPTS
    app_max_attempts: int = DEFAULT_APP_MAX_ATTEMPTS
    health_path: str = DEFAULT_HEALTH_PATH
    app_port: int = DEFAULT_APP_PORT
    app_health_url: str = ""
    db_ping_command: str = "mysqladmin ping -h localhost --silent"


@dataclass
class BackupConfig:
    """Pre-migration database backup."""

    enabled: bool = True
    dump_timeout: int = 1800


@dataclass
class MigrationConfig:
    """Schema migration and cache rebuild."""

    enabled: bool = True
    timeout: int = 900
    cache_commands: list[str] = field(default_factory=lambda: list(CACHE_COMMANDS))


@dataclass
class BuildConfig:
    """Image build step."""

    timeout: int = DEFAULT_BUILD_TIMEOUT
    max_retries: int = DEFAULT_BUILD_RETRIES
    retry_delay: int = 10
    heartbeat_interval: int = DEFAULT_HEARTBEAT_INTERVAL


@dataclass
class DeployConfig:
    """Top-level configuration composing all sub-configs."""

    target: TargetConfig = field(default_factory=TargetConfig)
    image: ImageConfig = field(default_factory=ImageConfig)
    services: ServicesConfig = field(default_factory=ServicesConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    environment: str = "production"
    force: bool = False
    auto_rollback: bool = False
    pipeline_timeout: int = DEFAULT_PIPELINE_TIMEOUT
    output_dir: str = STATE_DIR

    def deployment_target(self, ssh_key: str = "") -> DeploymentTarget:
        """Freeze the target section into a :class:`DeploymentTarget`.

        Args:
            ssh_key: Key path injected at invocation time; overrides the
                file's ``target.ssh_key``.
        """
        if not self.target.host:
            raise ConfigurationError("target.host is required")
        t = self.target
        return DeploymentTarget(
            host=t.host,
            user=t.user,
            ssh_key=ssh_key or t.ssh_key,
            deploy_path=t.deploy_path,
            backup_path=t.backup_path,
            port=t.port,
            env_file=t.env_file,
            compose_file=t.compose_file,
            project_name=t.project_name,
        )

    def validate(self) -> None:
        """Reject numeric settings the pipeline cannot run with.

        Raises:
            ConfigurationError: a health interval, attempt count or
                timeout is out of range.
        """
        h = self.health
        if h.interval <= 0:
            raise ConfigurationError(f"health.interval must be positive, got {h.interval}")
        for key in ("db_max_attempts", "app_max_attempts"):
            value = getattr(h, key)
            if value < 1:
                raise ConfigurationError(f"health.{key} must be at least 1, got {value}")
        if self.services.stop_timeout < 0:
            raise ConfigurationError(
                f"services.stop_timeout must not be negative, got {self.services.stop_timeout}"
            )
        if self.pipeline_timeout <= 0:
            raise ConfigurationError(
                f"pipeline_timeout must be positive, got {self.pipeline_timeout}"
            )

    def service_set(self) -> ServiceSet:
        s = self.services
        return ServiceSet(
            database=s.database,
            cache=s.cache,
            app=s.app,
            queue=s.queue,
            scheduler=s.scheduler,
        )


_SECTIONS: dict[str, type] = {
    "target": TargetConfig,
    "image": ImageConfig,
    "services": ServicesConfig,
    "health": HealthConfig,
    "backup": BackupConfig,
    "migration": MigrationConfig,
    "build": BuildConfig,
}


def _pick(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter *data* to only keys accepted by *cls*."""
    valid = {f.name for f in cls.__dataclass_fields__.values()}
    return {k: v for k, v in data.items() if k in valid}


def load_deploy_config(path: Path | str | None = None) -> DeployConfig:
    """Load deployment configuration from a YAML file.

    Missing sections fall back to defaults.  Unknown keys are silently
    ignored so that forward-compatible config files work.

    Args:
        path: Path to config YAML.  If ``None`` or the file does not
              exist, returns full defaults.

    Raises:
        ConfigurationError: the file is not a YAML mapping or a value
            fails :meth:`DeployConfig.validate`.
    """
    if path is None:
        return DeployConfig()

    path = Path(path)
    if not path.exists():
        return DeployConfig()

    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")

    sections = {
        name: cls(**_pick(raw.get(name) or {}, cls)) for name, cls in _SECTIONS.items()
    }
    top_level = _pick(raw, DeployConfig)
    for key in _SECTIONS:
        top_level.pop(key, None)

    config = DeployConfig(**sections, **top_level)
    config.validate()
    return config
