"""Shared data models for the deployment pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from src.deploy_shared.constants import (
    SERVICE_APP,
    SERVICE_CACHE,
    SERVICE_DB,
    SERVICE_QUEUE,
    SERVICE_SCHEDULER,
)


class ErrorKind(str, Enum):
    """Classification of deployment failures."""
    TRANSPORT_ERROR = "TransportError"
    ARCHITECTURE_MISMATCH = "ArchitectureMismatch"
    HEALTH_CHECK_TIMEOUT = "HealthCheckTimeout"
    MIGRATION_FAILURE = "MigrationFailure"
    BACKUP_FAILURE = "BackupFailure"
    CACHE_REBUILD_FAILURE = "CacheRebuildFailure"
    BUILD_FAILURE = "BuildFailure"
    CONFIGURATION_ERROR = "ConfigurationError"
    TIMEOUT = "Timeout"
    INTERRUPTED = "Interrupted"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class DeploymentTarget:
    """The remote host a release is rolled onto.  Fixed per environment."""
    host: str
    user: str = "deploy"
    ssh_key: str = ""
    deploy_path: str = "/opt/kangbeef"
    backup_path: str = "/opt/kangbeef/backups"
    port: int = 22
    env_file: str = ".env"
    compose_file: str = "docker-compose.yml"
    project_name: str = "kangbeef"

    @property
    def destination(self) -> str:
        """``user@host`` as understood by ``ssh``."""
        return f"{self.user}@{self.host}" if self.user else self.host

    @property
    def env_file_path(self) -> str:
        """Absolute path of the environment file on the host."""
        if self.env_file.startswith("/"):
            return self.env_file
        return f"{self.deploy_path.rstrip('/')}/{self.env_file}"


@dataclass(frozen=True)
class ReleaseCandidate:
    """A concrete image to roll out.  Read-only once created."""
    registry: str
    image_name: str
    tag: str
    platform: str = ""
    build_number: int = 0

    @property
    def repository(self) -> str:
        if not self.registry:
            return self.image_name
        return f"{self.registry.rstrip('/')}/{self.image_name}"

    @property
    def image_ref(self) -> str:
        """Fully qualified ``registry/name:tag`` reference."""
        return f"{self.repository}:{self.tag}"


@dataclass(frozen=True)
class ServiceSet:
    """Named compose services and their start waves.

    Wave 1 is the database alone.  Wave 2 is the cache plus the
    application tier, started only once the database is healthy.
    """
    database: str = SERVICE_DB
    cache: str = SERVICE_CACHE
    app: str = SERVICE_APP
    queue: str = SERVICE_QUEUE
    scheduler: str = SERVICE_SCHEDULER

    @property
    def app_tier(self) -> list[str]:
        return [self.app, self.queue, self.scheduler]

    @property
    def waves(self) -> list[list[str]]:
        return [[self.database], [self.cache, *self.app_tier]]

    @property
    def all_services(self) -> list[str]:
        return [name for wave in self.waves for name in wave]


@dataclass
class CommandResult:
    """Outcome of one remote or local command."""
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class HealthCheckResult:
    """Outcome of one health-gate invocation."""
    target: str
    attempt_count: int = 0
    max_attempts: int = 0
    elapsed: float = 0.0
    passed: bool = False
    overridden: bool = False


@dataclass
class BackupArtifact:
    """A compressed database dump left on the host."""
    path: str
    timestamp: str
    compressed: bool = True


@dataclass
class RollbackAdvice:
    """Manual recovery guidance for an operator."""
    current_build: int
    previous_build: int | None = None
    previous_image: str = ""
    command: str = ""
    notes: list[str] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return self.previous_build is not None
