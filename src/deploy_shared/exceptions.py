"""Custom exceptions for the deployment pipeline.

Every error carries an :class:`ErrorKind`.  ``overridable`` errors may be
downgraded to a warning by the operator's force flag; the others always
abort the run.  Backup and cache-rebuild failures are never fatal and are
caught by the stage that raises them.
"""

from __future__ import annotations

from src.deploy_shared.models import ErrorKind


class DeployError(Exception):
    """Base exception for all deployment errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    overridable: bool = False


class ConfigurationError(DeployError):
    """Raised for configuration issues (missing host, bad build number, ...)."""

    kind = ErrorKind.CONFIGURATION_ERROR


class TransportError(DeployError):
    """Raised when the remote shell session itself fails."""

    kind = ErrorKind.TRANSPORT_ERROR

    def __init__(self, message: str, command: str = "") -> None:
        self.command = command
        super().__init__(message)


class ArchitectureMismatchError(DeployError):
    """Raised when the image architecture disagrees with the host."""

    kind = ErrorKind.ARCHITECTURE_MISMATCH

    def __init__(
        self,
        host_arch: str,
        image_arch: str,
        image_ref: str = "",
        pull_failed: bool = False,
    ) -> None:
        self.host_arch = host_arch
        self.image_arch = image_arch
        self.image_ref = image_ref
        self.pull_failed = pull_failed
        message = (
            f"Image {image_ref or '<unknown>'} is built for '{image_arch or 'unknown'}' "
            f"but the host reports '{host_arch or 'unknown'}'"
        )
        if pull_failed:
            message += (
                "; docker pull failed, check that the tag exists and the registry is reachable"
            )
        super().__init__(message)


class HealthCheckTimeoutError(DeployError):
    """Raised when a health gate exhausts its attempts."""

    kind = ErrorKind.HEALTH_CHECK_TIMEOUT
    overridable = True

    def __init__(self, target: str, attempts: int, elapsed: float) -> None:
        self.target = target
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"Health check for '{target}' failed after {attempts} attempts "
            f"({elapsed:.1f}s)"
        )


class MigrationFailureError(DeployError):
    """Raised when schema migrations fail."""

    kind = ErrorKind.MIGRATION_FAILURE
    overridable = True


class BackupFailureError(DeployError):
    """Raised when a database dump cannot be produced.  Never fatal."""

    kind = ErrorKind.BACKUP_FAILURE


class CacheRebuildFailureError(DeployError):
    """Raised when a framework cache cannot be rebuilt.  Never fatal."""

    kind = ErrorKind.CACHE_REBUILD_FAILURE

    def __init__(self, command: str, detail: str = "") -> None:
        self.command = command
        super().__init__(f"'{command}' failed: {detail}" if detail else f"'{command}' failed")


class BuildFailureError(DeployError):
    """Raised when the image build fails after all retries."""

    kind = ErrorKind.BUILD_FAILURE

    def __init__(self, image_ref: str = "", attempts: int = 0, message: str = "") -> None:
        self.image_ref = image_ref
        self.attempts = attempts
        super().__init__(
            message or f"Build of '{image_ref}' failed after {attempts} attempt(s)"
        )


class PhaseTimeoutError(DeployError):
    """Raised when a stage or the whole run exceeds its timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, phase_name: str, timeout: float) -> None:
        self.phase_name = phase_name
        self.timeout = timeout
        super().__init__(f"Phase '{phase_name}' timed out after {timeout}s")


class DeploymentInterruptedError(DeployError):
    """Raised when a shutdown signal stops the run between stages."""

    kind = ErrorKind.INTERRUPTED
