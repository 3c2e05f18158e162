"""Docker Compose stack control on the deployment target.

Manages the lifecycle of the compose services on the remote host: a
graceful stop of the whole stack, wave-based start, running-service
inspection, and log retrieval for failure summaries.
"""

from __future__ import annotations

import logging
import shlex

from src.deploy_shared.constants import DEFAULT_STOP_TIMEOUT, IMAGE_ENV_VAR
from src.deploy_shared.models import (
    CommandResult,
    DeploymentTarget,
    ReleaseCandidate,
    ServiceSet,
)
from src.deploy_shared.protocols import CommandRunner

logger = logging.getLogger(__name__)

# stderr fragments that mean "nothing to stop"
_ALREADY_STOPPED_MARKERS = (
    "no such service",
    "not running",
    "no containers",
    "no resource found",
    "no configuration file provided",
)


class StackController:
    """Starts, stops and inspects the named services of the stack."""

    def __init__(
        self,
        runner: CommandRunner,
        target: DeploymentTarget,
        services: ServiceSet | None = None,
        stop_timeout: int = DEFAULT_STOP_TIMEOUT,
    ) -> None:
        self.runner = runner
        self.target = target
        self.services = services or ServiceSet()
        self.stop_timeout = stop_timeout

    def compose(self, *args: str) -> str:
        """Build a ``docker compose`` command line for this project."""
        cmd = [
            "docker", "compose",
            "-f", self.target.compose_file,
            "-p", self.target.project_name,
            *args,
        ]
        return " ".join(shlex.quote(part) for part in cmd)

    async def _run(
        self,
        *args: str,
        release: ReleaseCandidate | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        env = {IMAGE_ENV_VAR: release.image_ref} if release is not None else None
        return await self.runner.run(self.compose(*args), env=env, timeout=timeout)

    async def stop_all(self) -> bool:
        """Gracefully stop the whole stack.

        A stack that is already stopped counts as success.  Any other
        non-zero exit is logged and tolerated; transport errors propagate.

        Returns:
            True when the stop command succeeded or there was nothing to stop.
        """
        logger.info(
            "Stopping stack '%s' (timeout %ss)",
            self.target.project_name, self.stop_timeout,
        )
        result = await self._run("stop", "--timeout", str(self.stop_timeout))
        if result.ok:
            return True
        stderr = result.stderr.lower()
        if any(marker in stderr for marker in _ALREADY_STOPPED_MARKERS):
            logger.info("Stack already stopped")
            return True
        logger.warning(
            "Stopping stack returned %d, continuing: %s",
            result.returncode, result.stderr.strip(),
        )
        return False

    async def start_wave(
        self, services: list[str], release: ReleaseCandidate
    ) -> CommandResult:
        """Start *services* with ``docker compose up -d``.

        Idempotent: services that are already running are left as they
        are.  A non-zero exit is logged and returned, not raised; whether
        the services actually came up is for the health gate to decide.
        """
        logger.info("Starting services %s with %s", ", ".join(services), release.image_ref)
        result = await self._run("up", "-d", "--remove-orphans", *services, release=release)
        if not result.ok:
            logger.error(
                "Starting %s exited with %d: %s",
                ", ".join(services), result.returncode, result.stderr.strip(),
            )
        return result

    async def start_database(self, release: ReleaseCandidate) -> CommandResult:
        """Wave 1: the database alone."""
        return await self.start_wave([self.services.database], release)

    async def start_app_tier(self, release: ReleaseCandidate) -> CommandResult:
        """Wave 2: cache, application, queue worker and scheduler."""
        return await self.start_wave(self.services.waves[1], release)

    async def running_services(self) -> set[str]:
        """Names of the services currently in the ``running`` state."""
        result = await self._run("ps", "--status", "running", "--services")
        if not result.ok:
            logger.warning("Could not list running services: %s", result.stderr.strip())
            return set()
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    async def is_running(self, service: str) -> bool:
        return service in await self.running_services()

    async def exec_in(
        self,
        service: str,
        command: str,
        secret_env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run *command* inside a running service container (no TTY).

        Values in *secret_env* are written to the remote shell's stdin and
        read into variables there, so they never appear on a command line.
        """
        args = ["exec", "-T"]
        reads: list[str] = []
        for key in secret_env or {}:
            args.extend(["-e", key])
            reads.append(f"IFS= read -r {key} && export {key}")
        line = f"{self.compose(*args, service)} {command}"
        if reads:
            line = " && ".join([*reads, line])
        input_text = None
        if secret_env:
            input_text = "".join(f"{value}\n" for value in secret_env.values())
        return await self.runner.run(line, input_text=input_text, timeout=timeout)

    async def prune_images(self) -> bool:
        """Remove dangling images left behind by the previous release."""
        result = await self.runner.run("docker image prune -f")
        if not result.ok:
            logger.warning("Image prune failed: %s", result.stderr.strip())
        return result.ok

    async def service_logs(self, service: str, tail: int = 50) -> str:
        """Retrieve recent logs for *service*."""
        result = await self._run("logs", "--no-color", "--tail", str(tail), service)
        return result.stdout or result.stderr
