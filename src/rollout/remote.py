"""Remote command execution over SSH.

Every orchestration action is a single ``ssh`` invocation against the
deployment target.  Commands run from the deploy path with their inputs
exported explicitly, so nothing depends on the remote login shell state.
All subprocess calls capture stdout and stderr.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import subprocess

from src.deploy_shared.constants import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    SSH_TRANSPORT_EXIT_CODE,
)
from src.deploy_shared.exceptions import TransportError
from src.deploy_shared.models import CommandResult, DeploymentTarget
from src.deploy_shared.utils import env_prefix

logger = logging.getLogger(__name__)


def _stdin_kwargs(input_text: str | None) -> dict:
    """Feed *input_text* on stdin, or detach stdin when there is none."""
    if input_text is None:
        return {"stdin": subprocess.DEVNULL}
    return {"input": input_text}


def build_ssh_command(
    target: DeploymentTarget,
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
) -> list[str]:
    """Return the ``ssh`` argv prefix for *target*.

    ``BatchMode`` makes a missing key fail fast instead of prompting.
    """
    cmd = [
        "ssh",
        "-o", "BatchMode=yes",
        "-o", "StrictHostKeyChecking=accept-new",
        "-o", f"ConnectTimeout={connect_timeout}",
        "-o", "ServerAliveInterval=30",
        "-p", str(target.port),
    ]
    if target.ssh_key:
        cmd.extend(["-i", target.ssh_key])
    cmd.append(target.destination)
    return cmd


class RemoteExecutor:
    """Runs shell commands on the deployment target via ``ssh``."""

    def __init__(
        self,
        target: DeploymentTarget,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: int = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.target = target
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    def compose_remote_command(
        self, command: str, env: dict[str, str] | None = None
    ) -> str:
        """Wrap *command* so it runs from the deploy path with *env* exported."""
        parts = [f"cd {shlex.quote(self.target.deploy_path)}"]
        prefix = env_prefix(env).strip()
        if prefix:
            parts.append(f"export {prefix}")
        parts.append(command)
        return " && ".join(parts)

    def _run_sync(
        self,
        remote_command: str,
        input_text: str | None,
        timeout: float,
    ) -> CommandResult:
        """Run one ``ssh`` invocation synchronously.

        Raises:
            TransportError: ssh could not be started, timed out, or
                reported a connection failure (exit code 255).
        """
        cmd = build_ssh_command(self.target, self.connect_timeout) + [remote_command]
        logger.debug("Running on %s: %s", self.target.host, remote_command)
        try:
            completed = subprocess.run(
                cmd,
                **_stdin_kwargs(input_text),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise TransportError(
                f"Remote command timed out after {timeout}s on {self.target.host}",
                command=remote_command,
            ) from exc
        except OSError as exc:
            raise TransportError(
                f"Could not start ssh for {self.target.host}: {exc}",
                command=remote_command,
            ) from exc

        if completed.returncode == SSH_TRANSPORT_EXIT_CODE:
            raise TransportError(
                f"SSH session to {self.target.destination} failed: "
                f"{completed.stderr.strip() or 'exit code 255'}",
                command=remote_command,
            )
        return CommandResult(
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

    async def run(
        self,
        command: str,
        *,
        env: dict[str, str] | None = None,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run *command* on the target without blocking the event loop."""
        remote_command = self.compose_remote_command(command, env)
        return await asyncio.to_thread(
            self._run_sync,
            remote_command,
            input_text,
            timeout or self.command_timeout,
        )


class LocalExecutor:
    """Runs argv commands on the machine driving the deployment (image builds)."""

    def _run_sync(
        self,
        args: list[str],
        input_text: str | None,
        timeout: float | None,
    ) -> CommandResult:
        logger.debug("Running locally: %s", " ".join(args))
        try:
            completed = subprocess.run(
                args,
                **_stdin_kwargs(input_text),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
            )
        except OSError as exc:
            return CommandResult(returncode=127, stderr=str(exc))
        return CommandResult(
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

    async def run(
        self,
        args: list[str],
        *,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run *args* locally.

        Raises:
            subprocess.TimeoutExpired: when *timeout* elapses.
        """
        return await asyncio.to_thread(self._run_sync, args, input_text, timeout)
