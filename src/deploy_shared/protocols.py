"""Runtime-checkable protocols for command runners and readiness probes."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from src.deploy_shared.models import CommandResult


@runtime_checkable
class CommandRunner(Protocol):
    """Protocol for anything that executes shell commands on the target."""

    async def run(
        self,
        command: str,
        *,
        env: dict[str, str] | None = None,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run *command* and return its outcome.

        Args:
            command: Shell command line executed on the target.
            env: Variables exported before the command runs.
            input_text: Data written to the command's stdin.
            timeout: Upper bound in seconds for this command.

        Returns:
            The command's exit status and captured output.
        """
        ...


@runtime_checkable
class ReadinessProbe(Protocol):
    """Protocol for health-gate probes."""

    @property
    def name(self) -> str:
        """Human-readable target name (``db``, ``app``, ...)."""
        ...

    async def check(self) -> bool:
        """Return True when the target reports ready."""
        ...
