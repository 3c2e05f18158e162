"""Shared test fixtures for the deployment test suite."""
from __future__ import annotations

import logging
from typing import Any, Union

import pytest

from src.deploy_orchestrator.config import DeployConfig, HealthConfig, ImageConfig, TargetConfig
from src.deploy_shared.models import CommandResult, DeploymentTarget, ReleaseCandidate
from src.rollout.stack_controller import StackController
from src.shared.config import DeploySettings

ENV_FILE = """\
APP_NAME=Kangbeef
APP_ENV=production
DB_CONNECTION=mysql
DB_HOST=db
DB_DATABASE=kangbeef
DB_USERNAME=kangbeef
DB_PASSWORD="s3cret-db-pass"
"""

Scripted = Union[CommandResult, BaseException]


class FakeRunner:
    """Scripted stand-in for the remote executor.

    ``on(fragment, *results)`` registers replies for any command that
    contains *fragment*.  The most recently registered matching rule
    wins.  Results are consumed in order and the last one repeats; an
    exception instance is raised instead of returned.  Unmatched
    commands succeed with empty output.
    """

    def __init__(self) -> None:
        self._rules: list[tuple[str, list[Scripted]]] = []
        self.calls: list[dict[str, Any]] = []

    def on(self, fragment: str, *results: Scripted) -> "FakeRunner":
        self._rules.append((fragment, list(results)))
        return self

    def ok(self, fragment: str, stdout: str = "") -> "FakeRunner":
        return self.on(fragment, CommandResult(0, stdout, ""))

    def fail(self, fragment: str, stderr: str = "failed", code: int = 1) -> "FakeRunner":
        return self.on(fragment, CommandResult(code, "", stderr))

    async def run(self, command, *, env=None, input_text=None, timeout=None) -> CommandResult:
        self.calls.append(
            {"command": command, "env": env, "input_text": input_text, "timeout": timeout}
        )
        for fragment, results in reversed(self._rules):
            if fragment in command:
                result = results.pop(0) if len(results) > 1 else results[0]
                if isinstance(result, BaseException):
                    raise result
                return result
        return CommandResult(0, "", "")

    @property
    def commands(self) -> list[str]:
        return [call["command"] for call in self.calls]

    def matching(self, fragment: str) -> list[str]:
        return [c for c in self.commands if fragment in c]

    def count(self, fragment: str) -> int:
        return len(self.matching(fragment))

    def index_of(self, fragment: str, start: int = 0) -> int:
        """Index of the first command at or after *start* containing *fragment*."""
        for i, command in enumerate(self.commands[start:], start):
            if fragment in command:
                return i
        raise AssertionError(f"No command containing {fragment!r}; ran {self.commands}")


def healthy_host(runner: FakeRunner, arch: str = "x86_64", image_arch: str = "amd64") -> FakeRunner:
    """Script a host on which every stage succeeds."""
    runner.ok("uname -m", f"{arch}\n")
    runner.ok("docker image inspect", f"{image_arch}\n")
    runner.ok("cat /opt/kangbeef/.env", ENV_FILE)
    runner.ok("--status running", "db\nredis\napp\nqueue\nscheduler\n")
    return runner


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Undo ``setup_logging`` so caplog sees records in every test."""
    yield
    logger = logging.getLogger("src")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def target() -> DeploymentTarget:
    return DeploymentTarget(host="store.example.com")


@pytest.fixture
def release() -> ReleaseCandidate:
    return ReleaseCandidate(
        registry="registry.example.com",
        image_name="kangbeef-store",
        tag="42",
        build_number=42,
    )


@pytest.fixture
def stack(fake_runner, target) -> StackController:
    return StackController(fake_runner, target)


@pytest.fixture
def deploy_config(tmp_path) -> DeployConfig:
    return DeployConfig(
        target=TargetConfig(host="store.example.com"),
        image=ImageConfig(registry="registry.example.com", image_name="kangbeef-store"),
        health=HealthConfig(db_max_attempts=30, app_max_attempts=5),
        output_dir=str(tmp_path / ".deploy"),
    )


@pytest.fixture
def settings() -> DeploySettings:
    return DeploySettings(
        REGISTRY_USERNAME="ci-bot",
        REGISTRY_PASSWORD="registry-token-xyz",
    )
