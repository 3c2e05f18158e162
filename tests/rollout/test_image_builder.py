"""Tests for src.rollout.image_builder."""

from __future__ import annotations

import subprocess
from unittest.mock import AsyncMock

import pytest

from src.deploy_shared.exceptions import BuildFailureError
from src.deploy_shared.models import CommandResult
from src.rollout.image_builder import ImageBuilder
from src.rollout.image_resolver import make_release
from tests.conftest import no_sleep


@pytest.fixture
def arm_release():
    return make_release("registry.example.com", "kangbeef-store", 42, platform="linux/arm64")


def _builder(executor, **kwargs) -> ImageBuilder:
    kwargs.setdefault("heartbeat_interval", 0)
    return ImageBuilder(executor=executor, sleep=no_sleep, **kwargs)


def test_build_args(arm_release):
    builder = ImageBuilder(context="app", dockerfile="docker/Dockerfile")
    assert builder.build_args(arm_release, push=True) == [
        "docker", "buildx", "build",
        "-f", "docker/Dockerfile",
        "-t", "registry.example.com/kangbeef-store:42",
        "--platform", "linux/arm64",
        "--push",
        "app",
    ]
    assert builder.build_args(arm_release, push=False)[-2] == "--load"


@pytest.mark.asyncio
async def test_first_attempt_succeeds(arm_release):
    executor = AsyncMock()
    executor.run.return_value = CommandResult(0)
    attempts = await _builder(executor).build(arm_release, push=False)
    assert attempts == 1
    executor.run.assert_awaited_once()


@pytest.mark.asyncio
async def test_retries_then_succeeds(arm_release):
    executor = AsyncMock()
    executor.run.side_effect = [CommandResult(1, "", "network"), CommandResult(0)]
    attempts = await _builder(executor, max_retries=2).build(arm_release, push=False)
    assert attempts == 2


@pytest.mark.asyncio
async def test_timeout_counts_as_failed_attempt(arm_release):
    executor = AsyncMock()
    executor.run.side_effect = [subprocess.TimeoutExpired("docker", 5), CommandResult(0)]
    attempts = await _builder(executor, timeout=5, max_retries=1).build(arm_release, push=False)
    assert attempts == 2


@pytest.mark.asyncio
async def test_retries_are_bounded(arm_release):
    executor = AsyncMock()
    executor.run.return_value = CommandResult(1, "", "no space left on device")
    with pytest.raises(BuildFailureError) as excinfo:
        await _builder(executor, max_retries=2).build(arm_release, push=False)
    assert excinfo.value.attempts == 3
    assert executor.run.await_count == 3
    assert "no space left" in str(excinfo.value)


@pytest.mark.asyncio
async def test_login_before_push(arm_release):
    executor = AsyncMock()
    executor.run.return_value = CommandResult(0)
    builder = _builder(executor, registry_username="ci-bot", registry_password="tok-123")
    await builder.build(arm_release, push=True)
    login_call = executor.run.await_args_list[0]
    assert login_call.args[0][:3] == ["docker", "login", "registry.example.com"]
    assert "tok-123" not in login_call.args[0]
    assert login_call.kwargs["input_text"] == "tok-123"


@pytest.mark.asyncio
async def test_failed_login_is_build_failure(arm_release):
    executor = AsyncMock()
    executor.run.return_value = CommandResult(1, "", "unauthorized")
    builder = _builder(executor, registry_username="ci-bot", registry_password="tok-123")
    with pytest.raises(BuildFailureError, match="login"):
        await builder.build(arm_release, push=True)
