"""Local image build and push.

Builds the multi-stage image for a release with ``docker buildx``, keeps
the CI log alive with a :class:`Heartbeat`, bounds each attempt with a
timeout and retries a limited number of times on failure.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
from typing import Awaitable, Callable

from src.deploy_shared.constants import (
    DEFAULT_BUILD_RETRIES,
    DEFAULT_BUILD_TIMEOUT,
    DEFAULT_HEARTBEAT_INTERVAL,
)
from src.deploy_shared.exceptions import BuildFailureError, PhaseTimeoutError
from src.deploy_shared.models import CommandResult, ReleaseCandidate
from src.rollout.keepalive import Heartbeat
from src.rollout.remote import LocalExecutor

logger = logging.getLogger(__name__)


class ImageBuilder:
    """Builds (and optionally pushes) the image for a release."""

    def __init__(
        self,
        executor: LocalExecutor | None = None,
        context: str = ".",
        dockerfile: str = "Dockerfile",
        timeout: float = DEFAULT_BUILD_TIMEOUT,
        max_retries: int = DEFAULT_BUILD_RETRIES,
        retry_delay: float = 10,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        registry_username: str = "",
        registry_password: str = "",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.executor = executor or LocalExecutor()
        self.context = context
        self.dockerfile = dockerfile
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.heartbeat_interval = heartbeat_interval
        self.registry_username = registry_username
        self.registry_password = registry_password
        self._sleep = sleep

    def build_args(self, release: ReleaseCandidate, push: bool = True) -> list[str]:
        args = ["docker", "buildx", "build", "-f", self.dockerfile, "-t", release.image_ref]
        if release.platform:
            args.extend(["--platform", release.platform])
        args.append("--push" if push else "--load")
        args.append(self.context)
        return args

    async def login(self, registry: str) -> None:
        if not (registry and self.registry_username and self.registry_password):
            return
        result = await self.executor.run(
            ["docker", "login", registry, "-u", self.registry_username, "--password-stdin"],
            input_text=self.registry_password,
            timeout=60,
        )
        if not result.ok:
            raise BuildFailureError(message=f"Registry login failed: {result.stderr.strip()}")

    async def _attempt(self, args: list[str], attempt: int) -> CommandResult:
        async with Heartbeat(f"Build attempt {attempt}", self.heartbeat_interval):
            try:
                return await self.executor.run(args, timeout=self.timeout)
            except subprocess.TimeoutExpired as exc:
                raise PhaseTimeoutError("build", self.timeout) from exc

    async def build(self, release: ReleaseCandidate, push: bool = True) -> int:
        """Build *release*, retrying up to ``max_retries`` times.

        Returns:
            The number of attempts used.

        Raises:
            BuildFailureError: every attempt failed or timed out.
        """
        if push:
            await self.login(release.registry)
        args = self.build_args(release, push)
        total = self.max_retries + 1
        last_error = ""
        for attempt in range(1, total + 1):
            logger.info("Building %s (attempt %d/%d)", release.image_ref, attempt, total)
            try:
                result = await self._attempt(args, attempt)
            except PhaseTimeoutError as exc:
                last_error = str(exc)
                logger.warning("Build attempt %d timed out after %ss", attempt, self.timeout)
            else:
                if result.ok:
                    logger.info("Built %s", release.image_ref)
                    return attempt
                last_error = (result.stderr or result.stdout).strip()[-2000:]
                logger.warning("Build attempt %d failed (exit %d)", attempt, result.returncode)
            if attempt < total:
                await self._sleep(self.retry_delay)

        raise BuildFailureError(
            release.image_ref,
            total,
            f"Build of '{release.image_ref}' failed after {total} attempt(s): {last_error}",
        )
