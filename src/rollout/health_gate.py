"""Health gate and readiness probes.

The gate polls one probe at a fixed interval until it succeeds or the
attempts are exhausted.  No backoff is applied.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

import httpx

from src.deploy_shared.constants import (
    DEFAULT_APP_PORT,
    DEFAULT_HEALTH_INTERVAL,
    DEFAULT_HEALTH_PATH,
)
from src.deploy_shared.exceptions import ConfigurationError, HealthCheckTimeoutError
from src.deploy_shared.models import HealthCheckResult
from src.deploy_shared.protocols import ReadinessProbe
from src.rollout.stack_controller import StackController

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------


class DatabasePingProbe:
    """``mysqladmin ping`` inside the database container."""

    def __init__(
        self,
        stack: StackController,
        command: str = "mysqladmin ping -h localhost --silent",
        timeout: float = 15,
    ) -> None:
        self.stack = stack
        self.command = command
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self.stack.services.database

    async def check(self) -> bool:
        result = await self.stack.exec_in(self.name, self.command, timeout=self.timeout)
        return result.ok


class RemoteHttpProbe:
    """HTTP GET against the application's local health path, from inside
    the application container."""

    def __init__(
        self,
        stack: StackController,
        path: str = DEFAULT_HEALTH_PATH,
        port: int = DEFAULT_APP_PORT,
        timeout: float = 15,
    ) -> None:
        self.stack = stack
        self.path = path if path.startswith("/") else f"/{path}"
        self.port = port
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self.stack.services.app

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}{self.path}"

    async def check(self) -> bool:
        result = await self.stack.exec_in(
            self.name,
            f"curl -fsS -o /dev/null --max-time 10 {self.url}",
            timeout=self.timeout,
        )
        return result.ok


class HttpProbe:
    """Direct HTTP GET against an externally reachable health URL."""

    def __init__(self, name: str, url: str, timeout: float = 10.0) -> None:
        self._name = name
        self.url = url
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self._name

    async def check(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(self.url)
                healthy = resp.status_code < 400
                if not healthy:
                    logger.debug(
                        "Service '%s' unhealthy: status %d from %s",
                        self._name, resp.status_code, self.url,
                    )
                return healthy
        except httpx.HTTPError as exc:
            logger.debug("Health probe for '%s' at %s failed: %s", self._name, self.url, exc)
            return False


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class HealthGate:
    """Fixed-interval polling of a readiness probe with a bounded attempt count."""

    def __init__(
        self,
        interval: float = DEFAULT_HEALTH_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self._sleep = sleep
        self._clock = clock

    async def poll(self, probe: ReadinessProbe, max_attempts: int) -> HealthCheckResult:
        """Probe up to *max_attempts* times and report the outcome.

        Returns as soon as one probe succeeds.  There is no sleep after
        the final attempt.  Transport errors raised by the probe
        propagate unchanged.
        """
        if max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {max_attempts}")

        started = self._clock()
        logger.info(
            "Waiting for '%s' to become healthy (max %d attempts, every %ss)",
            probe.name, max_attempts, self.interval,
        )
        for attempt in range(1, max_attempts + 1):
            if await probe.check():
                elapsed = self._clock() - started
                logger.info(
                    "'%s' healthy after %d attempt(s) (%.1fs)",
                    probe.name, attempt, elapsed,
                )
                return HealthCheckResult(
                    target=probe.name,
                    attempt_count=attempt,
                    max_attempts=max_attempts,
                    elapsed=elapsed,
                    passed=True,
                )
            logger.debug("'%s' not ready (attempt %d/%d)", probe.name, attempt, max_attempts)
            if attempt < max_attempts:
                await self._sleep(self.interval)

        return HealthCheckResult(
            target=probe.name,
            attempt_count=max_attempts,
            max_attempts=max_attempts,
            elapsed=self._clock() - started,
            passed=False,
        )

    async def wait(self, probe: ReadinessProbe, max_attempts: int) -> HealthCheckResult:
        """Like :meth:`poll`, but raise when the attempts are exhausted.

        Raises:
            HealthCheckTimeoutError: no attempt in ``[1, max_attempts]`` passed.
        """
        result = await self.poll(probe, max_attempts)
        if not result.passed:
            logger.error(
                "'%s' not healthy after %d attempts (%.1fs)",
                result.target, result.attempt_count, result.elapsed,
            )
            raise HealthCheckTimeoutError(result.target, result.attempt_count, result.elapsed)
        return result
