"""Schema migrations and framework cache rebuild in the app container."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from src.deploy_shared.constants import CACHE_COMMANDS
from src.deploy_shared.exceptions import CacheRebuildFailureError, MigrationFailureError
from src.rollout.stack_controller import StackController

logger = logging.getLogger(__name__)


@dataclass
class MigrationOutcome:
    """What the migration step did."""
    migrated: bool = False
    output: str = ""
    caches_rebuilt: list[str] = field(default_factory=list)
    cache_failures: list[CacheRebuildFailureError] = field(default_factory=list)


class MigrationRunner:
    """Runs ``php artisan`` maintenance commands in the application service."""

    def __init__(
        self,
        stack: StackController,
        cache_commands: list[str] | None = None,
        migrate_timeout: float = 900,
    ) -> None:
        self.stack = stack
        self.cache_commands = list(CACHE_COMMANDS if cache_commands is None else cache_commands)
        self.migrate_timeout = migrate_timeout

    async def artisan(self, command: str, timeout: float | None = None):
        return await self.stack.exec_in(
            self.stack.services.app, f"php artisan {command}", timeout=timeout
        )

    async def migrate(self) -> str:
        """Apply pending migrations.

        Raises:
            MigrationFailureError: the migrate command exited non-zero.
        """
        logger.info("Running database migrations")
        result = await self.artisan("migrate --force --no-interaction", timeout=self.migrate_timeout)
        if not result.ok:
            raise MigrationFailureError(
                f"Migrations failed (exit {result.returncode}): "
                f"{(result.stderr or result.stdout).strip()}"
            )
        logger.info("Migrations applied")
        return result.stdout

    async def rebuild_caches(self) -> tuple[list[str], list[CacheRebuildFailureError]]:
        """Rebuild config/route/view caches; failures are collected, not raised."""
        rebuilt: list[str] = []
        failures: list[CacheRebuildFailureError] = []
        for command in self.cache_commands:
            result = await self.artisan(command)
            if result.ok:
                rebuilt.append(command)
                continue
            failure = CacheRebuildFailureError(command, (result.stderr or result.stdout).strip())
            logger.warning("Cache rebuild failed, continuing: %s", failure)
            failures.append(failure)
        return rebuilt, failures

    async def run(self) -> MigrationOutcome:
        """Migrate, then rebuild caches.  Cache problems never abort."""
        output = await self.migrate()
        rebuilt, failures = await self.rebuild_caches()
        return MigrationOutcome(
            migrated=True, output=output, caches_rebuilt=rebuilt, cache_failures=failures
        )
