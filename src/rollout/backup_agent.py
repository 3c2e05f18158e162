"""Best-effort database backup before migrations.

A missing backup never blocks a deployment: absent credentials skip the
dump with a warning, and dump or compression errors are logged and
swallowed.  Deployment continuity takes priority over backup
completeness.  Artifacts are never deleted here; retention is handled
outside this tool.
"""

from __future__ import annotations

import logging
import shlex

from src.deploy_shared.exceptions import BackupFailureError
from src.deploy_shared.models import BackupArtifact
from src.deploy_shared.utils import backup_timestamp, parse_env_file
from src.rollout.stack_controller import StackController
from src.shared.logging import register_secret

logger = logging.getLogger(__name__)

DB_NAME_KEY = "DB_DATABASE"
DB_USER_KEY = "DB_USERNAME"
DB_PASSWORD_KEY = "DB_PASSWORD"


class BackupAgent:
    """Produces a timestamped, gzip-compressed logical dump on the host."""

    def __init__(
        self,
        stack: StackController,
        backup_path: str,
        env_file_path: str,
        dump_timeout: float = 1800,
    ) -> None:
        self.stack = stack
        self.backup_path = backup_path.rstrip("/") or "/"
        self.env_file_path = env_file_path
        self.dump_timeout = dump_timeout
        self.warnings: list[str] = []

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    async def read_credentials(self) -> dict[str, str] | None:
        """Database credentials from the host's environment file.

        Returns:
            ``{"database", "username", "password"}`` or None when the file
            or any of the keys is missing.
        """
        result = await self.stack.runner.run(f"cat {shlex.quote(self.env_file_path)}")
        if not result.ok:
            self._warn(f"Environment file {self.env_file_path} not readable; skipping backup")
            return None
        values = parse_env_file(result.stdout)
        missing = [k for k in (DB_NAME_KEY, DB_USER_KEY, DB_PASSWORD_KEY) if not values.get(k)]
        if missing:
            self._warn(f"Database credentials missing ({', '.join(missing)}); skipping backup")
            return None
        register_secret(values[DB_PASSWORD_KEY])
        return {
            "database": values[DB_NAME_KEY],
            "username": values[DB_USER_KEY],
            "password": values[DB_PASSWORD_KEY],
        }

    async def _dump(self, credentials: dict[str, str]) -> BackupArtifact:
        timestamp = backup_timestamp()
        path = f"{self.backup_path}/db_{timestamp}.sql.gz"
        quoted_path = shlex.quote(path)

        mkdir = await self.stack.runner.run(f"mkdir -p {shlex.quote(self.backup_path)}")
        if not mkdir.ok:
            raise BackupFailureError(
                f"Cannot create {self.backup_path}: {mkdir.stderr.strip()}"
            )

        dump_cmd = (
            "mysqldump --single-transaction --quick --routines "
            f"-u {shlex.quote(credentials['username'])} "
            f"{shlex.quote(credentials['database'])} | gzip > {quoted_path}"
        )
        dump = await self.stack.exec_in(
            self.stack.services.database,
            dump_cmd,
            secret_env={"MYSQL_PWD": credentials["password"]},
            timeout=self.dump_timeout,
        )
        if not dump.ok:
            raise BackupFailureError(f"Dump failed: {dump.stderr.strip()}")

        # A failing mysqldump still yields a valid (empty) gzip stream.
        verify = await self.stack.runner.run(
            f"gzip -t {quoted_path} && "
            f'[ "$(gzip -dc {quoted_path} | head -c 1 | wc -c)" -gt 0 ]'
        )
        if not verify.ok:
            raise BackupFailureError(f"Backup {path} is empty or corrupt")

        return BackupArtifact(path=path, timestamp=timestamp, compressed=True)

    async def run(self) -> BackupArtifact | None:
        """Back up the database if it is running and credentials exist.

        Never raises for backup problems.  Transport errors still
        propagate.
        """
        if not await self.stack.is_running(self.stack.services.database):
            self._warn("Database service is not running; skipping backup")
            return None

        credentials = await self.read_credentials()
        if credentials is None:
            return None

        try:
            artifact = await self._dump(credentials)
        except BackupFailureError as exc:
            self._warn(f"Backup failed, continuing without it: {exc}")
            return None

        logger.info("Database backed up to %s", artifact.path)
        return artifact
