"""Deployment run report with atomic writes."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from src.deploy_shared.constants import STATE_DIR, STATE_FILE
from src.deploy_shared.utils import atomic_write_json, load_json, utc_now_iso


@dataclass
class DeploymentState:
    """Everything known about one deployment run.

    Persisted to ``DEPLOY_STATE.json`` after every stage so that
    ``status`` can report on the last run.  It is a report, not a resume
    point: a deployment always starts from the beginning.
    """

    deployment_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    build_number: int = 0
    environment: str = ""
    image_ref: str = ""
    host: str = ""
    current_state: str = "init"
    completed_stages: list[str] = field(default_factory=list)
    stage_durations: dict[str, float] = field(default_factory=dict)
    failed_stage: str = ""
    error_kind: str = ""
    error_message: str = ""
    forced: bool = False
    host_architecture: str = ""
    image_architecture: str = ""
    image_verified: bool = False
    image_repulled: bool = False
    db_gate_cleared: bool = False
    app_gate_cleared: bool = False
    migrations_cleared: bool = False
    final_gate_cleared: bool = False
    app_tier_started: bool = False
    health_results: list[dict[str, Any]] = field(default_factory=list)
    backup: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)
    last_logs: str = ""
    rollback_command: str = ""
    previous_image: str = ""
    rolled_back: bool = False
    started_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    finished_at: str = ""
    interrupted: bool = False
    interrupt_reason: str = ""
    output_dir: str = STATE_DIR
    schema_version: int = 1

    def add_warning(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def complete_stage(self, stage: str) -> None:
        if stage not in self.completed_stages:
            self.completed_stages.append(stage)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialise the state to a plain dictionary."""
        return asdict(self)

    def save(self, directory: Path | str | None = None) -> Path:
        """Persist state to disk using atomic writes.

        Args:
            directory: Target directory.  Defaults to ``output_dir``.

        Returns:
            The path the state was written to.
        """
        directory = Path(directory) if directory else Path(self.output_dir or STATE_DIR)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / STATE_FILE
        self.updated_at = utc_now_iso()
        atomic_write_json(target, self.to_dict())
        return target

    @classmethod
    def load(cls, directory: Path | str | None = None) -> DeploymentState | None:
        """Load state from a JSON file.

        Returns:
            Reconstructed ``DeploymentState``, or ``None`` if the file is
            missing or invalid.
        """
        directory = Path(directory) if directory else Path(STATE_DIR)
        data = load_json(directory / STATE_FILE)
        if data is None:
            return None
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        return cls(**filtered)
