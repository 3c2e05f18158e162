"""Tests for src.deploy_orchestrator.state and timing."""

from __future__ import annotations

import json

from src.deploy_orchestrator.state import DeploymentState
from src.deploy_orchestrator.timing import StageTimer
from src.deploy_shared.constants import STATE_FILE


class TestDeploymentState:
    def test_save_and_load(self, tmp_path):
        state = DeploymentState(
            build_number=42,
            environment="production",
            image_ref="reg/kangbeef-store:42",
            host="store.example.com",
            output_dir=str(tmp_path),
        )
        state.complete_stage("resolve_image")
        state.complete_stage("resolve_image")
        state.add_warning("backup skipped")
        state.add_warning("backup skipped")
        path = state.save()
        assert path == tmp_path / STATE_FILE

        loaded = DeploymentState.load(tmp_path)
        assert loaded.deployment_id == state.deployment_id
        assert loaded.completed_stages == ["resolve_image"]
        assert loaded.warnings == ["backup skipped"]
        assert loaded.build_number == 42

    def test_load_missing(self, tmp_path):
        assert DeploymentState.load(tmp_path) is None

    def test_load_ignores_unknown_keys(self, tmp_path):
        (tmp_path / STATE_FILE).write_text(
            json.dumps({"build_number": 7, "future_field": True}), encoding="utf-8"
        )
        assert DeploymentState.load(tmp_path).build_number == 7

    def test_save_to_explicit_directory(self, tmp_path):
        state = DeploymentState(output_dir=str(tmp_path / "unused"))
        state.save(tmp_path / "elsewhere")
        assert (tmp_path / "elsewhere" / STATE_FILE).exists()


class TestStageTimer:
    def test_durations(self):
        ticks = iter([0.0, 1.5, 1.5, 4.0])
        timer = StageTimer(clock=lambda: next(ticks))
        timer.start_stage("start_db")
        assert timer.current_stage == "start_db"
        assert timer.end_stage() == 1.5
        timer.start_stage("wait_db_healthy")
        timer.end_stage()
        assert timer.stage_durations == {"start_db": 1.5, "wait_db_healthy": 2.5}
        assert timer.total_duration == 4.0
        assert timer.current_stage is None

    def test_starting_a_stage_closes_the_previous(self):
        ticks = iter([0.0, 2.0, 2.0, 3.0])
        timer = StageTimer(clock=lambda: next(ticks))
        timer.start_stage("a")
        timer.start_stage("b")
        timer.end_stage()
        assert timer.stage_durations == {"a": 2.0, "b": 1.0}

    def test_end_without_start(self):
        assert StageTimer().end_stage() == 0.0

    def test_to_dict(self):
        timer = StageTimer()
        timer.start_stage("backup_db")
        timer.end_stage()
        data = timer.to_dict()
        assert "backup_db" in data["stages"]
        assert data["stages"]["backup_db"]["end_time"]
