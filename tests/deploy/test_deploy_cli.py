"""Tests for the kangbeef-deploy CLI."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from src.deploy_orchestrator.cli import _DEFAULT_CONFIG_TEMPLATE, app
from src.deploy_orchestrator.state import DeploymentState
from src.deploy_shared.exceptions import ArchitectureMismatchError, BuildFailureError
from src.rollout.image_resolver import ResolvedImage, make_release

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path):
    data = yaml.safe_load(_DEFAULT_CONFIG_TEMPLATE)
    data["target"]["host"] = "store.example.com"
    data["image"]["registry"] = "registry.example.com"
    data["output_dir"] = str(tmp_path / ".deploy")
    path = tmp_path / "deploy.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestAppRegistration:
    def test_all_commands_registered(self):
        names = {cmd.name or cmd.callback.__name__ for cmd in app.registered_commands}
        expected = {"init", "deploy", "build", "verify-image", "rollback-info", "status"}
        assert expected.issubset(names), f"Missing commands: {expected - names}"

    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "kangbeef-deploy" in result.output


class TestInit:
    def test_writes_template(self, tmp_path):
        result = runner.invoke(app, ["init", "--output-dir", str(tmp_path)])
        assert result.exit_code == 0
        assert (tmp_path / "deploy.yaml").read_text(encoding="utf-8") == _DEFAULT_CONFIG_TEMPLATE

    def test_refuses_to_overwrite(self, tmp_path):
        (tmp_path / "deploy.yaml").write_text("environment: x\n", encoding="utf-8")
        result = runner.invoke(app, ["init", "--output-dir", str(tmp_path)])
        assert result.exit_code == 1
        result = runner.invoke(app, ["init", "--output-dir", str(tmp_path), "--overwrite"])
        assert result.exit_code == 0


class TestDeploy:
    @patch("src.deploy_orchestrator.pipeline.execute_deployment", new_callable=AsyncMock)
    def test_success_exit_zero(self, mock_execute, config_file):
        mock_execute.return_value = DeploymentState(
            build_number=42, current_state="complete", image_ref="reg/app:42"
        )
        result = runner.invoke(app, ["deploy", "42", "--config", str(config_file)])
        assert result.exit_code == 0, result.output
        config, build_number = mock_execute.await_args.args[:2]
        assert build_number == 42
        assert config.force is False
        assert config.auto_rollback is False

    @patch("src.deploy_orchestrator.pipeline.execute_deployment", new_callable=AsyncMock)
    def test_flags_reach_config(self, mock_execute, config_file):
        mock_execute.return_value = DeploymentState(current_state="complete")
        result = runner.invoke(
            app,
            ["deploy", "42", "--config", str(config_file), "--force",
             "--auto-rollback", "--environment", "staging"],
        )
        assert result.exit_code == 0, result.output
        config = mock_execute.await_args.args[0]
        assert config.force is True
        assert config.auto_rollback is True
        assert config.environment == "staging"

    def test_failure_exit_one(self, config_file):
        error = ArchitectureMismatchError("x86_64", "arm64", "reg/app:42")
        error.state = DeploymentState(
            build_number=42, current_state="failed", failed_stage="resolve_image",
            error_kind="ArchitectureMismatch", rollback_command="ssh deploy@h 'x'",
        )

        with patch(
            "src.deploy_orchestrator.pipeline.execute_deployment",
            new_callable=AsyncMock,
            side_effect=error,
        ):
            result = runner.invoke(app, ["deploy", "42", "--config", str(config_file)])
        assert result.exit_code == 1
        assert "resolve_image" in result.output

    def test_zero_health_attempts_exit_one(self, config_file):
        data = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        data["health"]["db_max_attempts"] = 0
        config_file.write_text(yaml.safe_dump(data), encoding="utf-8")
        with patch(
            "src.deploy_orchestrator.pipeline.execute_deployment", new_callable=AsyncMock
        ) as mock_execute:
            result = runner.invoke(app, ["deploy", "42", "--config", str(config_file)])
        assert result.exit_code == 1
        assert "db_max_attempts" in result.output
        mock_execute.assert_not_awaited()

    def test_invalid_config_exit_one(self, tmp_path):
        path = tmp_path / "deploy.yaml"
        path.write_text("- not\n- a mapping\n", encoding="utf-8")
        result = runner.invoke(app, ["deploy", "42", "--config", str(path)])
        assert result.exit_code == 1


class TestBuild:
    @patch("src.rollout.image_builder.ImageBuilder.build", new_callable=AsyncMock)
    def test_build_success(self, mock_build, config_file):
        mock_build.return_value = 1
        result = runner.invoke(app, ["build", "42", "--config", str(config_file), "--no-push"])
        assert result.exit_code == 0, result.output
        release = mock_build.await_args.args[0]
        assert release.image_ref == "registry.example.com/kangbeef-store:42"
        assert mock_build.await_args.kwargs["push"] is False

    @patch("src.rollout.image_builder.ImageBuilder.build", new_callable=AsyncMock)
    def test_build_failure(self, mock_build, config_file):
        mock_build.side_effect = BuildFailureError("reg/app:42", 3)
        result = runner.invoke(app, ["build", "42", "--config", str(config_file)])
        assert result.exit_code == 1


class TestVerifyImage:
    def test_match(self, config_file):
        release = make_release("registry.example.com", "kangbeef-store", 42)
        resolved = ResolvedImage(release=release, host_arch="aarch64", image_arch="arm64")
        with patch(
            "src.deploy_orchestrator.pipeline.resolve_only",
            new_callable=AsyncMock,
            return_value=resolved,
        ):
            result = runner.invoke(app, ["verify-image", "42", "--config", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "aarch64" in result.output

    def test_mismatch(self, config_file):
        with patch(
            "src.deploy_orchestrator.pipeline.resolve_only",
            new_callable=AsyncMock,
            side_effect=ArchitectureMismatchError("x86_64", "arm64"),
        ):
            result = runner.invoke(app, ["verify-image", "42", "--config", str(config_file)])
        assert result.exit_code == 1


class TestRollbackInfo:
    def test_build_42_references_41(self, config_file):
        result = runner.invoke(app, ["rollback-info", "42", "--config", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "41" in result.output
        assert "kangbeef-store:41" in result.output.replace("\n", "")

    def test_build_1_has_no_predecessor(self, config_file):
        result = runner.invoke(app, ["rollback-info", "1", "--config", str(config_file)])
        assert result.exit_code == 0
        assert "No previous build" in result.output


class TestStatus:
    def test_no_report(self, tmp_path):
        result = runner.invoke(app, ["status", "--output-dir", str(tmp_path)])
        assert result.exit_code == 1

    def test_complete_report(self, tmp_path):
        DeploymentState(current_state="complete", build_number=42).save(tmp_path)
        result = runner.invoke(app, ["status", "--output-dir", str(tmp_path)])
        assert result.exit_code == 0
        assert "Deployment Complete" in result.output

    def test_failed_report(self, tmp_path):
        DeploymentState(current_state="failed", failed_stage="run_migrations").save(tmp_path)
        result = runner.invoke(app, ["status", "--output-dir", str(tmp_path)])
        assert result.exit_code == 1
        assert "run_migrations" in result.output
