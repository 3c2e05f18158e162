"""Typer command-line interface for the deployment tool.

Commands
--------
* ``init``          -- write a default ``deploy.yaml``.
* ``deploy``        -- run the full deployment for a build.
* ``build``         -- build (and push) the image for a build.
* ``verify-image``  -- pull the image on the host and check its architecture.
* ``rollback-info`` -- show the recovery command for the previous build.
* ``status``        -- show the report of the last deployment run.

Exit code is 0 on success and 1 on any failure.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from src.deploy_orchestrator.config import DeployConfig, load_deploy_config
from src.deploy_orchestrator.display import (
    _console,
    print_deploy_header,
    print_error_panel,
    print_final_summary,
    print_health_results,
    print_rollback_advice,
    print_stage_table,
)
from src.deploy_orchestrator.state import DeploymentState
from src.deploy_shared import __version__
from src.deploy_shared.exceptions import DeployError
from src.rollout.image_builder import ImageBuilder
from src.rollout.image_resolver import make_release
from src.rollout.rollback_advisor import RollbackAdvisor
from src.shared.config import DeploySettings
from src.shared.logging import register_secret, setup_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="kangbeef-deploy",
    help="Build and roll out the Kangbeef Store stack on its host.",
    no_args_is_help=True,
)

_DEFAULT_CONFIG_TEMPLATE = """\
# Deployment configuration
# Secrets are never stored here: set REGISTRY_USERNAME, REGISTRY_PASSWORD
# and DEPLOY_SSH_KEY in the environment.

environment: production
force: false
auto_rollback: false
pipeline_timeout: 1800
output_dir: .deploy

target:
  host: ""
  user: deploy
  port: 22
  deploy_path: /opt/kangbeef
  backup_path: /opt/kangbeef/backups
  env_file: .env
  compose_file: docker-compose.yml
  project_name: kangbeef
  connect_timeout: 10
  command_timeout: 600

image:
  registry: ""
  image_name: kangbeef-store
  tag_suffix: ""
  platform: ""
  build_context: .
  dockerfile: Dockerfile
  pull_timeout: 900

services:
  database: db
  cache: redis
  app: app
  queue: queue
  scheduler: scheduler
  stop_timeout: 30

health:
  interval: 2
  db_max_attempts: 30
  app_max_attempts: 60
  health_path: /up
  app_port: 8080
  app_health_url: ""

backup:
  enabled: true
  dump_timeout: 1800

migration:
  enabled: true
  timeout: 900
  cache_commands:
    - config:cache
    - route:cache
    - view:cache

build:
  timeout: 1800
  max_retries: 2
  retry_delay: 10
  heartbeat_interval: 60
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"kangbeef-deploy {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", callback=_version_callback, is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Kangbeef Store deployment tool."""


def _settings() -> DeploySettings:
    settings = DeploySettings()
    register_secret(settings.registry_password.get_secret_value())
    setup_logging("kangbeef-deploy", level=settings.log_level, json_output=settings.json_logs)
    return settings


def _load_config(config: Optional[Path], settings: DeploySettings) -> DeployConfig:
    path = config or Path(settings.config_path)
    if not path.exists():
        _console.print(f"[yellow]Config {path} not found, using defaults.[/yellow]")
    return load_deploy_config(path)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    output_dir: Path = typer.Option(Path("."), "--output-dir", help="Where to write deploy.yaml."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing file."),
) -> None:
    """Write a default deploy.yaml."""
    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / "deploy.yaml"
    if target.exists() and not overwrite:
        _console.print(f"[red]{target} already exists (use --overwrite).[/red]")
        raise typer.Exit(code=1)
    target.write_text(_DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    _console.print(f"[green]Wrote {target}[/green]")


@app.command()
def deploy(
    build_number: int = typer.Argument(..., help="CI build number to deploy."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to deploy.yaml."),
    force: bool = typer.Option(
        False, "--force", help="Continue past failed health gates and migrations."
    ),
    auto_rollback: bool = typer.Option(
        False, "--auto-rollback", help="Redeploy the previous build on failure."
    ),
    environment: Optional[str] = typer.Option(
        None, "--environment", "-e", help="Override the configured environment name."
    ),
) -> None:
    """Deploy BUILD_NUMBER to the configured host."""
    from src.deploy_orchestrator.pipeline import execute_deployment

    settings = _settings()
    try:
        cfg = _load_config(config, settings)
    except DeployError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=1)

    cfg.force = cfg.force or force
    cfg.auto_rollback = cfg.auto_rollback or auto_rollback
    if environment:
        cfg.environment = environment

    try:
        state = asyncio.run(execute_deployment(cfg, build_number, settings))
    except DeployError as exc:
        state = getattr(exc, "state", None)
        print_error_panel(exc, logs=state.last_logs if state else "")
        if state is not None:
            print_stage_table(state)
            print_final_summary(state)
        raise typer.Exit(code=1)

    print_deploy_header(state)
    print_stage_table(state)
    print_health_results(state)
    print_final_summary(state)


@app.command()
def build(
    build_number: int = typer.Argument(..., help="CI build number to tag the image with."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to deploy.yaml."),
    push: bool = typer.Option(True, "--push/--no-push", help="Push to the registry after building."),
) -> None:
    """Build the release image for BUILD_NUMBER."""
    settings = _settings()
    try:
        cfg = _load_config(config, settings)
        release = make_release(
            registry=cfg.image.registry,
            image_name=cfg.image.image_name,
            build_number=build_number,
            suffix=cfg.image.tag_suffix,
            platform=cfg.image.platform,
        )
        builder = ImageBuilder(
            context=cfg.image.build_context,
            dockerfile=cfg.image.dockerfile,
            timeout=cfg.build.timeout,
            max_retries=cfg.build.max_retries,
            retry_delay=cfg.build.retry_delay,
            heartbeat_interval=cfg.build.heartbeat_interval,
            registry_username=settings.registry_username,
            registry_password=settings.registry_password.get_secret_value(),
        )
        attempts = asyncio.run(builder.build(release, push=push))
    except DeployError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=1)

    _console.print(
        f"[green]Built {release.image_ref} in {attempts} attempt(s)"
        f"{' and pushed' if push else ''}.[/green]"
    )


@app.command("verify-image")
def verify_image(
    build_number: int = typer.Argument(..., help="CI build number to verify."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to deploy.yaml."),
) -> None:
    """Pull BUILD_NUMBER on the host and check its architecture."""
    from src.deploy_orchestrator.pipeline import resolve_only

    settings = _settings()
    try:
        cfg = _load_config(config, settings)
        resolved = asyncio.run(resolve_only(cfg, build_number, settings))
    except DeployError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=1)

    _console.print(
        f"[green]{resolved.release.image_ref} matches host architecture "
        f"{resolved.host_arch}[/green]"
        + (" (re-pulled)" if resolved.repulled else "")
    )


@app.command("rollback-info")
def rollback_info(
    build_number: int = typer.Argument(..., help="The build currently deployed."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to deploy.yaml."),
) -> None:
    """Show how to return to the build before BUILD_NUMBER."""
    settings = _settings()
    try:
        cfg = _load_config(config, settings)
        release = make_release(
            registry=cfg.image.registry,
            image_name=cfg.image.image_name,
            build_number=build_number,
            suffix=cfg.image.tag_suffix,
            platform=cfg.image.platform,
        )
        advisor = RollbackAdvisor(
            cfg.deployment_target(ssh_key=settings.ssh_key_path), cfg.service_set()
        )
    except DeployError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=1)

    print_rollback_advice(advisor.advise(release))


@app.command()
def status(
    output_dir: Path = typer.Option(Path(".deploy"), "--output-dir", help="Report directory."),
) -> None:
    """Show the report of the last deployment run."""
    state = DeploymentState.load(output_dir)
    if state is None:
        _console.print("[red]No deployment report found.[/red]")
        raise typer.Exit(code=1)

    print_deploy_header(state)
    print_stage_table(state)
    print_health_results(state)
    print_final_summary(state)
    if state.current_state == "failed":
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
