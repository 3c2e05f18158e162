"""Deployment pipeline -- main orchestration engine.

Drives one release onto the target host:

    resolve image → start db → db healthy → start app tier → app healthy
    → backup db → migrations → final health check → complete

The run is state-machine-driven, strictly sequential, bounded by an
overall timeout and interruptible between stages.

.. rubric:: Key design decisions

* **Explicit context** – every stage receives a :class:`DeployContext`
  built once from the config and the injected settings; nothing is read
  from process-global state mid-run.
* **Verify once** – the image architecture is checked in the
  ``resolving_image`` state only.  Later stages trust the recorded
  result, and the machine refuses to enter ``starting_app_tier`` without
  it.
* **Force flag** – health-gate timeouts and migration failures become
  warnings when forced.  Architecture mismatches and transport errors
  never do.
* **Advisory rollback** – the recovery command is always computed and
  reported.  Executing it is opt-in (``auto_rollback``).
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from src.deploy_orchestrator.config import DeployConfig
from src.deploy_orchestrator.shutdown import GracefulShutdown
from src.deploy_orchestrator.state import DeploymentState
from src.deploy_orchestrator.state_machine import TERMINAL_STATES, create_deploy_machine
from src.deploy_orchestrator.timing import StageTimer
from src.deploy_shared.constants import (
    STAGE_BACKUP_DB,
    STAGE_FINAL_HEALTH,
    STAGE_MIGRATIONS,
    STAGE_RESOLVE_IMAGE,
    STAGE_START_APP_TIER,
    STAGE_START_DB,
    STAGE_WAIT_APP,
    STAGE_WAIT_DB,
)
from src.deploy_shared.exceptions import (
    DeployError,
    DeploymentInterruptedError,
    HealthCheckTimeoutError,
    MigrationFailureError,
    PhaseTimeoutError,
    TransportError,
)
from src.deploy_shared.models import (
    DeploymentTarget,
    HealthCheckResult,
    ReleaseCandidate,
    RollbackAdvice,
    ServiceSet,
)
from src.deploy_shared.protocols import CommandRunner, ReadinessProbe
from src.deploy_shared.utils import utc_now_iso
from src.rollout.backup_agent import BackupAgent
from src.rollout.health_gate import DatabasePingProbe, HealthGate, HttpProbe, RemoteHttpProbe
from src.rollout.image_resolver import ImageResolver, make_release
from src.rollout.migration_runner import MigrationRunner
from src.rollout.remote import RemoteExecutor
from src.rollout.rollback_advisor import RollbackAdvisor, execute_rollback
from src.rollout.stack_controller import StackController
from src.shared.config import DeploySettings
from src.shared.logging import deployment_id_var, register_secret

logger = logging.getLogger(__name__)

# Stage that a handler starting in the given machine state runs.
STATE_TO_STAGE: dict[str, str] = {
    "init": STAGE_RESOLVE_IMAGE,
    "resolving_image": STAGE_RESOLVE_IMAGE,
    "starting_db": STAGE_START_DB,
    "waiting_db": STAGE_WAIT_DB,
    "starting_app_tier": STAGE_START_APP_TIER,
    "waiting_app": STAGE_WAIT_APP,
    "backing_up": STAGE_BACKUP_DB,
    "migrating": STAGE_MIGRATIONS,
    "final_check": STAGE_FINAL_HEALTH,
}


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


@dataclass
class DeployContext:
    """Everything a stage needs, assembled once per run."""

    config: DeployConfig
    target: DeploymentTarget
    release: ReleaseCandidate
    services: ServiceSet
    runner: CommandRunner
    stack: StackController
    resolver: ImageResolver
    gate: HealthGate
    backup_agent: BackupAgent
    migrations: MigrationRunner
    advisor: RollbackAdvisor
    db_probe: ReadinessProbe
    app_probe: ReadinessProbe
    force: bool = False
    auto_rollback: bool = False


def build_context(
    config: DeployConfig,
    build_number: int,
    settings: DeploySettings | None = None,
    *,
    runner: CommandRunner | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> DeployContext:
    """Assemble a :class:`DeployContext` for *build_number*.

    Args:
        config: Loaded deployment configuration.
        build_number: Numeric CI build identifier.
        settings: Invocation-time settings carrying secrets.
        runner: Command runner override (tests); defaults to SSH.
        sleep: Sleep override for the health gate (tests).
    """
    config.validate()
    settings = settings or DeploySettings()
    target = config.deployment_target(ssh_key=settings.ssh_key_path)
    release = make_release(
        registry=config.image.registry,
        image_name=config.image.image_name,
        build_number=build_number,
        suffix=config.image.tag_suffix,
        platform=config.image.platform,
    )
    services = config.service_set()
    password = settings.registry_password.get_secret_value()
    register_secret(password)

    if runner is None:
        runner = RemoteExecutor(
            target,
            connect_timeout=config.target.connect_timeout,
            command_timeout=config.target.command_timeout,
        )
    stack = StackController(runner, target, services, stop_timeout=config.services.stop_timeout)

    gate_kwargs = {"sleep": sleep} if sleep is not None else {}
    gate = HealthGate(interval=config.health.interval, **gate_kwargs)

    if config.health.app_health_url:
        app_probe: ReadinessProbe = HttpProbe(services.app, config.health.app_health_url)
    else:
        app_probe = RemoteHttpProbe(
            stack, path=config.health.health_path, port=config.health.app_port
        )

    return DeployContext(
        config=config,
        target=target,
        release=release,
        services=services,
        runner=runner,
        stack=stack,
        resolver=ImageResolver(
            runner,
            registry_username=settings.registry_username,
            registry_password=password,
            pull_timeout=config.image.pull_timeout,
        ),
        gate=gate,
        backup_agent=BackupAgent(
            stack,
            backup_path=target.backup_path,
            env_file_path=target.env_file_path,
            dump_timeout=config.backup.dump_timeout,
        ),
        migrations=MigrationRunner(
            stack,
            cache_commands=config.migration.cache_commands,
            migrate_timeout=config.migration.timeout,
        ),
        advisor=RollbackAdvisor(target, services),
        db_probe=DatabasePingProbe(stack, command=config.health.db_ping_command),
        app_probe=app_probe,
        force=config.force,
        auto_rollback=config.auto_rollback,
    )


# ---------------------------------------------------------------------------
# DeployModel -- state machine model with guard methods
# ---------------------------------------------------------------------------


class DeployModel:
    """Model object for the ``transitions`` async state machine.

    Wraps a :class:`DeploymentState` and exposes the guard methods
    required by :data:`TRANSITIONS`.  The ``state`` attribute is managed
    by the ``AsyncMachine``.
    """

    def __init__(self, deployment_state: DeploymentState) -> None:
        self._ds = deployment_state
        self.state: str = deployment_state.current_state

    def is_configured(self, *args, **kwargs) -> bool:
        """True when a host and an image reference are known."""
        return bool(self._ds.host and self._ds.image_ref)

    def image_verified(self, *args, **kwargs) -> bool:
        """True once the image architecture matched the host."""
        return self._ds.image_verified

    def db_gate_cleared(self, *args, **kwargs) -> bool:
        return self._ds.db_gate_cleared

    def app_tier_launched(self, *args, **kwargs) -> bool:
        return self._ds.app_tier_started

    def app_gate_cleared(self, *args, **kwargs) -> bool:
        return self._ds.app_gate_cleared

    def migrations_cleared(self, *args, **kwargs) -> bool:
        return self._ds.migrations_cleared

    def final_gate_cleared(self, *args, **kwargs) -> bool:
        return self._ds.final_gate_cleared


async def _advance(model: DeployModel, trigger: str, expected: str) -> None:
    """Fire *trigger* and insist that the machine reached *expected*."""
    await getattr(model, trigger)()
    if model.state != expected:
        raise DeployError(
            f"Transition '{trigger}' was refused in state '{model.state}'"
        )


# ---------------------------------------------------------------------------
# Stage handlers (called from the deploy loop)
# ---------------------------------------------------------------------------


async def _run_gate(
    ctx: DeployContext,
    state: DeploymentState,
    probe: ReadinessProbe,
    max_attempts: int,
    label: str,
) -> HealthCheckResult:
    """Run one health gate, honouring the force flag."""
    try:
        result = await ctx.gate.wait(probe, max_attempts)
    except HealthCheckTimeoutError as exc:
        if not (ctx.force and exc.overridable):
            raise
        message = f"FORCED past failed {label} health gate: {exc}"
        logger.warning(message)
        state.add_warning(message)
        result = HealthCheckResult(
            target=exc.target,
            attempt_count=exc.attempts,
            max_attempts=max_attempts,
            elapsed=exc.elapsed,
            passed=False,
            overridden=True,
        )
    record = dataclasses.asdict(result)
    record["label"] = label
    state.health_results.append(record)
    return result


async def _stage_resolve_image(
    ctx: DeployContext, state: DeploymentState, model: DeployModel
) -> None:
    """init → resolving_image → starting_db."""
    await _advance(model, "resolve_image", "resolving_image")
    state.current_state = model.state

    resolved = await ctx.resolver.resolve(ctx.release, force=ctx.force)
    state.host_architecture = resolved.host_arch
    state.image_architecture = resolved.image_arch
    state.image_repulled = resolved.repulled
    state.image_verified = True
    state.complete_stage(STAGE_RESOLVE_IMAGE)

    await _advance(model, "image_resolved", "starting_db")


async def _stage_start_db(
    ctx: DeployContext, state: DeploymentState, model: DeployModel
) -> None:
    """starting_db → waiting_db: stop the old stack, start wave 1."""
    await ctx.stack.stop_all()
    result = await ctx.stack.start_database(ctx.release)
    if not result.ok:
        state.add_warning(
            f"Starting {ctx.services.database} exited with {result.returncode}; "
            "waiting for the health gate"
        )
    state.complete_stage(STAGE_START_DB)
    await _advance(model, "db_started", "waiting_db")


async def _stage_wait_db(
    ctx: DeployContext, state: DeploymentState, model: DeployModel
) -> None:
    """waiting_db → starting_app_tier."""
    await _run_gate(ctx, state, ctx.db_probe, ctx.config.health.db_max_attempts, "database")
    state.db_gate_cleared = True
    state.complete_stage(STAGE_WAIT_DB)
    await _advance(model, "db_ready", "starting_app_tier")


async def _stage_start_app_tier(
    ctx: DeployContext, state: DeploymentState, model: DeployModel
) -> None:
    """starting_app_tier → waiting_app: start wave 2."""
    result = await ctx.stack.start_app_tier(ctx.release)
    state.app_tier_started = True
    if not result.ok:
        state.add_warning(
            f"Starting the app tier exited with {result.returncode}; "
            "waiting for the health gate"
        )
    state.complete_stage(STAGE_START_APP_TIER)
    await _advance(model, "app_tier_started", "waiting_app")


async def _stage_wait_app(
    ctx: DeployContext, state: DeploymentState, model: DeployModel
) -> None:
    """waiting_app → backing_up."""
    await _run_gate(ctx, state, ctx.app_probe, ctx.config.health.app_max_attempts, "application")
    state.app_gate_cleared = True
    state.complete_stage(STAGE_WAIT_APP)
    await _advance(model, "app_ready", "backing_up")


async def _stage_backup(
    ctx: DeployContext, state: DeploymentState, model: DeployModel
) -> None:
    """backing_up → migrating.  Never fails the run for backup problems."""
    if ctx.config.backup.enabled:
        artifact = await ctx.backup_agent.run()
        for warning in ctx.backup_agent.warnings:
            state.add_warning(warning)
        if artifact is not None:
            state.backup = dataclasses.asdict(artifact)
    else:
        state.add_warning("Database backup disabled by configuration")
    state.complete_stage(STAGE_BACKUP_DB)
    await _advance(model, "backup_done", "migrating")


async def _stage_migrations(
    ctx: DeployContext, state: DeploymentState, model: DeployModel
) -> None:
    """migrating → final_check."""
    if not ctx.config.migration.enabled:
        state.add_warning("Migrations disabled by configuration")
    else:
        try:
            outcome = await ctx.migrations.run()
        except MigrationFailureError as exc:
            if not (ctx.force and exc.overridable):
                raise
            message = f"FORCED past failed migrations: {exc}"
            logger.warning(message)
            state.add_warning(message)
        else:
            for failure in outcome.cache_failures:
                state.add_warning(f"Cache rebuild failed: {failure}")
    state.migrations_cleared = True
    state.complete_stage(STAGE_MIGRATIONS)
    await _advance(model, "migrations_done", "final_check")


async def _stage_final_check(
    ctx: DeployContext, state: DeploymentState, model: DeployModel
) -> None:
    """final_check → complete, then best-effort cleanup."""
    await _run_gate(ctx, state, ctx.app_probe, ctx.config.health.app_max_attempts, "final")
    state.final_gate_cleared = True
    state.complete_stage(STAGE_FINAL_HEALTH)
    await _advance(model, "deploy_verified", "complete")
    try:
        pruned = await ctx.stack.prune_images()
    except TransportError as exc:
        logger.warning("Image cleanup skipped: %s", exc)
        pruned = False
    if not pruned:
        state.add_warning("Removing dangling images failed")


STAGE_HANDLERS: dict[
    str, Callable[[DeployContext, DeploymentState, DeployModel], Awaitable[None]]
] = {
    "init": _stage_resolve_image,
    "starting_db": _stage_start_db,
    "waiting_db": _stage_wait_db,
    "starting_app_tier": _stage_start_app_tier,
    "waiting_app": _stage_wait_app,
    "backing_up": _stage_backup,
    "migrating": _stage_migrations,
    "final_check": _stage_final_check,
}


# ---------------------------------------------------------------------------
# Loop and entry point
# ---------------------------------------------------------------------------


async def _run_deploy_loop(
    ctx: DeployContext,
    state: DeploymentState,
    model: DeployModel,
    timer: StageTimer,
    shutdown: GracefulShutdown,
) -> None:
    """Run stage handlers until the machine reaches a terminal state."""
    while model.state not in TERMINAL_STATES:
        current = model.state

        if shutdown.should_stop:
            raise DeploymentInterruptedError(
                f"Deployment interrupted before '{STATE_TO_STAGE.get(current, current)}'"
            )

        handler = STAGE_HANDLERS.get(current)
        if handler is None:
            raise DeployError(f"No handler for state '{current}'")

        timer.start_stage(STATE_TO_STAGE[current])
        state.current_state = current
        await handler(ctx, state, model)
        timer.end_stage()

        state.stage_durations = timer.stage_durations
        state.current_state = model.state
        state.save()

    logger.info("Deployment reached terminal state: %s", model.state)


async def _handle_failure(
    ctx: DeployContext,
    state: DeploymentState,
    model: DeployModel,
    timer: StageTimer,
    error: DeployError,
) -> None:
    """Record a fatal error, collect logs and optionally roll back.

    The run report is attached to the error as ``error.state``.
    """
    error.state = state
    stage = timer.current_stage or STATE_TO_STAGE.get(model.state, model.state)
    timer.end_stage()
    state.stage_durations = timer.stage_durations
    state.failed_stage = stage
    state.error_kind = error.kind.value
    state.error_message = str(error)
    logger.error("Deployment failed at stage '%s': %s", stage, error)

    await model.fail()  # type: ignore[attr-defined]
    state.current_state = model.state

    if isinstance(error, TransportError):
        # The host is unreachable; nothing more can be collected or undone.
        return

    service = ctx.services.app if state.app_tier_started else ctx.services.database
    try:
        state.last_logs = await ctx.stack.service_logs(service)
    except TransportError as exc:
        logger.warning("Could not collect logs for %s: %s", service, exc)

    if ctx.auto_rollback and state.app_tier_started:
        try:
            state.rolled_back = await execute_rollback(ctx.stack, ctx.release)
        except TransportError as exc:
            logger.error("Automatic rollback failed: %s", exc)
        if state.rolled_back:
            state.add_warning(f"Application tier rolled back to {state.previous_image}")


def _record_advice(state: DeploymentState, advice: RollbackAdvice) -> None:
    state.previous_image = advice.previous_image
    state.rollback_command = advice.command


async def execute_deployment(
    config: DeployConfig,
    build_number: int,
    settings: DeploySettings | None = None,
    *,
    runner: CommandRunner | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    shutdown: GracefulShutdown | None = None,
) -> DeploymentState:
    """Run the full deployment for *build_number*.

    Args:
        config: Loaded deployment configuration.
        build_number: Numeric CI build identifier.
        settings: Invocation-time settings carrying secrets.
        runner: Command runner override (tests); defaults to SSH.
        sleep: Health-gate sleep override (tests).
        shutdown: Pre-built shutdown handler; one is installed if omitted.

    Returns:
        The final :class:`DeploymentState` (``current_state == "complete"``).

    Raises:
        DeployError: any fatal error; the state has been saved with the
            failed stage before the error propagates.
    """
    ctx = build_context(config, build_number, settings, runner=runner, sleep=sleep)

    state = DeploymentState(
        build_number=build_number,
        environment=config.environment,
        image_ref=ctx.release.image_ref,
        host=ctx.target.host,
        forced=ctx.force,
        output_dir=config.output_dir,
    )
    deployment_id_var.set(state.deployment_id)
    _record_advice(state, ctx.advisor.advise(ctx.release))

    model = DeployModel(state)
    create_deploy_machine(model)
    timer = StageTimer()

    own_shutdown = shutdown is None
    if shutdown is None:
        shutdown = GracefulShutdown()
        shutdown.install()
    shutdown.set_state(state)

    logger.info(
        "Deploying %s (build %d) to %s [%s]",
        ctx.release.image_ref, build_number, ctx.target.host, config.environment,
    )
    if ctx.force:
        logger.warning("Force flag set: health-gate and migration failures will not abort")

    try:
        await asyncio.wait_for(
            _run_deploy_loop(ctx, state, model, timer, shutdown),
            timeout=config.pipeline_timeout,
        )
    except asyncio.TimeoutError as exc:
        error = PhaseTimeoutError("pipeline", config.pipeline_timeout)
        await _handle_failure(ctx, state, model, timer, error)
        raise error from exc
    except DeployError as exc:
        await _handle_failure(ctx, state, model, timer, exc)
        raise
    finally:
        state.finished_at = utc_now_iso()
        state.save()
        if own_shutdown:
            shutdown.uninstall()

    return state


async def resolve_only(
    config: DeployConfig,
    build_number: int,
    settings: DeploySettings | None = None,
    *,
    runner: CommandRunner | None = None,
):
    """Run the Image Resolver alone (pull + architecture check)."""
    ctx = build_context(config, build_number, settings, runner=runner)
    return await ctx.resolver.resolve(ctx.release, force=ctx.force)
