"""Tests for the deployment state machine."""

from __future__ import annotations

import pytest

from src.deploy_orchestrator.state_machine import (
    NON_TERMINAL_STATES,
    STATES,
    TERMINAL_STATES,
    TRANSITIONS,
    create_deploy_machine,
)


class DeployModelStub:
    """Stub model implementing all guard conditions."""

    def __init__(self) -> None:
        self.state: str = "init"
        self.configured = True
        self.verified = True
        self.db_cleared = True
        self.launched = True
        self.app_cleared = True
        self.migrated = True
        self.final_cleared = True

    def is_configured(self, *args, **kwargs) -> bool:
        return self.configured

    def image_verified(self, *args, **kwargs) -> bool:
        return self.verified

    def db_gate_cleared(self, *args, **kwargs) -> bool:
        return self.db_cleared

    def app_tier_launched(self, *args, **kwargs) -> bool:
        return self.launched

    def app_gate_cleared(self, *args, **kwargs) -> bool:
        return self.app_cleared

    def migrations_cleared(self, *args, **kwargs) -> bool:
        return self.migrated

    def final_gate_cleared(self, *args, **kwargs) -> bool:
        return self.final_cleared


HAPPY_PATH = [
    ("resolve_image", "resolving_image"),
    ("image_resolved", "starting_db"),
    ("db_started", "waiting_db"),
    ("db_ready", "starting_app_tier"),
    ("app_tier_started", "waiting_app"),
    ("app_ready", "backing_up"),
    ("backup_done", "migrating"),
    ("migrations_done", "final_check"),
    ("deploy_verified", "complete"),
]


def _machine(state: str = "init") -> DeployModelStub:
    model = DeployModelStub()
    create_deploy_machine(model, initial_state=state)
    return model


def test_state_inventory():
    assert len(STATES) == 11
    assert set(TERMINAL_STATES) == {"complete", "failed"}
    assert "failed" not in NON_TERMINAL_STATES
    assert len(TRANSITIONS) == 10


@pytest.mark.asyncio
async def test_happy_path():
    model = _machine()
    for trigger, expected in HAPPY_PATH:
        await getattr(model, trigger)()
        assert model.state == expected


@pytest.mark.asyncio
async def test_unverified_image_blocks_app_tier():
    model = _machine("waiting_db")
    model.verified = False
    await model.db_ready()
    assert model.state == "waiting_db"


@pytest.mark.asyncio
async def test_unhealthy_db_blocks_app_tier():
    model = _machine("waiting_db")
    model.db_cleared = False
    await model.db_ready()
    assert model.state == "waiting_db"


@pytest.mark.asyncio
async def test_migrations_require_app_gate():
    model = _machine("backing_up")
    model.app_cleared = False
    await model.backup_done()
    assert model.state == "backing_up"


@pytest.mark.asyncio
async def test_unconfigured_run_cannot_start():
    model = _machine()
    model.configured = False
    await model.resolve_image()
    assert model.state == "init"


@pytest.mark.asyncio
async def test_out_of_order_trigger_is_ignored():
    model = _machine()
    await model.migrations_done()
    assert model.state == "init"


@pytest.mark.asyncio
@pytest.mark.parametrize("state", NON_TERMINAL_STATES)
async def test_fail_from_any_non_terminal_state(state):
    model = _machine(state)
    await model.fail()
    assert model.state == "failed"


@pytest.mark.asyncio
async def test_terminal_states_are_final():
    model = _machine("complete")
    await model.fail()
    assert model.state == "complete"
