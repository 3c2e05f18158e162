"""Deployment state machine using the ``transitions`` library.

Defines 11 states and 10 transitions.  Every forward transition carries
a guard, so the ordering invariants (database healthy before the app
tier starts, app tier healthy before migrations, migrations before the
final check) and the verified-architecture requirement are enforced by
the machine itself, not only by the order of the pipeline code.
"""

from __future__ import annotations

import logging
from typing import Any

from transitions.extensions.asyncio import AsyncMachine

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------
STATES: list[str] = [
    "init",
    "resolving_image",
    "starting_db",
    "waiting_db",
    "starting_app_tier",
    "waiting_app",
    "backing_up",
    "migrating",
    "final_check",
    "complete",
    "failed",
]

TERMINAL_STATES = ("complete", "failed")

NON_TERMINAL_STATES = [s for s in STATES if s not in TERMINAL_STATES]

# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
TRANSITIONS: list[dict[str, Any]] = [
    {
        "trigger": "resolve_image",
        "source": "init",
        "dest": "resolving_image",
        "conditions": ["is_configured"],
    },
    {
        "trigger": "image_resolved",
        "source": "resolving_image",
        "dest": "starting_db",
        "conditions": ["image_verified"],
    },
    {
        "trigger": "db_started",
        "source": "starting_db",
        "dest": "waiting_db",
        "conditions": ["image_verified"],
    },
    {
        "trigger": "db_ready",
        "source": "waiting_db",
        "dest": "starting_app_tier",
        "conditions": ["db_gate_cleared", "image_verified"],
    },
    {
        "trigger": "app_tier_started",
        "source": "starting_app_tier",
        "dest": "waiting_app",
        "conditions": ["app_tier_launched"],
    },
    {
        "trigger": "app_ready",
        "source": "waiting_app",
        "dest": "backing_up",
        "conditions": ["app_gate_cleared"],
    },
    {
        "trigger": "backup_done",
        "source": "backing_up",
        "dest": "migrating",
        "conditions": ["app_gate_cleared"],
    },
    {
        "trigger": "migrations_done",
        "source": "migrating",
        "dest": "final_check",
        "conditions": ["migrations_cleared"],
    },
    {
        "trigger": "deploy_verified",
        "source": "final_check",
        "dest": "complete",
        "conditions": ["final_gate_cleared"],
    },
    {
        "trigger": "fail",
        "source": NON_TERMINAL_STATES,
        "dest": "failed",
    },
]


def create_deploy_machine(model: Any, initial_state: str = "init") -> AsyncMachine:
    """Create and return an ``AsyncMachine`` bound to *model*.

    The model object must implement the guard methods referenced in
    ``TRANSITIONS`` (``is_configured``, ``image_verified``, ...).  These
    are simple boolean-returning methods.

    Args:
        model: The object whose state the machine manages.
        initial_state: The initial state for the machine.

    Returns:
        Configured ``AsyncMachine`` instance.
    """
    machine = AsyncMachine(
        model=model,
        states=STATES,
        transitions=TRANSITIONS,
        initial=initial_state,
        auto_transitions=False,
        send_event=True,
        queued=True,
        ignore_invalid_triggers=True,
    )
    return machine
