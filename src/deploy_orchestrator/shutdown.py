"""Graceful shutdown handler for a deployment run.

A signal never interrupts a stage half-way: it sets a flag that the
pipeline checks between stages, and the run report is saved immediately
so the operator can see where the deployment stopped.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.deploy_orchestrator.state import DeploymentState

logger = logging.getLogger(__name__)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """Manages graceful shutdown on SIGINT / SIGTERM.

    Usage::

        shutdown = GracefulShutdown()
        shutdown.install()
        shutdown.set_state(deployment_state)

        # Between stages:
        if shutdown.should_stop:
            ...
    """

    def __init__(self) -> None:
        self._should_stop = False
        self._state: DeploymentState | None = None
        self._handling = False  # reentrancy guard
        self._loop: asyncio.AbstractEventLoop | None = None
        self._previous: dict[int, Any] = {}

    @property
    def should_stop(self) -> bool:
        """Whether a shutdown signal has been received."""
        return self._should_stop

    @should_stop.setter
    def should_stop(self, value: bool) -> None:
        self._should_stop = value

    def set_state(self, state: Any) -> None:
        """Inject the run report for emergency saving.

        Deferred so the handler can be installed before the state exists.
        """
        self._state = state

    def install(self) -> None:
        """Register signal handlers for SIGINT and SIGTERM.

        Uses ``loop.add_signal_handler`` when an event loop is running on
        a Unix platform, ``signal.signal`` otherwise.
        """
        if sys.platform != "win32":
            try:
                loop = asyncio.get_running_loop()
                for sig in _SIGNALS:
                    loop.add_signal_handler(sig, self._async_handler)
                self._loop = loop
                return
            except RuntimeError:
                pass
        for sig in _SIGNALS:
            self._previous[sig] = signal.signal(sig, self._signal_handler)

    def uninstall(self) -> None:
        """Restore the handlers that were active before :meth:`install`."""
        if self._loop is not None:
            for sig in _SIGNALS:
                self._loop.remove_signal_handler(sig)
            self._loop = None
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows / fallback)."""
        self._handle(f"signal {signum}")

    def _async_handler(self) -> None:
        """Event-loop signal handler (Unix)."""
        self._handle("shutdown signal")

    def _handle(self, what: str) -> None:
        if self._handling:
            return
        self._handling = True
        logger.warning("Received %s -- stopping after the current stage", what)
        self._should_stop = True
        self._emergency_save()
        self._handling = False

    def _emergency_save(self) -> None:
        """Attempt to save the run report during shutdown."""
        if self._state is None:
            logger.warning("No deployment state to save during shutdown")
            return
        try:
            self._state.interrupted = True
            self._state.interrupt_reason = "Signal received"
            self._state.save()
            logger.info("Deployment state saved")
        except OSError:
            logger.exception("Failed to save deployment state during shutdown")
