"""Shared models, constants, and utilities for the deployment tool.

This package is the foundational layer for ``rollout`` (remote stack
operations) and ``deploy_orchestrator`` (pipeline, CLI, display).
"""

__version__ = "1.4.0"
