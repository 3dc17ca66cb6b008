"""
Migration Task Runner

Runs a one-shot database schema migration as a container task during
infrastructure provisioning and blocks until the task has succeeded or failed.
"""

__version__ = "0.1.0"
__author__ = "Migration Runner Team"

from migration_runner.models.request import LifecycleAction, MigrationRequest
from migration_runner.models.outcome import Outcome, OutcomeResult
from migration_runner.orchestrator.orchestrator import MigrationOrchestrator

__all__ = [
    "LifecycleAction",
    "MigrationRequest",
    "Outcome",
    "OutcomeResult",
    "MigrationOrchestrator",
]
