"""
Data models for the Migration Runner.

This module contains Pydantic models for migration requests, task state,
and orchestration outcomes.
"""

from migration_runner.models.request import LifecycleAction, MigrationRequest
from migration_runner.models.task import TaskHandle, TaskSnapshot, TaskStatus
from migration_runner.models.outcome import (
    OrchestrationState,
    Outcome,
    OutcomeResult,
)

__all__ = [
    "LifecycleAction",
    "MigrationRequest",
    "TaskHandle",
    "TaskSnapshot",
    "TaskStatus",
    "OrchestrationState",
    "Outcome",
    "OutcomeResult",
]
