"""
Core module for the Migration Runner.

This module contains the exception taxonomy and the error and retry
handling shared by the scheduler, orchestrator and lifecycle adapter.
"""

from migration_runner.core.exceptions import (
    MigrationRunnerError,
    ConfigurationError,
    RequestValidationError,
    SchedulerError,
    LaunchError,
    PollTransientError,
    PollExhaustedError,
    TaskFailedError,
    MigrationTimeoutError,
    OrchestratorBusyError,
    CallbackError,
)

__all__ = [
    "MigrationRunnerError",
    "ConfigurationError",
    "RequestValidationError",
    "SchedulerError",
    "LaunchError",
    "PollTransientError",
    "PollExhaustedError",
    "TaskFailedError",
    "MigrationTimeoutError",
    "OrchestratorBusyError",
    "CallbackError",
]
