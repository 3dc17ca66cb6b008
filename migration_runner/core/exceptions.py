"""
Custom exceptions for the Migration Runner.

This module defines the exception classes raised while launching and
tracking a migration task.
"""

from typing import Any, Dict, Optional


class MigrationRunnerError(Exception):
    """Base exception class for Migration Runner errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(MigrationRunnerError):
    """Raised when runner settings are invalid."""
    pass


class RequestValidationError(MigrationRunnerError):
    """Raised when a lifecycle event cannot be turned into a migration request."""
    pass


class SchedulerError(MigrationRunnerError):
    """Raised when a call to the remote task scheduler fails."""
    pass


class LaunchError(SchedulerError):
    """Raised when the task could not be submitted or placed."""
    pass


class PollTransientError(SchedulerError):
    """Raised when a status query fails in a way that may succeed on retry."""
    pass


class PollExhaustedError(SchedulerError):
    """Raised when status query retries are used up."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_error: Optional[Exception] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.last_error = last_error


class TaskFailedError(MigrationRunnerError):
    """Raised when the migration task exits non-zero or stops abnormally."""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stop_reason: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code
        self.stop_reason = stop_reason


class MigrationTimeoutError(MigrationRunnerError):
    """Raised when no terminal task state is observed before the deadline."""
    pass


class OrchestratorBusyError(MigrationRunnerError):
    """Raised when a second run is started while one is still in flight."""
    pass


class CallbackError(MigrationRunnerError):
    """Raised when the outcome cannot be delivered to the invoking lifecycle."""
    pass
