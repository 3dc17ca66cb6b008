"""
Error handling for the Migration Runner.

This module provides categorisation and logging of runner errors and
retry logic with exponential backoff for scheduler status queries.
"""

import asyncio
import inspect
import logging
import random
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from .exceptions import (
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


class ErrorCategory(str, Enum):
    """Categories of errors for handling and reporting."""
    CONFIGURATION = "configuration"
    REQUEST = "request"
    LAUNCH = "launch"
    POLLING = "polling"
    TASK = "task"
    TIMEOUT = "timeout"
    CONCURRENCY = "concurrency"
    SCHEDULER = "scheduler"
    CALLBACK = "callback"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Context information for an error occurrence."""
    timestamp: datetime = field(default_factory=datetime.now)
    operation: Optional[str] = None
    task_id: Optional[str] = None
    request_token: Optional[str] = None
    additional_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetryConfig:
    """Configuration for retry logic."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: List[Type[Exception]] = field(default_factory=list)


@dataclass
class ErrorInfo:
    """Categorised error information."""
    error: Exception
    category: ErrorCategory
    severity: ErrorSeverity
    context: ErrorContext
    traceback_str: str
    retry_count: int = 0
    is_recoverable: bool = True


class ErrorHandler:
    """
    Categorises runner errors and logs them at a matching level.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._error_mappings = self._build_error_mappings()

    def _build_error_mappings(self) -> Dict[Type[Exception], Dict[str, Any]]:
        """Build mapping of exception types to error categories and severities."""
        # Subclasses come before their bases so the isinstance scan picks the closest match.
        return {
            ConfigurationError: {
                "category": ErrorCategory.CONFIGURATION,
                "severity": ErrorSeverity.HIGH,
                "recoverable": False,
            },
            RequestValidationError: {
                "category": ErrorCategory.REQUEST,
                "severity": ErrorSeverity.HIGH,
                "recoverable": False,
            },
            LaunchError: {
                "category": ErrorCategory.LAUNCH,
                "severity": ErrorSeverity.CRITICAL,
                "recoverable": False,
            },
            PollTransientError: {
                "category": ErrorCategory.POLLING,
                "severity": ErrorSeverity.LOW,
                "recoverable": True,
            },
            PollExhaustedError: {
                "category": ErrorCategory.POLLING,
                "severity": ErrorSeverity.HIGH,
                "recoverable": False,
            },
            SchedulerError: {
                "category": ErrorCategory.SCHEDULER,
                "severity": ErrorSeverity.MEDIUM,
                "recoverable": True,
            },
            TaskFailedError: {
                "category": ErrorCategory.TASK,
                "severity": ErrorSeverity.HIGH,
                "recoverable": False,
            },
            MigrationTimeoutError: {
                "category": ErrorCategory.TIMEOUT,
                "severity": ErrorSeverity.HIGH,
                "recoverable": False,
            },
            CallbackError: {
                "category": ErrorCategory.CALLBACK,
                "severity": ErrorSeverity.MEDIUM,
                "recoverable": True,
            },
            OrchestratorBusyError: {
                "category": ErrorCategory.CONCURRENCY,
                "severity": ErrorSeverity.MEDIUM,
                "recoverable": False,
            },
            TimeoutError: {
                "category": ErrorCategory.POLLING,
                "severity": ErrorSeverity.MEDIUM,
                "recoverable": True,
            },
        }

    def categorize_error(self, error: Exception, context: Optional[ErrorContext] = None) -> ErrorInfo:
        """
        Categorize an error.

        Args:
            error: The exception that occurred
            context: Optional context information

        Returns:
            ErrorInfo object with categorized error details
        """
        mapping = self._error_mappings.get(type(error))

        if not mapping:
            # Fall back to the closest registered parent class
            for exc_type, exc_mapping in self._error_mappings.items():
                if isinstance(error, exc_type):
                    mapping = exc_mapping
                    break

        if not mapping:
            mapping = {
                "category": ErrorCategory.UNKNOWN,
                "severity": ErrorSeverity.MEDIUM,
                "recoverable": True,
            }

        return ErrorInfo(
            error=error,
            category=mapping["category"],
            severity=mapping["severity"],
            context=context or ErrorContext(),
            traceback_str=traceback.format_exc(),
            retry_count=getattr(error, "_retry_count", 0),
            is_recoverable=mapping["recoverable"],
        )

    def handle_error(self, error: Exception, context: Optional[ErrorContext] = None) -> ErrorInfo:
        """Categorize and log an error."""
        error_info = self.categorize_error(error, context)
        self._log_error(error_info)
        return error_info

    def _log_error(self, error_info: ErrorInfo) -> None:
        """Log error information with appropriate level."""
        log_data = {
            "error_type": type(error_info.error).__name__,
            "error_message": str(error_info.error),
            "category": error_info.category.value,
            "severity": error_info.severity.value,
            "operation": error_info.context.operation,
            "task_id": error_info.context.task_id,
            "request_token": error_info.context.request_token,
            "retry_count": error_info.retry_count,
            "is_recoverable": error_info.is_recoverable,
        }

        if error_info.severity == ErrorSeverity.CRITICAL:
            self.logger.critical("Critical error occurred", extra=log_data)
        elif error_info.severity == ErrorSeverity.HIGH:
            self.logger.error("High severity error occurred", extra=log_data)
        elif error_info.severity == ErrorSeverity.MEDIUM:
            self.logger.warning("Medium severity error occurred", extra=log_data)
        else:
            self.logger.info("Low severity error occurred", extra=log_data)

        if error_info.severity in [ErrorSeverity.HIGH, ErrorSeverity.CRITICAL]:
            self.logger.debug("Error traceback", extra={"traceback": error_info.traceback_str})


class RetryHandler:
    """
    Handles retry logic with exponential backoff and jitter.
    """

    def __init__(
        self,
        error_handler: Optional[ErrorHandler] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.error_handler = error_handler or ErrorHandler()
        self.logger = logging.getLogger(__name__)
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic

    def compute_delay(self, attempt: int, config: RetryConfig) -> float:
        """Backoff delay before retry number ``attempt + 1``."""
        delay = min(
            config.base_delay * (config.exponential_base ** attempt),
            config.max_delay
        )
        if config.jitter:
            delay *= (0.5 + random.random() * 0.5)
        return delay

    async def retry_with_backoff(
        self,
        func: Callable,
        *args,
        retry_config: Optional[RetryConfig] = None,
        context: Optional[ErrorContext] = None,
        raise_exhausted: bool = False,
        deadline: Optional[float] = None,
        **kwargs
    ) -> Any:
        """
        Execute a function with retry logic and exponential backoff.

        Args:
            func: Function or coroutine function to execute
            *args: Positional arguments for the function
            retry_config: Retry configuration
            context: Error context information
            raise_exhausted: Raise PollExhaustedError instead of the last
                exception once all attempts fail
            deadline: Clock reading after which no further attempt is made;
                backoff sleeps are shortened so they never pass it
            **kwargs: Keyword arguments for the function

        Returns:
            Result of the function execution

        Raises:
            Non-retryable exceptions immediately; the last exception (or
            PollExhaustedError) when all retries are exhausted
        """
        config = retry_config or RetryConfig()
        last_exception: Optional[Exception] = None
        attempts = 0

        for attempt in range(config.max_attempts):
            try:
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                return result

            except Exception as e:
                if config.retryable_exceptions and not any(
                    isinstance(e, exc_type) for exc_type in config.retryable_exceptions
                ):
                    self.logger.info(f"Exception {type(e).__name__} is not retryable")
                    raise

                last_exception = e
                attempts = attempt + 1
                setattr(e, "_retry_count", attempt + 1)
                self.error_handler.handle_error(e, context)

                if attempt == config.max_attempts - 1:
                    break

                delay = self.compute_delay(attempt, config)
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        self.logger.info("Deadline reached; not retrying")
                        break
                    delay = min(delay, remaining)
                self.logger.info(
                    f"Retrying in {delay:.2f} seconds (attempt {attempt + 1}/{config.max_attempts})"
                )
                await self._sleep(delay)

        if raise_exhausted:
            raise PollExhaustedError(
                f"Gave up after {attempts} attempts: {last_exception}",
                attempts=attempts,
                last_error=last_exception,
            ) from last_exception
        if last_exception:
            raise last_exception


def create_poll_retry_config(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0
) -> RetryConfig:
    """Create retry configuration for task status queries."""
    return RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        retryable_exceptions=[PollTransientError]
    )


def create_callback_retry_config() -> RetryConfig:
    """Create retry configuration for completion callback delivery."""
    return RetryConfig(
        max_attempts=3,
        base_delay=0.5,
        max_delay=4.0,
        retryable_exceptions=[CallbackError]
    )
