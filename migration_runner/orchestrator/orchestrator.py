"""
Migration orchestrator for running a one-shot migration task.

This module provides the MigrationOrchestrator class that launches the
migration task on a remote scheduler, polls it until it reaches a terminal
state or the deadline passes, and reduces the run to a single Outcome.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from migration_runner.config import OrchestratorSettings
from migration_runner.core.error_handler import (
    ErrorContext,
    ErrorHandler,
    RetryHandler,
    create_poll_retry_config,
)
from migration_runner.core.exceptions import (
    LaunchError,
    MigrationTimeoutError,
    OrchestratorBusyError,
    SchedulerError,
    TaskFailedError,
)
from migration_runner.models.outcome import OrchestrationState, Outcome, OutcomeResult
from migration_runner.models.request import MigrationRequest
from migration_runner.models.task import TaskHandle, TaskSnapshot, TaskStatus
from migration_runner.scheduler.base import TaskScheduler

logger = logging.getLogger(__name__)

StateCallback = Callable[[OrchestrationState, Dict[str, Any]], None]


class MigrationOrchestrator:
    """
    Runs one migration task to completion.

    State machine::

        submitted -> {pending, running}* -> succeeded | exit_nonzero
                                          | stopped_abnormally | timed_out
                                          | poll_failed
        submitted -> launch_failed

    Only ``succeeded`` (exit code 0) maps to a SUCCESS outcome, apart from
    Delete actions which are ``skipped`` and always succeed.
    """

    def __init__(
        self,
        scheduler: TaskScheduler,
        settings: Optional[OrchestratorSettings] = None,
        error_handler: Optional[ErrorHandler] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Initialize the migration orchestrator.

        Args:
            scheduler: Remote task scheduler
            settings: Polling and timeout settings (defaults if omitted)
            error_handler: Error handler used for logging failures (optional)
            sleep: Coroutine used to wait between polls (asyncio.sleep by default)
            clock: Monotonic clock in seconds (time.monotonic by default)
        """
        self.scheduler = scheduler
        self.settings = settings or OrchestratorSettings()
        self.error_handler = error_handler or ErrorHandler(logger)
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self.retry_handler = RetryHandler(self.error_handler, sleep=self._sleep, clock=self._clock)

        self._active_handle: Optional[TaskHandle] = None
        self._running = False
        self._state_callbacks: List[StateCallback] = []

    @property
    def active_handle(self) -> Optional[TaskHandle]:
        """Handle of the task currently being tracked, if any."""
        return self._active_handle

    def add_state_callback(self, callback: StateCallback):
        """Add a state transition callback."""
        self._state_callbacks.append(callback)

    def remove_state_callback(self, callback: StateCallback):
        """Remove a state transition callback."""
        if callback in self._state_callbacks:
            self._state_callbacks.remove(callback)

    def _transition(self, state: OrchestrationState, **details: Any):
        logger.info(f"Migration state: {state.value}", extra={"state": state.value, **details})
        for callback in self._state_callbacks:
            try:
                callback(state, details)
            except Exception as e:
                logger.warning(f"State callback failed: {e}")

    async def run(self, request: MigrationRequest, timeout: Optional[float] = None) -> Outcome:
        """
        Run the migration for a lifecycle event.

        Args:
            request: Migration request
            timeout: Overall deadline in seconds, overriding settings.timeout

        Returns:
            Outcome of the run

        Raises:
            OrchestratorBusyError: If this orchestrator is already running a request
        """
        if self._running:
            raise OrchestratorBusyError(
                "A migration run is already in progress",
                details={"task_id": str(self._active_handle) if self._active_handle else None}
            )

        started = self._clock()

        if not request.action.runs_migration:
            self._transition(OrchestrationState.SKIPPED, action=request.action.value)
            return Outcome(
                result=OutcomeResult.SUCCESS,
                reason=f"{request.action.value} requested; migration task not run",
                elapsed=self._clock() - started,
                final_state=OrchestrationState.SKIPPED,
            )

        self._running = True
        try:
            return await self._launch_and_poll(
                request, started, timeout if timeout is not None else self.settings.timeout
            )
        finally:
            self._active_handle = None
            self._running = False

    def run_sync(self, request: MigrationRequest, timeout: Optional[float] = None) -> Outcome:
        """Blocking wrapper around run() for synchronous callers."""
        return asyncio.run(self.run(request, timeout=timeout))

    async def _launch_and_poll(
        self,
        request: MigrationRequest,
        started: float,
        timeout: float
    ) -> Outcome:
        context = ErrorContext(operation="launch_task", request_token=request.idempotency_token)
        self._transition(
            OrchestrationState.SUBMITTED,
            action=request.action.value,
            cluster=request.cluster,
            task_definition=request.task_definition,
        )

        try:
            handle = await self.scheduler.launch_task(request)
        except LaunchError as e:
            self.error_handler.handle_error(e, context)
            return self._finish(
                OrchestrationState.LAUNCH_FAILED, e.message, started
            )

        self._active_handle = handle
        context.task_id = handle.task_id
        context.operation = "describe_task"
        deadline = self._clock() + timeout
        retry_config = create_poll_retry_config(
            max_attempts=self.settings.poll_retry_attempts,
            base_delay=self.settings.poll_retry_base_delay,
            max_delay=self.settings.poll_retry_max_delay,
        )

        poll_count = 0
        last_snapshot: Optional[TaskSnapshot] = None

        while True:
            # Wait before every poll; a task is not always visible right after launch
            await self._sleep(min(self.settings.poll_interval, max(deadline - self._clock(), 0.0)))

            try:
                snapshot = await self.retry_handler.retry_with_backoff(
                    self.scheduler.describe_task,
                    handle,
                    retry_config=retry_config,
                    context=context,
                    raise_exhausted=True,
                    deadline=deadline,
                )
            except SchedulerError as e:
                if self._clock() >= deadline:
                    return await self._time_out(handle, timeout, started, poll_count, last_snapshot)
                # PollExhaustedError or a non-transient scheduler error
                self.error_handler.handle_error(e, context)
                await self._stop_quietly(handle, "Migration status polling failed")
                return self._finish(
                    OrchestrationState.POLL_FAILED,
                    f"Status polling for migration task {handle.task_id} failed: {e}",
                    started,
                    handle=handle,
                    poll_count=poll_count,
                )

            poll_count += 1
            last_snapshot = snapshot

            if snapshot.status.is_terminal:
                return self._conclude(handle, snapshot, started, poll_count)

            state = (
                OrchestrationState.PENDING
                if snapshot.status == TaskStatus.PENDING
                else OrchestrationState.RUNNING
            )
            self._transition(state, task_id=handle.task_id, remote_status=snapshot.remote_status)

            if self._clock() >= deadline:
                return await self._time_out(handle, timeout, started, poll_count, last_snapshot)

    def _conclude(
        self,
        handle: TaskHandle,
        snapshot: TaskSnapshot,
        started: float,
        poll_count: int
    ) -> Outcome:
        """Map a terminal snapshot to an Outcome."""
        task_id = handle.task_id
        stop_details = snapshot.describe_stop()

        if snapshot.status == TaskStatus.SUCCEEDED and snapshot.exit_code == 0:
            return self._finish(
                OrchestrationState.SUCCEEDED,
                f"Migration task {task_id} completed successfully (exit code 0)",
                started,
                handle=handle,
                poll_count=poll_count,
                exit_code=0,
            )

        if snapshot.exit_code is not None:
            state = OrchestrationState.EXIT_NONZERO
            reason = f"Migration task {task_id} failed with exit code {snapshot.exit_code}"
        else:
            state = OrchestrationState.STOPPED_ABNORMALLY
            reason = f"Migration task {task_id} stopped abnormally"
        if stop_details:
            reason = f"{reason}: {stop_details}"

        self.error_handler.handle_error(
            TaskFailedError(reason, exit_code=snapshot.exit_code, stop_reason=stop_details),
            ErrorContext(operation="describe_task", task_id=task_id),
        )
        return self._finish(
            state, reason, started,
            handle=handle, poll_count=poll_count, exit_code=snapshot.exit_code,
        )

    async def _time_out(
        self,
        handle: TaskHandle,
        timeout: float,
        started: float,
        poll_count: int,
        last_snapshot: Optional[TaskSnapshot]
    ) -> Outcome:
        last_status = last_snapshot.status.value if last_snapshot else "unknown"
        reason = (
            f"Migration task {handle.task_id} timed out after {timeout:.0f} seconds "
            f"(last status: {last_status})"
        )
        self.error_handler.handle_error(
            MigrationTimeoutError(reason),
            ErrorContext(operation="poll", task_id=handle.task_id),
        )
        if self.settings.stop_on_timeout:
            await self._stop_quietly(handle, "Migration timed out")
        return self._finish(
            OrchestrationState.TIMED_OUT, reason, started,
            handle=handle, poll_count=poll_count,
        )

    async def _stop_quietly(self, handle: TaskHandle, reason: str):
        """Best-effort stop; failures are logged and never change the outcome."""
        try:
            await self.scheduler.stop_task(handle, reason)
        except Exception as e:
            logger.warning(f"Could not stop task {handle.task_id}: {e}")

    def _finish(
        self,
        state: OrchestrationState,
        reason: str,
        started: float,
        handle: Optional[TaskHandle] = None,
        poll_count: int = 0,
        exit_code: Optional[int] = None
    ) -> Outcome:
        result = (
            OutcomeResult.SUCCESS
            if state == OrchestrationState.SUCCEEDED
            else OutcomeResult.FAILURE
        )
        outcome = Outcome(
            result=result,
            reason=reason,
            elapsed=max(self._clock() - started, 0.0),
            final_state=state,
            task_id=handle.task_id if handle else None,
            poll_count=poll_count,
            exit_code=exit_code,
        )
        self._transition(state, task_id=outcome.task_id, result=result.value)
        return outcome
