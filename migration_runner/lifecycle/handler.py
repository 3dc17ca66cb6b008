"""
Lambda entry point for the migration custom resource.

Each invocation turns one lifecycle event into one migration run and always
answers the lifecycle, even when the event itself is unusable.
"""

import asyncio
import logging
import os
from typing import Any, Dict, Mapping, Optional

from migration_runner.config import OrchestratorSettings, load_settings
from migration_runner.core.exceptions import ConfigurationError, RequestValidationError
from migration_runner.lifecycle.events import LifecycleEvent, build_request
from migration_runner.lifecycle.response import CompletionReporter
from migration_runner.models.outcome import OrchestrationState, Outcome, OutcomeResult
from migration_runner.models.request import LifecycleAction
from migration_runner.orchestrator.orchestrator import MigrationOrchestrator
from migration_runner.scheduler.base import TaskScheduler
from migration_runner.scheduler.ecs import EcsTaskScheduler
from migration_runner.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def remaining_budget(context: Any, settings: OrchestratorSettings) -> float:
    """
    Seconds the orchestrator may spend before the response has to go out.

    Lambda kills the function at its own deadline, so the polling deadline is
    clamped to the remaining invocation time minus the response margin.
    """
    get_remaining = getattr(context, "get_remaining_time_in_millis", None)
    if get_remaining is None:
        return settings.timeout
    budget = get_remaining() / 1000.0 - settings.response_margin
    return max(min(settings.timeout, budget), 0.0)


def _failure(state: OrchestrationState, reason: str) -> Outcome:
    return Outcome(result=OutcomeResult.FAILURE, reason=reason, final_state=state)


def _rejected(action: LifecycleAction, reason: str) -> Outcome:
    """Outcome for an event whose request could not be built."""
    if action == LifecycleAction.DELETE:
        # Deletion is never blocked, not even by a broken resource definition
        logger.warning(f"Ignoring invalid properties on Delete: {reason}")
        return Outcome(
            result=OutcomeResult.SUCCESS,
            reason="Delete requested; migration task not run",
            final_state=OrchestrationState.SKIPPED,
        )
    logger.error(reason)
    return _failure(OrchestrationState.INVALID_REQUEST, reason)


async def handle_event(
    event: Mapping[str, Any],
    context: Any = None,
    scheduler: Optional[TaskScheduler] = None,
    reporter: Optional[CompletionReporter] = None,
    settings: Optional[OrchestratorSettings] = None,
    environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """
    Run the migration for one lifecycle event and report the outcome.

    Args:
        event: Custom-resource event or direct invocation payload
        context: Lambda context (optional)
        scheduler: Task scheduler (ECS by default)
        reporter: Completion reporter (httpx based by default)
        settings: Orchestrator settings (resolved from the environment by default)
        environ: Environment mapping (os.environ by default)

    Returns:
        The response document that was (or would have been) sent to the lifecycle
    """
    environ = os.environ if environ is None else environ
    reporter = reporter or CompletionReporter()
    fallback_token = getattr(context, "aws_request_id", None)

    try:
        lifecycle_event = LifecycleEvent.parse(event)
    except RequestValidationError as e:
        logger.error(e.message)
        lifecycle_event = LifecycleEvent.addressing_only(event)
        outcome = _failure(OrchestrationState.INVALID_REQUEST, e.message)
    else:
        outcome = await _run(
            lifecycle_event, context, scheduler, settings, environ, fallback_token
        )

    body = reporter.build_body(
        lifecycle_event,
        outcome,
        lifecycle_event.physical_id(fallback_token),
        log_stream=getattr(context, "log_stream_name", None),
    )
    if lifecycle_event.is_custom_resource:
        await reporter.send(lifecycle_event.response_url, body)
    return body


async def _run(
    lifecycle_event: LifecycleEvent,
    context: Any,
    scheduler: Optional[TaskScheduler],
    settings: Optional[OrchestratorSettings],
    environ: Mapping[str, str],
    fallback_token: Optional[str]
) -> Outcome:
    action = lifecycle_event.request_type
    logger.info(
        f"Received {action.value} event",
        extra={"request_id": lifecycle_event.request_id, "stack_id": lifecycle_event.stack_id},
    )

    try:
        settings = settings or load_settings(environ=environ)
        request = build_request(lifecycle_event, environ=environ, fallback_token=fallback_token)
    except (ConfigurationError, RequestValidationError) as e:
        return _rejected(action, e.message)
    except Exception as e:
        logger.exception("Could not build the migration request")
        return _rejected(action, f"Invalid migration request: {e}")

    budget = remaining_budget(context, settings)
    if action.runs_migration and budget <= 0:
        # Launching now would only stop the task again mid-migration
        reason = "No time budget left to run the migration task; not launched"
        logger.error(reason)
        return _failure(OrchestrationState.TIMED_OUT, reason)

    orchestrator = MigrationOrchestrator(scheduler or EcsTaskScheduler(settings), settings)
    try:
        return await orchestrator.run(request, timeout=budget)
    except Exception as e:
        logger.exception("Migration run failed unexpectedly")
        return _failure(OrchestrationState.ERROR, f"Unexpected error during migration run: {e}")


def handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """AWS Lambda handler."""
    setup_logging(
        level=os.environ.get("MIGRATION_LOG_LEVEL", "INFO"),
        structured_logging=True,
    )
    return asyncio.run(handle_event(event, context))
