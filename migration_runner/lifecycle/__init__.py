"""
Provisioning lifecycle adapter.

Connects custom-resource lifecycle events to the migration orchestrator
and reports the outcome back to the lifecycle.
"""

from migration_runner.lifecycle.events import LifecycleEvent, build_request
from migration_runner.lifecycle.handler import handle_event, handler
from migration_runner.lifecycle.response import CompletionReporter

__all__ = [
    "LifecycleEvent",
    "build_request",
    "handle_event",
    "handler",
    "CompletionReporter",
]
