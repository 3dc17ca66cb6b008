"""
Task schedulers for the Migration Runner.
"""

from migration_runner.scheduler.base import TaskScheduler
from migration_runner.scheduler.ecs import EcsTaskScheduler

__all__ = [
    "TaskScheduler",
    "EcsTaskScheduler",
]
