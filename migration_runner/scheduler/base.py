"""
Base class for remote task schedulers.

A scheduler launches a single task run, reports its state on request and
can be asked to stop it. Concrete implementations wrap a provider API.
"""

from abc import ABC, abstractmethod
import logging

from migration_runner.models.request import MigrationRequest
from migration_runner.models.task import TaskHandle, TaskSnapshot


class TaskScheduler(ABC):
    """
    Abstract base class for container task schedulers.

    Implementations raise LaunchError from launch_task, PollTransientError
    from describe_task and SchedulerError from stop_task.
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def launch_task(self, request: MigrationRequest) -> TaskHandle:
        """
        Submit one task run for the request.

        Args:
            request: Migration request with cluster, task definition and placement

        Returns:
            Handle of the launched task
        """
        pass

    @abstractmethod
    async def describe_task(self, handle: TaskHandle) -> TaskSnapshot:
        """Query the current state of a launched task."""
        pass

    @abstractmethod
    async def stop_task(self, handle: TaskHandle, reason: str) -> None:
        """Ask the scheduler to stop a task."""
        pass
