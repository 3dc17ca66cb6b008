"""
Pytest configuration and fixtures for the Migration Runner tests.

This module provides a scripted in-memory task scheduler, a fake clock
that advances when the orchestrator sleeps, and common request data.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from migration_runner.config import OrchestratorSettings
from migration_runner.models.request import LifecycleAction, MigrationRequest
from migration_runner.models.task import TaskHandle, TaskSnapshot, TaskStatus
from migration_runner.scheduler.base import TaskScheduler

TASK_ARN = "arn:aws:ecs:us-east-1:123456789012:task/migrations/0f1e2d3c4b5a69788796a5b4c3d2e1f0"
CLUSTER = "app-cluster"
TASK_DEFINITION = "liquibase-migration:7"


def snapshot(
    status: TaskStatus,
    exit_code: Optional[int] = None,
    stop_code: Optional[str] = None,
    stopped_reason: Optional[str] = None
) -> TaskSnapshot:
    """Build a task snapshot."""
    return TaskSnapshot(
        status=status,
        exit_code=exit_code,
        stop_code=stop_code,
        stopped_reason=stopped_reason,
        remote_status=status.value.upper(),
    )


RUNNING = snapshot(TaskStatus.RUNNING)
PENDING = snapshot(TaskStatus.PENDING)
SUCCEEDED = snapshot(TaskStatus.SUCCEEDED, exit_code=0, stop_code="EssentialContainerExited")


class ScriptedScheduler(TaskScheduler):
    """
    In-memory scheduler that replays a script of poll results.

    Each describe_task call consumes the next script item; the last item is
    repeated once the script runs out. Exception items are raised.
    """

    def __init__(
        self,
        script: Sequence[Union[TaskSnapshot, Exception]] = (),
        launch_error: Optional[Exception] = None,
        stop_error: Optional[Exception] = None,
        task_id: str = TASK_ARN
    ):
        super().__init__()
        self.script: List[Union[TaskSnapshot, Exception]] = list(script)
        self.launch_error = launch_error
        self.stop_error = stop_error
        self.task_id = task_id
        self.launch_calls: List[MigrationRequest] = []
        self.describe_calls: List[TaskHandle] = []
        self.stop_calls: List[Dict[str, Any]] = []

    async def launch_task(self, request: MigrationRequest) -> TaskHandle:
        self.launch_calls.append(request)
        if self.launch_error:
            raise self.launch_error
        return TaskHandle(task_id=self.task_id, cluster=request.cluster)

    async def describe_task(self, handle: TaskHandle) -> TaskSnapshot:
        self.describe_calls.append(handle)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def stop_task(self, handle: TaskHandle, reason: str) -> None:
        self.stop_calls.append({"handle": handle, "reason": reason})
        if self.stop_error:
            raise self.stop_error


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    """Fake clock shared by the orchestrator and its retry handler."""
    return FakeClock()


@pytest.fixture
def settings() -> OrchestratorSettings:
    """Settings with short, round numbers."""
    return OrchestratorSettings(
        poll_interval=10.0,
        timeout=60.0,
        poll_retry_attempts=3,
        poll_retry_base_delay=1.0,
        poll_retry_max_delay=4.0,
    )


@pytest.fixture
def create_request() -> MigrationRequest:
    """Create-action migration request."""
    return MigrationRequest(
        cluster=CLUSTER,
        task_definition=TASK_DEFINITION,
        subnets=["subnet-aaa111", "subnet-bbb222"],
        security_groups=["sg-0123456789"],
        action=LifecycleAction.CREATE,
        idempotency_token="5f0c8a9e-2b44-4c1d-9d53-0e4a3b7c1a22",
    )


@pytest.fixture
def custom_resource_event() -> Dict[str, Any]:
    """CloudFormation custom-resource Create event."""
    return {
        "RequestType": "Create",
        "ServiceToken": "arn:aws:lambda:us-east-1:123456789012:function:run-migration",
        "ResponseURL": "https://cloudformation-custom-resource-response-useast1.s3.amazonaws.com/response",
        "StackId": "arn:aws:cloudformation:us-east-1:123456789012:stack/app/1a2b3c4d",
        "RequestId": "5f0c8a9e-2b44-4c1d-9d53-0e4a3b7c1a22",
        "ResourceType": "Custom::DatabaseMigration",
        "LogicalResourceId": "RunMigration",
        "ResourceProperties": {
            "ServiceToken": "arn:aws:lambda:us-east-1:123456789012:function:run-migration",
            "Cluster": CLUSTER,
            "TaskDefinition": TASK_DEFINITION,
            "Subnets": ["subnet-aaa111", "subnet-bbb222"],
            "SecurityGroups": ["sg-0123456789"],
        },
    }
