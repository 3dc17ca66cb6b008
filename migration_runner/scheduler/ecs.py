"""
Amazon ECS task scheduler.

This module launches the migration task with ``RunTask``, polls it with
``DescribeTasks`` and stops it with ``StopTask`` using boto3. The blocking
boto3 calls run in the default executor.
"""

import asyncio
from functools import partial
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from migration_runner.config import OrchestratorSettings
from migration_runner.core.exceptions import LaunchError, PollTransientError, SchedulerError
from migration_runner.models.request import MigrationRequest
from migration_runner.models.task import TaskHandle, TaskSnapshot, TaskStatus
from migration_runner.scheduler.base import TaskScheduler

PENDING_STATUSES = {"PROVISIONING", "PENDING", "ACTIVATING"}
RUNNING_STATUSES = {"RUNNING", "DEACTIVATING", "STOPPING", "DEPROVISIONING"}
STOPPED_STATUS = "STOPPED"

FAILED_TO_START = "TaskFailedToStart"
MISSING_REASON = "MISSING"
STOP_REASON_LIMIT = 255


def _error_message(error: Exception) -> str:
    """Extract the service message from a botocore error."""
    if isinstance(error, ClientError):
        err = error.response.get("Error", {})
        code = err.get("Code", "Unknown")
        message = err.get("Message", str(error))
        return f"{code}: {message}"
    return str(error)


def _format_failures(failures: List[Dict[str, Any]]) -> str:
    parts = []
    for failure in failures:
        text = failure.get("reason", "unknown")
        if failure.get("detail"):
            text = f"{text} ({failure['detail']})"
        if failure.get("arn"):
            text = f"{failure['arn']}: {text}"
        parts.append(text)
    return "; ".join(parts) or "no task was started"


class EcsTaskScheduler(TaskScheduler):
    """
    ECS implementation of TaskScheduler.

    Launches a single task with an awsvpc network configuration and maps
    ECS task state and container exit codes to TaskStatus.
    """

    def __init__(
        self,
        settings: Optional[OrchestratorSettings] = None,
        client: Optional[Any] = None
    ):
        """
        Initialize the ECS scheduler.

        Args:
            settings: Orchestrator settings (launch type, public IP, region, profile)
            client: Pre-built boto3 ECS client (optional, created lazily otherwise)
        """
        super().__init__()
        self.settings = settings or OrchestratorSettings()
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            session_params = {}
            if self.settings.profile:
                session_params["profile_name"] = self.settings.profile
            session = boto3.Session(**session_params)

            client_params = {}
            if self.settings.region:
                client_params["region_name"] = self.settings.region
            self._client = session.client("ecs", **client_params)
        return self._client

    async def _call(self, method: str, **params: Any) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, partial(getattr(self.client, method), **params)
        )

    def build_run_task_params(self, request: MigrationRequest) -> Dict[str, Any]:
        """Build RunTask parameters for a request."""
        vpc_config: Dict[str, Any] = {
            "subnets": list(request.subnets),
            "assignPublicIp": self.settings.assign_public_ip,
        }
        if request.security_groups:
            vpc_config["securityGroups"] = list(request.security_groups)

        params: Dict[str, Any] = {
            "cluster": request.cluster,
            "taskDefinition": request.task_definition,
            "count": request.desired_count,
            "launchType": self.settings.launch_type,
            "networkConfiguration": {"awsvpcConfiguration": vpc_config},
            "startedBy": self.settings.started_by,
        }
        if request.idempotency_token:
            params["clientToken"] = request.idempotency_token
        return params

    async def launch_task(self, request: MigrationRequest) -> TaskHandle:
        """Run the migration task once."""
        params = self.build_run_task_params(request)
        self.logger.info(
            f"Running task {request.task_definition} in cluster {request.cluster}"
        )

        try:
            response = await self._call("run_task", **params)
        except (ClientError, BotoCoreError) as e:
            raise LaunchError(
                f"Failed to run migration task: {_error_message(e)}",
                details={"cluster": request.cluster, "task_definition": request.task_definition}
            ) from e

        tasks = response.get("tasks") or []
        failures = response.get("failures") or []
        if failures or not tasks:
            raise LaunchError(
                f"Migration task could not be placed: {_format_failures(failures)}",
                details={"failures": failures}
            )

        task_arn = tasks[0]["taskArn"]
        self.logger.info(f"Started migration task {task_arn}")
        return TaskHandle(task_id=task_arn, cluster=request.cluster)

    async def describe_task(self, handle: TaskHandle) -> TaskSnapshot:
        """Describe the task and classify its state."""
        try:
            response = await self._call(
                "describe_tasks", cluster=handle.cluster, tasks=[handle.task_id]
            )
        except (ClientError, BotoCoreError) as e:
            raise PollTransientError(
                f"Failed to describe task {handle.task_id}: {_error_message(e)}"
            ) from e

        tasks = response.get("tasks") or []
        if not tasks:
            failures = response.get("failures") or []
            reasons = {f.get("reason") for f in failures}
            if failures and MISSING_REASON not in reasons:
                raise PollTransientError(
                    f"Failed to describe task {handle.task_id}: {_format_failures(failures)}"
                )
            return TaskSnapshot(
                status=TaskStatus.STOPPED_ABNORMALLY,
                stop_code=MISSING_REASON,
                stopped_reason="task is no longer known to the scheduler",
            )

        return self.classify_task(tasks[0])

    def classify_task(self, task: Dict[str, Any]) -> TaskSnapshot:
        """Map an ECS task description to a TaskSnapshot."""
        last_status = task.get("lastStatus", "")
        stop_code = task.get("stopCode")
        stopped_reason = task.get("stoppedReason")

        if last_status in PENDING_STATUSES:
            status = TaskStatus.PENDING
        elif last_status in RUNNING_STATUSES:
            status = TaskStatus.RUNNING
        elif last_status == STOPPED_STATUS:
            exit_code = self._exit_code(task.get("containers") or [])
            if stop_code == FAILED_TO_START:
                status = TaskStatus.FAILED
            elif exit_code is None:
                status = TaskStatus.STOPPED_ABNORMALLY
            else:
                status = TaskStatus.SUCCEEDED
            return TaskSnapshot(
                status=status,
                exit_code=exit_code,
                stop_code=stop_code,
                stopped_reason=stopped_reason,
                remote_status=last_status,
            )
        else:
            # Unknown status strings are treated as still in flight
            self.logger.warning(f"Unrecognised ECS task status: {last_status!r}")
            status = TaskStatus.PENDING

        return TaskSnapshot(status=status, remote_status=last_status)

    def _exit_code(self, containers: List[Dict[str, Any]]) -> Optional[int]:
        """Exit code of the migration container, or of the task as a whole."""
        if self.settings.container_name:
            for container in containers:
                if container.get("name") == self.settings.container_name:
                    return container.get("exitCode")
            return None

        codes = [c["exitCode"] for c in containers if c.get("exitCode") is not None]
        if not codes:
            return None
        return next((code for code in codes if code != 0), 0)

    async def stop_task(self, handle: TaskHandle, reason: str) -> None:
        """Stop the task."""
        try:
            await self._call(
                "stop_task",
                cluster=handle.cluster,
                task=handle.task_id,
                reason=reason[:STOP_REASON_LIMIT],
            )
        except (ClientError, BotoCoreError) as e:
            raise SchedulerError(
                f"Failed to stop task {handle.task_id}: {_error_message(e)}"
            ) from e
        self.logger.info(f"Requested stop of task {handle.task_id}")
