"""
Task models for the Migration Runner.

This module defines the handle returned by the scheduler when a task is
launched and the per-poll snapshot of its state.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskStatus(str, Enum):
    """Task status derived from the scheduler on every poll."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STOPPED_ABNORMALLY = "stopped_abnormally"

    @property
    def is_terminal(self) -> bool:
        return self not in (TaskStatus.PENDING, TaskStatus.RUNNING)


class TaskHandle(BaseModel):
    """Opaque reference to a launched task."""
    model_config = ConfigDict(frozen=True)

    task_id: str
    cluster: str

    def __str__(self) -> str:
        return self.task_id


class TaskSnapshot(BaseModel):
    """One poll's view of a task."""
    model_config = ConfigDict(frozen=True)

    status: TaskStatus
    exit_code: Optional[int] = None
    stop_code: Optional[str] = None
    stopped_reason: Optional[str] = None
    remote_status: Optional[str] = None
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def describe_stop(self) -> Optional[str]:
        """Human-readable stop details, if the scheduler gave any."""
        parts = [p for p in (self.stop_code, self.stopped_reason) if p]
        return ": ".join(parts) if parts else None
