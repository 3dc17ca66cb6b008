"""
Outcome models for the Migration Runner.

This module defines the orchestration states and the single outcome
reported back to the invoking lifecycle.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class OrchestrationState(str, Enum):
    """States of the launch-and-poll state machine."""
    SUBMITTED = "submitted"
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    EXIT_NONZERO = "exit_nonzero"
    STOPPED_ABNORMALLY = "stopped_abnormally"
    TIMED_OUT = "timed_out"
    LAUNCH_FAILED = "launch_failed"
    POLL_FAILED = "poll_failed"
    SKIPPED = "skipped"
    INVALID_REQUEST = "invalid_request"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self not in (
            OrchestrationState.SUBMITTED,
            OrchestrationState.PENDING,
            OrchestrationState.RUNNING,
        )


class OutcomeResult(str, Enum):
    """Binary result seen by the invoking lifecycle."""
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class Outcome(BaseModel):
    """Result of one orchestrator invocation."""
    model_config = ConfigDict(frozen=True)

    result: OutcomeResult
    reason: str = Field(..., min_length=1)
    elapsed: float = Field(default=0.0, ge=0.0)  # seconds
    final_state: OrchestrationState
    task_id: Optional[str] = None
    poll_count: int = 0
    exit_code: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.result == OutcomeResult.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Convert outcome to a JSON-friendly dictionary."""
        return self.model_dump(mode="json")
