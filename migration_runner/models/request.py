"""
Request models for the Migration Runner.

This module defines the immutable request handed to the orchestrator
for a single provisioning lifecycle event.
"""

from enum import Enum
from typing import Iterable, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LifecycleAction(str, Enum):
    """Provisioning operation that triggered the orchestrator."""
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"

    @property
    def runs_migration(self) -> bool:
        return self is not LifecycleAction.DELETE


def _normalize_ids(value: Union[str, Iterable[str], None]) -> Tuple[str, ...]:
    """Accept a comma-separated string or an iterable and drop blanks and repeats."""
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    elif not isinstance(value, Iterable):
        raise ValueError('Expected a list or a comma-separated string of ids')

    seen = []
    for item in value:
        item = str(item).strip()
        if item and item not in seen:
            seen.append(item)
    return tuple(seen)


class MigrationRequest(BaseModel):
    """Everything needed to launch one migration task run."""
    model_config = ConfigDict(frozen=True)

    cluster: str = Field(..., description="Cluster name or ARN")
    task_definition: str = Field(..., description="Task definition family, family:revision or ARN")
    subnets: Tuple[str, ...] = Field(..., description="Subnets the task is placed in")
    security_groups: Tuple[str, ...] = Field(default=())
    desired_count: Literal[1] = 1
    action: LifecycleAction = LifecycleAction.CREATE
    idempotency_token: Optional[str] = Field(default=None, max_length=64)

    @field_validator('cluster', 'task_definition')
    @classmethod
    def identifier_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Identifier must not be blank')
        return v

    @field_validator('subnets', mode='before')
    @classmethod
    def subnets_not_empty(cls, v):
        subnets = _normalize_ids(v)
        if not subnets:
            raise ValueError('At least one subnet is required')
        return subnets

    @field_validator('security_groups', mode='before')
    @classmethod
    def normalize_security_groups(cls, v):
        return _normalize_ids(v)
