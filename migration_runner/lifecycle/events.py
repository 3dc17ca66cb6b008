"""
Provisioning lifecycle events.

This module parses CloudFormation custom-resource events (or a bare direct
invocation) into a MigrationRequest. Resource properties that are absent
from the event fall back to environment variables.
"""

import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from migration_runner.core.exceptions import RequestValidationError
from migration_runner.models.request import LifecycleAction, MigrationRequest

PHYSICAL_ID_PREFIX = "migration-"

# Property name -> accepted spellings in ResourceProperties, then env var
PROPERTY_SOURCES = {
    "cluster": (("Cluster", "ClusterName"), "CLUSTER_NAME"),
    "task_definition": (("TaskDefinition", "TaskDef"), "TASK_DEF"),
    "subnets": (("Subnets",), "SUBNETS"),
    "security_groups": (("SecurityGroups",), "SECURITY_GROUPS"),
}


class LifecycleEvent(BaseModel):
    """Custom-resource event as delivered by CloudFormation."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    request_type: LifecycleAction = Field(default=LifecycleAction.CREATE, alias="RequestType")
    response_url: Optional[str] = Field(default=None, alias="ResponseURL")
    stack_id: Optional[str] = Field(default=None, alias="StackId")
    request_id: Optional[str] = Field(default=None, alias="RequestId")
    logical_resource_id: Optional[str] = Field(default=None, alias="LogicalResourceId")
    physical_resource_id: Optional[str] = Field(default=None, alias="PhysicalResourceId")
    resource_properties: Dict[str, Any] = Field(default_factory=dict, alias="ResourceProperties")

    @classmethod
    def parse(cls, event: Mapping[str, Any]) -> "LifecycleEvent":
        """Parse a raw event, raising RequestValidationError on malformed input."""
        try:
            return cls.model_validate(dict(event or {}))
        except PydanticValidationError as e:
            raise RequestValidationError(f"Malformed lifecycle event: {e}") from e

    @classmethod
    def addressing_only(cls, event: Mapping[str, Any]) -> "LifecycleEvent":
        """
        Keep just the fields needed to answer an event that failed to parse.

        The request type is left at its default; only string-valued addressing
        fields are copied.
        """
        fields = {
            "ResponseURL", "StackId", "RequestId", "LogicalResourceId", "PhysicalResourceId",
        }
        raw = event if isinstance(event, Mapping) else {}
        return cls.model_validate(
            {k: v for k, v in raw.items() if k in fields and isinstance(v, str)}
        )

    @property
    def is_custom_resource(self) -> bool:
        return self.response_url is not None

    def idempotency_token(self, fallback: Optional[str] = None) -> Optional[str]:
        """RequestId is stable across redeliveries of the same lifecycle event."""
        return self.request_id or fallback

    def physical_id(self, fallback_token: Optional[str] = None) -> str:
        """
        Physical resource id to report.

        Update and Delete keep the id CloudFormation already knows so that an
        Update never looks like a replacement.
        """
        if self.physical_resource_id and self.request_type != LifecycleAction.CREATE:
            return self.physical_resource_id
        token = self.idempotency_token(fallback_token) or "direct"
        return f"{PHYSICAL_ID_PREFIX}{token}"


def _lookup(properties: Mapping[str, Any], names, env_var: str, environ: Mapping[str, str]):
    for name in names:
        value = properties.get(name)
        if value not in (None, "", []):
            return value
    return environ.get(env_var) or None


def build_request(
    event: LifecycleEvent,
    environ: Optional[Mapping[str, str]] = None,
    fallback_token: Optional[str] = None
) -> MigrationRequest:
    """
    Build the migration request for a lifecycle event.

    Args:
        event: Parsed lifecycle event
        environ: Environment used for property fallbacks (os.environ by default)
        fallback_token: Idempotency token to use when the event has no RequestId

    Returns:
        MigrationRequest

    Raises:
        RequestValidationError: If required properties are missing or invalid
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    for field_name, (names, env_var) in PROPERTY_SOURCES.items():
        value = _lookup(event.resource_properties, names, env_var, environ)
        if value is not None:
            values[field_name] = value

    try:
        return MigrationRequest(
            action=event.request_type,
            idempotency_token=event.idempotency_token(fallback_token),
            **values
        )
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in e.errors()
        )
        raise RequestValidationError(
            f"Invalid migration request: {problems}",
            details={"errors": e.errors(include_url=False)}
        ) from e
