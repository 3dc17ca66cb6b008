"""
Settings for the Migration Runner.

Settings are resolved from built-in defaults, then an optional YAML file,
then ``MIGRATION_*`` environment variables, later sources winning.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from migration_runner.core.exceptions import ConfigurationError

ENV_PREFIX = "MIGRATION_"


class OrchestratorSettings(BaseModel):
    """Polling, timeout and launch settings for the orchestrator."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    poll_interval: float = Field(default=15.0, gt=0)  # seconds
    timeout: float = Field(default=840.0, gt=0)  # seconds, under the 15 minute Lambda limit
    poll_retry_attempts: int = Field(default=3, ge=1, le=10)
    poll_retry_base_delay: float = Field(default=1.0, ge=0)
    poll_retry_max_delay: float = Field(default=10.0, ge=0)
    stop_on_timeout: bool = True
    launch_type: str = "FARGATE"
    assign_public_ip: str = "DISABLED"
    started_by: str = Field(default="migration-runner", max_length=36)
    container_name: Optional[str] = None
    region: Optional[str] = None
    profile: Optional[str] = None
    response_margin: float = Field(default=10.0, ge=0)  # seconds kept for the lifecycle response

    @field_validator('assign_public_ip', 'launch_type', mode='before')
    @classmethod
    def upper_case(cls, v):
        return str(v).strip().upper()

    @field_validator('assign_public_ip')
    @classmethod
    def valid_public_ip_setting(cls, v: str) -> str:
        if v not in ("ENABLED", "DISABLED"):
            raise ValueError('assign_public_ip must be ENABLED or DISABLED')
        return v

    @model_validator(mode='after')
    def interval_within_timeout(self):
        if self.poll_interval > self.timeout:
            raise ValueError('poll_interval must not exceed timeout')
        if self.poll_retry_base_delay > self.poll_retry_max_delay:
            raise ValueError('poll_retry_base_delay must not exceed poll_retry_max_delay')
        return self

    @classmethod
    def build(cls, **values: Any) -> "OrchestratorSettings":
        """Build settings, turning validation failures into ConfigurationError."""
        try:
            return cls(**values)
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid orchestrator settings: {e}",
                details={"errors": e.errors(include_url=False)}
            ) from e

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional[Dict[str, Any]] = None
    ) -> "OrchestratorSettings":
        """Build settings from ``MIGRATION_*`` variables layered over ``base``."""
        values = dict(base or {})
        values.update(_read_env(os.environ if environ is None else environ))
        return cls.build(**values)

    @classmethod
    def from_file(cls, file_path: Union[str, Path]) -> "OrchestratorSettings":
        """Build settings from a YAML file."""
        return cls.build(**_read_yaml(file_path))

    def with_overrides(self, **overrides: Any) -> "OrchestratorSettings":
        """Return a copy with the non-None overrides applied and revalidated."""
        values = self.model_dump()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return self.build(**values)


def _read_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name in OrchestratorSettings.model_fields:
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None and raw != "":
            values[name] = raw
    return values


def _read_yaml(file_path: Union[str, Path]) -> Dict[str, Any]:
    path = Path(file_path)
    if not path.exists():
        raise ConfigurationError(f"Settings file not found: {file_path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {file_path} must contain a mapping")

    # Allow the settings to live under a top-level "orchestrator" key
    section = data.get("orchestrator", data)
    if not isinstance(section, dict):
        raise ConfigurationError(
            f"The orchestrator section of {file_path} must contain a mapping"
        )
    return dict(section)


def load_settings(
    config_file: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None
) -> OrchestratorSettings:
    """Resolve settings from defaults, an optional YAML file and the environment."""
    base = _read_yaml(config_file) if config_file else {}
    return OrchestratorSettings.from_env(environ=environ, base=base)
