# unitflow/config/project.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from unitflow.config.units import UNIT_KINDS, format_validation_error
from unitflow.errors import ProjectConfigError

TestTiming = Literal["after_unit", "end_of_run"]
BackoffKind = Literal["exponential", "fixed"]

_IDENT_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_")


# ---------------------------------------------------------------------------
# schemas: block → physical naming
# ---------------------------------------------------------------------------


class NamespaceConfig(BaseModel):
    """
    Where each unit kind is materialized:

        schemas:
          default: main
          staging: staging
          intermediate: intermediate
          mart: marts
          fact: marts

    A unit compiles to `{schema_for(unit.kind)}.{unit.name}`.
    """

    model_config = ConfigDict(extra="forbid")

    default: str = "main"
    staging: str | None = "staging"
    intermediate: str | None = "intermediate"
    mart: str | None = "marts"
    fact: str | None = "marts"

    @field_validator("default", "staging", "intermediate", "mart", "fact")
    @classmethod
    def _plain_identifier(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not v or not set(v) <= _IDENT_CHARS or v[0].isdigit():
            raise ValueError(f"schema name must be a plain SQL identifier, got {v!r}")
        return v

    def schema_for(self, kind: str) -> str:
        if kind in UNIT_KINDS:
            val = getattr(self, kind)
            if val:
                return val
        return self.default

    def relation_for(self, name: str, kind: str) -> str:
        return f"{self.schema_for(kind)}.{name}"

    def all_schemas(self) -> set[str]:
        return {self.schema_for(k) for k in UNIT_KINDS}


# ---------------------------------------------------------------------------
# run: / schedule: blocks
# ---------------------------------------------------------------------------


class RunConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    jobs: int = Field(default=4, ge=1)
    strict: bool = False
    test_timing: TestTiming = "after_unit"
    statement_timeout_s: float | None = Field(default=300.0, gt=0)


class RetryPolicy(BaseModel):
    """
    Retry behaviour for failed units of a scheduled run.

        retry:
          max_retries: 3
          backoff: exponential   # or: fixed
          base_delay: 5          # seconds
          max_delay: 300
    """

    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(default=0, ge=0)
    backoff: BackoffKind = "exponential"
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float | None = Field(default=None, ge=0)

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        if self.backoff == "fixed":
            delay = self.base_delay
        else:
            delay = self.base_delay * (2 ** max(0, attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return float(delay)


class ScheduleConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    interval_s: float | None = Field(default=None, gt=0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)


class ProjectConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = "unitflow_project"
    version: str = "0.1"
    models_dir: str = "models"
    tests_dir: str = "tests"
    schemas: NamespaceConfig = Field(default_factory=NamespaceConfig)
    vars: dict[str, Any] = Field(default_factory=dict)
    run: RunConfig = Field(default_factory=RunConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)


def parse_project_yaml_config(project_dir: Path) -> ProjectConfig:
    """Load and validate project.yml; a missing file yields the defaults."""
    cfg_path = project_dir / "project.yml"
    if not cfg_path.exists():
        return ProjectConfig(name=project_dir.name)
    try:
        data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ProjectConfigError(f"invalid YAML: {exc}", path=str(cfg_path)) from exc
    if not isinstance(data, dict):
        raise ProjectConfigError("top level must be a mapping", path=str(cfg_path))
    try:
        return ProjectConfig.model_validate(data)
    except ValidationError as exc:
        raise ProjectConfigError(
            "schema validation failed:\n" + format_validation_error(exc), path=str(cfg_path)
        ) from exc


__all__ = [
    "BackoffKind",
    "NamespaceConfig",
    "ProjectConfig",
    "RetryPolicy",
    "RunConfig",
    "ScheduleConfig",
    "TestTiming",
    "parse_project_yaml_config",
]
