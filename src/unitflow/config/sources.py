# unitflow/config/sources.py
from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from unitflow.config.units import format_validation_error
from unitflow.errors import ProjectConfigError

# ---------------------------------------------------------------------------
# Pydantic models mirroring sources.yml structure
# ---------------------------------------------------------------------------


class SourceTableConfig(BaseModel):
    """
    Schema for an individual table entry under a source group.

    We allow extra keys so that documentation metadata (description, owner,
    columns) doesn't break users; only the location fields are used.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    identifier: str | None = None
    schema_: str | None = Field(default=None, alias="schema")
    database: str | None = None


class SourceGroupConfig(BaseModel):
    """
    Schema for each entry under top-level `sources:` in sources.yml.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    schema_: str | None = Field(default=None, alias="schema")
    database: str | None = None
    description: str | None = None
    tables: list[SourceTableConfig]


class SourcesFileConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int = 2
    sources: list[SourceGroupConfig] = Field(default_factory=list)


def _location(group: SourceGroupConfig, table: SourceTableConfig) -> str:
    parts = [
        table.database or group.database,
        table.schema_ or group.schema_ or group.name,
        table.identifier or table.name,
    ]
    return ".".join(p for p in parts if p)


def parse_sources(data: Mapping[str, Any] | None) -> dict[str, str]:
    """
    Normalize a sources.yml payload into `{"group.table": "physical.location"}`.

    Example:

        version: 2
        sources:
          - name: raw
            schema: landing
            tables:
              - name: orders
              - name: customers
                identifier: customers_v2

    → {"raw.orders": "landing.orders", "raw.customers": "landing.customers_v2"}
    """
    cfg = SourcesFileConfig.model_validate(dict(data or {}))
    out: dict[str, str] = {}
    for group in cfg.sources:
        for table in group.tables:
            out[f"{group.name}.{table.name}"] = _location(group, table)
    return out


def load_sources_config(project_dir: Path) -> dict[str, str]:
    """Load sources.yml from the project root; missing file → no sources."""
    src_path = project_dir / "sources.yml"
    if not src_path.exists():
        return {}
    try:
        raw = yaml.safe_load(src_path.read_text(encoding="utf-8")) or {}
        return parse_sources(raw)
    except ValidationError as exc:
        raise ProjectConfigError(format_validation_error(exc), path=str(src_path)) from exc
    except yaml.YAMLError as exc:
        raise ProjectConfigError(f"invalid YAML: {exc}", path=str(src_path)) from exc


__all__ = ["load_sources_config", "parse_sources"]
