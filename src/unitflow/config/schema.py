# unitflow/config/schema.py
from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from unitflow.config.units import TestConfig, format_validation_error
from unitflow.errors import ProjectConfigError

_REF_STR = re.compile(r"""^\s*ref\(\s*['"]([^'"]+)['"]\s*\)\s*$""")


def _strip_ref(value: Any) -> Any:
    """Accept dbt-style `to: ref('stg_customers')` as well as a plain unit name."""
    if isinstance(value, str):
        m = _REF_STR.match(value)
        if m:
            return m.group(1)
    return value


def _column_test(column: str, entry: Any, *, where: str) -> TestConfig:
    """
    One entry of `columns[].tests`:
      - "unique"                              (bare string)
      - {"accepted_values": {"values": [...]}} (single-key mapping)
    """
    if isinstance(entry, str):
        kind, params = entry, {}
    elif isinstance(entry, Mapping) and len(entry) == 1:
        kind, raw = next(iter(entry.items()))
        params = dict(raw or {}) if isinstance(raw, Mapping) else {}
    else:
        raise ProjectConfigError(f"unsupported test entry {entry!r}", path=where)

    if "to" in params:
        params["to"] = _strip_ref(params["to"])
    try:
        return TestConfig.model_validate({"kind": kind, "column": column, **params})
    except ValidationError as exc:
        raise ProjectConfigError(format_validation_error(exc), path=where) from exc


def parse_schema_tests(
    data: Mapping[str, Any] | None, *, path: str = "schema.yml"
) -> dict[str, list[TestConfig]]:
    """Collect column tests per unit from one schema.yml payload."""
    out: dict[str, list[TestConfig]] = {}
    for model in (data or {}).get("models") or []:
        if not isinstance(model, Mapping) or not model.get("name"):
            raise ProjectConfigError("every models[] entry needs a name", path=path)
        unit = str(model["name"])
        tests = out.setdefault(unit, [])
        for col in model.get("columns") or []:
            col_name = str(col.get("name") or "")
            if not col_name:
                raise ProjectConfigError(f"{unit}: column entry without name", path=path)
            for entry in col.get("tests") or col.get("data_tests") or []:
                tests.append(_column_test(col_name, entry, where=f"{path} → {unit}.{col_name}"))
    return out


def load_schema_tests(models_dir: Path) -> dict[str, list[TestConfig]]:
    """Merge tests from every schema.yml / *.schema.yml below models/."""
    merged: dict[str, list[TestConfig]] = {}
    files = sorted({*models_dir.rglob("schema.yml"), *models_dir.rglob("*.schema.yml")})
    for path in files:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ProjectConfigError(f"invalid YAML: {exc}", path=str(path)) from exc
        for unit, tests in parse_schema_tests(data, path=str(path)).items():
            merged.setdefault(unit, []).extend(tests)
    return merged


__all__ = ["load_schema_tests", "parse_schema_tests"]
