# unitflow/core.py
from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from unitflow.config.project import ProjectConfig, parse_project_yaml_config
from unitflow.config.schema import load_schema_tests
from unitflow.config.sources import load_sources_config
from unitflow.config.units import (
    Materialization,
    Severity,
    TestConfig,
    TestKind,
    UnitConfig,
    UnitKind,
    default_materialization,
    format_validation_error,
    infer_kind,
)
from unitflow.errors import DuplicateNameError, MalformedUnitError
from unitflow.logging import get_logger
from unitflow.refs import MarkerSyntaxError, config_of, scan, source_refs, unit_refs

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

logger = get_logger("registry")


@dataclass(frozen=True)
class TestSpec:
    """A single assertion owned by a unit."""

    __test__ = False

    kind: TestKind
    target_unit: str
    name: str
    target_column: str | None = None
    parameters: Mapping[str, Any] = field(default_factory=dict)
    severity: Severity = "error"

    @property
    def references(self) -> tuple[str, ...]:
        """Units (other than the target) this test reads."""
        if self.kind == "relationships":
            to = self.parameters.get("to")
            return (to,) if to and to != self.target_unit else ()
        if self.kind == "singular":
            refs = unit_refs(scan(self.parameters.get("sql", "")))
            return tuple(r for r in refs if r != self.target_unit)
        return ()


@dataclass(frozen=True)
class Source:
    name: str
    location: str


@dataclass(frozen=True)
class Unit:
    name: str
    kind: UnitKind
    materialization: Materialization
    body: str
    references: tuple[str, ...] = ()
    source_refs: tuple[str, ...] = ()
    tests: tuple[TestSpec, ...] = ()
    tags: tuple[str, ...] = ()
    path: Path | None = None


@dataclass
class Catalog:
    """In-memory result of a registry load. Units keep declaration order."""

    units: dict[str, Unit] = field(default_factory=dict)
    sources: dict[str, Source] = field(default_factory=dict)
    vars: dict[str, Any] = field(default_factory=dict)
    project_dir: Path | None = None

    def __contains__(self, name: object) -> bool:
        return name in self.units

    def __len__(self) -> int:
        return len(self.units)

    def get(self, name: str) -> Unit:
        try:
            return self.units[name]
        except KeyError:
            raise KeyError(f"Unknown unit: {name}") from None

    @property
    def names(self) -> list[str]:
        return list(self.units)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _test_name(cfg: TestConfig, unit: str, idx: int) -> str:
    if cfg.name:
        return cfg.name
    if cfg.kind == "singular":
        return f"singular_{unit}_{idx}"
    return f"{cfg.kind}_{unit}_{cfg.column}"


def _build_tests(unit: str, configs: Iterable[TestConfig], *, path: str | None) -> tuple[
    TestSpec, ...
]:
    out: list[TestSpec] = []
    taken: set[str] = set()
    for idx, cfg in enumerate(configs, start=1):
        if cfg.sql:
            try:
                scan(cfg.sql)
            except MarkerSyntaxError as exc:
                raise MalformedUnitError(f"test #{idx}: {exc}", unit=unit, path=path) from exc
        name = _test_name(cfg, unit, idx)
        if name in taken:
            name = f"{name}_{idx}"
        taken.add(name)
        out.append(
            TestSpec(
                kind=cfg.kind,
                target_unit=unit,
                name=name,
                target_column=cfg.column,
                parameters=cfg.parameters(),
                severity=cfg.severity,
            )
        )
    return tuple(out)


def build_unit(
    name: Any,
    definition: Mapping[str, Any],
    *,
    kind_hint: str | None = None,
    extra_tests: Iterable[TestConfig] = (),
    path: Path | None = None,
) -> Unit:
    """Validate one definition and turn it into an immutable Unit."""
    where = str(path) if path else None
    if not isinstance(name, str) or not name.strip():
        raise MalformedUnitError("name is required", path=where)
    if not _IDENT.match(name):
        raise MalformedUnitError(
            f"name must be a plain SQL identifier ([A-Za-z_][A-Za-z0-9_]*), got {name!r}",
            unit=name,
            path=where,
        )
    if not isinstance(definition, Mapping):
        raise MalformedUnitError(
            f"definition must be a mapping, got {type(definition).__name__}", unit=name, path=where
        )

    raw = {k: v for k, v in definition.items() if k != "name"}
    try:
        cfg = UnitConfig.model_validate(raw)
    except ValidationError as exc:
        raise MalformedUnitError(
            "\n" + format_validation_error(exc), unit=name, path=where
        ) from exc

    try:
        markers = scan(cfg.body)
    except MarkerSyntaxError as exc:
        raise MalformedUnitError(str(exc), unit=name, path=where) from exc

    # {{ config(...) }} inside the body acts as a fallback for unset fields
    header = config_of(markers)
    kind_raw = cfg.kind or header.get("kind")
    mat_raw = cfg.materialization or header.get("materialized") or header.get("materialization")
    tags = list(cfg.tags) or list(header.get("tags") or [])
    merged = {"body": cfg.body, "kind": kind_raw, "materialization": mat_raw, "tags": tags}
    try:
        cfg = UnitConfig.model_validate({**merged, "tests": cfg.tests})
    except ValidationError as exc:
        raise MalformedUnitError(
            "config(...): \n" + format_validation_error(exc), unit=name, path=where
        ) from exc

    kind: UnitKind = cfg.kind or infer_kind(name, hint=kind_hint)
    materialization = cfg.materialization or default_materialization(kind)

    return Unit(
        name=name,
        kind=kind,
        materialization=materialization,
        body=cfg.body,
        references=unit_refs(markers),
        source_refs=source_refs(markers),
        tests=_build_tests(name, [*cfg.tests, *extra_tests], path=where),
        tags=tuple(str(t) for t in cfg.tags),
        path=path,
    )


def _iter_definitions(
    unit_definitions: Mapping[str, Any] | Sequence[Mapping[str, Any]],
) -> Iterable[tuple[Any, Mapping[str, Any]]]:
    if isinstance(unit_definitions, Mapping):
        yield from unit_definitions.items()
        return
    for entry in unit_definitions:
        if not isinstance(entry, Mapping):
            raise MalformedUnitError(f"definition must be a mapping, got {entry!r}")
        yield entry.get("name"), entry


def load(
    unit_definitions: Mapping[str, Any] | Sequence[Mapping[str, Any]],
    *,
    sources: Mapping[str, str] | None = None,
    vars: Mapping[str, Any] | None = None,
) -> Catalog:
    """
    Parse declarative unit definitions into a Catalog.

    `unit_definitions` is either a mapping `name → {kind, materialization, body, tests}`
    or a sequence of such mappings carrying a `name` key.
    `sources` maps declared source names (`group.table`) to physical locations.
    """
    catalog = Catalog(
        sources={k: Source(k, v) for k, v in (sources or {}).items()},
        vars=dict(vars or {}),
    )
    for name, definition in _iter_definitions(unit_definitions):
        unit = build_unit(name, definition)
        if unit.name in catalog.units:
            raise DuplicateNameError(unit.name)
        catalog.units[unit.name] = unit
    return catalog


# ---------------------------------------------------------------------------
# File-based projects
# ---------------------------------------------------------------------------


def _kind_hint(path: Path, models_dir: Path) -> str | None:
    parent = path.parent
    if parent == models_dir:
        return None
    return parent.name


def _singular_tests(tests_dir: Path) -> dict[str, list[TestConfig]]:
    """tests/**/*.sql → attached to the first unit each query refs."""
    out: dict[str, list[TestConfig]] = {}
    if not tests_dir.is_dir():
        return out
    for path in sorted(tests_dir.rglob("*.sql")):
        sql = path.read_text(encoding="utf-8")
        try:
            refs = unit_refs(scan(sql))
        except MarkerSyntaxError as exc:
            raise MalformedUnitError(str(exc), path=str(path)) from exc
        if not refs:
            raise MalformedUnitError(
                "singular test must ref() at least one unit", unit=path.stem, path=str(path)
            )
        cfg = TestConfig(kind="singular", sql=sql, name=path.stem)
        out.setdefault(refs[0], []).append(cfg)
    return out


def load_project(project_dir: Path, project_cfg: ProjectConfig | None = None) -> Catalog:
    """
    Load a unitflow project directory:

        project.yml           name, schemas, vars, run/schedule settings
        sources.yml           external tables
        models/**/*.sql       one unit per file (unit name = file stem)
        models/**/schema.yml  column tests
        tests/**/*.sql        singular tests
    """
    project_dir = Path(project_dir)
    cfg = project_cfg or parse_project_yaml_config(project_dir)
    models_dir = project_dir / cfg.models_dir
    if not models_dir.is_dir():
        raise MalformedUnitError(f"models directory not found: {models_dir}")

    column_tests = load_schema_tests(models_dir)
    singular = _singular_tests(project_dir / cfg.tests_dir)

    catalog = Catalog(
        sources={k: Source(k, v) for k, v in load_sources_config(project_dir).items()},
        vars=dict(cfg.vars),
        project_dir=project_dir,
    )
    origins: dict[str, Path] = {}
    for path in sorted(models_dir.rglob("*.sql")):
        name = path.stem
        if name in origins:
            raise DuplicateNameError(name, first=str(origins[name]), second=str(path))
        origins[name] = path
        unit = build_unit(
            name,
            {"body": path.read_text(encoding="utf-8")},
            kind_hint=_kind_hint(path, models_dir),
            extra_tests=[*column_tests.get(name, []), *singular.get(name, [])],
            path=path,
        )
        catalog.units[name] = unit

    for unknown in sorted(set(column_tests) - set(catalog.units)):
        logger.warning("schema.yml describes unknown unit '%s'; its tests are ignored", unknown)
    for unknown in sorted(set(singular) - set(catalog.units)):
        logger.warning("singular test refs unknown unit '%s'; it is ignored", unknown)

    logger.info("Loaded %d unit(s), %d source(s)", len(catalog.units), len(catalog.sources))
    return catalog


__all__ = [
    "Catalog",
    "Source",
    "TestSpec",
    "Unit",
    "build_unit",
    "load",
    "load_project",
]
