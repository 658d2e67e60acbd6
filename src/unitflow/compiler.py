# unitflow/compiler.py
from __future__ import annotations

import datetime as _dt
import decimal
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from unitflow.config.project import NamespaceConfig
from unitflow.core import TestSpec, Unit
from unitflow.dag import Graph
from unitflow.errors import UnresolvedReferenceError
from unitflow.logging import get_logger
from unitflow.refs import MarkerSyntaxError, Reference, scan

logger = get_logger("compiler")


@dataclass(frozen=True)
class CompiledTest:
    __test__ = False

    spec: TestSpec
    relation: str
    related_relation: str | None = None
    sql: str | None = None
    references: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass(frozen=True)
class CompiledUnit:
    name: str
    kind: str
    materialization: str
    schema: str
    relation: str
    sql: str
    depends_on: tuple[str, ...] = ()
    tests: tuple[CompiledTest, ...] = ()


def sql_literal(value: Any) -> str:
    """Render a var value as a SQL literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, decimal.Decimal)):
        return repr(value) if isinstance(value, float) else str(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return ", ".join(sql_literal(v) for v in value)
    if isinstance(value, (_dt.date, _dt.datetime)):
        value = value.isoformat()
    s = str(value).replace("'", "''")
    return f"'{s}'"


def _finish(sql: str) -> str:
    out = sql.strip()
    while out.endswith(";"):
        out = out[:-1].rstrip()
    return out


class _Renderer:
    """Rewrites the markers of one body against a resolved graph."""

    def __init__(self, owner: str, graph: Graph, ns: NamespaceConfig, vars: Mapping[str, Any]):
        self.owner = owner
        self.graph = graph
        self.ns = ns
        self.vars = vars

    def relation_of(self, name: str) -> str:
        unit = self.graph.units.get(name)
        if unit is None:
            raise UnresolvedReferenceError(self.owner, name, reason="unit not in graph")
        return self.ns.relation_for(unit.name, unit.kind)

    def _replacement(self, ref: Reference) -> str:
        if ref.kind == "ref":
            return self.relation_of(ref.target)
        if ref.kind == "source":
            src = self.graph.sources.get(ref.target)
            if src is None:
                raise UnresolvedReferenceError(self.owner, ref.target, reason="undeclared source")
            return src.location
        if ref.kind == "var":
            if ref.target in self.vars:
                return sql_literal(self.vars[ref.target])
            if ref.has_default:
                return sql_literal(ref.default)
            raise UnresolvedReferenceError(self.owner, ref.target, reason="var has no value")
        return ""

    def render(self, body: str) -> str:
        try:
            markers = scan(body)
        except MarkerSyntaxError as exc:
            marker = exc.marker.strip()
            raise UnresolvedReferenceError(self.owner, marker, reason=exc.reason) from exc

        parts: list[str] = []
        pos = 0
        for ref in markers:
            parts.append(body[pos : ref.start])
            pos = ref.end
            if ref.kind == "config":
                # drop the header together with the line break that follows it
                while pos < len(body) and body[pos] in " \t":
                    pos += 1
                if body.startswith("\r\n", pos):
                    pos += 2
                elif body.startswith("\n", pos):
                    pos += 1
                continue
            parts.append(self._replacement(ref))
        parts.append(body[pos:])
        return _finish("".join(parts))


def _compile_test(spec: TestSpec, relation: str, r: _Renderer) -> CompiledTest:
    related = None
    sql = None
    if spec.kind == "relationships":
        related = r.relation_of(str(spec.parameters["to"]))
    elif spec.kind == "singular":
        sql = r.render(str(spec.parameters["sql"]))
    return CompiledTest(
        spec=spec,
        relation=relation,
        related_relation=related,
        sql=sql,
        references=spec.references,
    )


def compile(  # noqa: A001
    unit: Unit,
    graph: Graph,
    namespace_config: NamespaceConfig,
    *,
    vars: Mapping[str, Any] | None = None,
) -> CompiledUnit:
    """
    Turn a unit into executable SQL.

    `ref('x')` becomes `<schema of x>.x`, `source('g', 't')` the declared
    location, `var('k')` a SQL literal (explicit `vars` win over the graph's
    project vars). Pure: no warehouse access.
    """
    if unit.name not in graph.units:
        raise UnresolvedReferenceError(unit.name, unit.name, reason="unit not in graph")
    merged = {**graph.vars, **(vars or {})}
    r = _Renderer(unit.name, graph, namespace_config, merged)

    schema = namespace_config.schema_for(unit.kind)
    relation = namespace_config.relation_for(unit.name, unit.kind)
    sql = r.render(unit.body)
    if not sql:
        raise UnresolvedReferenceError(unit.name, unit.name, reason="body is empty after compile")

    return CompiledUnit(
        name=unit.name,
        kind=unit.kind,
        materialization=unit.materialization,
        schema=schema,
        relation=relation,
        sql=sql,
        depends_on=graph.deps(unit.name),
        tests=tuple(_compile_test(t, relation, r) for t in unit.tests),
    )


def compile_all(
    graph: Graph,
    namespace_config: NamespaceConfig,
    vars: Mapping[str, Any] | None = None,
    *,
    only: set[str] | None = None,
) -> tuple[dict[str, CompiledUnit], dict[str, UnresolvedReferenceError]]:
    """
    Compile every unit of `graph` (or `only` those), in topological order.
    A compile error is fatal to its unit only; it is returned, not raised.
    """
    compiled: dict[str, CompiledUnit] = {}
    errors: dict[str, UnresolvedReferenceError] = {}
    for name in graph.order:
        if only is not None and name not in only:
            continue
        try:
            compiled[name] = compile(graph.units[name], graph, namespace_config, vars=vars)
        except UnresolvedReferenceError as exc:
            logger.warning("compile failed for %s: %s", name, exc.message)
            errors[name] = exc
    return compiled, errors


__all__ = ["CompiledTest", "CompiledUnit", "compile", "compile_all", "sql_literal"]
