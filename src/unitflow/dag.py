# unitflow/dag.py
from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from unitflow.core import Catalog, Source, Unit
from unitflow.errors import CycleError, UnknownReferenceError


@dataclass(frozen=True)
class Graph:
    """
    Resolved dependency graph of a catalog. Derived and read-only.

    - `edges[u]`: units `u` depends on.
    - `order`: topological order (dependencies first).
    """

    edges: Mapping[str, frozenset[str]]
    order: tuple[str, ...]
    units: Mapping[str, Unit]
    sources: Mapping[str, Source]
    vars: Mapping[str, Any] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.units

    def deps(self, name: str) -> tuple[str, ...]:
        """Direct dependencies in declaration order."""
        return tuple(r for r in self.units[name].references if r in self.edges[name])

    def dependents(self) -> dict[str, set[str]]:
        out: dict[str, set[str]] = {n: set() for n in self.order}
        for name, deps in self.edges.items():
            for d in deps:
                out[d].add(name)
        return out

    def levels(self) -> list[list[str]]:
        """
        Group units by depth: level(u) = 1 + max(level(dep)), roots are level 1.
        Units inside a level keep topological order.
        """
        depth: dict[str, int] = {}
        for name in self.order:
            depth[name] = 1 + max((depth[d] for d in self.edges[name]), default=0)
        lvls: list[list[str]] = [[] for _ in range(max(depth.values(), default=0))]
        for name in self.order:
            lvls[depth[name] - 1].append(name)
        return lvls

    def _closure(self, start: Iterable[str], step: Mapping[str, Iterable[str]]) -> set[str]:
        seen: set[str] = set()
        todo = [n for n in start if n in self.units]
        while todo:
            cur = todo.pop()
            for nxt in step.get(cur, ()):
                if nxt not in seen:
                    seen.add(nxt)
                    todo.append(nxt)
        return seen

    def downstream(self, names: Iterable[str], *, include_self: bool = False) -> list[str]:
        """Transitive dependents of `names`, topological order."""
        names = list(names)
        found = self._closure(names, self.dependents())
        if include_self:
            found |= {n for n in names if n in self.units}
        return [n for n in self.order if n in found]

    def upstream(self, names: Iterable[str], *, include_self: bool = False) -> list[str]:
        """Transitive dependencies of `names`, topological order."""
        names = list(names)
        found = self._closure(names, self.edges)
        if include_self:
            found |= {n for n in names if n in self.units}
        return [n for n in self.order if n in found]

    def subgraph(self, names: Iterable[str]) -> Graph:
        """Graph restricted to `names`; edges leaving the selection are dropped."""
        keep = set(names)
        missing = keep - set(self.units)
        if missing:
            raise KeyError(f"Unknown unit(s): {', '.join(sorted(missing))}")
        return Graph(
            edges=MappingProxyType({n: self.edges[n] & keep for n in self.order if n in keep}),
            order=tuple(n for n in self.order if n in keep),
            units=MappingProxyType({n: self.units[n] for n in self.order if n in keep}),
            sources=self.sources,
            vars=self.vars,
        )


def _check_references(catalog: Catalog) -> None:
    for unit in catalog.units.values():
        for ref in unit.references:
            if ref not in catalog.units:
                raise UnknownReferenceError(ref, unit.name)
        for src in unit.source_refs:
            if src not in catalog.sources:
                raise UnknownReferenceError(src, unit.name, kind="source")
        for test in unit.tests:
            for target in test.references:
                if target not in catalog.units:
                    raise UnknownReferenceError(target, f"{unit.name}:{test.name}")


def topo_sort(units: Mapping[str, Unit]) -> list[str]:
    """
    DFS postorder over `units`. Roots are visited in declaration order and each
    unit's dependencies in the order they first appear in its body, so the
    result is deterministic for a given catalog.

    Raises CycleError with the cycle in path order when DFS reaches a unit
    still on the active path.
    """
    active, done = 1, 2
    state: dict[str, int] = dict.fromkeys(units, 0)
    order: list[str] = []

    def children(name: str) -> Iterator[str]:
        return (r for r in units[name].references if r in units)

    for root in units:
        if state[root]:
            continue
        state[root] = active
        path = [root]
        stack: list[tuple[str, Iterator[str]]] = [(root, children(root))]
        while stack:
            node, it = stack[-1]
            nxt = next(it, None)
            if nxt is None:
                stack.pop()
                path.pop()
                state[node] = done
                order.append(node)
                continue
            if state[nxt] == active:
                raise CycleError(path[path.index(nxt) :])
            if state[nxt] == 0:
                state[nxt] = active
                path.append(nxt)
                stack.append((nxt, children(nxt)))
    return order


def resolve(catalog: Catalog) -> Graph:
    """Validate every reference of `catalog` and build its dependency graph."""
    _check_references(catalog)
    order = topo_sort(catalog.units)
    edges = {n: frozenset(catalog.units[n].references) for n in order}
    return Graph(
        edges=MappingProxyType(edges),
        order=tuple(order),
        units=MappingProxyType({n: catalog.units[n] for n in order}),
        sources=MappingProxyType(dict(catalog.sources)),
        vars=MappingProxyType(dict(catalog.vars)),
    )


__all__ = ["Graph", "resolve", "topo_sort"]
