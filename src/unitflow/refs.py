# unitflow/refs.py
"""
Static scanner for the template markers allowed inside unit bodies.

Supported markers (anything else inside ``{{ … }}`` is rejected):

    {{ ref('stg_orders') }}
    {{ source('raw', 'orders') }}   /  {{ source('raw.orders') }}
    {{ var('start_date') }}         /  {{ var('start_date', '2024-01-01') }}
    {{ config(kind='staging', materialized='view', tags=['daily']) }}

Arguments must be Python/JSON literals. Markers are located with a regex and
their argument lists parsed with ``ast`` + ``ast.literal_eval``; nothing is
ever evaluated as code.
"""

from __future__ import annotations

import ast
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

MarkerKind = Literal["ref", "source", "var", "config"]

_MARKER = re.compile(r"\{\{\s*(?P<inner>.*?)\s*\}\}", re.DOTALL)
_CALL = re.compile(r"^(?P<fn>[A-Za-z_][A-Za-z0-9_]*)\s*\((?P<args>.*)\)$", re.DOTALL)
_KINDS: frozenset[str] = frozenset({"ref", "source", "var", "config"})
_NO_DEFAULT: Any = object()


class MarkerSyntaxError(ValueError):
    """A ``{{ … }}`` marker that cannot be statically understood."""

    def __init__(self, marker: str, reason: str):
        super().__init__(f"{reason}: {marker.strip()}")
        self.marker = marker
        self.reason = reason


@dataclass(frozen=True)
class Reference:
    kind: MarkerKind
    target: str
    start: int
    end: int
    default: Any = _NO_DEFAULT
    options: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def has_default(self) -> bool:
        return self.default is not _NO_DEFAULT


def _literal_args(fn: str, args_src: str, marker: str) -> tuple[list[Any], dict[str, Any]]:
    src = f"__UF__({args_src})"
    try:
        node = ast.parse(src, mode="eval")
    except SyntaxError as exc:
        raise MarkerSyntaxError(marker, f"invalid {fn}() arguments") from exc
    call = node.body
    if not isinstance(call, ast.Call):
        raise MarkerSyntaxError(marker, f"invalid {fn}() arguments")

    positional: list[Any] = []
    for arg in call.args:
        try:
            positional.append(ast.literal_eval(arg))
        except (ValueError, TypeError, SyntaxError) as exc:
            seg = ast.get_source_segment(src, arg) or "<expr>"
            raise MarkerSyntaxError(
                marker, f"{fn}() cannot be statically resolved (non-literal {seg})"
            ) from exc

    keywords: dict[str, Any] = {}
    for kw in call.keywords:
        if kw.arg is None:
            raise MarkerSyntaxError(marker, f"{fn}() does not accept **kwargs")
        try:
            keywords[kw.arg] = ast.literal_eval(kw.value)
        except (ValueError, TypeError, SyntaxError) as exc:
            raise MarkerSyntaxError(
                marker, f"{fn}({kw.arg}=…) must be a literal (quote strings, no expressions)"
            ) from exc
    return positional, keywords


def _build(fn: str, pos: list[Any], kws: dict[str, Any], m: re.Match[str]) -> Reference:
    marker = m.group(0)
    start, end = m.start(), m.end()

    if fn == "config":
        if pos:
            raise MarkerSyntaxError(marker, "config() takes keyword arguments only")
        return Reference("config", "config", start, end, options=kws)

    if kws:
        raise MarkerSyntaxError(marker, f"{fn}() takes positional arguments only")
    names = pos if fn == "source" else pos[:1]
    if not all(isinstance(p, str) for p in names):
        raise MarkerSyntaxError(marker, f"{fn}() names must be string literals")

    if fn == "ref":
        if len(pos) != 1 or not pos[0].strip():
            raise MarkerSyntaxError(marker, "ref() expects exactly one unit name")
        return Reference("ref", pos[0].strip(), start, end)

    if fn == "source":
        if len(pos) == 2:
            target = f"{pos[0].strip()}.{pos[1].strip()}"
        elif len(pos) == 1 and "." in pos[0]:
            target = pos[0].strip()
        else:
            raise MarkerSyntaxError(
                marker, "source() expects ('group', 'table') or ('group.table')"
            )
        return Reference("source", target, start, end)

    # var
    if len(pos) == 1:
        return Reference("var", pos[0], start, end)
    if len(pos) == 2:
        return Reference("var", pos[0], start, end, default=pos[1])
    raise MarkerSyntaxError(marker, "var() expects ('key') or ('key', default)")


def scan(body: str) -> list[Reference]:
    """Return every marker in `body`, in textual order."""
    out: list[Reference] = []
    for m in _MARKER.finditer(body or ""):
        inner = m.group("inner")
        call = _CALL.match(inner)
        if not call or call.group("fn") not in _KINDS:
            raise MarkerSyntaxError(m.group(0), "unsupported template expression")
        fn = call.group("fn")
        pos, kws = _literal_args(fn, call.group("args"), m.group(0))
        out.append(_build(fn, pos, kws, m))
    return out


def _unique(items: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for it in items:
        seen.setdefault(it, None)
    return tuple(seen)


def unit_refs(refs: Iterable[Reference]) -> tuple[str, ...]:
    """Referenced unit names, first-appearance order, de-duplicated."""
    return _unique(r.target for r in refs if r.kind == "ref")


def source_refs(refs: Iterable[Reference]) -> tuple[str, ...]:
    return _unique(r.target for r in refs if r.kind == "source")


def config_of(refs: Iterable[Reference]) -> dict[str, Any]:
    """Merged keyword arguments of all config() markers (later wins)."""
    cfg: dict[str, Any] = {}
    for r in refs:
        if r.kind == "config":
            cfg.update(r.options)
    return cfg


__all__ = [
    "MarkerSyntaxError",
    "Reference",
    "config_of",
    "scan",
    "source_refs",
    "unit_refs",
]
