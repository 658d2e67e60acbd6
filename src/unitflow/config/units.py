# unitflow/config/units.py
from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

UnitKind = Literal["staging", "intermediate", "mart", "fact"]
Materialization = Literal["view", "table"]
TestKind = Literal["unique", "not_null", "relationships", "accepted_values", "singular"]
Severity = Literal["error", "warn"]

UNIT_KINDS: tuple[str, ...] = ("staging", "intermediate", "mart", "fact")

_KIND_PREFIXES: dict[str, UnitKind] = {
    "stg_": "staging",
    "int_": "intermediate",
    "fct_": "fact",
}


class TestConfig(BaseModel):
    """
    One test definition attached to a unit, for example:

        {"kind": "not_null", "column": "order_id"}
        {"kind": "accepted_values", "column": "status", "values": ["P", "O", "F"]}
        {"kind": "relationships", "column": "customer_id", "to": "stg_customers",
         "field": "customer_id"}
        {"kind": "singular", "sql": "select * from {{ ref('fct_orders') }} where amount < 0"}
    """

    __test__ = False
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    kind: TestKind = Field(validation_alias=AliasChoices("kind", "type"))
    column: str | None = None
    values: list[Any] | None = None
    to: str | None = None
    field: str | None = None
    sql: str | None = None
    where: str | None = None
    name: str | None = None
    severity: Severity = "error"

    @model_validator(mode="after")
    def _check_required(self) -> TestConfig:
        if self.kind in ("unique", "not_null", "accepted_values", "relationships"):
            if not self.column:
                raise ValueError(f"{self.kind} test requires 'column'")
        if self.kind == "accepted_values" and self.values is None:
            raise ValueError("accepted_values test requires 'values'")
        if self.kind == "relationships" and not (self.to and self.field):
            raise ValueError("relationships test requires 'to' and 'field'")
        if self.kind == "singular" and not (self.sql and self.sql.strip()):
            raise ValueError("singular test requires 'sql'")
        return self

    def parameters(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if self.values is not None:
            params["values"] = list(self.values)
        if self.to:
            params["to"] = self.to
        if self.field:
            params["field"] = self.field
        if self.sql:
            params["sql"] = self.sql
        if self.where:
            params["where"] = self.where
        return params


class UnitConfig(BaseModel):
    """Declarative definition of one transformation unit."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    body: str
    kind: UnitKind | None = None
    materialization: Materialization | None = Field(
        default=None, validation_alias=AliasChoices("materialization", "materialized")
    )
    tests: list[TestConfig] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _reject_blank_body(cls, data: Any) -> Any:
        if isinstance(data, dict):
            body = data.get("body")
            if body is None or (isinstance(body, str) and not body.strip()):
                raise ValueError("body is required")
        return data


def infer_kind(name: str, *, hint: str | None = None) -> UnitKind:
    """
    Resolve a unit kind when none is declared:
      1) `hint` (e.g. parent directory name) if it is a known kind,
         accepting plural forms like 'marts' / 'facts',
      2) name prefix (stg_ / int_ / fct_),
      3) 'mart'.
    """
    if hint:
        h = hint.lower().strip()
        for cand in (h, h.rstrip("s")):
            if cand in UNIT_KINDS:
                return cand  # type: ignore[return-value]
    for prefix, kind in _KIND_PREFIXES.items():
        if name.startswith(prefix):
            return kind
    return "mart"


def default_materialization(kind: str) -> Materialization:
    return "view" if kind == "staging" else "table"


def format_validation_error(exc: ValidationError) -> str:
    """Reformat Pydantic errors into a compact, user-friendly message."""
    lines = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = err.get("msg", "invalid value")
        if loc:
            lines.append(f"• {loc}: {msg}")
        else:
            lines.append(f"• {msg}")
    return "\n".join(lines) if lines else str(exc)


__all__ = [
    "UNIT_KINDS",
    "Materialization",
    "Severity",
    "TestConfig",
    "TestKind",
    "UnitConfig",
    "UnitKind",
    "default_materialization",
    "format_validation_error",
    "infer_kind",
]
