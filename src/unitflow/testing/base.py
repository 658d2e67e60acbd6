# unitflow/testing/base.py
"""
Count queries for the built-in test kinds.

Every builder returns one SQL statement whose single scalar result is the
number of failing rows; a test passes when that number is 0.
"""

from __future__ import annotations

from typing import Any

from unitflow.compiler import sql_literal


def _and_where(where: str | None) -> str:
    return f" and ({where})" if where else ""


def sql_list(values: list[Any] | None) -> str:
    """Render a literal list for `in (...)`; numbers stay unquoted."""
    return ", ".join(sql_literal(v) for v in (values or []))


def not_null_sql(table: str, column: str, *, where: str | None = None) -> str:
    """Rows where `column` is null."""
    return f"select count(*) from {table} where {column} is null" + _and_where(where)


def unique_sql(table: str, column: str, *, where: str | None = None) -> str:
    """
    Rows belonging to a duplicate group. Every row of the group counts,
    so three rows sharing one value yield 3. Nulls are ignored.
    """
    return (
        "select coalesce(sum(n), 0) from ("
        f"select {column}, count(*) as n from {table} "
        f"where {column} is not null{_and_where(where)} "
        f"group by {column} having count(*) > 1"
        ") as dup"
    )


def accepted_values_sql(
    table: str, column: str, values: list[Any], *, where: str | None = None
) -> str:
    """Non-null rows whose value is not in `values` (an empty list rejects every row)."""
    sql = f"select count(*) from {table} where {column} is not null"
    if values:
        sql += f" and {column} not in ({sql_list(values)})"
    return sql + _and_where(where)


def relationships_sql(
    table: str, column: str, parent: str, field: str, *, where: str | None = None
) -> str:
    """Non-null child values without a matching `parent.field`."""
    return (
        f"select count(*) from {table} as child "
        f"where child.{column} is not null "
        f"and not exists (select 1 from {parent} as parent where parent.{field} = child.{column})"
        + _and_where(where)
    )


def singular_sql(query: str) -> str:
    """Rows returned by a custom query."""
    return f"select count(*) from ({query}) as failing"


__all__ = [
    "accepted_values_sql",
    "not_null_sql",
    "relationships_sql",
    "singular_sql",
    "sql_list",
    "unique_sql",
]
