# unitflow/warehouse/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, contextmanager, suppress
from typing import Any, Literal

from unitflow.errors import ExecutionError
from unitflow.logging import echo_debug, get_logger

RelationKind = Literal["table", "view"]

TMP_SUFFIX = "__uf_tmp"
OLD_SUFFIX = "__uf_old"

logger = get_logger("warehouse")


class Session(ABC):
    """
    One checked-out warehouse connection.

    Statements run in autocommit mode unless issued inside `transaction()`.
    Engine failures surface as ExecutionError, timeouts as WarehouseTimeoutError.
    """

    @abstractmethod
    def execute(self, sql: str) -> None: ...

    @abstractmethod
    def fetchall(self, sql: str) -> list[tuple[Any, ...]]: ...

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]: ...

    def scalar(self, sql: str) -> Any:
        rows = self.fetchall(sql)
        return rows[0][0] if rows else None


class Warehouse(ABC):
    """
    Shared materialization workflow. Subclasses provide a connection pool
    (`session()`) and the few statements that differ per engine.

    Class attributes:
      ENGINE_NAME                 short tag for log lines
      supports_transactional_ddl  True when DROP/ALTER ... RENAME participate in
                                  transactions. Table swaps then run as
                                  drop + rename in one transaction; otherwise the
                                  old table is renamed aside and restored on failure.
      DROP_SUFFIX                 appended to DROP statements (e.g. " cascade")
    """

    ENGINE_NAME: str = "base"
    supports_transactional_ddl: bool = False
    DROP_SUFFIX: str = ""

    max_connections: int = 1
    statement_timeout_s: float | None = None

    # ---------- Connections ----------
    @abstractmethod
    def session(self) -> AbstractContextManager[Session]:
        """Check out a connection for the duration of the `with` block."""

    def close(self) -> None:  # noqa: B027
        """Release pooled connections."""

    def __enter__(self) -> Warehouse:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ---------- Engine hooks ----------
    def _create_view(self, s: Session, relation: str, sql: str) -> None:
        s.execute(f"create or replace view {relation} as {sql}")

    def _rename(self, s: Session, kind: RelationKind, relation: str, new_name: str) -> None:
        s.execute(f"alter {kind} {relation} rename to {new_name}")

    def _drop(self, s: Session, kind: RelationKind, relation: str) -> None:
        s.execute(f"drop {kind} if exists {relation}{self.DROP_SUFFIX}")

    # ---------- Catalog ----------
    def relation_kind(self, s: Session, schema: str, name: str) -> RelationKind | None:
        """'table' / 'view' for an existing relation, None if absent."""
        row = s.fetchall(
            "select table_type from information_schema.tables "
            f"where lower(table_schema) = lower('{schema}') "
            f"and lower(table_name) = lower('{name}') limit 1"
        )
        if not row:
            return None
        return "view" if str(row[0][0]).upper() == "VIEW" else "table"

    def ensure_schemas(self, schemas: Iterable[str]) -> None:
        """Create schemas one at a time before any unit runs."""
        with self.session() as s:
            for schema in sorted(set(schemas)):
                s.execute(f"create schema if not exists {schema}")

    # ---------- Materialization ----------
    def materialize(self, unit: Any) -> int | None:
        """
        Build `unit` (a CompiledUnit) in place. Returns the new row count for
        tables, None for views. Re-running with the same SQL is idempotent.
        """
        echo_debug(f"-- {unit.relation} ({unit.materialization})\n{unit.sql}")
        try:
            with self.session() as s:
                if unit.materialization == "view":
                    self._build_view(s, unit.schema, unit.name, unit.sql)
                    return None
                return self._build_table(s, unit.schema, unit.name, unit.sql)
        except ExecutionError as exc:
            exc.unit = exc.unit or unit.name
            exc.relation = exc.relation or unit.relation
            raise

    def _build_view(self, s: Session, schema: str, name: str, sql: str) -> None:
        relation = f"{schema}.{name}"
        with s.transaction():
            if self.relation_kind(s, schema, name) == "table":
                self._drop(s, "table", relation)
            self._create_view(s, relation, sql)

    def _build_table(self, s: Session, schema: str, name: str, sql: str) -> int:
        tmp_name = f"{name}{TMP_SUFFIX}"
        tmp = f"{schema}.{tmp_name}"
        self._drop(s, "table", tmp)
        s.execute(f"create table {tmp} as {sql}")
        rows = int(s.scalar(f"select count(*) from {tmp}") or 0)
        try:
            if self.supports_transactional_ddl:
                self._swap_transactional(s, schema, name, tmp)
            else:
                self._swap_by_rename(s, schema, name, tmp)
        except Exception:
            with suppress(ExecutionError):
                self._drop(s, "table", tmp)
            raise
        return rows

    def _swap_transactional(self, s: Session, schema: str, name: str, tmp: str) -> None:
        relation = f"{schema}.{name}"
        with s.transaction():
            existing = self.relation_kind(s, schema, name)
            if existing:
                self._drop(s, existing, relation)
            self._rename(s, "table", tmp, name)

    def _swap_by_rename(self, s: Session, schema: str, name: str, tmp: str) -> None:
        relation = f"{schema}.{name}"
        old_name = f"{name}{OLD_SUFFIX}"
        old = f"{schema}.{old_name}"
        self._drop(s, "table", old)

        existing = self.relation_kind(s, schema, name)
        if existing == "view":
            self._drop(s, "view", relation)
        elif existing == "table":
            self._rename(s, "table", relation, old_name)

        try:
            self._rename(s, "table", tmp, name)
        except ExecutionError:
            if existing == "table":
                logger.warning("swap failed for %s; restoring previous table", relation)
                self._rename(s, "table", old, name)
            raise
        if existing == "table":
            self._drop(s, "table", old)


class DBAPISession(Session):
    """
    Session over a DB-API style connection with `execute(sql)` returning a
    cursor-like object. Subclasses map driver exceptions in `_run`.
    """

    def __init__(self, con: Any):
        self.con = con
        self._in_tx = False

    @abstractmethod
    def _run(self, sql: str) -> Any: ...

    def execute(self, sql: str) -> None:
        self._run(sql)

    def fetchall(self, sql: str) -> list[tuple[Any, ...]]:
        return [tuple(r) for r in self._run(sql).fetchall()]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._in_tx:
            yield
            return
        self._run("begin transaction")
        self._in_tx = True
        try:
            yield
        except BaseException:
            self._in_tx = False
            with suppress(ExecutionError):
                self._run("rollback")
            raise
        self._in_tx = False
        self._run("commit")


__all__ = [
    "OLD_SUFFIX",
    "TMP_SUFFIX",
    "DBAPISession",
    "RelationKind",
    "Session",
    "Warehouse",
]
