# unitflow/warehouse/duckdb.py
from __future__ import annotations

import queue
import threading
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Any

import duckdb

from unitflow.errors import ExecutionError, WarehouseTimeoutError
from unitflow.warehouse.base import DBAPISession, Warehouse


def _snippet(sql: str, limit: int = 400) -> str:
    sql = sql.strip()
    return sql if len(sql) <= limit else sql[:limit] + " …"


class DuckSession(DBAPISession):
    """A pooled DuckDB cursor; every statement is guarded by an interrupt timer."""

    def __init__(self, con: duckdb.DuckDBPyConnection, timeout_s: float | None):
        super().__init__(con)
        self.timeout_s = timeout_s

    def _run(self, sql: str) -> Any:
        fired = threading.Event()

        def _interrupt() -> None:
            fired.set()
            self.con.interrupt()

        timer = None
        if self.timeout_s:
            timer = threading.Timer(self.timeout_s, _interrupt)
            timer.daemon = True
            timer.start()
        try:
            return self.con.execute(sql)
        except duckdb.Error as exc:
            if fired.is_set() or isinstance(exc, duckdb.InterruptException):
                raise WarehouseTimeoutError(
                    f"statement exceeded {self.timeout_s}s timeout",
                    timeout_s=self.timeout_s,
                    sql_snippet=_snippet(sql),
                ) from exc
            raise ExecutionError(str(exc), sql_snippet=_snippet(sql)) from exc
        finally:
            if timer is not None:
                timer.cancel()


class DuckDBWarehouse(Warehouse):
    """
    DuckDB warehouse backed by one database connection and a pool of cursors
    (`con.cursor()`), one per concurrently running unit.
    """

    ENGINE_NAME = "duckdb"
    supports_transactional_ddl = True

    def __init__(
        self,
        path: str = ":memory:",
        *,
        threads: int | None = None,
        pool_size: int = 4,
        statement_timeout_s: float | None = 300.0,
        checkout_timeout_s: float = 30.0,
    ):
        if path and path != ":memory:" and "://" not in path:
            with suppress(OSError):
                Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self.con = duckdb.connect(path)
        if threads:
            self.con.execute(f"set threads = {int(threads)}")
        self.max_connections = max(1, int(pool_size))
        self.statement_timeout_s = statement_timeout_s
        self.checkout_timeout_s = checkout_timeout_s

        self._idle: queue.Queue[duckdb.DuckDBPyConnection] = queue.Queue()
        self._created = 0
        self._lock = threading.Lock()
        self._cursors: list[duckdb.DuckDBPyConnection] = []

    def _checkout(self) -> duckdb.DuckDBPyConnection:
        with self._lock:
            if self._idle.empty() and self._created < self.max_connections:
                cur = self.con.cursor()
                self._cursors.append(cur)
                self._created += 1
                return cur
        try:
            return self._idle.get(timeout=self.checkout_timeout_s)
        except queue.Empty:
            raise WarehouseTimeoutError(
                f"no DuckDB connection available within {self.checkout_timeout_s}s",
                timeout_s=self.checkout_timeout_s,
            ) from None

    @contextmanager
    def session(self) -> Iterator[DuckSession]:
        cur = self._checkout()
        try:
            yield DuckSession(cur, self.statement_timeout_s)
        finally:
            self._idle.put(cur)

    def close(self) -> None:
        with self._lock:
            for cur in self._cursors:
                with suppress(duckdb.Error):
                    cur.close()
            self._cursors.clear()
            self._created = 0
            self._idle = queue.Queue()
        with suppress(duckdb.Error):
            self.con.close()


__all__ = ["DuckDBWarehouse", "DuckSession"]
