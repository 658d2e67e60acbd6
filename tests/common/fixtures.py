from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Any

import duckdb
import pytest

from unitflow.errors import ExecutionError
from unitflow.warehouse.base import Session, Warehouse
from unitflow.warehouse.duckdb import DuckDBWarehouse
from tests.common.utils import write

# ---- Fake warehouse -----------------------------------------------------------


class FakeSession(Session):
    def __init__(self, wh: FakeWarehouse):
        self.wh = wh

    def execute(self, sql: str) -> None:
        self.wh.record(sql)

    def fetchall(self, sql: str) -> list[tuple[Any, ...]]:
        self.wh.record(sql)
        return [(self.wh.respond(sql),)]

    def transaction(self):
        return nullcontext()


class FakeWarehouse(Warehouse):
    """
    Records what it is asked to do instead of touching a database.

    - `fail`: unit name → exception raised by materialize (ExecutionError by default)
    - `delays`: unit name → seconds to sleep while "building"
    - `respond`: callable(sql) → scalar returned for test count queries (default 0)
    - `on_build`: callback(name) invoked before each build
    """

    ENGINE_NAME = "duckdb"

    def __init__(
        self,
        *,
        fail: dict[str, BaseException | str] | None = None,
        delays: dict[str, float] | None = None,
        respond: Callable[[str], Any] | None = None,
        on_build: Callable[[str], None] | None = None,
        max_connections: int = 8,
    ):
        self.fail = dict(fail or {})
        self.delays = dict(delays or {})
        self._respond = respond or (lambda _sql: 0)
        self.on_build = on_build
        self.max_connections = max_connections
        self.built: list[str] = []
        self.statements: list[str] = []
        self.schemas: set[str] = set()
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def record(self, sql: str) -> None:
        with self._lock:
            self.statements.append(sql)

    def respond(self, sql: str) -> Any:
        return self._respond(sql)

    @contextmanager
    def session(self) -> Iterator[Session]:
        yield FakeSession(self)

    def ensure_schemas(self, schemas) -> None:
        self.schemas |= set(schemas)

    def materialize(self, unit: Any) -> int | None:
        if self.on_build is not None:
            self.on_build(unit.name)
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delays.get(unit.name, 0.0))
            err = self.fail.get(unit.name)
            if err is not None:
                if isinstance(err, BaseException):
                    raise err
                raise ExecutionError(err, unit=unit.name, relation=unit.relation)
            with self._lock:
                self.built.append(unit.name)
            return None if unit.materialization == "view" else 1
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def fake_wh() -> FakeWarehouse:
    return FakeWarehouse()


# ---- DuckDB ---------------------------------------------------------------------


@pytest.fixture
def duck_wh() -> Iterator[DuckDBWarehouse]:
    wh = DuckDBWarehouse(":memory:", pool_size=4, statement_timeout_s=60)
    try:
        yield wh
    finally:
        wh.close()


def seed_raw(con: Any) -> None:
    """Raw tables used by the sample project."""
    con.execute("create schema if not exists raw")
    con.execute(
        "create or replace table raw.orders as select * from (values "
        "(1, 10, 'P', 20.0), (2, 10, 'F', 35.5), (3, 11, 'O', 12.0), (4, 12, 'F', 99.9)"
        ") as t(order_id, customer_id, status, amount)"
    )
    con.execute(
        "create or replace table raw.customers as select * from (values "
        "(10, 'alice'), (11, 'bob'), (12, 'carol')"
        ") as t(customer_id, name)"
    )


# ---- Sample project on disk -------------------------------------------------------


def make_project(root: Path, *, db_path: Path | None = None) -> Path:
    """
    Small orders project:

        raw.orders ─┐
                    ├─ stg_orders ─┐
        raw.customers ─ stg_customers ─┴─ fct_orders ── customer_revenue
    """
    write(
        root / "project.yml",
        """
        name: shop
        schemas:
          default: main
          staging: staging
          fact: marts
          mart: marts
        vars:
          min_amount: 0
        run:
          jobs: 2
        """,
    )
    write(
        root / "sources.yml",
        """
        version: 2
        sources:
          - name: raw
            schema: raw
            tables:
              - name: orders
              - name: customers
        """,
    )
    path = db_path or (root / "warehouse.duckdb")
    write(
        root / "profiles.yml",
        f"""
        dev:
          engine: duckdb
          duckdb:
            path: "{path.as_posix()}"
        """,
    )
    write(
        root / "models" / "staging" / "stg_orders.sql",
        """
        {{ config(tags=['daily']) }}
        select order_id, customer_id, status, amount
        from {{ source('raw', 'orders') }}
        where amount >= {{ var('min_amount') }}
        """,
    )
    write(
        root / "models" / "staging" / "stg_customers.sql",
        "select customer_id, name from {{ source('raw', 'customers') }}\n",
    )
    write(
        root / "models" / "facts" / "fct_orders.sql",
        """
        select o.order_id, o.customer_id, c.name, o.status, o.amount
        from {{ ref('stg_orders') }} o
        join {{ ref('stg_customers') }} c using (customer_id)
        """,
    )
    write(
        root / "models" / "marts" / "customer_revenue.sql",
        """
        select customer_id, name, sum(amount) as revenue
        from {{ ref('fct_orders') }}
        group by customer_id, name
        """,
    )
    write(
        root / "models" / "schema.yml",
        """
        version: 2
        models:
          - name: stg_orders
            columns:
              - name: order_id
                tests: [unique, not_null]
              - name: status
                tests:
                  - accepted_values:
                      values: ['P', 'O', 'F']
          - name: fct_orders
            columns:
              - name: customer_id
                tests:
                  - relationships:
                      to: ref('stg_customers')
                      field: customer_id
        """,
    )
    write(
        root / "tests" / "no_negative_revenue.sql",
        "select * from {{ ref('customer_revenue') }} where revenue < 0\n",
    )
    return root


@pytest.fixture
def shop_project(tmp_path: Path) -> Path:
    """Sample project whose DuckDB file already holds the raw tables."""
    proj = make_project(tmp_path / "shop")
    con = duckdb.connect(str(proj / "warehouse.duckdb"))
    try:
        seed_raw(con)
    finally:
        con.close()
    return proj
