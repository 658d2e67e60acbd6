# tests/integration/test_testing_engine_duckdb.py
from __future__ import annotations

import pytest

from unitflow.compiler import CompiledTest, CompiledUnit
from unitflow.core import TestSpec
from unitflow.testing import evaluate


def _seed(wh, sql: str) -> None:
    with wh.session() as s:
        s.execute("create schema if not exists m")
        s.execute(sql)


def _unit(*tests: CompiledTest) -> CompiledUnit:
    return CompiledUnit(
        name="t",
        kind="mart",
        materialization="table",
        schema="m",
        relation="m.t",
        sql="select 1",
        tests=tests,
    )


def _test(kind, column=None, **params) -> CompiledTest:
    related = params.pop("related", None)
    sql = params.pop("sql", None)
    spec = TestSpec(
        kind=kind, target_unit="t", name=f"{kind}_t", target_column=column, parameters=params
    )
    return CompiledTest(spec=spec, relation="m.t", related_relation=related, sql=sql)


@pytest.mark.duckdb
def test_unique_counts_every_row_of_the_duplicate_group(duck_wh):
    _seed(
        duck_wh,
        "create table m.t as select * from (values (1), (2), (2), (2), (null), (null)) v(id)",
    )
    (res,) = evaluate(_unit(_test("unique", "id")), duck_wh)
    assert res.failing_row_count == 3
    assert not res.passed


@pytest.mark.duckdb
def test_accepted_values_counts_outsiders(duck_wh):
    _seed(duck_wh, "create table m.t as select * from (values ('P'), ('O'), ('F'), ('X')) v(s)")
    (res,) = evaluate(_unit(_test("accepted_values", "s", values=["P", "O", "F"])), duck_wh)
    assert res.failing_row_count == 1


@pytest.mark.duckdb
def test_not_null_passes_on_clean_column(duck_wh):
    _seed(duck_wh, "create table m.t as select * from (values (1), (2)) v(order_id)")
    (res,) = evaluate(_unit(_test("not_null", "order_id")), duck_wh)
    assert res.passed and res.failing_row_count == 0


@pytest.mark.duckdb
def test_relationships_counts_orphans(duck_wh):
    _seed(duck_wh, "create table m.t as select * from (values (1), (2), (3), (null)) v(pid)")
    _seed(duck_wh, "create table m.p as select * from (values (1), (2)) v(id)")
    test = _test("relationships", "pid", to="p", field="id", related="m.p")
    (res,) = evaluate(_unit(test), duck_wh)
    assert res.failing_row_count == 1


@pytest.mark.duckdb
def test_singular_counts_returned_rows(duck_wh):
    _seed(duck_wh, "create table m.t as select * from (values (-1), (5), (-3)) v(amount)")
    test = _test("singular", sql="select * from m.t where amount < 0")
    (res,) = evaluate(_unit(test), duck_wh)
    assert res.failing_row_count == 2


@pytest.mark.duckdb
def test_where_filter_narrows_the_check(duck_wh):
    _seed(
        duck_wh,
        "create table m.t as select * from "
        "(values (cast(null as varchar), 1), (null, 2)) v(c, day)",
    )
    (res,) = evaluate(_unit(_test("not_null", "c", where="day = 2")), duck_wh)
    assert res.failing_row_count == 1


@pytest.mark.duckdb
def test_missing_relation_reports_error(duck_wh):
    (res,) = evaluate(_unit(_test("not_null", "c")), duck_wh)
    assert res.failing_row_count is None
    assert res.error
