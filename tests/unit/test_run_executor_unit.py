# tests/unit/test_run_executor_unit.py
from __future__ import annotations

import threading

import pytest

from tests.common.fixtures import FakeWarehouse
from tests.common.utils import normalize_ms
from unitflow.compiler import compile_all
from unitflow.config.project import NamespaceConfig
from unitflow.core import load
from unitflow.dag import resolve
from unitflow.errors import ExecutionError
from unitflow.log_queue import LogQueue
from unitflow.run_executor import CANCELLED, plan_levels, run, split_tests


def _compiled(defs):
    graph = resolve(load(defs))
    compiled, errors = compile_all(graph, NamespaceConfig())
    assert not errors
    return [compiled[n] for n in graph.order]


def _ref(*names):
    return " ".join(f"{{{{ ref('{n}') }}}}" for n in names)


CHAIN = {
    "a": {"body": "select 1 as id"},
    "b": {"body": f"select * from {_ref('a')}"},
    "c": {"body": f"select * from {_ref('b')}"},
    "d": {"body": "select 2 as id"},
}


@pytest.mark.unit
def test_failure_skips_dependents_but_not_independent_branches():
    wh = FakeWarehouse(fail={"b": "boom"})
    results = run(_compiled(CHAIN), wh, jobs=2)

    by = {r.unit: r for r in results}
    assert [r.unit for r in results] == ["a", "b", "c", "d"]
    assert by["a"].status == "success"
    assert by["b"].status == "failed" and by["b"].message == "boom"
    assert by["c"].status == "skipped"
    assert by["c"].message == "upstream 'b' failed"
    assert by["c"].attempts == 0
    assert by["d"].status == "success"
    assert "c" not in wh.built


@pytest.mark.unit
def test_skip_message_names_root_cause():
    defs = {**CHAIN, "e": {"body": f"select * from {_ref('c')}"}}
    results = run(_compiled(defs), FakeWarehouse(fail={"a": "nope"}))
    by = {r.unit: r for r in results}
    assert by["e"].message == "upstream 'a' failed"


@pytest.mark.unit
def test_unexpected_exception_fails_only_that_unit():
    wh = FakeWarehouse(fail={"d": RuntimeError("driver crashed")})
    by = {r.unit: r for r in run(_compiled(CHAIN), wh)}
    assert by["d"].status == "failed"
    assert by["d"].message == "RuntimeError: driver crashed"
    assert by["c"].status == "success"


@pytest.mark.unit
def test_parallelism_is_bounded_by_jobs_and_connections():
    defs = {n: {"body": "select 1"} for n in ("p", "q", "r", "s")}
    delays = dict.fromkeys(defs, 0.05)

    wide = FakeWarehouse(delays=delays)
    run(_compiled(defs), wide, jobs=4)
    assert wide.peak >= 2

    serial = FakeWarehouse(delays=delays)
    run(_compiled(defs), serial, jobs=1)
    assert serial.peak == 1

    pooled = FakeWarehouse(delays=delays, max_connections=1)
    run(_compiled(defs), pooled, jobs=4)
    assert pooled.peak == 1


@pytest.mark.unit
def test_levels_run_in_order():
    wh = FakeWarehouse(delays={"a": 0.02})
    run(_compiled(CHAIN), wh, jobs=4)
    assert wh.built.index("a") < wh.built.index("b") < wh.built.index("c")


@pytest.mark.unit
def test_cancel_skips_units_not_started():
    cancel = threading.Event()
    wh = FakeWarehouse(on_build=lambda name: cancel.set() if name == "a" else None)
    units = _compiled({"a": CHAIN["a"], "b": CHAIN["b"], "c": CHAIN["c"]})
    by = {r.unit: r for r in run(units, wh, jobs=1, cancel_event=cancel)}

    assert by["a"].status == "success"
    assert by["b"].status == "skipped" and by["b"].message == CANCELLED
    assert by["c"].attempts == 0


@pytest.mark.unit
def test_schema_setup_failure_fails_every_unit():
    class BrokenSchemas(FakeWarehouse):
        def ensure_schemas(self, schemas):
            raise ExecutionError("permission denied for database")

    results = run(_compiled(CHAIN), BrokenSchemas())
    assert {r.status for r in results} == {"failed"}
    assert results[0].message.startswith("schema setup failed")


@pytest.mark.unit
def test_failing_test_does_not_fail_unit():
    defs = {"a": {"body": "select 1 as id", "tests": [{"kind": "not_null", "column": "id"}]}}
    wh = FakeWarehouse(respond=lambda sql: 2 if "is null" in sql else 0)
    (res,) = run(_compiled(defs), wh)
    assert res.status == "success"
    (t,) = res.test_results
    assert not t.passed and t.failing_row_count == 2 and t.blocking


@pytest.mark.unit
def test_evaluate_tests_false_skips_tests():
    defs = {"a": {"body": "select 1 as id", "tests": [{"kind": "unique", "column": "id"}]}}
    (res,) = run(_compiled(defs), FakeWarehouse(), evaluate_tests=False)
    assert res.test_results == []


REL = {
    "dim": {"body": "select 1 as id"},
    "fct": {
        "body": "select 1 as dim_id",
        "tests": [{"kind": "relationships", "column": "dim_id", "to": "dim", "field": "id"}],
    },
}


@pytest.mark.unit
def test_tests_reading_unrelated_units_are_deferred():
    units = _compiled(REL)
    now, later = split_tests(units, "after_unit")
    assert now["fct"] == [] and [t.name for t in later["fct"]] == ["relationships_fct_dim_id"]

    now, later = split_tests(units, "end_of_run")
    assert all(not v for v in now.values())


@pytest.mark.unit
def test_deferred_tests_run_after_everything():
    seen: list[str] = []

    def respond(sql: str) -> int:
        seen.append(sql)
        return 0

    wh = FakeWarehouse(respond=respond, delays={"dim": 0.05})
    by = {r.unit: r for r in run(_compiled(REL), wh, jobs=2)}
    assert [t.passed for t in by["fct"].test_results] == [True]
    assert set(wh.built) == {"fct", "dim"}
    assert any("not exists" in s for s in seen)


@pytest.mark.unit
def test_deferred_test_not_run_when_its_parent_failed():
    by = {r.unit: r for r in run(_compiled(REL), FakeWarehouse(fail={"dim": "x"}))}
    assert by["fct"].status == "success"
    assert by["fct"].test_results == []


@pytest.mark.unit
def test_progress_lines():
    logq = LogQueue()
    run(_compiled(CHAIN), FakeWarehouse(fail={"b": "boom"}), jobs=1, logger=logq)
    lines = normalize_ms(logq.drain())
    assert lines[0] == "▶ L01 [DUCK] a"
    assert "✓ L01 [DUCK] a  <ms>" in lines
    assert "✖ L02 [DUCK] b  <ms>" in lines
    assert "↷ L03 [DUCK] c" in lines
    assert "— L01 summary: ok=2 failed=0  <ms>" in lines


@pytest.mark.unit
def test_plan_levels_requires_topological_input():
    units = _compiled(CHAIN)
    assert plan_levels(units) == [["a", "d"], ["b"], ["c"]]
    with pytest.raises(ValueError):
        plan_levels(list(reversed(units)))


@pytest.mark.unit
def test_empty_run():
    assert run([], FakeWarehouse()) == []
