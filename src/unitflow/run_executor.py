# unitflow/run_executor.py
from __future__ import annotations

import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Literal

from unitflow.compiler import CompiledTest, CompiledUnit
from unitflow.config.project import TestTiming
from unitflow.errors import ExecutionError
from unitflow.log_queue import LogQueue
from unitflow.logging import get_logger
from unitflow.testing.registry import TestResult, evaluate
from unitflow.warehouse.base import Warehouse

UnitStatus = Literal["success", "failed", "skipped"]

CANCELLED = "cancelled"

_logger = get_logger("run")


@dataclass
class RunResult:
    unit: str
    status: UnitStatus
    rows_affected: int | None = None
    test_results: list[TestResult] = field(default_factory=list)
    message: str | None = None
    duration_s: float = 0.0
    attempts: int = 1
    retryable: bool = True

    @property
    def failed_tests(self) -> list[TestResult]:
        return [t for t in self.test_results if not t.passed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit": self.unit,
            "status": self.status,
            "rows_affected": self.rows_affected,
            "message": self.message,
            "duration_s": round(self.duration_s, 6),
            "attempts": self.attempts,
            "retryable": self.retryable,
            "tests": [t.to_dict() for t in self.test_results],
        }


# ----------------- Helpers -----------------


def _short(name: str, width: int) -> str:
    w = max(5, int(width))
    if len(name) <= w:
        return name
    head = (w - 1) // 2
    tail = w - 1 - head
    return f"{name[:head]}…{name[-tail:]}"


def _abbr(engine: str) -> str:
    mapping = {"duckdb": "DUCK", "postgres": "PG"}
    return mapping.get(engine, engine.upper()[:4])


def _log(queue: LogQueue | None, msg: str) -> None:
    if queue is not None:
        queue.put(msg)
    else:
        _logger.info(msg)


def plan_levels(units: Sequence[CompiledUnit]) -> list[list[str]]:
    """
    Level-wise grouping of `units` (given in topological order). Only
    dependencies inside the selection count; input order is kept per level.
    """
    inset = {u.name for u in units}
    depth: dict[str, int] = {}
    for u in units:
        deps = [d for d in u.depends_on if d in inset]
        missing = [d for d in deps if d not in depth]
        if missing:
            raise ValueError(f"units are not in topological order: {u.name} before {missing[0]}")
        depth[u.name] = 1 + max((depth[d] for d in deps), default=0)
    lvls: list[list[str]] = [[] for _ in range(max(depth.values(), default=0))]
    for u in units:
        lvls[depth[u.name] - 1].append(u.name)
    return lvls


def _upstream_closure(units: Sequence[CompiledUnit]) -> dict[str, set[str]]:
    inset = {u.name for u in units}
    closure: dict[str, set[str]] = {}
    for u in units:
        acc: set[str] = set()
        for d in u.depends_on:
            if d in inset:
                acc.add(d)
                acc |= closure.get(d, set())
        closure[u.name] = acc
    return closure


def split_tests(
    units: Sequence[CompiledUnit], test_timing: TestTiming
) -> tuple[dict[str, list[CompiledTest]], dict[str, list[CompiledTest]]]:
    """
    Partition every unit's tests into (run right after the unit, run at end of run).

    With `after_unit`, a test that reads a unit of this run which is not
    upstream of its own unit may see a stale or missing relation; it is moved
    to the end of the run.
    """
    inset = {u.name for u in units}
    closure = _upstream_closure(units)
    now: dict[str, list[CompiledTest]] = {}
    later: dict[str, list[CompiledTest]] = {}
    for u in units:
        now[u.name], later[u.name] = [], []
        for t in u.tests:
            foreign = {r for r in t.references if r in inset} - closure[u.name] - {u.name}
            if test_timing == "end_of_run" or foreign:
                later[u.name].append(t)
            else:
                now[u.name].append(t)
    return now, later


# ----------------- Execution -----------------


class _Run:
    def __init__(
        self,
        units: Sequence[CompiledUnit],
        warehouse: Warehouse,
        *,
        jobs: int,
        test_timing: TestTiming,
        cancel_event: threading.Event,
        evaluate_tests: bool,
        logger: LogQueue | None,
        name_width: int,
    ):
        self.units = list(units)
        self.by_name = {u.name: u for u in self.units}
        self.warehouse = warehouse
        self.jobs = max(1, int(jobs))
        self.cancel = cancel_event
        self.evaluate_tests = evaluate_tests
        self.logger = logger
        self.width = name_width
        self.abbr = _abbr(warehouse.ENGINE_NAME)
        self.results: dict[str, RunResult] = {}
        self.root_cause: dict[str, str] = {}
        self.tests_now, self.tests_later = split_tests(self.units, test_timing)

    # ---- per unit ----
    def build(self, unit: CompiledUnit) -> RunResult:
        if self.cancel.is_set():
            return RunResult(unit.name, "skipped", message=CANCELLED, attempts=0)
        t0 = perf_counter()
        try:
            rows = self.warehouse.materialize(unit)
        except ExecutionError as exc:
            return RunResult(
                unit.name,
                "failed",
                message=exc.message,
                duration_s=perf_counter() - t0,
                retryable=exc.retryable,
            )
        except Exception as exc:
            msg = f"{type(exc).__name__}: {exc}"
            return RunResult(unit.name, "failed", message=msg, duration_s=perf_counter() - t0)
        duration = perf_counter() - t0

        tests: list[TestResult] = []
        if self.evaluate_tests and self.tests_now[unit.name]:
            tests = evaluate(unit, self.warehouse, tests=self.tests_now[unit.name])
        return RunResult(
            unit.name, "success", rows_affected=rows, test_results=tests, duration_s=duration
        )

    def _blocked_by(self, unit: CompiledUnit) -> str | None:
        for dep in unit.depends_on:
            res = self.results.get(dep)
            if res is not None and res.status != "success":
                return self.root_cause.get(dep, dep)
        return None

    # ---- per level ----
    def run_level(self, lvl_idx: int, names: list[str]) -> None:
        ready: list[CompiledUnit] = []
        for name in names:
            unit = self.by_name[name]
            if self.cancel.is_set():
                self.results[name] = RunResult(name, "skipped", message=CANCELLED, attempts=0)
                continue
            root = self._blocked_by(unit)
            if root is not None:
                self.root_cause[name] = root
                self.results[name] = RunResult(
                    name, "skipped", message=f"upstream '{root}' failed", attempts=0
                )
                _log(self.logger, f"↷ L{lvl_idx:02d} [{self.abbr}] {_short(name, self.width)}")
                continue
            ready.append(unit)
        if not ready:
            return

        lvl_t0 = perf_counter()
        ok = fail = 0
        workers = max(1, min(self.jobs, self.warehouse.max_connections, len(ready)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="uf-worker") as pool:
            futures: dict[Future[RunResult], str] = {}
            for unit in ready:
                _log(self.logger, f"▶ L{lvl_idx:02d} [{self.abbr}] {_short(unit.name, self.width)}")
                futures[pool.submit(self.build, unit)] = unit.name

            for fut in as_completed(futures):
                name = futures[fut]
                res = fut.result()
                self.results[name] = res
                ms = int(res.duration_s * 1000)
                label = f"L{lvl_idx:02d} [{self.abbr}] {_short(name, self.width)}"
                if res.status == "success":
                    ok += 1
                    _log(self.logger, f"✓ {label}  {ms} ms")
                elif res.status == "failed":
                    fail += 1
                    _log(self.logger, f"✖ {label}  {ms} ms")
                else:
                    _log(self.logger, f"↷ {label}  {res.message}")

        lvl_ms = int((perf_counter() - lvl_t0) * 1000)
        _log(self.logger, f"— L{lvl_idx:02d} summary: ok={ok} failed={fail}  {lvl_ms} ms")

    def run_deferred_tests(self) -> None:
        if not self.evaluate_tests or self.cancel.is_set():
            return
        for unit in self.units:
            res = self.results[unit.name]
            pending = self.tests_later[unit.name]
            if res.status != "success" or not pending:
                continue
            runnable = []
            for t in pending:
                broken = [
                    r
                    for r in t.references
                    if r in self.results and self.results[r].status != "success"
                ]
                if broken:
                    _logger.warning("test %s not run: '%s' was not built", t.name, broken[0])
                    continue
                runnable.append(t)
            res.test_results.extend(evaluate(unit, self.warehouse, tests=runnable))

    def execute(self) -> list[RunResult]:
        if not self.units:
            return []
        try:
            self.warehouse.ensure_schemas({u.schema for u in self.units})
        except ExecutionError as exc:
            msg = f"schema setup failed: {exc.message}"
            return [RunResult(u.name, "failed", message=msg) for u in self.units]

        for lvl_idx, names in enumerate(plan_levels(self.units), start=1):
            self.run_level(lvl_idx, names)
        self.run_deferred_tests()
        return [self.results[u.name] for u in self.units]


def run(
    units: Sequence[CompiledUnit],
    warehouse: Warehouse,
    *,
    jobs: int = 4,
    test_timing: TestTiming = "after_unit",
    cancel_event: threading.Event | None = None,
    evaluate_tests: bool = True,
    logger: LogQueue | None = None,
    name_width: int = 28,
) -> list[RunResult]:
    """
    Materialize `units` (topological order) level by level; inside a level up
    to `min(jobs, warehouse.max_connections)` units run in parallel.

    A failed unit never stops independent branches; its transitive dependents
    are `skipped`. Setting `cancel_event` lets running units finish and skips
    everything not yet started. Results come back in input order.
    """
    return _Run(
        units,
        warehouse,
        jobs=jobs,
        test_timing=test_timing,
        cancel_event=cancel_event or threading.Event(),
        evaluate_tests=evaluate_tests,
        logger=logger,
        name_width=name_width,
    ).execute()


__all__ = ["CANCELLED", "RunResult", "UnitStatus", "plan_levels", "run", "split_tests"]
