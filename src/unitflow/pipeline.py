# unitflow/pipeline.py
from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from unitflow.artifacts import RunReport, now_iso
from unitflow.compiler import compile_all
from unitflow.config.project import NamespaceConfig, ProjectConfig, TestTiming
from unitflow.core import Catalog
from unitflow.dag import Graph, resolve
from unitflow.errors import StrictModeError
from unitflow.log_queue import LogQueue
from unitflow.logging import get_logger
from unitflow.run_executor import RunResult, run
from unitflow.store import RunStore
from unitflow.warehouse.base import Warehouse

logger = get_logger("pipeline")


@dataclass
class RunSettings:
    """Everything a cycle needs besides the catalog and the warehouse."""

    namespace: NamespaceConfig = field(default_factory=NamespaceConfig)
    vars: dict[str, Any] = field(default_factory=dict)
    jobs: int = 4
    strict: bool = False
    test_timing: TestTiming = "after_unit"
    evaluate_tests: bool = True

    @classmethod
    def from_project(
        cls, cfg: ProjectConfig, *, vars: Mapping[str, Any] | None = None, **overrides: Any
    ) -> RunSettings:
        """Project defaults; CLI `--vars` win over project.yml vars."""
        base = cls(
            namespace=cfg.schemas,
            vars={**cfg.vars, **(vars or {})},
            jobs=cfg.run.jobs,
            strict=cfg.run.strict,
            test_timing=cfg.run.test_timing,
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(base, key, value)
        return base


def _failed_compile_results(
    graph: Graph, errors: Mapping[str, Exception], selected: list[str]
) -> dict[str, RunResult]:
    out: dict[str, RunResult] = {}
    for name, exc in errors.items():
        out[name] = RunResult(
            name, "failed", message=getattr(exc, "message", str(exc)), retryable=False
        )
    sel = set(selected)
    for name in errors:
        for dep in graph.downstream([name]):
            if dep in sel and dep not in out:
                out[dep] = RunResult(
                    dep, "skipped", message=f"upstream '{name}' failed", attempts=0
                )
    return out


def run_cycle(
    catalog: Catalog,
    warehouse: Warehouse,
    settings: RunSettings | None = None,
    *,
    store: RunStore | None = None,
    cancel_event: threading.Event | None = None,
    only: Iterable[str] | None = None,
    graph: Graph | None = None,
    run_id: str | None = None,
    attempt: int = 1,
    log: LogQueue | None = None,
) -> RunReport:
    """
    resolve → compile → execute → test, once.

    Resolution errors (unknown references, cycles) are raised before any
    warehouse call. Compile errors fail only the affected unit and skip its
    dependents. `only` restricts execution to a subset; units outside it are
    assumed to exist already.
    """
    settings = settings or RunSettings()
    graph = graph or resolve(catalog)
    cancel_event = cancel_event or threading.Event()

    selected = list(graph.order) if only is None else [n for n in graph.order if n in set(only)]
    report = RunReport(
        run_id=run_id or uuid.uuid4().hex[:12],
        started_at=now_iso(),
        attempt=attempt,
        strict=settings.strict,
    )

    compiled, errors = compile_all(graph, settings.namespace, settings.vars, only=set(selected))
    pre = _failed_compile_results(graph, errors, selected)
    runnable = [compiled[n] for n in selected if n in compiled and n not in pre]

    executed = run(
        runnable,
        warehouse,
        jobs=settings.jobs,
        test_timing=settings.test_timing,
        cancel_event=cancel_event,
        evaluate_tests=settings.evaluate_tests,
        logger=log,
    )
    by_name = {r.unit: r for r in executed}
    by_name.update(pre)
    report.results = [by_name[n] for n in selected if n in by_name]
    report.finished_at = now_iso()
    report.compute_status(cancelled=cancel_event.is_set())

    logger.info(
        "run %s attempt %d finished: %s %s",
        report.run_id,
        report.attempt,
        report.status,
        report.summary(),
    )
    if store is not None:
        store.append(report)

    if settings.strict and report.blocking_tests:
        raise StrictModeError(
            {t.name: t.failing_row_count for t in report.blocking_tests}, report=report
        )
    return report


__all__ = ["RunSettings", "run_cycle"]
