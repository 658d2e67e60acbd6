# unitflow/artifacts.py
from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from unitflow.compiler import CompiledUnit
from unitflow.core import TestSpec
from unitflow.run_executor import RunResult
from unitflow.testing.registry import TestResult

ReportStatus = Literal["success", "failed", "cancelled"]


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


@dataclass
class RunReport:
    """Outcome of one scheduled (or manual) run, including retries."""

    run_id: str
    started_at: str
    finished_at: str | None = None
    status: ReportStatus = "success"
    results: list[RunResult] = field(default_factory=list)
    attempt: int = 1
    strict: bool = False

    @property
    def failed_units(self) -> list[str]:
        return [r.unit for r in self.results if r.status == "failed"]

    @property
    def retryable_units(self) -> list[str]:
        """Failed units whose error may go away on a second attempt."""
        return [r.unit for r in self.results if r.status == "failed" and r.retryable]

    @property
    def skipped_units(self) -> list[str]:
        return [r.unit for r in self.results if r.status == "skipped"]

    @property
    def failed_tests(self) -> list[TestResult]:
        return [t for r in self.results for t in r.test_results if not t.passed]

    @property
    def blocking_tests(self) -> list[TestResult]:
        """Failed tests with severity 'error'."""
        return [t for t in self.failed_tests if t.blocking]

    def result_for(self, unit: str) -> RunResult | None:
        for r in self.results:
            if r.unit == unit:
                return r
        return None

    def compute_status(self, *, cancelled: bool = False) -> ReportStatus:
        if self.failed_units or (self.strict and self.blocking_tests):
            self.status = "failed"
        elif cancelled:
            self.status = "cancelled"
        else:
            self.status = "success"
        return self.status

    def summary(self) -> dict[str, int]:
        return {
            "success": sum(r.status == "success" for r in self.results),
            "failed": len(self.failed_units),
            "skipped": len(self.skipped_units),
            "tests_failed": len(self.failed_tests),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "status": self.status,
            "attempt": self.attempt,
            "strict": self.strict,
            "summary": self.summary(),
            "results": [r.to_dict() for r in self.results],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RunReport:
        results = []
        for r in data.get("results") or []:
            tests = [
                TestResult(
                    test=TestSpec(
                        kind=t["kind"],
                        target_unit=t["unit"],
                        name=t["name"],
                        target_column=t.get("column"),
                        severity=t.get("severity", "error"),
                    ),
                    passed=bool(t["passed"]),
                    failing_row_count=t.get("failing_row_count"),
                    error=t.get("error"),
                    duration_s=float(t.get("duration_s") or 0.0),
                )
                for t in r.get("tests") or []
            ]
            results.append(
                RunResult(
                    unit=r["unit"],
                    status=r["status"],
                    rows_affected=r.get("rows_affected"),
                    test_results=tests,
                    message=r.get("message"),
                    duration_s=float(r.get("duration_s") or 0.0),
                    attempts=int(r.get("attempts", 1)),
                    retryable=bool(r.get("retryable", True)),
                )
            )
        return cls(
            run_id=data["run_id"],
            started_at=data["started_at"],
            finished_at=data.get("finished_at"),
            status=data.get("status", "success"),
            results=results,
            attempt=int(data.get("attempt") or 1),
            strict=bool(data.get("strict")),
        )


def _target_dir(project_dir: Path) -> Path:
    out = Path(project_dir) / "target"
    out.mkdir(parents=True, exist_ok=True)
    return out


def write_run_results(project_dir: Path, report: RunReport) -> Path:
    """Write target/run_results.json for the given report."""
    path = _target_dir(project_dir) / "run_results.json"
    path.write_text(json.dumps(report.to_dict(), indent=2, sort_keys=False), encoding="utf-8")
    return path


def write_compiled(
    project_dir: Path, compiled: Mapping[str, CompiledUnit] | Iterable[CompiledUnit]
) -> list[Path]:
    """Write target/compiled/<schema>/<unit>.sql for every compiled unit."""
    units = compiled.values() if isinstance(compiled, Mapping) else compiled
    root = _target_dir(project_dir) / "compiled"
    written: list[Path] = []
    for cu in units:
        path = root / cu.schema / f"{cu.name}.sql"
        path.parent.mkdir(parents=True, exist_ok=True)
        header = f"-- {cu.relation} ({cu.materialization})\n"
        path.write_text(header + cu.sql + "\n", encoding="utf-8")
        written.append(path)
    return written


__all__ = ["ReportStatus", "RunReport", "now_iso", "write_compiled", "write_run_results"]
