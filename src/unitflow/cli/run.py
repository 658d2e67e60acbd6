# unitflow/cli/run.py
from __future__ import annotations

import typer

from unitflow.artifacts import RunReport, write_run_results
from unitflow.errors import StrictModeError
from unitflow.log_queue import LogQueue
from unitflow.logging import echo
from unitflow.pipeline import run_cycle

from .bootstrap import (
    CLIContext,
    _error_block,
    _friendly_errors,
    _parse_select,
    _prepare_context,
)
from .options import (
    EngineOpt,
    EnvOpt,
    JobsOpt,
    ProjectArg,
    SelectOpt,
    StrictOpt,
    TestTimingOpt,
    VarsOpt,
)


def _selected_or_exit(ctx: CLIContext, select: SelectOpt) -> list[str] | None:
    names = _parse_select(select)
    if not names:
        return None
    unknown = [n for n in names if n not in ctx.catalog.units]
    if unknown:
        raise typer.BadParameter(f"Unknown unit(s) in --select: {', '.join(unknown)}")
    return names


def _print_unit_errors(report: RunReport) -> None:
    for res in report.results:
        if res.status == "failed":
            echo(
                _error_block(
                    f"Unit failed: {res.unit}",
                    res.message or "(no message)",
                    "• Inspect target/compiled/ for the SQL that was sent.\n"
                    "• Re-run with -vv to log every statement.",
                ),
                force=True,
            )
        for t in res.failed_tests:
            detail = t.error or f"{t.failing_row_count} failing row(s)"
            sev = "" if t.blocking else " (warn)"
            echo(f"   ↳ test {t.name}{sev}: {detail}")


def _print_summary(report: RunReport) -> None:
    echo("\nRun summary")
    echo("───────────")
    for res in report.results:
        mark = {"success": "✓", "failed": "✖", "skipped": "↷"}[res.status]
        ms = int(res.duration_s * 1000)
        rows = "" if res.rows_affected is None else f"{res.rows_affected} rows"
        tests = ""
        if res.test_results:
            passed = sum(t.passed for t in res.test_results)
            tests = f"tests {passed}/{len(res.test_results)}"
        echo(f"{mark} {res.unit:<30} {res.status:<8} {rows:>12} {tests:>11} {ms:>6} ms")
        if res.status == "skipped" and res.message:
            echo(f"   ↳ {res.message}")
    s = report.summary()
    echo(
        f"\nsuccess={s['success']} failed={s['failed']} skipped={s['skipped']} "
        f"tests_failed={s['tests_failed']}  → {report.status}"
    )


def run(
    project: ProjectArg = ".",
    env_name: EnvOpt = "dev",
    engine: EngineOpt = None,
    vars: VarsOpt = None,
    select: SelectOpt = None,
    jobs: JobsOpt = None,
    strict: StrictOpt = None,
    test_timing: TestTimingOpt = None,
) -> None:
    ctx = _prepare_context(project, env_name, engine, vars)
    only = _selected_or_exit(ctx, select)
    settings = ctx.run_settings(
        jobs=jobs,
        strict=strict,
        test_timing=test_timing.value if test_timing is not None else None,
    )

    logq = LogQueue()
    strict_exc: StrictModeError | None = None
    with _friendly_errors("Run aborted"), ctx.make_warehouse() as wh:
        try:
            report = run_cycle(ctx.catalog, wh, settings, only=only, log=logq)
        except StrictModeError as exc:
            strict_exc = exc
            report = exc.report

    for line in logq.drain():
        echo(line)

    path = write_run_results(ctx.project, report)
    _print_unit_errors(report)
    _print_summary(report)
    echo(f"Results written to {path}")

    if strict_exc is not None:
        echo(_error_block("Strict mode", strict_exc.message), force=True)
        raise typer.Exit(2)
    if report.status != "success":
        raise typer.Exit(1)
    echo("✓ Done")


def register(app: typer.Typer) -> None:
    app.command(
        help=(
            "Loads the project, resolves the DAG, compiles and materializes every unit, "
            "then runs its tests.\n\nExample:\n  uf run . --env dev --jobs 4"
        )
    )(run)


__all__ = ["register", "run"]
