# unitflow/cli/schedule_cmd.py
from __future__ import annotations

import typer

from unitflow.artifacts import RunReport, write_run_results
from unitflow.log_queue import LogQueue
from unitflow.logging import echo
from unitflow.scheduler import CycleJob, IntervalTrigger, LoggingNotifier, Scheduler
from unitflow.store import JsonlRunStore

from .bootstrap import _die, _error_block, _friendly_errors, _prepare_context
from .options import (
    BackoffOpt,
    BaseDelayOpt,
    EngineOpt,
    EnvOpt,
    HistoryOpt,
    IntervalOpt,
    JobsOpt,
    MaxRetriesOpt,
    MaxRunsOpt,
    ProjectArg,
    StrictOpt,
    VarsOpt,
)


class _EchoNotifier(LoggingNotifier):
    def notify(self, report: RunReport) -> None:
        super().notify(report)
        body = "\n".join(f"• {u}" for u in report.failed_units) or "(tests only)"
        echo(
            _error_block(f"Run {report.run_id} failed (attempt {report.attempt})", body),
            force=True,
        )


def schedule(
    project: ProjectArg = ".",
    env_name: EnvOpt = "dev",
    engine: EngineOpt = None,
    vars: VarsOpt = None,
    interval: IntervalOpt = None,
    max_runs: MaxRunsOpt = None,
    max_retries: MaxRetriesOpt = None,
    backoff: BackoffOpt = None,
    base_delay: BaseDelayOpt = None,
    history: HistoryOpt = None,
    jobs: JobsOpt = None,
    strict: StrictOpt = None,
) -> None:
    ctx = _prepare_context(project, env_name, engine, vars)
    sched_cfg = ctx.project_cfg.schedule
    seconds = interval or sched_cfg.interval_s
    if seconds is None:
        _die("No interval: pass --interval or set schedule.interval_s in project.yml.", code=2)

    overrides = {
        "max_retries": max_retries,
        "backoff": backoff.value if backoff is not None else None,
        "base_delay": base_delay,
    }
    policy = sched_cfg.retry.model_copy(
        update={k: v for k, v in overrides.items() if v is not None}
    )
    store = JsonlRunStore(history) if history is not None else None

    logq = LogQueue()

    def _on_report(report: RunReport) -> None:
        for line in logq.drain():
            echo(line)
        write_run_results(ctx.project, report)
        s = report.summary()
        echo(
            f"run {report.run_id} → {report.status} "
            f"(success={s['success']} failed={s['failed']} skipped={s['skipped']})"
        )

    with _friendly_errors("Scheduler failed to start"), ctx.make_warehouse() as wh:
        job = CycleJob(ctx.catalog, wh, ctx.run_settings(jobs=jobs, strict=strict), log=logq)
        sched = Scheduler(
            job,
            IntervalTrigger(seconds),
            policy,
            store=store,
            notifier=_EchoNotifier(),
            on_report=_on_report,
        )
        echo(
            f"Scheduling {len(ctx.catalog.units)} unit(s) every {seconds:g}s "
            f"(retries={policy.max_retries}, backoff={policy.backoff})"
        )
        try:
            sched.serve(max_runs=max_runs)
        except KeyboardInterrupt:
            sched.stop()
            echo("Interrupted, scheduler stopped.")

    last = sched.last_report
    if last is not None and last.status == "failed":
        raise typer.Exit(1)


def register(app: typer.Typer) -> None:
    app.command(
        help=(
            "Runs the project repeatedly on an interval, retrying failed units."
            "\n\nExample:\n  uf schedule . --interval 3600 --max-retries 3 --history runs.jsonl"
        )
    )(schedule)


__all__ = ["register", "schedule"]
