# unitflow/scheduler.py
"""
Run cycles on a trigger, with retries of failed units.

A retry re-runs only the units that failed with a retryable error plus
everything downstream of them; successful units keep their earlier result.
Compile failures are not retried. After the last retry a still-failing
report is handed to the notifier.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Iterable
from typing import Protocol

from unitflow.artifacts import RunReport, now_iso
from unitflow.config.project import RetryPolicy
from unitflow.core import Catalog
from unitflow.dag import Graph, resolve
from unitflow.errors import StrictModeError, UnitFlowError
from unitflow.log_queue import LogQueue
from unitflow.logging import get_logger
from unitflow.pipeline import RunSettings, run_cycle
from unitflow.run_executor import RunResult
from unitflow.store import RunStore
from unitflow.warehouse.base import Warehouse

logger = get_logger("scheduler")

_POLL_S = 0.1


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class Trigger(Protocol):
    def wait(self, stop: threading.Event) -> bool:
        """Block until the next run is due. False when `stop` was set."""
        ...


class IntervalTrigger:
    """Fires every `seconds`; the first run starts immediately unless told otherwise."""

    def __init__(self, seconds: float, *, run_immediately: bool = True):
        if seconds <= 0:
            raise ValueError("interval must be > 0 seconds")
        self.seconds = float(seconds)
        self._first = run_immediately

    def wait(self, stop: threading.Event) -> bool:
        if self._first:
            self._first = False
            return not stop.is_set()
        return not stop.wait(self.seconds)


class EventTrigger:
    """Fires once per `fire()` call (calls made while a run is in progress coalesce)."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def fire(self) -> None:
        self._event.set()

    def wait(self, stop: threading.Event) -> bool:
        while not stop.is_set():
            if self._event.wait(_POLL_S):
                self._event.clear()
                return not stop.is_set()
        return False


# ---------------------------------------------------------------------------
# Jobs / notifications
# ---------------------------------------------------------------------------


class Job(Protocol):
    def __call__(
        self,
        *,
        only: Iterable[str] | None = None,
        attempt: int = 1,
        run_id: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RunReport: ...

    def retry_scope(self, failed: Iterable[str]) -> list[str]: ...


class CycleJob:
    """A catalog bound to a warehouse; each call is one `run_cycle`."""

    def __init__(
        self,
        catalog: Catalog,
        warehouse: Warehouse,
        settings: RunSettings | None = None,
        *,
        log: LogQueue | None = None,
    ):
        self.catalog = catalog
        self.warehouse = warehouse
        self.settings = settings or RunSettings()
        self.log = log
        self.graph: Graph = resolve(catalog)

    def __call__(
        self,
        *,
        only: Iterable[str] | None = None,
        attempt: int = 1,
        run_id: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RunReport:
        return run_cycle(
            self.catalog,
            self.warehouse,
            self.settings,
            graph=self.graph,
            only=only,
            attempt=attempt,
            run_id=run_id,
            cancel_event=cancel_event,
            log=self.log,
        )

    def retry_scope(self, failed: Iterable[str]) -> list[str]:
        return self.graph.downstream(failed, include_self=True)


class Notifier(Protocol):
    def notify(self, report: RunReport) -> None: ...


class LoggingNotifier:
    def notify(self, report: RunReport) -> None:
        logger.error(
            "run %s failed after %d attempt(s): units=%s tests=%s",
            report.run_id,
            report.attempt,
            report.failed_units,
            [t.name for t in report.blocking_tests],
        )


def merge_results(previous: RunReport, retry: RunReport) -> RunReport:
    """Overlay the results of a retry onto the previous report (same unit order)."""
    fresh = {r.unit: r for r in retry.results}
    merged: list[RunResult] = []
    for old in previous.results:
        new = fresh.get(old.unit)
        if new is None:
            merged.append(old)
            continue
        new.attempts = old.attempts + new.attempts
        merged.append(new)
    previous.results = merged
    previous.attempt = retry.attempt
    previous.finished_at = retry.finished_at
    return previous


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class Scheduler:
    """
    Drives `job` from `trigger`:

        sched = Scheduler(job, IntervalTrigger(3600), RetryPolicy(max_retries=3))
        sched.start()   # background thread
        ...
        sched.stop()

    `stop()` also cancels the units of an in-flight cycle that have not started.
    """

    def __init__(
        self,
        job: Job,
        trigger: Trigger,
        retry_policy: RetryPolicy | None = None,
        *,
        store: RunStore | None = None,
        notifier: Notifier | None = None,
        on_report: Callable[[RunReport], None] | None = None,
    ):
        self.job = job
        self.trigger = trigger
        self.retry_policy = retry_policy or RetryPolicy()
        self.store = store
        self.notifier = notifier or LoggingNotifier()
        self.on_report = on_report
        self.last_report: RunReport | None = None
        self.runs = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _attempt(
        self, *, run_id: str, attempt: int, only: Iterable[str] | None = None
    ) -> RunReport:
        try:
            return self.job(
                only=only, attempt=attempt, run_id=run_id, cancel_event=self._stop_event
            )
        except StrictModeError as exc:
            return exc.report

    def run_once(self) -> RunReport:
        """One cycle plus retries of its failed units."""
        run_id = uuid.uuid4().hex[:12]
        started = now_iso()
        report = self._attempt(run_id=run_id, attempt=1)
        report.started_at = started

        attempt = 1
        while report.retryable_units and attempt <= self.retry_policy.max_retries:
            delay = self.retry_policy.delay_for(attempt)
            logger.warning(
                "run %s: %d unit(s) failed, retry %d/%d in %.1fs",
                run_id,
                len(report.retryable_units),
                attempt,
                self.retry_policy.max_retries,
                delay,
            )
            if self._stop_event.wait(delay):
                break
            attempt += 1
            scope = self.job.retry_scope(report.retryable_units)
            retry = self._attempt(only=scope, run_id=run_id, attempt=attempt)
            report = merge_results(report, retry)

        report.compute_status(cancelled=self._stop_event.is_set())
        if report.status == "failed":
            self.notifier.notify(report)
        if self.store is not None:
            self.store.append(report)
        self.last_report = report
        self.runs += 1
        if self.on_report is not None:
            self.on_report(report)
        return report

    def serve(self, max_runs: int | None = None) -> None:
        """Block, running a cycle whenever the trigger fires, until stopped."""
        logger.info("Scheduler started")
        done = 0
        while not self._stop_event.is_set():
            if not self.trigger.wait(self._stop_event):
                break
            try:
                self.run_once()
            except UnitFlowError as exc:
                logger.error("Scheduler cycle aborted: %s", exc.message)
            done += 1
            if max_runs is not None and done >= max_runs:
                break
        logger.info("Scheduler stopped")

    def start(self, max_runs: int | None = None) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("scheduler already running")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.serve, kwargs={"max_runs": max_runs}, daemon=True, name="uf-scheduler"
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout)


def schedule(
    trigger: Trigger | float,
    retry_policy: RetryPolicy | None,
    job: Job,
    *,
    store: RunStore | None = None,
    notifier: Notifier | None = None,
    max_runs: int | None = None,
    background: bool = False,
) -> Scheduler:
    """
    Convenience entry point. A number is taken as an interval in seconds.
    Blocks until `max_runs` cycles ran unless `background=True`.
    """
    trig = IntervalTrigger(float(trigger)) if isinstance(trigger, (int, float)) else trigger
    sched = Scheduler(job, trig, retry_policy, store=store, notifier=notifier)
    if background:
        sched.start(max_runs=max_runs)
    else:
        sched.serve(max_runs=max_runs)
    return sched


__all__ = [
    "CycleJob",
    "EventTrigger",
    "IntervalTrigger",
    "Job",
    "LoggingNotifier",
    "Notifier",
    "RetryPolicy",
    "Scheduler",
    "Trigger",
    "merge_results",
    "schedule",
]
