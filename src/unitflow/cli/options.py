from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated

import typer


class Engine(str, Enum):
    DUCKDB = "duckdb"
    POSTGRES = "postgres"


class Timing(str, Enum):
    AFTER_UNIT = "after_unit"  # tests run as soon as their unit is built
    END_OF_RUN = "end_of_run"  # all tests after the last level


class Backoff(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


ProjectArg = Annotated[
    str, typer.Argument(help="Project directory (holds project.yml and the models directory).")
]

EnvOpt = Annotated[
    str, typer.Option("--env", help="Profile environment from profiles.yml (e.g. dev, prod).")
]

EngineOpt = Annotated[
    Engine | None,
    typer.Option("--engine", help="duckdb|postgres (overrides profile)", case_sensitive=False),
]

VarsOpt = Annotated[
    list[str] | None,
    typer.Option("--vars", help="Override project vars: key=value (repeatable)."),
]

SelectOpt = Annotated[
    list[str] | None,
    typer.Option("--select", "-s", help="Only these units (repeatable; comma lists allowed)."),
]

JobsOpt = Annotated[
    int | None,
    typer.Option("--jobs", "-j", min=1, help="Max parallel units per level (≥1)."),
]

StrictOpt = Annotated[
    bool | None,
    typer.Option("--strict/--no-strict", help="Fail the run when an error-severity test fails."),
]

TestTimingOpt = Annotated[
    Timing | None,
    typer.Option("--test-timing", help="after_unit (default) or end_of_run."),
]

IntervalOpt = Annotated[
    float | None,
    typer.Option("--interval", min=0.001, help="Seconds between runs (default: project.yml)."),
]

MaxRunsOpt = Annotated[
    int | None, typer.Option("--max-runs", min=1, help="Stop after this many runs.")
]

MaxRetriesOpt = Annotated[
    int | None, typer.Option("--max-retries", min=0, help="Retries of failed units per run.")
]

BackoffOpt = Annotated[
    Backoff | None, typer.Option("--backoff", help="Retry backoff: exponential or fixed.")
]

BaseDelayOpt = Annotated[
    float | None, typer.Option("--base-delay", min=0, help="Seconds before the first retry.")
]

HistoryOpt = Annotated[
    Path | None,
    typer.Option("--history", help="Append every run report to this JSONL file."),
]

__all__ = [
    "Backoff",
    "BackoffOpt",
    "BaseDelayOpt",
    "Engine",
    "EngineOpt",
    "EnvOpt",
    "HistoryOpt",
    "IntervalOpt",
    "JobsOpt",
    "MaxRetriesOpt",
    "MaxRunsOpt",
    "ProjectArg",
    "SelectOpt",
    "StrictOpt",
    "TestTimingOpt",
    "Timing",
    "VarsOpt",
]
