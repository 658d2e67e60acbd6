# unitflow/cli/__init__.py
from __future__ import annotations

import typer

from unitflow import __version__

from .bootstrap import (
    CLIContext,
    _die,
    _error_block,
    _parse_cli_vars,
    _parse_select,
    _prepare_context,
    _resolve_profile,
    _resolve_project_path,
)
from .compile_cmd import compile_project, register as _register_compile
from .dag_cmd import dag, register as _register_dag
from .logging_utils import LOG, SQL_LOG, _setup_logging
from .options import (
    Backoff,
    Engine,
    EngineOpt,
    EnvOpt,
    JobsOpt,
    ProjectArg,
    SelectOpt,
    Timing,
    VarsOpt,
)
from .run import register as _register_run, run
from .schedule_cmd import register as _register_schedule, schedule
from .test_cmd import register as _register_test, test

app = typer.Typer(
    name="uf",
    help="unitflow - compile, run and test SQL units against a warehouse",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool | None) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Increase verbosity (-v: INFO, -vv: DEBUG)"
    ),
    quiet: int = typer.Option(0, "--quiet", "-q", count=True, help="Reduce verbosity (-q: ERROR)"),
) -> None:
    _setup_logging(verbose, quiet)


_register_run(app)
_register_compile(app)
_register_dag(app)
_register_test(app)
_register_schedule(app)


__all__ = [
    "LOG",
    "SQL_LOG",
    "Backoff",
    "CLIContext",
    "Engine",
    "EngineOpt",
    "EnvOpt",
    "JobsOpt",
    "ProjectArg",
    "SelectOpt",
    "Timing",
    "VarsOpt",
    "_die",
    "_error_block",
    "_parse_cli_vars",
    "_parse_select",
    "_prepare_context",
    "_resolve_profile",
    "_resolve_project_path",
    "app",
    "compile_project",
    "dag",
    "run",
    "schedule",
    "test",
]
