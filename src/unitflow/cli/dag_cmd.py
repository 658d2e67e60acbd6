# unitflow/cli/dag_cmd.py
from __future__ import annotations

import logging

import typer

from unitflow.dag import resolve
from unitflow.logging import echo

from .bootstrap import _friendly_errors, _prepare_context
from .logging_utils import LOG
from .options import EngineOpt, EnvOpt, ProjectArg, VarsOpt


def dag(
    project: ProjectArg = ".",
    env_name: EnvOpt = "dev",
    engine: EngineOpt = None,
    vars: VarsOpt = None,
) -> None:
    ctx = _prepare_context(project, env_name, engine, vars)
    with _friendly_errors("Resolution failed"):
        graph = resolve(ctx.catalog)

    echo("Levels")
    echo("──────")
    for idx, names in enumerate(graph.levels(), start=1):
        echo(f"L{idx:02d}: {', '.join(names)}")

    echo("\nEdges")
    echo("─────")
    for name in graph.order:
        deps = graph.deps(name)
        for dep in deps:
            echo(f"{dep} → {name}")
        for src in graph.units[name].source_refs:
            echo(f"source:{src} → {name}")

    if LOG.isEnabledFor(logging.INFO):
        echo(f"\nProfile: {env_name} | Engine: {ctx.profile.engine}")


def register(app: typer.Typer) -> None:
    app.command(
        help="Prints the unit DAG as levels and edges.\n\nExample:\n  uf dag .",
    )(dag)


__all__ = ["dag", "register"]
