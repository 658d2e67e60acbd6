# unitflow/cli/compile_cmd.py
from __future__ import annotations

import typer

from unitflow.artifacts import write_compiled
from unitflow.compiler import compile_all
from unitflow.dag import resolve
from unitflow.logging import echo

from .bootstrap import _error_block, _friendly_errors, _prepare_context
from .options import EngineOpt, EnvOpt, ProjectArg, VarsOpt


def compile_project(
    project: ProjectArg = ".",
    env_name: EnvOpt = "dev",
    engine: EngineOpt = None,
    vars: VarsOpt = None,
) -> None:
    ctx = _prepare_context(project, env_name, engine, vars)
    settings = ctx.run_settings()
    with _friendly_errors("Resolution failed"):
        graph = resolve(ctx.catalog)
    compiled, errors = compile_all(graph, settings.namespace, settings.vars)
    paths = write_compiled(ctx.project, compiled)

    echo("Execution order")
    echo("───────────────")
    for idx, name in enumerate(graph.order, start=1):
        cu = compiled.get(name)
        target = cu.relation if cu is not None else "✖ not compiled"
        echo(f"{idx:>3}. {name:<30} → {target}")
    echo(f"\n{len(paths)} file(s) written to {ctx.project / 'target' / 'compiled'}")

    if errors:
        for name, exc in errors.items():
            echo(_error_block(f"Compile failed: {name}", exc.message, exc.hint), force=True)
        raise typer.Exit(1)


def register(app: typer.Typer) -> None:
    app.command(
        "compile",
        help=(
            "Resolves every ref()/source()/var() and writes the final SQL to "
            "target/compiled/.\n\nExample:\n  uf compile . --vars day=2024-01-01"
        ),
    )(compile_project)


__all__ = ["compile_project", "register"]
