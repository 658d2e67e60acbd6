# unitflow/cli/bootstrap.py
from __future__ import annotations

import os
import textwrap
import traceback
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NoReturn

import typer
import yaml
from dotenv import dotenv_values

from unitflow.config.project import ProjectConfig, parse_project_yaml_config
from unitflow.core import Catalog, load_project
from unitflow.errors import UnitFlowError
from unitflow.logging import echo
from unitflow.pipeline import RunSettings
from unitflow.settings import (
    EngineType,
    EnvSettings,
    Profile,
    resolve_profile as _resolve_profile_impl,
)
from unitflow.warehouse import Warehouse, create_warehouse

from .options import Engine


@dataclass
class CLIContext:
    project: Path
    project_cfg: ProjectConfig
    catalog: Catalog
    env_settings: EnvSettings
    profile: Profile
    cli_vars: dict[str, Any] = field(default_factory=dict)

    def make_warehouse(self) -> Warehouse:
        return create_warehouse(
            self.profile, statement_timeout_s=self.project_cfg.run.statement_timeout_s
        )

    def run_settings(self, **overrides: Any) -> RunSettings:
        return RunSettings.from_project(self.project_cfg, vars=self.cli_vars, **overrides)


def _resolve_project_path(project_arg: str) -> Path:
    """
    Validate a unitflow project path:
      - must exist
      - must be a directory
    The models directory is checked once project.yml is known.
    """
    p = Path(project_arg).expanduser().resolve()
    if not p.exists():
        raise typer.BadParameter(
            f"Project path not found: {p}\nTip: use an absolute path or '.' in the project root."
        )
    if not p.is_dir():
        raise typer.BadParameter(
            f"Project path is not a directory: {p}\nTip: pass the directory, not a file."
        )
    return p


def _check_models_dir(proj: Path, cfg: ProjectConfig) -> None:
    if not (proj / cfg.models_dir).is_dir():
        raise typer.BadParameter(
            f"Invalid project at {proj}\n"
            f"Expected a '{cfg.models_dir}/' subdirectory (models_dir in project.yml).\n"
            "Tip: cd into the project and use '.'."
        )


def _die(msg: str, code: int = 1) -> NoReturn:
    echo(f"\n❌ {msg}", force=True)
    raise typer.Exit(code)


def _error_block(title: str, body: str, hint: str | None = None) -> str:
    border = "─" * 70
    lines = [f"✖ {title}", "", textwrap.dedent(body).rstrip()]
    if hint:
        lines += ["", "Hints:", textwrap.dedent(hint).rstrip()]
    text = "\n".join(f"│ {ln}".rstrip() for ln in "\n".join(lines).splitlines())
    return f"\n┌{border}\n{text}\n└{border}\n"


@contextmanager
def _friendly_errors(title: str) -> Iterator[None]:
    """Render UnitFlowError as an error block and exit 1."""
    try:
        yield
    except UnitFlowError as exc:
        body = exc.message
        if os.getenv("UF_TRACE") == "1":
            body += "\n\n" + traceback.format_exc()
        head = f"{title} [{exc.code}]" if exc.code else title
        echo(_error_block(head, body, exc.hint), force=True)
        raise typer.Exit(1) from exc


def _load_dotenv_layered(project_dir: Path, env_name: str) -> None:
    """
    Load .env in layers (lowest to highest precedence):
      1) <cwd>/.env
      2) <project>/.env
      3) <project>/.env.local
      4) <project>/.env.<env_name>
      5) <project>/.env.<env_name>.local
    Variables already present in the process environment always win.
    """
    original_env = dict(os.environ)
    merged: dict[str, str] = {}

    def _merge(p: Path) -> None:
        if not p.is_file():
            return
        try:
            data = dotenv_values(p)
        except OSError as exc:
            echo(f"⚠ could not read {p}: {exc}")
            return
        for key, value in (data or {}).items():
            if value is not None:
                merged[key] = value

    _merge(Path.cwd() / ".env")
    _merge(project_dir / ".env")
    _merge(project_dir / ".env.local")
    _merge(project_dir / f".env.{env_name}")
    _merge(project_dir / f".env.{env_name}.local")

    for key, value in merged.items():
        if key not in original_env:
            os.environ.setdefault(key, value)


def _resolve_profile(
    env_name: str, engine: Engine | EngineType | None, proj: Path
) -> tuple[EnvSettings, Profile]:
    env = EnvSettings()
    if engine is not None:
        env = env.model_copy(update={"ENGINE": getattr(engine, "value", engine)})
    prof = _resolve_profile_impl(proj, env_name, env)
    return env, prof


def _parse_cli_vars(pairs: Iterable[str]) -> dict[str, object]:
    """
    Parse --vars key=value pairs. Values are YAML-parsed for light typing:
    --vars day='2025-10-01' limit=5 enabled=true tags='[a,b]'
    """
    out: dict[str, object] = {}
    for item in pairs:
        if "=" not in item:
            raise typer.BadParameter(f"--vars expects key=value, got: {item}")
        k, v = item.split("=", 1)
        try:
            out[k.strip()] = yaml.safe_load(v)
        except yaml.YAMLError:
            out[k.strip()] = v
    return out


def _parse_select(tokens: Iterable[str] | None) -> list[str]:
    """Flatten `-s a,b -s c` into ['a', 'b', 'c'] (order kept, duplicates dropped)."""
    out: list[str] = []
    for tok in tokens or []:
        for part in tok.split(","):
            name = part.strip()
            if name and name not in out:
                out.append(name)
    return out


def _prepare_context(
    project_arg: str,
    env_name: str,
    engine: Engine | EngineType | None,
    vars_opt: list[str] | None,
) -> CLIContext:
    proj = _resolve_project_path(project_arg)
    _load_dotenv_layered(proj, env_name)
    cli_vars = _parse_cli_vars(vars_opt or [])
    with _friendly_errors("Project failed to load"):
        cfg = parse_project_yaml_config(proj)
        _check_models_dir(proj, cfg)
        catalog = load_project(proj, cfg)
        env_settings, prof = _resolve_profile(env_name, engine, proj)
    return CLIContext(
        project=proj,
        project_cfg=cfg,
        catalog=catalog,
        env_settings=env_settings,
        profile=prof,
        cli_vars=cli_vars,
    )


__all__ = [
    "CLIContext",
    "_check_models_dir",
    "_die",
    "_error_block",
    "_friendly_errors",
    "_load_dotenv_layered",
    "_parse_cli_vars",
    "_parse_select",
    "_prepare_context",
    "_resolve_profile",
    "_resolve_project_path",
]
