# tests/unit/cli/test_bootstrap_unit.py
from __future__ import annotations

import os
from pathlib import Path

import pytest
import typer

from tests.common.fixtures import make_project
from tests.common.utils import write
from unitflow.cli import bootstrap
from unitflow.cli.options import Engine
from unitflow.settings import PostgresProfile


@pytest.mark.unit
def test_parse_cli_vars_yaml_typing():
    out = bootstrap._parse_cli_vars(["day=2025-10-01", "limit=5", "on=true", "tags=[a,b]", "s=x=y"])
    assert out["limit"] == 5
    assert out["on"] is True
    assert out["tags"] == ["a", "b"]
    assert out["s"] == "x=y"
    assert str(out["day"]) == "2025-10-01"


@pytest.mark.unit
def test_parse_cli_vars_requires_equals():
    with pytest.raises(typer.BadParameter):
        bootstrap._parse_cli_vars(["novalue"])


@pytest.mark.unit
def test_parse_select_flattens_comma_lists():
    assert bootstrap._parse_select(["a,b", " c ", "a"]) == ["a", "b", "c"]
    assert bootstrap._parse_select(None) == []


@pytest.mark.unit
def test_resolve_project_path_requires_existing_directory(tmp_path: Path):
    with pytest.raises(typer.BadParameter):
        bootstrap._resolve_project_path(str(tmp_path / "missing"))
    write(tmp_path / "file.txt", "x")
    with pytest.raises(typer.BadParameter):
        bootstrap._resolve_project_path(str(tmp_path / "file.txt"))
    assert bootstrap._resolve_project_path(str(tmp_path)) == tmp_path.resolve()


@pytest.mark.unit
def test_models_dir_follows_project_config(tmp_path: Path):
    write(tmp_path / "project.yml", "name: p\nmodels_dir: sql\n")
    write(tmp_path / "sql" / "stg_a.sql", "select 1 as a")
    ctx = bootstrap._prepare_context(str(tmp_path), "dev", None, None)
    assert ctx.catalog.names == ["stg_a"]

    write(tmp_path / "project.yml", "name: p\nmodels_dir: missing\n")
    with pytest.raises(typer.BadParameter, match="missing/"):
        bootstrap._prepare_context(str(tmp_path), "dev", None, None)


@pytest.mark.unit
def test_dotenv_layers_do_not_override_process_env(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("UF_T_A", raising=False)
    monkeypatch.delenv("UF_T_B", raising=False)
    monkeypatch.setenv("UF_T_C", "from-process")
    write(tmp_path / ".env", "UF_T_A=base\nUF_T_B=base\nUF_T_C=base\n")
    write(tmp_path / ".env.prod", "UF_T_B=prod\n")
    try:
        bootstrap._load_dotenv_layered(tmp_path, "prod")
        assert os.environ["UF_T_A"] == "base"
        assert os.environ["UF_T_B"] == "prod"
        assert os.environ["UF_T_C"] == "from-process"
    finally:
        os.environ.pop("UF_T_A", None)
        os.environ.pop("UF_T_B", None)


@pytest.mark.unit
def test_engine_flag_overrides_profile(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("UF_PG_DSN", "postgresql+psycopg://u:p@h/db")
    _env, prof = bootstrap._resolve_profile("dev", Engine.POSTGRES, tmp_path)
    assert isinstance(prof, PostgresProfile)


@pytest.mark.unit
def test_prepare_context_loads_project(tmp_path: Path):
    proj = make_project(tmp_path)
    ctx = bootstrap._prepare_context(str(proj), "dev", None, ["min_amount=10"])
    assert ctx.profile.engine == "duckdb"
    assert "fct_orders" in ctx.catalog
    settings = ctx.run_settings(jobs=None)
    assert settings.vars == {"min_amount": 10}
    assert settings.jobs == 2


@pytest.mark.unit
def test_error_block_frames_text():
    block = bootstrap._error_block("Unit failed: x", "boom", "• hint")
    lines = block.strip().splitlines()
    assert lines[0].startswith("┌") and lines[-1].startswith("└")
    assert "│ ✖ Unit failed: x" in block
    assert "│ Hints:" in block
    body = lines[1:-1]
    assert body and all(ln.startswith("│") for ln in body)
    assert not any(ln.endswith("│ ") for ln in body)
    assert "│ boom" in body
