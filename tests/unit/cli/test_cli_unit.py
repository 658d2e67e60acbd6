# tests/unit/cli/test_cli_unit.py
from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from tests.common.utils import write
from unitflow import __version__
from unitflow.cli import app

runner = CliRunner()


@pytest.mark.cli
def test_version_flag():
    res = runner.invoke(app, ["--version"])
    assert res.exit_code == 0
    assert __version__ in res.output


@pytest.mark.cli
def test_invalid_project_path_is_usage_error(tmp_path: Path):
    res = runner.invoke(app, ["dag", str(tmp_path / "nope")])
    assert res.exit_code == 2


@pytest.mark.cli
def test_cycle_is_reported_as_error_block(tmp_path: Path):
    write(tmp_path / "models" / "a.sql", "select * from {{ ref('b') }}")
    write(tmp_path / "models" / "b.sql", "select * from {{ ref('a') }}")
    res = runner.invoke(app, ["dag", str(tmp_path)])
    assert res.exit_code == 1
    assert "Cycle detected" in res.output
    assert "┌" in res.output


@pytest.mark.cli
def test_malformed_unit_is_reported(tmp_path: Path):
    write(tmp_path / "models" / "a.sql", "select {{ now() }}")
    res = runner.invoke(app, ["run", str(tmp_path)])
    assert res.exit_code == 1
    assert "REG_MALFORMED" in res.output


@pytest.mark.cli
def test_unknown_select_is_rejected(tmp_path: Path):
    write(tmp_path / "models" / "a.sql", "select 1 as x")
    res = runner.invoke(app, ["run", str(tmp_path), "--select", "ghost"])
    assert res.exit_code == 2


@pytest.mark.cli
def test_run_in_memory_project(tmp_path: Path):
    write(tmp_path / "models" / "a.sql", "select 1 as x")
    write(tmp_path / "models" / "b.sql", "select x + 1 as y from {{ ref('a') }}")
    res = runner.invoke(app, ["run", str(tmp_path), "--jobs", "1"])
    assert res.exit_code == 0, res.output
    assert "▶ L01 [DUCK] a" in res.output
    assert "✓ Done" in res.output
    assert (tmp_path / "target" / "run_results.json").exists()


@pytest.mark.cli
def test_schedule_requires_interval(tmp_path: Path):
    write(tmp_path / "models" / "a.sql", "select 1 as x")
    res = runner.invoke(app, ["schedule", str(tmp_path), "--max-runs", "1"])
    assert res.exit_code == 2
    assert "No interval" in res.output


@pytest.mark.cli
def test_run_honours_custom_models_dir(tmp_path: Path):
    write(tmp_path / "project.yml", "name: custom\nmodels_dir: sql\n")
    write(tmp_path / "sql" / "stg_a.sql", "select 1 as a")
    res = runner.invoke(app, ["run", str(tmp_path)])
    assert res.exit_code == 0, res.output
    assert "✓ Done" in res.output


@pytest.mark.cli
def test_unit_failure_renders_bordered_error_block(tmp_path: Path):
    write(tmp_path / "models" / "a.sql", "select * from missing_table")
    res = runner.invoke(app, ["run", str(tmp_path)])
    assert res.exit_code == 1
    assert "│ ✖ Unit failed: a" in res.output
