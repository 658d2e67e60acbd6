from __future__ import annotations

import re
from pathlib import Path
from textwrap import dedent


def project_root(start: Path | None = None) -> Path:
    marker_files = {"pyproject.toml", "setup.cfg", ".git"}
    path = (start or Path(__file__)).resolve()
    for parent in [path, *path.parents]:
        if any((parent / marker).exists() for marker in marker_files):
            return parent
    raise RuntimeError("Cannot determine project root; missing marker file?")


ROOT = project_root(Path(__file__))


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dedent(text).lstrip("\n"), encoding="utf-8")
    return path


def normalize_ms(lines: list[str]) -> list[str]:
    """Replace durations with <ms> to get stable snapshots."""
    return [re.sub(r"\b\d+(?:\.\d+)?\s*ms\b", "<ms>", line) for line in lines]
