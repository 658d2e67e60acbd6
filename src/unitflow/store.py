# unitflow/store.py
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from unitflow.artifacts import RunReport


@runtime_checkable
class RunStore(Protocol):
    """Append-only history of run reports."""

    def append(self, report: RunReport) -> None: ...

    def history(self) -> list[RunReport]: ...


class InMemoryRunStore:
    def __init__(self) -> None:
        self._reports: list[RunReport] = []
        self._lock = threading.Lock()

    def append(self, report: RunReport) -> None:
        with self._lock:
            self._reports.append(report)

    def history(self) -> list[RunReport]:
        with self._lock:
            return list(self._reports)


class JsonlRunStore:
    """One JSON document per line; existing lines are never rewritten."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, report: RunReport) -> None:
        line = json.dumps(report.to_dict(), sort_keys=True)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    def history(self) -> list[RunReport]:
        if not self.path.exists():
            return []
        with self._lock:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        return [RunReport.from_dict(json.loads(ln)) for ln in lines if ln.strip()]


__all__ = ["InMemoryRunStore", "JsonlRunStore", "RunStore"]
