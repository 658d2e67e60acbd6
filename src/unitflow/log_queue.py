# unitflow/log_queue.py
from __future__ import annotations

import threading


class LogQueue:
    """
    Thread-safe line buffer for worker output. Workers `put()` progress lines;
    the caller `drain()`s them in one piece so lines never interleave with
    error blocks printed afterwards.
    """

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._lock = threading.Lock()

    def put(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def drain(self) -> list[str]:
        with self._lock:
            out, self._lines = self._lines, []
        return out
