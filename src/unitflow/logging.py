# unitflow/logging.py
from __future__ import annotations

import logging
import os
import threading
from typing import Any

import typer

LOG = logging.getLogger("unitflow")
SQL_LOG = logging.getLogger("unitflow.sql")

# echo() may be called from worker threads; keep lines whole.
_ECHO_LOCK = threading.Lock()


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the package logger or a child (`unitflow.<name>`)."""
    if not name:
        return LOG
    return LOG.getChild(name)


def _quiet() -> bool:
    return LOG.getEffectiveLevel() > logging.WARNING


def echo(msg: str = "", *, force: bool = False) -> None:
    """User-facing output. Suppressed under -q unless `force`."""
    if _quiet() and not force:
        return
    with _ECHO_LOCK:
        typer.echo(msg)


def warn(msg: str) -> None:
    LOG.warning(msg)


def error(msg: str) -> None:
    LOG.error(msg)


def sql_debug_enabled() -> bool:
    return os.getenv("UF_SQL_DEBUG") == "1" or SQL_LOG.isEnabledFor(logging.DEBUG)


def echo_debug(msg: str) -> None:
    """SQL previews; only visible with -vv or UF_SQL_DEBUG=1."""
    if not sql_debug_enabled():
        return
    if SQL_LOG.isEnabledFor(logging.DEBUG):
        SQL_LOG.debug(msg)
    else:
        with _ECHO_LOCK:
            typer.echo(msg, err=True)


def dprint(*args: Any) -> None:
    echo_debug(" ".join(str(a) for a in args))


__all__ = [
    "LOG",
    "SQL_LOG",
    "dprint",
    "echo",
    "echo_debug",
    "error",
    "get_logger",
    "sql_debug_enabled",
    "warn",
]
