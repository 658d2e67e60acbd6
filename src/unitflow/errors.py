# unitflow/errors.py

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any


class UnitFlowError(Exception):
    """
    Base class for all unitflow errors.

    Attributes:
        message: Human-readable error message.
        code: Optional short error code (e.g., 'REG001', 'DAG_CYCLE').
        hint: Optional human hint with remediation steps.
    """

    def __init__(self, message: str, *, code: str | None = None, hint: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\n\nHint:\n{self.hint}"
        return self.message


# ---------------------------------------------------------------------------
# Registry-time (fatal to load)
# ---------------------------------------------------------------------------


class DuplicateNameError(UnitFlowError):
    """Raised when two unit definitions share a name."""

    def __init__(self, name: str, *, first: str | None = None, second: str | None = None):
        lines = [f"Duplicate unit name detected: {name}"]
        if first:
            lines.append(f"• already registered: {first}")
        if second:
            lines.append(f"• new definition:     {second}")
        super().__init__(
            "\n".join(lines),
            code="REG_DUPLICATE",
            hint="Rename one of the units (file name = unit name).",
        )
        self.name = name


class MalformedUnitError(UnitFlowError):
    """Raised when a unit definition is missing required fields or has invalid values."""

    def __init__(self, message: str, *, unit: str | None = None, path: str | None = None):
        where = unit or "<unnamed>"
        if path:
            where = f"{where} ({path})"
        super().__init__(f"Malformed unit {where}: {message}", code="REG_MALFORMED")
        self.unit = unit
        self.path = path


# ---------------------------------------------------------------------------
# Resolution-time (fatal to the run, no warehouse side effects)
# ---------------------------------------------------------------------------


class UnknownReferenceError(UnitFlowError):
    """Raised when a unit references an identifier that is neither a unit nor a source."""

    def __init__(self, identifier: str, referencing_unit: str, *, kind: str = "ref"):
        msg = f"{referencing_unit} → unknown {kind}('{identifier}')"
        hint = (
            "• Ensure ref('…') matches the exact unit name.\n"
            "• Declare external tables in sources.yml and use source('group', 'table')."
        )
        super().__init__(msg, code="DAG_UNKNOWN_REF", hint=hint)
        self.identifier = identifier
        self.referencing_unit = referencing_unit
        self.kind = kind


class CycleError(UnitFlowError):
    """
    Raised when a cycle is detected in the unit DAG.

    Args:
        cycle: Units on the cycle, in path order.
    """

    def __init__(self, cycle: Iterable[str]):
        path = list(cycle)
        shown = " → ".join([*path, path[0]]) if path else "<empty>"
        msg = f"Cycle detected in DAG: {shown}"
        hint = (
            "Check for circular refs in your units:\n"
            "• Ensure A does not ref B while B (directly or indirectly) refs A.\n"
            "• Break the cycle by removing or refactoring one dependency."
        )
        super().__init__(msg, code="DAG_CYCLE", hint=hint)
        self.cycle = path


# ---------------------------------------------------------------------------
# Compile-time (fatal to the affected unit only)
# ---------------------------------------------------------------------------


class UnresolvedReferenceError(UnitFlowError):
    """Raised when the compiler cannot map a reference to a warehouse object."""

    def __init__(self, unit: str, identifier: str, *, reason: str | None = None):
        msg = f"{unit}: cannot resolve '{identifier}'"
        if reason:
            msg += f" ({reason})"
        super().__init__(
            msg,
            code="CMP_UNRESOLVED",
            hint="Run the resolver on the full catalog before compiling.",
        )
        self.unit = unit
        self.identifier = identifier


# ---------------------------------------------------------------------------
# Run-time
# ---------------------------------------------------------------------------


class ExecutionError(UnitFlowError):
    """Raised when a warehouse statement fails for a unit.
    Carries friendly context for CLI formatting.
    """

    # Compile and configuration errors are not retried; warehouse failures are.
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        unit: str | None = None,
        relation: str | None = None,
        sql_snippet: str | None = None,
    ):
        super().__init__(message, code="EXEC_FAILED")
        self.unit = unit
        self.relation = relation
        self.sql_snippet = sql_snippet


class WarehouseTimeoutError(ExecutionError, TimeoutError):
    """A warehouse call exceeded its timeout. Treated as a retryable execution failure."""

    def __init__(self, message: str, *, timeout_s: float | None = None, **kw: Any):
        super().__init__(message, **kw)
        self.code = "EXEC_TIMEOUT"
        self.timeout_s = timeout_s


class TestFailure(UnitFlowError):
    """Raised when a data-quality check fails."""

    # Prevent pytest from collecting this as a test when imported into a test module.
    __test__ = False


class StrictModeError(TestFailure):
    """Raised after a strict-mode run in which at least one test failed."""

    def __init__(self, failed: Mapping[str, int | None], report: Any = None):
        parts = [f"{name} → {cnt if cnt is not None else 'error'}" for name, cnt in failed.items()]
        super().__init__(
            "Strict mode: failing tests:\n" + "\n".join(f"• {p}" for p in parts),
            code="TEST_STRICT",
        )
        self.failed = dict(failed)
        self.report = report


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ProfileConfigError(UnitFlowError):
    """Profile/configuration error with a short, actionable hint."""

    def __init__(self, message: str):
        # keep to a single line for CLI readability
        super().__init__(message.replace("\n", " ").strip(), code="CFG_PROFILE")


class ProjectConfigError(UnitFlowError):
    """Raised when project.yml / sources.yml / schema.yml cannot be parsed."""

    def __init__(self, message: str, *, path: str | None = None):
        prefix = f"{path}: " if path else ""
        super().__init__(prefix + message, code="CFG_PROJECT")
        self.path = path
