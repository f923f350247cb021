"""Exception types raised by recheck.

All of these are recoverable at the component boundary that raises them,
except :class:`EngineContractError`, which aborts the run after a
best-effort flush of the counterexample store.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import ast

    from recheck.supervision import WorkerCrashed


class RecheckError(Exception):
    """Base class for recheck errors."""


class CorruptStoreError(RecheckError):
    """The persisted counterexample file could not be decoded."""


class StaleWitnessError(RecheckError):
    """A stored witness no longer fits the property it was stored for."""

    def __init__(self, identity: str, reason: str):
        super().__init__(f"Stored counterexample for {identity} is stale: {reason}")
        self.identity = identity
        self.reason = reason


class UnsupportedConstructError(RecheckError):
    """A call site cannot be wrapped with a yield point without changing semantics.

    Never raised out of :func:`~recheck.instrument.instrument`; instances are
    collected as diagnostics on the result instead.
    """

    def __init__(self, message: str, node: ast.AST | None = None, function: str | None = None):
        lineno = getattr(node, "lineno", None)
        where = f" (line {lineno})" if lineno is not None else ""
        super().__init__(f"{message}{where}")
        self.node = node
        self.lineno = lineno
        self.function = function


class GenerationError(RecheckError):
    """The engine could not reach a verdict (unsatisfiable or flaky property).

    Such runs are reported as errors and never stored as counterexamples.
    """


class EngineContractError(RecheckError):
    """The property engine returned something other than Passed or Failed."""


class LinkedWorkerError(RecheckError):
    """A worker linked to the current property evaluation crashed."""

    def __init__(self, crash: WorkerCrashed):
        super().__init__(f"Linked worker {crash.name!r} died with reason: {crash.reason}")
        self.crash = crash


class UnencodableWitnessError(RecheckError):
    """A witness value cannot be written to the counterexample file."""
