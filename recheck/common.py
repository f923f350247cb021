"""Shared data structures for recheck."""

from __future__ import annotations

import os
import traceback
from collections import Counter
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any, Literal

from recheck.errors import LinkedWorkerError

# Frames inside the recheck package are never reported as failure locations
_RECHECK_DIR = os.path.dirname(os.path.abspath(__file__)) + os.sep


@dataclass(frozen=True)
class PropertyIdentity:
    """Stable key identifying a property across runs.

    Attributes:
        module: Dotted name of the module defining the property
        name: Qualified name of the property inside that module
    """

    module: str
    name: str

    @classmethod
    def of(cls, fn: Callable[..., Any]) -> PropertyIdentity:
        """Identity of a property defined by function *fn*."""
        return cls(fn.__module__, fn.__qualname__)

    @classmethod
    def parse(cls, key: str) -> PropertyIdentity:
        module, _, name = key.rpartition(".")
        return cls(module, name)

    def __str__(self) -> str:
        if not self.module:
            return self.name
        return f"{self.module}.{self.name}"


@dataclass(frozen=True)
class Witness:
    """A generated input that falsified a property.

    Attributes:
        value: The input itself (a tuple for multi-argument properties)
        shape: Fingerprint of the property's input domain at the time the
            witness was stored. Used to detect stale witnesses.
    """

    value: Any
    shape: str | None = None


@dataclass(frozen=True, slots=True)
class Location:
    filename: str
    lineno: int
    function: str

    def __str__(self) -> str:
        return f'File "{self.filename}", line {self.lineno}, in {self.function}'


def extract_locations(exc: BaseException) -> tuple[Location, ...]:
    """Traceback frames of *exc* outside the recheck package, outermost first."""
    frames = traceback.extract_tb(exc.__traceback__)
    return tuple(
        Location(frame.filename, frame.lineno or 0, frame.name)
        for frame in frames
        if not frame.filename.startswith(_RECHECK_DIR)
    )


FailureKind = Literal["raised", "linked", "falsified"]


@dataclass(frozen=True)
class FailureReport:
    """Structured description of why a property failed.

    Attributes:
        kind: ``"raised"`` when the property raised directly, ``"linked"``
            when a linked worker died, ``"falsified"`` when the predicate
            returned a false value.
        error_type: Exception type name, None for a plain false result or a
            worker that exited without an exception.
        message: Exception message (empty if none).
        locations: Originating traceback frames, outermost first.
        worker: Name of the linked worker that died (linked failures only).
        exit_code: Exit code of a worker that died through ``SystemExit``.
    """

    kind: FailureKind
    error_type: str | None = None
    message: str = ""
    locations: tuple[Location, ...] = ()
    worker: str | None = None
    exit_code: Any = None

    @classmethod
    def falsified(cls) -> FailureReport:
        return cls(kind="falsified")

    @classmethod
    def from_exception(cls, exc: BaseException) -> FailureReport:
        if isinstance(exc, LinkedWorkerError):
            crash = exc.crash
            return cls(
                kind="linked",
                error_type=crash.error_type,
                message=crash.message,
                locations=crash.locations,
                worker=crash.name,
                exit_code=crash.exit_code,
            )
        return cls(
            kind="raised",
            error_type=type(exc).__name__,
            message=str(exc),
            locations=extract_locations(exc),
        )

    @property
    def location(self) -> Location | None:
        """Innermost frame, where the failure originated."""
        return self.locations[-1] if self.locations else None


@dataclass(frozen=True)
class Passed:
    """The property held for every evaluated input.

    Attributes:
        num_tests: How many inputs were evaluated.
        categories: How often each category passed to
            :func:`~recheck.engine.collect` was seen.
    """

    num_tests: int = 1
    categories: Counter[Hashable] = field(default_factory=Counter)

    @property
    def passed(self) -> bool:
        return True


@dataclass(frozen=True)
class Failed:
    """The property was falsified.

    Attributes:
        witness: The (minimal, when produced by a search) falsifying input.
        failure: Why the evaluation failed.
    """

    witness: Any
    failure: FailureReport

    @property
    def passed(self) -> bool:
        return False


Outcome = Passed | Failed
