"""Run configuration read from the environment.

Environment variables:

``RECHECK_VERBOSE``
    ``1`` prints a pass summary for every passing property, ``0`` silences
    it even for properties declared verbose.  Any other value (or unset)
    leaves the choice to each property.
``RECHECK_COUNTEREXAMPLES``
    Path of the counterexample file (default ``.recheck.ctex`` in the
    current directory).
``RECHECK_NUMTESTS``
    Number of generated inputs per property (default 100).
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

RECHECK_VERBOSE_ENV = "RECHECK_VERBOSE"
RECHECK_COUNTEREXAMPLES_ENV = "RECHECK_COUNTEREXAMPLES"
RECHECK_NUMTESTS_ENV = "RECHECK_NUMTESTS"

DEFAULT_COUNTEREXAMPLES_FILE = ".recheck.ctex"
DEFAULT_NUMTESTS = 100


def global_verbose(environ: Mapping[str, str] | None = None) -> bool | None:
    """Tri-state verbose override: True, False, or None when unset."""
    if environ is None:
        environ = os.environ
    value = environ.get(RECHECK_VERBOSE_ENV)
    if value == "1":
        return True
    if value == "0":
        return False
    return None


def _numtests(environ: Mapping[str, str]) -> int:
    raw = environ.get(RECHECK_NUMTESTS_ENV)
    if raw is None:
        return DEFAULT_NUMTESTS
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{RECHECK_NUMTESTS_ENV} must be a positive integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{RECHECK_NUMTESTS_ENV} must be a positive integer, got {raw!r}")
    return value


@dataclass(frozen=True)
class RunConfig:
    """Settings shared by every property of a test run.

    Attributes:
        counterexamples_path: File backing the counterexample store.
        numtests: Default number of generated inputs per property.
        verbose: Global verbose override (see :func:`global_verbose`).
        store_counterexamples: Whether new failures are persisted.
        refresh_on_replay: Ask the engine for a more minimal witness when a
            replayed counterexample still fails.
        seed: Seed for the engine's random generation; None for a fresh
            random seed per property.
    """

    counterexamples_path: Path = Path(DEFAULT_COUNTEREXAMPLES_FILE)
    numtests: int = DEFAULT_NUMTESTS
    verbose: bool | None = None
    store_counterexamples: bool = True
    refresh_on_replay: bool = False
    seed: int | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> RunConfig:
        """Build a config from ``RECHECK_*`` variables, then apply *overrides*.

        Overrides whose value is None are ignored, so command line options
        that were not given fall back to the environment.
        """
        if environ is None:
            environ = os.environ
        config = cls(
            counterexamples_path=Path(environ.get(RECHECK_COUNTEREXAMPLES_ENV, DEFAULT_COUNTEREXAMPLES_FILE)),
            numtests=_numtests(environ),
            verbose=global_verbose(environ),
        )
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "counterexamples_path" in changes:
            changes["counterexamples_path"] = Path(changes["counterexamples_path"])
        return dataclasses.replace(config, **changes)

    def is_verbose(self, local: bool | None = None) -> bool:
        """Combine a property's own verbose flag with the global override.

        The global setting takes precedence.
        """
        if self.verbose is not None:
            return self.verbose
        return bool(local)
