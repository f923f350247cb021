"""The property engine: generation, evaluation and shrinking.

The replay controller treats the engine as a black box with four entry
points (see :class:`PropertyEngine`).  :class:`HypothesisEngine` implements
them on top of hypothesis: strategies describe the input domain,
``hypothesis.find`` drives the generate/evaluate/shrink loop.

Example:

    >>> from hypothesis import strategies as st
    >>> from recheck.common import PropertyIdentity
    >>> from recheck.engine import HypothesisEngine, Property
    >>>
    >>> prop = Property(
    ...     PropertyIdentity("MyMod", "positive_sum"),
    ...     st.tuples(st.integers(), st.integers()),
    ...     lambda args: args[0] + args[1] >= 0,
    ...     arity=2,
    ... )
    >>> outcome = HypothesisEngine().search(prop, numtests=100, seed=0)
    >>> outcome.passed
    False
"""

from __future__ import annotations

import contextvars
import re
from collections import Counter
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from random import Random
from typing import Any, Protocol

from hypothesis import HealthCheck, Phase, find, settings
from hypothesis.errors import HypothesisException, NoSuchExample, UnsatisfiedAssumption
from hypothesis.strategies import SearchStrategy

from recheck.common import Failed, FailureReport, Outcome, Passed, PropertyIdentity, Witness
from recheck.errors import GenerationError, StaleWitnessError

_categories_var: contextvars.ContextVar[Counter[Hashable] | None] = contextvars.ContextVar(
    "_recheck_categories", default=None
)
# Set while hypothesis drives evaluation; assume() failures belong to it then
_searching_var: contextvars.ContextVar[bool] = contextvars.ContextVar("_recheck_searching", default=False)


# Default object reprs: <pkg.Foo object at 0x7f4bac6326d0>
_ADDRESS = re.compile(r" at 0x[0-9a-fA-F]+")


def fingerprint(strategy: SearchStrategy[Any]) -> str:
    """Stable description of an input domain, without memory addresses."""
    return _ADDRESS.sub("", repr(strategy))


def witness_size(value: Any) -> int:
    return len(repr(value))


def collect(category: Hashable) -> None:
    """Record the category of the test case being evaluated.

    Categories are counted over all passing test cases and printed as a
    distribution when verbose reporting is on.  Outside an evaluation this
    is a no-op.
    """
    counter = _categories_var.get()
    if counter is not None:
        counter[category] += 1


@dataclass(frozen=True)
class Property:
    """A predicate over inputs drawn from a hypothesis strategy.

    Attributes:
        identity: Stable key for the counterexample store.
        strategy: Input domain.
        predicate: Called with one input.  Returning ``False`` (or any false
            value other than ``None``) or raising falsifies the property.
        arity: When set, inputs are tuples of this length.  Stored witnesses
            of another shape are stale.
        shape: Fingerprint of the input domain, :func:`fingerprint` of the
            strategy by default.
        size: Orders witnesses for refreshing; a replacement must not be
            larger than the stored witness.  Length of the repr by default.
    """

    identity: PropertyIdentity
    strategy: SearchStrategy[Any]
    predicate: Callable[[Any], object]
    arity: int | None = None
    shape: str = field(default="")
    size: Callable[[Any], Any] = field(default=witness_size, compare=False)

    def __post_init__(self) -> None:
        if not self.shape:
            object.__setattr__(self, "shape", fingerprint(self.strategy))

    def accepts(self, value: Any) -> bool:
        if self.arity is None:
            return True
        return isinstance(value, tuple) and len(value) == self.arity

    def witness(self, value: Any) -> Witness:
        return Witness(value, self.shape)


class PropertyEngine(Protocol):
    def generate(self, strategy: SearchStrategy[Any], seed: int) -> Any: ...

    def run(self, prop: Property, value: Any) -> Outcome: ...

    def shrink(self, prop: Property, value: Any, *, seed: int | None = None) -> Any: ...

    def search(self, prop: Property, *, numtests: int, seed: int | None = None) -> Outcome: ...


class HypothesisEngine:
    """Property engine backed by ``hypothesis.find``.

    Hypothesis shrinks the choice sequence behind a value, not the value
    itself, so :meth:`shrink` cannot start from an arbitrary witness.  It
    re-runs a seeded search and keeps the original witness when that search
    finds nothing.
    """

    def __init__(self, *, shrink_examples: int = 200):
        self.shrink_examples = shrink_examples

    @staticmethod
    def _settings(max_examples: int, phases: list[Phase] | None = None) -> settings:
        return settings(
            max_examples=max_examples,
            database=None,
            deadline=None,
            phases=phases if phases is not None else list(Phase),
            suppress_health_check=list(HealthCheck),
        )

    def generate(self, strategy: SearchStrategy[Any], seed: int) -> Any:
        """Draw one value from *strategy*, deterministically for *seed*."""
        rng = Random(seed)
        calls = 0

        def pick(_value: Any) -> bool:
            nonlocal calls
            calls += 1
            return calls >= 20 or rng.random() < 0.2

        try:
            return find(strategy, pick, settings=self._settings(100, [Phase.generate]), random=Random(seed))
        except NoSuchExample:
            # Tiny domains can be exhausted before pick() accepts anything
            return find(strategy, lambda _: True, settings=self._settings(1, [Phase.generate]), random=Random(seed))

    def run(self, prop: Property, value: Any) -> Outcome:
        """Evaluate *prop* on one input.

        Raises:
            StaleWitnessError: If *value* does not fit the property's input shape.
        """
        if not prop.accepts(value):
            raise StaleWitnessError(str(prop.identity), f"expected a {prop.arity}-tuple, got {value!r}")

        categories: Counter[Hashable] = Counter()
        token = _categories_var.set(categories)
        try:
            result = prop.predicate(value)
        except UnsatisfiedAssumption as e:
            if _searching_var.get():
                raise
            raise StaleWitnessError(str(prop.identity), "input no longer satisfies the property's assumptions") from e
        except Exception as e:
            return Failed(value, FailureReport.from_exception(e))
        finally:
            _categories_var.reset(token)

        if result is not None and not result:
            return Failed(value, FailureReport.falsified())
        return Passed(1, categories)

    def search(self, prop: Property, *, numtests: int = 100, seed: int | None = None) -> Outcome:
        """Generate up to *numtests* inputs and shrink the first failure.

        Returns:
            Passed with the number of passing inputs and their categories, or
            Failed with the minimal witness hypothesis converged to.

        Raises:
            GenerationError: If hypothesis gives up (unsatisfiable
                assumptions, flaky property, invalid strategy).
        """
        passed = 0
        categories: Counter[Hashable] = Counter()
        last_failure: Failed | None = None

        def falsifies(value: Any) -> bool:
            nonlocal passed, last_failure
            outcome = self.run(prop, value)
            if isinstance(outcome, Failed):
                last_failure = outcome
                return True
            passed += 1
            categories.update(outcome.categories)
            return False

        token = _searching_var.set(True)
        try:
            witness = find(
                prop.strategy,
                falsifies,
                settings=self._settings(numtests),
                random=Random(seed) if seed is not None else None,
            )
        except NoSuchExample:
            return Passed(passed, categories)
        except HypothesisException as e:
            raise GenerationError(f"{prop.identity}: {e}") from e
        finally:
            _searching_var.reset(token)

        # find() re-runs the minimal example last, so last_failure belongs to it
        if last_failure is None or last_failure.witness is not witness:
            return self.run(prop, witness)
        return last_failure

    def shrink(self, prop: Property, value: Any, *, seed: int | None = None) -> Any:
        try:
            outcome = self.search(prop, numtests=self.shrink_examples, seed=seed)
        except GenerationError:
            return value
        if isinstance(outcome, Failed):
            return outcome.witness
        return value
