"""Declaring properties as pytest tests.

Example::

    from hypothesis import strategies as st
    from recheck.properties import forall

    @forall(st.integers(), st.integers())
    def test_positive_sum(x, y):
        return x + y >= 0

The decorated function becomes a pytest test taking the ``recheck_run``
fixture.  Its stored counterexample (if any) is replayed first, then fresh
inputs are generated; a failure is reported with the minimal witness and
stored for the next run.

Properties must be module-level functions: the identity under which their
counterexample is stored is ``<module>.<qualified name>``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, cast

from hypothesis import strategies as st
from hypothesis.strategies import SearchStrategy

from recheck.common import Failed, PropertyIdentity
from recheck.context import RunContext
from recheck.engine import Property
from recheck.errors import GenerationError
from recheck.replay import ReplayResult, ReplayState
from recheck.reporting import format_counterexample


def check_property(
    run: RunContext,
    prop: Property,
    *,
    numtests: int | None = None,
    fails: bool = False,
    verbose: bool | None = None,
    store_counterexample: bool | None = None,
) -> ReplayResult:
    """Check *prop* in *run* and raise if the verdict is not the expected one.

    Raises:
        AssertionError: With the counterexample report when the property
            fails (or a note when a property expected to fail passes).
        GenerationError: When the engine could not reach a verdict.
    """
    result = run.check(
        prop,
        numtests=numtests,
        fails=fails,
        verbose=verbose,
        store_counterexample=store_counterexample,
    )
    if result.state is ReplayState.ERRORED:
        raise cast(GenerationError, result.error)
    if fails:
        if result.passed:
            raise AssertionError(f"Property {prop.identity} should fail, but succeeded for all test data")
        return result

    outcome = result.outcome
    if isinstance(outcome, Failed):
        raise AssertionError(format_counterexample(prop.identity, outcome.witness, outcome.failure))
    return result


def forall(
    *strategies: SearchStrategy[Any],
    numtests: int | None = None,
    fails: bool = False,
    verbose: bool | None = None,
) -> Callable[[Callable[..., object]], Callable[[RunContext], None]]:
    """Turn a predicate over ``len(strategies)`` arguments into a property test.

    Args:
        strategies: One hypothesis strategy per argument.
        numtests: Inputs to generate (``RECHECK_NUMTESTS`` by default).
        fails: The property is expected to fail.
        verbose: Print a pass report for this property (overridden by
            ``RECHECK_VERBOSE``).
    """
    if not strategies:
        raise TypeError("forall() needs at least one strategy")

    def decorate(fn: Callable[..., object]) -> Callable[[RunContext], None]:
        prop = Property(
            PropertyIdentity.of(fn),
            st.tuples(*strategies),
            lambda args: fn(*args),
            arity=len(strategies),
        )

        # The test must take only the fixture, so fn's signature is not copied
        def test(recheck_run: RunContext) -> None:
            check_property(recheck_run, prop, numtests=numtests, fails=fails, verbose=verbose)

        test.__name__ = fn.__name__
        test.__qualname__ = fn.__qualname__
        test.__module__ = fn.__module__
        test.__doc__ = fn.__doc__
        test.property = prop  # type: ignore[attr-defined]
        return test

    return decorate
