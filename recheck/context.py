"""The resources of one test run, passed explicitly to every property.

A :class:`RunContext` owns the counterexample store, the result aggregator
and the property engine for a test run.  Properties receive it as a handle
(through the ``recheck_run`` pytest fixture, or :func:`open_run` outside
pytest) instead of reaching for module-level globals.

Closing the context always attempts a final flush of the store, including
when the run is aborted with ``KeyboardInterrupt``, so failures found before
the abort are not lost.
"""

from __future__ import annotations

import dataclasses
import sys
import threading
from collections import Counter
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog

from recheck import results
from recheck.common import Failed, Passed
from recheck.config import RunConfig
from recheck.engine import HypothesisEngine, Property, PropertyEngine
from recheck.errors import EngineContractError, RecheckError
from recheck.replay import ReplayController, ReplayResult, ReplayState
from recheck.reporting import format_passed, format_summary
from recheck.results import ResultAggregator, RunStatus
from recheck.store import CounterexampleStore

logger = structlog.get_logger(__name__)


class RunContext:
    """Store, aggregator and engine shared by the properties of one run.

    Args:
        config: Run settings.
        store: Counterexample store; loaded from
            ``config.counterexamples_path`` when omitted.
        engine: Property engine; :class:`~recheck.engine.HypothesisEngine`
            when omitted.
        aggregator: Result aggregator; a new one when omitted.
        out: Stream for verbose pass reports (``sys.stdout`` by default).
    """

    def __init__(
        self,
        config: RunConfig | None = None,
        *,
        store: CounterexampleStore | None = None,
        engine: PropertyEngine | None = None,
        aggregator: ResultAggregator | None = None,
        out: TextIO | None = None,
    ):
        self.config = config if config is not None else RunConfig.from_env()
        self.store = store if store is not None else CounterexampleStore.load(self.config.counterexamples_path)
        self.engine: PropertyEngine = engine if engine is not None else HypothesisEngine()
        self.aggregator = aggregator if aggregator is not None else ResultAggregator()
        self.controller = ReplayController(self.store, self.engine, refresh_on_replay=self.config.refresh_on_replay)
        self.categories: Counter[Hashable] = Counter()
        self._categories_lock = threading.Lock()
        self._out = out
        self._owner = True
        self._closed = False

    def derive(self, **changes: Any) -> RunContext:
        """A view of this run with different settings.

        The view shares the store, aggregator, engine and category counts;
        closing it is a no-op.
        """
        view = RunContext.__new__(RunContext)
        view.__dict__.update(self.__dict__)
        view.config = dataclasses.replace(self.config, **changes)
        view.controller = ReplayController(self.store, self.engine, refresh_on_replay=view.config.refresh_on_replay)
        view._owner = False
        return view

    def check(
        self,
        prop: Property,
        *,
        numtests: int | None = None,
        fails: bool = False,
        verbose: bool | None = None,
        store_counterexample: bool | None = None,
        test_id: str | None = None,
    ) -> ReplayResult:
        """Check *prop* through the replay controller and report the result.

        Args:
            prop: The property.
            numtests: Inputs to generate (``config.numtests`` by default).
            fails: The property is expected to fail.  Expected failures are
                never stored and a pass is reported as a failure.
            verbose: Per-property verbose flag; the global setting wins.
            store_counterexample: Override ``config.store_counterexamples``.
            test_id: Name reported to the aggregator (the identity by default).
        """
        test_id = test_id if test_id is not None else str(prop.identity)
        if store_counterexample is None:
            store_counterexample = self.config.store_counterexamples

        self.aggregator.send(results.Started(test_id))
        try:
            result = self.controller.check(
                prop,
                numtests=numtests if numtests is not None else self.config.numtests,
                seed=self.config.seed,
                store_counterexample=store_counterexample and not fails,
            )
        except EngineContractError:
            self._flush_best_effort()
            raise
        self._report(test_id, result, fails=fails, verbose=self.config.is_verbose(verbose))
        return result

    def _report(self, test_id: str, result: ReplayResult, *, fails: bool, verbose: bool) -> None:
        outcome = result.outcome
        if result.state is ReplayState.ERRORED:
            self.aggregator.send(results.ErrorReported(str(result.error)))
        elif isinstance(outcome, Passed):
            if fails:
                self.aggregator.send(results.Failed(test_id, "Property should fail, but succeeded for all test data"))
                return
            with self._categories_lock:
                self.categories.update(outcome.categories)
            if verbose:
                print(format_passed(outcome.num_tests, outcome.categories), file=self._out or sys.stdout, flush=True)
        elif isinstance(outcome, Failed) and not fails:
            self.aggregator.send(results.Failed(test_id, outcome.failure))

    def flush(self) -> bool:
        """Persist the counterexample store.

        Raises:
            OSError: If the counterexample file cannot be written.
            UnencodableWitnessError: If a stored witness cannot be pickled.
        """
        return self.store.flush(self.config.counterexamples_path)

    def _flush_best_effort(self) -> None:
        try:
            self.flush()
        except (OSError, RecheckError) as e:
            logger.warning(
                "Could not save counterexamples, new failures may be lost",
                path=str(self.config.counterexamples_path),
                error=str(e),
            )

    def status(self) -> RunStatus:
        return self.aggregator.status()

    def summary(self) -> str:
        with self._categories_lock:
            categories = Counter(self.categories)
        return format_summary(self.status(), categories)

    def close(self) -> None:
        """Flush the store (best effort) and stop the aggregator."""
        if not self._owner or self._closed:
            return
        self._closed = True
        try:
            self._flush_best_effort()
        finally:
            self.aggregator.stop()

    def __enter__(self) -> RunContext:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


@contextmanager
def open_run(config: RunConfig | None = None, **kwargs: Any) -> Iterator[RunContext]:
    """Open a run, closing (and flushing) it however the block exits.

    Example:
        with open_run(RunConfig.from_env()) as run:
            run.check(prop)
    """
    run = RunContext(config, **kwargs)
    try:
        yield run
    finally:
        run.close()
