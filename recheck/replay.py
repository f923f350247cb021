"""Replay stored counterexamples before exploring new inputs.

One call to :meth:`ReplayController.check` moves a property through this
state machine::

    Lookup --(no entry)--------------------------> FreshRun
    Lookup --(entry)--> Replay
    Replay --(stale witness)---------------------> FreshRun
    Replay --(passes)----------------------------> CLEARED   (entry removed)
    Replay --(still fails)-----------------------> RESTORED  (entry kept/refreshed)
    FreshRun --(passes)--------------------------> PASSED
    FreshRun --(fails)---------------------------> STORED    (minimal witness put)
    FreshRun --(fails, storing disabled)---------> FAILED
    FreshRun --(fails, witness unpicklable)------> FAILED
    FreshRun --(engine gave up)------------------> ERRORED

The controller never loops; all retrying happens inside the engine's own
generate/shrink loop.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

import structlog

from recheck.common import Failed, Outcome, Passed, Witness
from recheck.engine import Property, PropertyEngine
from recheck.errors import EngineContractError, GenerationError, StaleWitnessError, UnencodableWitnessError
from recheck.store import CounterexampleStore

logger = structlog.get_logger(__name__)


class ReplayState(enum.Enum):
    CLEARED = "cleared"
    RESTORED = "restored"
    STORED = "stored"
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"


@dataclass(frozen=True)
class ReplayResult:
    """Terminal state of one property invocation.

    Attributes:
        state: Where the state machine ended.
        outcome: The engine's verdict (None when the engine gave up).
        witness: The failing witness, for RESTORED, STORED and FAILED.
        stale: Set if a stored witness was discarded as stale on the way.
        error: Set for ERRORED.
    """

    state: ReplayState
    outcome: Outcome | None = None
    witness: Witness | None = None
    stale: StaleWitnessError | None = None
    error: GenerationError | None = None

    @property
    def passed(self) -> bool:
        return self.state in (ReplayState.CLEARED, ReplayState.PASSED)

    @property
    def replayed(self) -> bool:
        return self.state in (ReplayState.CLEARED, ReplayState.RESTORED)


class ReplayController:
    """Runs properties against the counterexample store.

    Args:
        store: Shared counterexample store.
        engine: Property engine.
        refresh_on_replay: When a replayed witness still fails, ask the
            engine for a more minimal one and keep it if it fails too and is
            no larger by :attr:`Property.size`.  By default the confirmed
            witness is kept unchanged.
    """

    def __init__(self, store: CounterexampleStore, engine: PropertyEngine, *, refresh_on_replay: bool = False):
        self.store = store
        self.engine = engine
        self.refresh_on_replay = refresh_on_replay

    def check(
        self,
        prop: Property,
        *,
        numtests: int = 100,
        seed: int | None = None,
        store_counterexample: bool = True,
    ) -> ReplayResult:
        stale: StaleWitnessError | None = None
        stored = self.store.lookup(prop.identity)
        if stored is None and self.store.has_others(prop.identity):
            logger.debug("No counterexample stored for property, only for others", property=str(prop.identity))
        if stored is not None:
            try:
                return self._replay(prop, stored, seed)
            except StaleWitnessError as e:
                logger.warning("Discarding stale counterexample", property=str(prop.identity), reason=e.reason)
                self.store.remove(prop.identity)
                stale = e
        return self._fresh_run(prop, numtests=numtests, seed=seed, store_counterexample=store_counterexample, stale=stale)

    def _replay(self, prop: Property, stored: Witness, seed: int | None) -> ReplayResult:
        if stored.shape is not None and stored.shape != prop.shape:
            raise StaleWitnessError(str(prop.identity), f"input domain changed from {stored.shape} to {prop.shape}")

        outcome = _checked(self.engine.run(prop, stored.value))
        if isinstance(outcome, Passed):
            self.store.remove(prop.identity)
            logger.info("Stored counterexample passes now, removed it", property=str(prop.identity))
            return ReplayResult(ReplayState.CLEARED, outcome)

        witness = stored
        if self.refresh_on_replay:
            candidate = self.engine.shrink(prop, stored.value, seed=seed)
            if candidate is not stored.value and prop.size(candidate) <= prop.size(stored.value):
                confirmed = _checked(self.engine.run(prop, candidate))
                refreshed = prop.witness(candidate)
                if isinstance(confirmed, Failed) and self._put(prop, refreshed):
                    witness = refreshed
                    outcome = confirmed
        logger.debug("Stored counterexample still fails", property=str(prop.identity), witness=repr(witness.value))
        return ReplayResult(ReplayState.RESTORED, outcome, witness)

    def _fresh_run(
        self,
        prop: Property,
        *,
        numtests: int,
        seed: int | None,
        store_counterexample: bool,
        stale: StaleWitnessError | None,
    ) -> ReplayResult:
        try:
            outcome = _checked(self.engine.search(prop, numtests=numtests, seed=seed))
        except GenerationError as e:
            logger.warning("Property engine gave up", property=str(prop.identity), error=str(e))
            return ReplayResult(ReplayState.ERRORED, stale=stale, error=e)

        if isinstance(outcome, Passed):
            return ReplayResult(ReplayState.PASSED, outcome, stale=stale)

        witness = prop.witness(outcome.witness)
        if not store_counterexample:
            return ReplayResult(ReplayState.FAILED, outcome, witness, stale=stale)
        if not self._put(prop, witness):
            return ReplayResult(ReplayState.FAILED, outcome, witness, stale=stale)
        logger.info("Stored new counterexample", property=str(prop.identity), witness=repr(witness.value))
        return ReplayResult(ReplayState.STORED, outcome, witness, stale=stale)

    def _put(self, prop: Property, witness: Witness) -> bool:
        try:
            self.store.put(prop.identity, witness)
        except UnencodableWitnessError as e:
            logger.warning("Counterexample cannot be stored", property=str(prop.identity), error=str(e))
            return False
        return True


def _checked(outcome: object) -> Outcome:
    if not isinstance(outcome, (Passed, Failed)):
        raise EngineContractError(f"Property engine returned {outcome!r}, expected Passed or Failed")
    return outcome
