"""Collects status messages emitted while a test run executes.

The aggregator is a single worker thread draining a queue, so every message
is applied in the order it was sent and no two messages ever mutate the run
state concurrently.  Senders never block on processing; ``status()`` waits
until every message sent before it has been applied.

Message kinds form a closed set::

    Started(test_id)          -> current = test_id, tests += [test_id]
    Failed(test_id, reason)   -> errors += [(current, reason)]
    ErrorReported(reason)     -> errors += [(current, reason)]
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from typing import Any

from recheck.common import FailureReport

Reason = FailureReport | str


@dataclass(frozen=True, slots=True)
class Started:
    test_id: str


@dataclass(frozen=True, slots=True)
class Failed:
    test_id: str
    reason: Reason


@dataclass(frozen=True, slots=True)
class ErrorReported:
    reason: Reason


StatusMessage = Started | Failed | ErrorReported


@dataclass(frozen=True)
class RunStatus:
    """Immutable snapshot of the run state.

    Attributes:
        tests: Test identifiers in the order they started.
        errors: ``(test_id, reason)`` pairs; ``test_id`` is the test that was
            current when the failure or error was reported.
        current: The most recently started test, if any.
    """

    tests: tuple[str, ...] = ()
    errors: tuple[tuple[str | None, Reason], ...] = ()
    current: str | None = None

    @property
    def failed_tests(self) -> set[str | None]:
        return {test_id for test_id, _ in self.errors}

    @property
    def num_passed(self) -> int:
        failed = self.failed_tests
        return sum(1 for test_id in set(self.tests) if test_id not in failed)

    @property
    def pass_percentage(self) -> float:
        distinct = len(set(self.tests))
        if not distinct:
            return 100.0
        return 100.0 * self.num_passed / distinct

    def errors_for(self, test_id: str) -> list[Reason]:
        return [reason for current, reason in self.errors if current == test_id]


@dataclass
class _RunState:
    tests: list[str] = field(default_factory=list)
    errors: list[tuple[str | None, Reason]] = field(default_factory=list)
    current: str | None = None

    def snapshot(self) -> RunStatus:
        return RunStatus(tuple(self.tests), tuple(self.errors), self.current)


@dataclass(frozen=True, slots=True)
class _StatusRequest:
    reply: queue.Queue[RunStatus]


_STOP = object()


class ResultAggregator:
    """Long-lived collector of test-run status messages.

    Example:
        aggregator = ResultAggregator()
        aggregator.send(Started("tests/test_sum.py::positive_sum"))
        aggregator.send(Failed("tests/test_sum.py::positive_sum", "Counter-Example is: (0, -1)"))
        status = aggregator.status()
        aggregator.stop()
    """

    def __init__(self, *, name: str = "recheck-results"):
        self._inbox: queue.Queue[Any] = queue.Queue()
        self._state = _RunState()
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while True:
            message = self._inbox.get()
            if message is _STOP:
                return
            if isinstance(message, _StatusRequest):
                message.reply.put(self._state.snapshot())
            else:
                self._apply(message)

    def _apply(self, message: StatusMessage) -> None:
        state = self._state
        if isinstance(message, Started):
            state.tests.append(message.test_id)
            state.current = message.test_id
        elif isinstance(message, (Failed, ErrorReported)):
            state.errors.append((state.current, message.reason))
        else:
            raise TypeError(f"Unknown status message: {message!r}")

    @property
    def running(self) -> bool:
        return not self._stopped.is_set()

    def send(self, message: StatusMessage) -> None:
        """Queue *message*.  Dropped silently once the aggregator is stopped."""
        if not isinstance(message, (Started, Failed, ErrorReported)):
            raise TypeError(f"Unknown status message: {message!r}")
        if self._stopped.is_set():
            return
        self._inbox.put(message)

    def status(self) -> RunStatus:
        """Snapshot of the run state after every message sent so far.

        After :meth:`stop`, returns the final state.
        """
        if self._stopped.is_set():
            self._thread.join()
            return self._state.snapshot()
        reply: queue.Queue[RunStatus] = queue.Queue(maxsize=1)
        self._inbox.put(_StatusRequest(reply))
        while True:
            try:
                return reply.get(timeout=0.1)
            except queue.Empty:
                # stop() raced ahead of the request
                if not self._thread.is_alive():
                    return self._state.snapshot()

    def stop(self) -> None:
        """Apply every queued message, then stop the worker thread."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._inbox.put(_STOP)
        self._thread.join()

    def __enter__(self) -> ResultAggregator:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()
