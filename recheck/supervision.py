"""Worker threads linked to a property evaluation.

A property that exercises concurrent code usually starts helper threads.
When one of them dies, the failure has to be charged to the property even
though the exception never reaches the property's own frame.  Each worker's
fate is captured as a typed result (:class:`WorkerOk` or
:class:`WorkerCrashed`) and delivered to the supervising
:class:`LinkedWorkers` collector, which re-raises a crash as
:class:`~recheck.errors.LinkedWorkerError` in the evaluating thread.

Example::

    from recheck.supervision import LinkedWorkers

    def prop(n):
        with LinkedWorkers() as workers:
            workers.spawn(lambda: 1 / n)
        return True
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from recheck.common import Location, extract_locations
from recheck.errors import LinkedWorkerError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WorkerOk:
    name: str
    value: Any = None


@dataclass(frozen=True)
class WorkerCrashed:
    """A linked worker terminated abnormally.

    Attributes:
        name: Worker (thread) name.
        error_type: Exception type name, or None if the worker called
            ``sys.exit()``.
        message: Exception message.
        locations: Traceback frames of the exception, outermost first.
        exit_code: Argument of ``SystemExit`` when the worker exited.
    """

    name: str
    error_type: str | None
    message: str = ""
    locations: tuple[Location, ...] = ()
    exit_code: Any = None

    @property
    def reason(self) -> str:
        if self.error_type is None:
            return f"exit({self.exit_code!r})"
        return "an exception was raised"


WorkerResult = WorkerOk | WorkerCrashed


class LinkedWorkers:
    """Collects the results of worker threads linked to the current evaluation.

    Used as a context manager, leaving the block joins every worker and raises
    :class:`~recheck.errors.LinkedWorkerError` for the first one that crashed
    (in spawn order).  An exception raised inside the block itself takes
    precedence over worker crashes.
    """

    def __init__(self, *, timeout: float | None = 5.0):
        self.timeout = timeout
        self.threads: list[threading.Thread] = []
        self._results: queue.Queue[tuple[int, WorkerResult]] = queue.Queue()
        self._collected: dict[int, WorkerResult] = {}

    def spawn(self, target: Callable[..., Any], *args: Any, name: str | None = None, **kwargs: Any) -> threading.Thread:
        """Start *target* in a new thread linked to this collector."""
        index = len(self.threads)
        worker_name = name or f"linked-worker-{index}"
        thread = threading.Thread(
            target=self._run_worker,
            args=(index, worker_name, target, args, kwargs),
            name=worker_name,
            daemon=True,
        )
        self.threads.append(thread)
        thread.start()
        return thread

    def _run_worker(
        self,
        index: int,
        name: str,
        target: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> None:
        result: WorkerResult
        try:
            result = WorkerOk(name, target(*args, **kwargs))
        except SystemExit as e:
            result = WorkerCrashed(name, None, exit_code=e.code)
        except BaseException as e:  # noqa: BLE001
            result = WorkerCrashed(name, type(e).__name__, str(e), extract_locations(e))
        self._results.put((index, result))

    def join(self, timeout: float | None = None) -> list[WorkerResult]:
        """Wait for every worker and return their results in spawn order.

        Raises:
            TimeoutError: If a worker is still running after *timeout*.
        """
        if timeout is None:
            timeout = self.timeout
        for thread in self.threads:
            thread.join(timeout=timeout)

        alive = [thread.name for thread in self.threads if thread.is_alive()]
        if alive:
            raise TimeoutError(f"Linked workers did not complete within timeout: {', '.join(alive)}")

        while True:
            try:
                index, result = self._results.get_nowait()
            except queue.Empty:
                break
            self._collected[index] = result
        return [self._collected[i] for i in sorted(self._collected)]

    def check(self) -> list[WorkerResult]:
        """Join every worker and raise for the first crash."""
        results = self.join()
        for result in results:
            if isinstance(result, WorkerCrashed):
                raise LinkedWorkerError(result)
        return results

    def __enter__(self) -> LinkedWorkers:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if exc_type is not None:
            try:
                self.join()
            except TimeoutError as e:
                logger.warning("Linked workers outlived a failing property", error=str(e))
            return
        self.check()
