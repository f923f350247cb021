"""Pytest plugin wiring recheck properties into a test session.

Registered through the ``pytest11`` entry point, so installing recheck is
enough.  The plugin provides the ``recheck_run`` fixture that
:func:`recheck.forall` tests take, prints a run summary at the end of the
session and flushes the counterexample store when pytest exits (including
after Ctrl-C).

Usage::

    pytest                                   # replay stored counterexamples first
    pytest --recheck-clean                   # forget all counterexamples
    pytest --recheck-verbose                 # print a pass report per property
    pytest --recheck-counterexamples=ci.ctex # use another counterexample file

Individual tests can opt out of storing new counterexamples::

    @pytest.mark.recheck(store_counterexample=False)
    @forall(st.integers())
    def test_flaky_environment(n): ...
"""

from __future__ import annotations

import io
import threading

import pytest
import structlog

from recheck.config import RunConfig
from recheck.context import RunContext
from recheck.store import CounterexampleStore

logger = structlog.get_logger(__name__)

_MARKER_OPTIONS = {"store_counterexample": "store_counterexamples", "numtests": "numtests"}


class _RecheckSession:
    """Creates the session's run on first use, so sessions without properties start no threads.

    Verbose pass reports are buffered and written with the terminal summary.
    """

    def __init__(self, config: RunConfig):
        self.config = config
        self.reports = io.StringIO()
        self._run: RunContext | None = None
        self._lock = threading.Lock()

    def run(self) -> RunContext:
        with self._lock:
            if self._run is None:
                self._run = RunContext(self.config, out=self.reports)
            return self._run

    @property
    def started(self) -> bool:
        return self._run is not None

    def close(self) -> None:
        with self._lock:
            if self._run is not None:
                self._run.close()


_SESSION_KEY = pytest.StashKey[_RecheckSession]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("recheck", "recheck property testing")
    group.addoption(
        "--recheck-counterexamples",
        default=None,
        metavar="PATH",
        help="File storing counterexamples between runs (default: $RECHECK_COUNTEREXAMPLES or .recheck.ctex).",
    )
    group.addoption(
        "--recheck-clean",
        action="store_true",
        default=False,
        help="Forget all stored counterexamples before running.",
    )
    group.addoption(
        "--recheck-verbose",
        action="store_const",
        const=True,
        default=None,
        help="Print a pass report for every passing property.",
    )
    group.addoption(
        "--recheck-numtests",
        type=int,
        default=None,
        metavar="N",
        help="Inputs generated per property (default: $RECHECK_NUMTESTS or 100).",
    )
    group.addoption(
        "--recheck-seed",
        type=int,
        default=None,
        help="Seed for input generation.",
    )
    group.addoption(
        "--recheck-refresh",
        action="store_const",
        const=True,
        default=None,
        help="Look for a smaller counterexample when a stored one still fails.",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "recheck(store_counterexample=True, numtests=None): per-test settings for recheck properties",
    )
    try:
        run_config = RunConfig.from_env(
            counterexamples_path=config.getoption("--recheck-counterexamples", default=None),
            verbose=config.getoption("--recheck-verbose", default=None),
            numtests=config.getoption("--recheck-numtests", default=None),
            seed=config.getoption("--recheck-seed", default=None),
            refresh_on_replay=config.getoption("--recheck-refresh", default=None),
        )
    except ValueError as e:
        raise pytest.UsageError(str(e)) from e

    if config.getoption("--recheck-clean", default=False):
        CounterexampleStore().clean(run_config.counterexamples_path)
        logger.info("Removed all counterexamples", path=str(run_config.counterexamples_path))

    config.stash[_SESSION_KEY] = _RecheckSession(run_config)


def pytest_terminal_summary(terminalreporter: pytest.TerminalReporter, exitstatus: int, config: pytest.Config) -> None:
    session = config.stash.get(_SESSION_KEY, None)
    if session is None or not session.started:
        return
    run = session.run()
    if not run.status().tests:
        return
    terminalreporter.section("recheck")
    for line in session.reports.getvalue().splitlines():
        terminalreporter.write_line(line)
    for line in run.summary().splitlines():
        terminalreporter.write_line(line)


def pytest_unconfigure(config: pytest.Config) -> None:
    session = config.stash.get(_SESSION_KEY, None)
    if session is None:
        return
    session.close()
    del config.stash[_SESSION_KEY]


@pytest.fixture
def recheck_run(request: pytest.FixtureRequest) -> RunContext:
    """The session's :class:`~recheck.context.RunContext`, adjusted by a ``recheck`` marker."""
    run = request.config.stash[_SESSION_KEY].run()
    marker = request.node.get_closest_marker("recheck")
    if marker is None:
        return run

    unsupported = sorted(set(marker.kwargs) - set(_MARKER_OPTIONS)) + [repr(arg) for arg in marker.args]
    if unsupported:
        pytest.fail(f"Unsupported arguments to @pytest.mark.recheck: {', '.join(unsupported)}", pytrace=False)
    changes = {_MARKER_OPTIONS[key]: value for key, value in marker.kwargs.items() if value is not None}
    return run.derive(**changes) if changes else run
