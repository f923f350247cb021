"""Shared fixtures for the recheck test suite."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from pathlib import Path

import pytest

from recheck.config import RECHECK_COUNTEREXAMPLES_ENV, RECHECK_NUMTESTS_ENV, RECHECK_VERBOSE_ENV, RunConfig
from recheck.context import RunContext

pytest_plugins = ["pytester"]


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "intentionally_leaves_dangling_threads: mark test as intentionally leaving threads alive",
    )


@pytest.fixture(autouse=True)
def _clean_recheck_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Tests never see the developer's RECHECK_* settings."""
    for name in (RECHECK_COUNTEREXAMPLES_ENV, RECHECK_NUMTESTS_ENV, RECHECK_VERBOSE_ENV):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _check_thread_cleanup(request):
    """Fail any test that leaves threads running.

    The result aggregator and linked workers run on their own threads; every
    test must stop or join them before it returns.
    """
    initial_threads = set(threading.enumerate())

    yield

    new_threads = set(threading.enumerate()) - initial_threads
    main_thread = threading.main_thread()
    alive_threads = [t for t in new_threads if t != main_thread and t.is_alive()]

    if alive_threads and not request.node.get_closest_marker("intentionally_leaves_dangling_threads"):
        thread_info = ", ".join(
            f"{t.name} ({'daemon' if t.daemon else 'NON-DAEMON'}, ident={t.ident})" for t in alive_threads
        )
        pytest.fail(
            f"Test {request.node.nodeid} left {len(alive_threads)} thread(s) running: {thread_info}. "
            f"All threads must be joined before test completion."
        )


@pytest.fixture
def ctex_path(tmp_path: Path) -> Path:
    return tmp_path / "counterexamples.ctex"


@pytest.fixture
def run(ctex_path: Path) -> Iterator[RunContext]:
    """A run backed by a fresh counterexample file, closed after the test."""
    context = RunContext(RunConfig(counterexamples_path=ctex_path, numtests=50, seed=0))
    try:
        yield context
    finally:
        context.close()
