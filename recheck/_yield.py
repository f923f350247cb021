"""Scheduling-yield points injected by :mod:`recheck.instrument`.

Instrumented code calls :func:`yield_point` (or awaits
:func:`async_yield_point` inside ``async def``) immediately before every
instrumentable call.  The yield is a deliberate suspension opportunity: in
threaded code ``time.sleep(0)`` releases the GIL so another runnable thread
may be scheduled; in async code ``asyncio.sleep(0)`` hands control back to
the event loop.  Neither blocks.

A hook can be installed to observe (or drive) yields, e.g. from tests::

    yields = []
    with yield_hook(lambda: yields.append(1)):
        instrumented.transfer(account, 10)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

# Process-wide, shared by every worker thread.
_yield_hook: Callable[[], None] | None = None


def get_yield_hook() -> Callable[[], None] | None:
    return _yield_hook


def set_yield_hook(hook: Callable[[], None] | None) -> None:
    """Install a hook called at every yield point (or clear with ``None``)."""
    global _yield_hook
    _yield_hook = hook


@contextmanager
def yield_hook(hook: Callable[[], None]) -> Iterator[None]:
    previous = _yield_hook
    set_yield_hook(hook)
    try:
        yield
    finally:
        set_yield_hook(previous)


def yield_point() -> None:
    """Give other threads a chance to run."""
    hook = _yield_hook
    if hook is not None:
        hook()
    time.sleep(0)


async def async_yield_point() -> None:
    """Give other tasks on the event loop a chance to run."""
    hook = _yield_hook
    if hook is not None:
        hook()
    await asyncio.sleep(0)
