"""Tests for the yield points called by instrumented code."""

from __future__ import annotations

import asyncio

import pytest

from recheck._yield import async_yield_point, get_yield_hook, set_yield_hook, yield_hook, yield_point


class TestYieldHook:
    def test_no_hook_by_default(self) -> None:
        assert get_yield_hook() is None
        yield_point()

    def test_hook_called_per_yield(self) -> None:
        calls = []
        with yield_hook(lambda: calls.append("sync")):
            yield_point()
            yield_point()
        assert calls == ["sync", "sync"]

    def test_nested_hooks_restore_previous(self) -> None:
        outer = lambda: None  # noqa: E731
        inner = lambda: None  # noqa: E731
        with yield_hook(outer):
            with yield_hook(inner):
                assert get_yield_hook() is inner
            assert get_yield_hook() is outer
        assert get_yield_hook() is None

    def test_hook_restored_after_error(self) -> None:
        def boom() -> None:
            raise RuntimeError("hook failed")

        with pytest.raises(RuntimeError, match="hook failed"), yield_hook(boom):
            yield_point()
        assert get_yield_hook() is None

    def test_set_and_clear(self) -> None:
        hook = lambda: None  # noqa: E731
        set_yield_hook(hook)
        try:
            assert get_yield_hook() is hook
        finally:
            set_yield_hook(None)
        assert get_yield_hook() is None


class TestAsyncYieldPoint:
    def test_hands_control_to_other_tasks(self) -> None:
        order = []

        async def worker(name: str) -> None:
            order.append(f"{name}-start")
            await async_yield_point()
            order.append(f"{name}-end")

        async def main() -> None:
            await asyncio.gather(worker("a"), worker("b"))

        asyncio.run(main())
        assert order == ["a-start", "b-start", "a-end", "b-end"]

    def test_calls_hook(self) -> None:
        calls = []
        with yield_hook(lambda: calls.append("async")):
            asyncio.run(async_yield_point())
        assert calls == ["async"]
