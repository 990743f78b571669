"""Cancellation token and the deadline helper used for tool runs."""

from __future__ import annotations

import asyncio
import gc
import sys
import threading
import warnings

import pytest

from bepoz_toolkit.utils.concurrency import CancellationToken, run_with_deadline


async def _value_after(delay: float, value: int) -> int:
    await asyncio.sleep(delay)
    return value


def test_cancel_wakes_a_waiting_reader_thread() -> None:
    token = CancellationToken()
    woke: list[bool] = []
    reader = threading.Thread(target=lambda: woke.append(token.wait(timeout=2.0)))

    reader.start()
    assert token.is_cancelled is False
    token.cancel()
    reader.join(timeout=2.0)

    assert woke == [True]
    assert token.is_cancelled is True
    assert token.wait(timeout=0) is True


@pytest.mark.asyncio
async def test_fast_work_returns_without_deadline_hook() -> None:
    hooks: list[str] = []

    assert await run_with_deadline(_value_after(0.01, 7), 1.0, on_deadline=lambda: hooks.append("x")) == 7
    assert hooks == []


@pytest.mark.asyncio
async def test_deadline_hook_stops_work_and_its_result_is_returned() -> None:
    stop = asyncio.Event()
    hooks: list[str] = []

    async def tool_run() -> str:
        await stop.wait()
        return "cancelled"

    def on_deadline() -> None:
        hooks.append("deadline")
        stop.set()

    assert await run_with_deadline(tool_run(), 0.01, on_deadline=on_deadline) == "cancelled"
    assert hooks == ["deadline"]


@pytest.mark.asyncio
async def test_non_positive_timeout_closes_the_coroutine(monkeypatch: pytest.MonkeyPatch) -> None:
    unraisable: list[object] = []
    monkeypatch.setattr(sys, "unraisablehook", unraisable.append)

    with warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        with pytest.raises(ValueError, match="timeout_seconds"):
            await run_with_deadline(_value_after(0.01, 1), 0, on_deadline=lambda: None)
        gc.collect()

    assert unraisable == []


@pytest.mark.asyncio
async def test_cancelling_the_caller_cancels_the_work() -> None:
    running = asyncio.Event()
    work_cancelled = asyncio.Event()

    async def work() -> None:
        running.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            work_cancelled.set()
            raise

    caller = asyncio.create_task(run_with_deadline(work(), 5.0, on_deadline=lambda: None))
    await running.wait()
    caller.cancel()

    with pytest.raises(asyncio.CancelledError):
        await caller
    await asyncio.wait_for(work_cancelled.wait(), timeout=1.0)
