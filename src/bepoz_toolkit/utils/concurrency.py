"""Stop signalling shared by the execution host and the launcher deadline."""

from __future__ import annotations

import asyncio
import inspect
import threading
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class CancellationToken:
    """One-shot stop request; set from the event loop, polled by the host's reader threads."""

    __slots__ = ("_flag",)

    def __init__(self) -> None:
        self._flag = threading.Event()

    def cancel(self) -> None:
        self._flag.set()

    @property
    def is_cancelled(self) -> bool:
        return self._flag.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._flag.wait(timeout)


async def run_with_deadline(
    work: Awaitable[T],
    timeout_seconds: float,
    *,
    on_deadline: Callable[[], object],
) -> T:
    """Await ``work``, calling ``on_deadline`` once if it is still running after the timeout.

    The work is not abandoned at the deadline. ``on_deadline`` asks it to stop and
    whatever it then returns, usually a cancelled result, is this call's result.
    """

    if timeout_seconds <= 0:
        if inspect.iscoroutine(work):
            work.close()
        raise ValueError("timeout_seconds must be > 0")

    task = asyncio.ensure_future(work)
    try:
        finished, _pending = await asyncio.wait({task}, timeout=timeout_seconds)
        if not finished:
            on_deadline()
        return await task
    except asyncio.CancelledError:
        task.cancel()
        raise


__all__ = ["CancellationToken", "run_with_deadline"]
