from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

T = TypeVar("T")


async def cancel_suppress(task: asyncio.Task[Any] | None) -> None:
    if not task or task.done():
        return
    # Never cancel/await the current task: doing so can deadlock or raise
    # "Task cannot await on itself".
    if task is asyncio.current_task():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def ensure_task(coro: Coroutine[Any, Any, T], *, name: str | None = None) -> asyncio.Task[T]:
    t: asyncio.Task[T] = asyncio.create_task(coro)
    if name:
        t.set_name(name)
    return t


class Debouncer:
    """
    Coalesce bursts of `schedule()` calls into one deferred `fn()` run.

    Each `schedule()` restarts the delay window; only the most recent
    request fires. `flush()` drops whatever is waiting and runs `fn()` now,
    `cancel()` drops the waiting run. A run that has already started `fn()`
    is never interrupted: `cancel()`/`flush()` wait for it instead, so two
    runs of `fn()` never overlap.
    """

    def __init__(
        self, delay_s: float, fn: Callable[[], Awaitable[None]], *, name: str | None = None
    ) -> None:
        self._delay_s = delay_s
        self._fn = fn
        self._name = name or "wagateway.debounce"
        self._waiting: asyncio.Task[None] | None = None
        self._running: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._waiting is not None and not self._waiting.done()

    def schedule(self) -> None:
        if self._waiting is not None and not self._waiting.done():
            self._waiting.cancel()
        self._waiting = ensure_task(self._run(), name=self._name)

    async def _run(self) -> None:
        await asyncio.sleep(self._delay_s)
        me = asyncio.current_task()
        if self._waiting is me:
            self._waiting = None
        await self._wait_running()
        self._running = me
        try:
            await self._fn()
        finally:
            if self._running is me:
                self._running = None

    async def _wait_running(self) -> None:
        running = self._running
        if running is None or running.done() or running is asyncio.current_task():
            return
        with contextlib.suppress(Exception):
            await asyncio.shield(running)

    async def cancel(self) -> None:
        waiting, self._waiting = self._waiting, None
        await cancel_suppress(waiting)
        await self._wait_running()

    async def flush(self) -> None:
        await self.cancel()
        await self._fn()
