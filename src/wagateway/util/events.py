from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[..., Awaitable[None]] | Callable[..., None]


class EventBus:
    """
    Async-friendly event emitter with per-listener isolation.

    - `on(event, fn)` registers a listener (sync or async).
    - `emit(event, *args)` calls listeners in registration order, awaiting
      async ones. A failing listener is logged and skipped; it never stops
      the remaining listeners or the emitter.
    """

    def __init__(self, *, name: str = "events") -> None:
        self._name = name
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        with contextlib.suppress(ValueError):
            listeners.remove(listener)

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
            return
        self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    async def emit(self, event: str, *args: Any, **kwargs: Any) -> bool:
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                res = listener(*args, **kwargs)
                if asyncio.iscoroutine(res):
                    await res
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s: listener for %r failed", self._name, event)
        return bool(listeners)
