"""
Notification contract between the core and its delivery collaborators.

The core calls `emit(session_id, data_type, data)` once per event and does
not care whether delivery succeeds. `NotificationHub` is the in-process
fan-out point: webhook and WebSocket deliverers subscribe to it, each behind
its own failure isolation.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

from .util.events import EventBus

logger = logging.getLogger(__name__)

QR = "qr"
READY = "ready"
AUTHENTICATED = "authenticated"
DISCONNECTED = "disconnected"
MESSAGE = "message"
MESSAGE_CREATE = "message_create"
MESSAGE_ACK = "message_ack"
MESSAGE_REACTION = "message_reaction"
GROUP_JOIN = "group_join"
GROUP_LEAVE = "group_leave"
GROUP_UPDATE = "group_update"
CALL = "call"
CHAT_ARCHIVED = "chat_archived"
CHAT_REMOVED = "chat_removed"
UNREAD_COUNT = "unread_count"
CONTACT_CHANGED = "contact_changed"

Envelope = dict[str, Any]
Subscriber = Callable[[Envelope], Awaitable[None]] | Callable[[Envelope], None]


class NotificationSink(Protocol):
    async def emit(self, session_id: str, data_type: str, data: Any) -> None: ...


class NullSink:
    async def emit(self, session_id: str, data_type: str, data: Any) -> None:
        return None


def build_envelope(session_id: str, data_type: str, data: Any, *, timestamp: bool = False) -> Envelope:
    env: Envelope = {"sessionId": session_id, "dataType": data_type, "data": data}
    if timestamp:
        env["timestamp"] = int(time.time() * 1000)
    return env


class NotificationHub:
    """
    Fan out envelopes to subscribers.

    `disabled` data types are dropped before fan-out. Subscribers added with
    `subscribe(fn, timestamp=True)` receive the WebSocket-style envelope that
    carries a millisecond `timestamp`.
    """

    def __init__(self, *, disabled: Iterable[str] = ()) -> None:
        self._disabled = frozenset(disabled)
        self._bus = EventBus(name="notifications")

    def is_enabled(self, data_type: str) -> bool:
        return data_type not in self._disabled

    def subscribe(self, fn: Subscriber, *, timestamp: bool = False) -> None:
        self._bus.on("envelope.ts" if timestamp else "envelope", fn)

    def unsubscribe(self, fn: Subscriber) -> None:
        self._bus.off("envelope", fn)
        self._bus.off("envelope.ts", fn)

    async def emit(self, session_id: str, data_type: str, data: Any) -> None:
        if not self.is_enabled(data_type):
            logger.debug("session %s: callback %s disabled, skipping", session_id, data_type)
            return
        await self._bus.emit("envelope", build_envelope(session_id, data_type, data))
        await self._bus.emit("envelope.ts", build_envelope(session_id, data_type, data, timestamp=True))
