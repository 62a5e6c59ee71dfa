from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .constants import STORE_FILENAME
from .keyindex import MessageKeyIndex, MessageKeyResolver
from .socket import GatewaySocket, SaveCreds
from .store import LocalStore
from .util.asyncio import Debouncer


class SessionStatus(str, Enum):
    CONNECTING = "connecting"
    QR = "qr"
    PAIRING = "pairing"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


# State names reported by the wrapper API's `getState`.
STATE_STOPPED = "STOPPED"
_LEGACY_STATES = {
    SessionStatus.CONNECTING: "INITIALIZING",
    SessionStatus.QR: "QR_RECEIVED",
    SessionStatus.PAIRING: "PAIRING",
    SessionStatus.CONNECTED: "CONNECTED",
    SessionStatus.DISCONNECTED: "DISCONNECTED",
}


def legacy_state(status: SessionStatus | None) -> str:
    if status is None:
        return STATE_STOPPED
    return _LEGACY_STATES[status]


@dataclass(slots=True, eq=False)
class Session:
    """
    One tenant's live connection and its local view.

    The socket is owned exclusively by this object; a reconnect builds a new
    `Session` and carries `reconnect_attempts` over.
    """

    id: str
    path: Path
    socket: GatewaySocket
    save_creds: SaveCreds
    store: LocalStore = field(default_factory=LocalStore)
    index: MessageKeyIndex = field(default_factory=MessageKeyIndex)
    status: SessionStatus = SessionStatus.CONNECTING
    qr: str | None = None
    pairing_code: str | None = None
    phone_number: str | None = None
    reconnect_attempts: int = 0
    # Set by `stop`; close events seen while it is set are ignored.
    manual_stop: bool = False
    # Set once `disconnected{reason: connection_lost}` went out for this record.
    gave_up: bool = False
    persister: Debouncer | None = None
    connect_task: asyncio.Task[None] | None = None
    resolver: MessageKeyResolver = field(init=False)

    def __post_init__(self) -> None:
        self.resolver = MessageKeyResolver(self.index, self.store, self.socket.load_message)

    @property
    def store_path(self) -> Path:
        return self.path / STORE_FILENAME

    @property
    def is_connected(self) -> bool:
        return self.status is SessionStatus.CONNECTED

    @property
    def own_jid(self) -> str | None:
        user = self.socket.user
        return user.id if user else None
