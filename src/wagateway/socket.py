"""
The black-box protocol socket the gateway core is built on.

The core only talks to objects satisfying `GatewaySocket`. Events are emitted
on `socket.events` with Baileys-style names and JSON-style payloads:

- `connection.update`: `ConnectionUpdate`
- `creds.update`: credentials object (opaque)
- `messaging-history.set`: `{"chats": [...], "contacts": [...], "messages": [...]}`
- `messages.upsert`: `{"messages": [WAMessage...], "type": "notify" | "append"}`
- `messages.update`: `[{"key": {...}, "update": {...}}]`
- `messages.reaction`: `[{"key": {...}, "reaction": {"text": ..., "key": {...}}}]`
- `chats.upsert` / `chats.update`: `[{"id": ..., ...}]`, `chats.delete`: `[jid]`
- `contacts.upsert` / `contacts.update`: `[{"id": ..., ...}]`
- `groups.upsert` / `groups.update`: `[{"id": ..., ...}]`
- `group-participants.update`: `{"id": ..., "participants": [...], "action": ...}`
- `call`: `[{"id", "from", "isVideo", "isGroup", "status"}]`

A `WAMessage` is a protobuf-JSON `WebMessageInfo`: `{"key": {"remoteJid",
"id", "fromMe", "participant"}, "message": {...}, "messageTimestamp": ...,
"status": ..., "pushName": ...}`.

Outbound `send_message` content and `chat_modify` modifications are plain
dicts with snake_case keys (`text`, `image`, `react`, `pin_time`;
`archive`, `mark_read`, `delete_for_me`, `last_messages`).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, Literal, Protocol

from .util.events import EventBus

WAMessage = dict[str, Any]
MessageContent = dict[str, Any]

ParticipantAction = Literal["add", "remove", "promote", "demote"]
GroupSetting = Literal["announcement", "not_announcement", "locked", "unlocked"]
PresenceState = Literal["available", "unavailable", "composing", "recording", "paused"]


class DisconnectReason(IntEnum):
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


@dataclass(slots=True)
class ConnectionUpdate:
    connection: str | None = None  # "connecting" | "open" | "close"
    qr: str | None = None
    status_code: int | None = None
    error: Exception | None = None
    is_new_login: bool | None = None


@dataclass(slots=True)
class AccountIdentity:
    id: str
    name: str | None = None
    lid: str | None = None


class GatewaySocket(Protocol):
    events: EventBus

    @property
    def user(self) -> AccountIdentity | None: ...

    async def connect(self) -> None: ...

    async def end(self) -> None: ...

    async def logout(self) -> None: ...

    async def request_pairing_code(self, phone_number: str) -> str: ...

    async def send_message(
        self,
        jid: str,
        content: MessageContent,
        *,
        quoted: WAMessage | None = None,
    ) -> WAMessage | None: ...

    async def load_message(self, jid: str, message_id: str) -> WAMessage | None: ...

    async def download_media(self, message: WAMessage) -> bytes: ...

    async def send_presence_update(self, state: PresenceState, jid: str | None = None) -> None: ...

    async def read_messages(self, keys: Sequence[dict[str, Any]]) -> None: ...

    async def chat_modify(self, modification: dict[str, Any], jid: str) -> None: ...

    async def star(self, jid: str, messages: Sequence[dict[str, Any]], star: bool) -> None: ...

    async def profile_picture_url(self, jid: str) -> str | None: ...

    async def fetch_blocklist(self) -> list[str]: ...

    async def update_block_status(self, jid: str, action: Literal["block", "unblock"]) -> None: ...

    async def on_whatsapp(self, *numbers: str) -> list[dict[str, Any]]: ...

    async def group_metadata(self, jid: str) -> dict[str, Any]: ...

    async def group_fetch_all_participating(self) -> dict[str, dict[str, Any]]: ...

    async def group_create(self, subject: str, participants: Sequence[str]) -> dict[str, Any]: ...

    async def group_participants_update(
        self, jid: str, participants: Sequence[str], action: ParticipantAction
    ) -> list[dict[str, Any]]: ...

    async def group_update_subject(self, jid: str, subject: str) -> None: ...

    async def group_update_description(self, jid: str, description: str) -> None: ...

    async def group_setting_update(self, jid: str, setting: GroupSetting) -> None: ...

    async def group_leave(self, jid: str) -> None: ...

    async def group_invite_code(self, jid: str) -> str | None: ...

    async def group_revoke_invite(self, jid: str) -> str | None: ...

    async def group_accept_invite(self, code: str) -> str | None: ...


SaveCreds = Callable[[], Awaitable[None]]

# (session_id, session directory) -> (socket, save_creds)
SocketFactory = Callable[[str, Path], Awaitable[tuple[GatewaySocket, SaveCreds]]]
