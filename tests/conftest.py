from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from wagateway.config import GatewayConfig
from wagateway.manager import SessionManager
from wagateway.session import Session
from wagateway.socket import AccountIdentity, ConnectionUpdate
from wagateway.util.events import EventBus

OWN_JID = "15550000000@s.whatsapp.net"


class FakeSocket:
    """In-memory `GatewaySocket`: records every call, replays scripted results."""

    def __init__(self, session_id: str, *, user: AccountIdentity | None = None) -> None:
        self.session_id = session_id
        self.events = EventBus(name=f"fake[{session_id}]")
        self.user = user
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.results: dict[str, Any] = {}
        self.errors: dict[str, Exception] = {}
        self._sent = 0

    def _call(self, name: str, *args: Any, **kwargs: Any) -> Any:
        self.calls.append((name, args, kwargs))
        if name in self.errors:
            raise self.errors[name]
        return self.results.get(name)

    def calls_to(self, name: str) -> list[tuple[tuple[Any, ...], dict[str, Any]]]:
        return [(args, kwargs) for n, args, kwargs in self.calls if n == name]

    # Driving events

    async def emit(self, event: str, payload: Any) -> None:
        await self.events.emit(event, payload)

    async def qr(self, qr: str) -> None:
        await self.emit("connection.update", ConnectionUpdate(qr=qr))

    async def open(self) -> None:
        await self.emit("connection.update", ConnectionUpdate(connection="open"))

    async def close(self, status_code: int | None = 428) -> None:
        await self.emit("connection.update", ConnectionUpdate(connection="close", status_code=status_code))

    async def receive(self, msg: dict[str, Any], *, kind: str = "notify") -> None:
        await self.emit("messages.upsert", {"messages": [msg], "type": kind})

    # GatewaySocket

    async def connect(self) -> None:
        self._call("connect")

    async def end(self) -> None:
        self._call("end")

    async def logout(self) -> None:
        self._call("logout")

    async def request_pairing_code(self, phone_number: str) -> str:
        result = self._call("request_pairing_code", phone_number)
        return result if result is not None else "ABCD1234"

    async def send_message(self, jid: str, content: dict[str, Any], *, quoted: Any = None) -> dict[str, Any]:
        self._call("send_message", jid, content, quoted=quoted)
        self._sent += 1
        message: dict[str, Any] = {"conversation": content["text"]} if "text" in content else {}
        return {
            "key": {"remoteJid": jid, "id": f"SENT{self._sent}", "fromMe": True},
            "message": message,
            "messageTimestamp": int(time.time()),
            "status": "SERVER_ACK",
        }

    async def load_message(self, jid: str, message_id: str) -> dict[str, Any] | None:
        return self._call("load_message", jid, message_id)

    async def download_media(self, message: dict[str, Any]) -> bytes:
        result = self._call("download_media", message)
        return result if result is not None else b"media-bytes"

    async def send_presence_update(self, state: str, jid: str | None = None) -> None:
        self._call("send_presence_update", state, jid)

    async def read_messages(self, keys: list[dict[str, Any]]) -> None:
        self._call("read_messages", keys)

    async def chat_modify(self, modification: dict[str, Any], jid: str) -> None:
        self._call("chat_modify", modification, jid)

    async def star(self, jid: str, messages: list[dict[str, Any]], star: bool) -> None:
        self._call("star", jid, messages, star)

    async def profile_picture_url(self, jid: str) -> str | None:
        return self._call("profile_picture_url", jid)

    async def fetch_blocklist(self) -> list[str]:
        return self._call("fetch_blocklist") or []

    async def update_block_status(self, jid: str, action: str) -> None:
        self._call("update_block_status", jid, action)

    async def on_whatsapp(self, *numbers: str) -> list[dict[str, Any]]:
        result = self._call("on_whatsapp", *numbers)
        if result is not None:
            return result
        return [{"jid": f"{n}@s.whatsapp.net", "exists": True} for n in numbers]

    async def group_metadata(self, jid: str) -> dict[str, Any]:
        result = self._call("group_metadata", jid)
        return result if result is not None else {"id": jid, "subject": "Fetched", "participants": []}

    async def group_fetch_all_participating(self) -> dict[str, dict[str, Any]]:
        return self._call("group_fetch_all_participating") or {}

    async def group_create(self, subject: str, participants: list[str]) -> dict[str, Any]:
        result = self._call("group_create", subject, participants)
        if result is not None:
            return result
        return {
            "id": "120363000000000001@g.us",
            "subject": subject,
            "owner": OWN_JID,
            "creation": 1700000000,
            "participants": [{"id": OWN_JID, "admin": "superadmin"}] + [{"id": p} for p in participants],
        }

    async def group_participants_update(self, jid: str, participants: list[str], action: str) -> list[dict[str, Any]]:
        result = self._call("group_participants_update", jid, participants, action)
        if result is not None:
            return result
        return [{"jid": p, "status": "200"} for p in participants]

    async def group_update_subject(self, jid: str, subject: str) -> None:
        self._call("group_update_subject", jid, subject)

    async def group_update_description(self, jid: str, description: str) -> None:
        self._call("group_update_description", jid, description)

    async def group_setting_update(self, jid: str, setting: str) -> None:
        self._call("group_setting_update", jid, setting)

    async def group_leave(self, jid: str) -> None:
        self._call("group_leave", jid)

    async def group_invite_code(self, jid: str) -> str | None:
        result = self._call("group_invite_code", jid)
        return result if result is not None else "INVITE123"

    async def group_revoke_invite(self, jid: str) -> str | None:
        result = self._call("group_revoke_invite", jid)
        return result if result is not None else "INVITE456"

    async def group_accept_invite(self, code: str) -> str | None:
        result = self._call("group_accept_invite", code)
        return result if result is not None else "120363000000000002@g.us"


class FakeSocketFactory:
    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.creds_saved = 0
        self.error: Exception | None = None
        self.configure: Callable[[FakeSocket], None] | None = None

    async def __call__(self, session_id: str, path: Path) -> tuple[FakeSocket, Callable[[], Any]]:
        if self.error is not None:
            raise self.error
        sock = FakeSocket(session_id, user=AccountIdentity(id=OWN_JID, name="Me"))
        if self.configure is not None:
            self.configure(sock)
        self.sockets.append(sock)
        return sock, self.save_creds

    async def save_creds(self) -> None:
        self.creds_saved += 1

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]

    def for_session(self, session_id: str) -> list[FakeSocket]:
        return [s for s in self.sockets if s.session_id == session_id]


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, Any]] = []

    async def emit(self, session_id: str, data_type: str, data: Any) -> None:
        self.events.append((session_id, data_type, data))

    def of_type(self, data_type: str) -> list[Any]:
        return [data for _, t, data in self.events if t == data_type]

    def types(self) -> list[str]:
        return [t for _, t, _ in self.events]


def inbound_text(
    text: str,
    *,
    jid: str = "5551@s.whatsapp.net",
    msg_id: str = "MSG1",
    ts: int = 1700000000,
    push_name: str | None = "Alice",
    participant: str | None = None,
) -> dict[str, Any]:
    key: dict[str, Any] = {"remoteJid": jid, "id": msg_id, "fromMe": False}
    if participant:
        key["participant"] = participant
    msg: dict[str, Any] = {"key": key, "message": {"conversation": text}, "messageTimestamp": ts}
    if push_name:
        msg["pushName"] = push_name
    return msg


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def config(tmp_path: Path) -> GatewayConfig:
    return GatewayConfig(
        sessions_path=tmp_path / "sessions",
        max_reconnect_retries=2,
        reconnect_interval_s=0.01,
        store_flush_delay_s=0.05,
        stop_grace_s=0.05,
        link_preview_timeout_s=0.1,
    )


@pytest.fixture
def factory() -> FakeSocketFactory:
    return FakeSocketFactory()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest_asyncio.fixture
async def manager(config: GatewayConfig, factory: FakeSocketFactory, sink: RecordingSink):
    mgr = SessionManager(config, socket_factory=factory, sink=sink)
    yield mgr
    await mgr.close()


@pytest_asyncio.fixture
async def connected(manager: SessionManager, factory: FakeSocketFactory) -> tuple[Session, FakeSocket]:
    session = await manager.start("s1")
    sock = factory.last
    await sock.open()
    return session, sock


async def wait_for_reconnect(
    manager: SessionManager, factory: FakeSocketFactory, count: int, session_id: str = "s1"
) -> Session:
    """Wait until the `count`-th socket is the one behind the live session."""

    def ready() -> bool:
        session = manager.get_session(session_id)
        return len(factory.sockets) == count and session is not None and session.socket is factory.last

    await wait_until(ready)
    return manager.get_session(session_id)
