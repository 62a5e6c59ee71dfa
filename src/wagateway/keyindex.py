"""
Message-key addressing.

Clients refer to messages by whatever identifier they last saw: the raw
protocol id, `<chat>_<id>`, or the wrapper API's `<fromMe>_<chat>_<id>` in
either address convention. `MessageKeyIndex` maps every such alias to one
canonical `MessageKey`; `MessageKeyResolver` layers store and socket
fallbacks on top of it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from .exceptions import MessageNotFoundError
from .jid import bool_flag, parse_message_id, to_legacy_jid, to_protocol_jid
from .socket import WAMessage
from .store import LocalStore

logger = logging.getLogger(__name__)

MessageLoader = Callable[[str, str], Awaitable[WAMessage | None]]


@dataclass(frozen=True, slots=True)
class MessageKey:
    remote_jid: str
    id: str
    from_me: bool | None = None
    participant: str | None = None
    remote_jid_alt: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MessageKey:
        from_me = data.get("fromMe")
        return cls(
            remote_jid=str(data.get("remoteJid") or ""),
            id=str(data.get("id") or ""),
            from_me=None if from_me is None else bool(from_me),
            participant=data.get("participant") or None,
            remote_jid_alt=data.get("remoteJidAlt") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "remoteJid": self.remote_jid,
            "id": self.id,
            "fromMe": bool(self.from_me),
        }
        if self.participant:
            out["participant"] = self.participant
        return out

    @property
    def remotes(self) -> list[str]:
        return [r for r in (self.remote_jid, self.remote_jid_alt) if r]


def _remote_aliases(message_id: str, remote: str) -> list[str]:
    out: list[str] = []
    for conv in (to_protocol_jid(remote), to_legacy_jid(remote)):
        out.append(f"{conv}_{message_id}")
        for from_me in (False, True):
            out.append(f"{bool_flag(from_me)}_{conv}_{message_id}")
    return out


def key_aliases(key: MessageKey) -> list[str]:
    """Every alias under which `key` must be reachable."""

    if not key.id:
        return []
    aliases = [key.id]
    for remote in key.remotes:
        aliases.extend(_remote_aliases(key.id, remote))
    return list(dict.fromkeys(aliases))


def candidate_aliases(chat_jid: str, message_id: str) -> list[str]:
    """
    Lookup order for a client-supplied id within a chat.

    A composite id contributes its embedded remote as an extra hint.
    """

    parsed = parse_message_id(message_id)
    raw_id = parsed.id if parsed else message_id

    out = [message_id, raw_id]
    if chat_jid:
        out.extend(_remote_aliases(raw_id, chat_jid))
    if parsed and parsed.remote_jid:
        out.extend(_remote_aliases(raw_id, parsed.remote_jid))
    return list(dict.fromkeys(out))


class MessageKeyIndex:
    """Many aliases -> one key. Last write wins; nothing is evicted."""

    def __init__(self) -> None:
        self._keys: dict[str, MessageKey] = {}

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, alias: object) -> bool:
        return alias in self._keys

    def register(self, key: MessageKey) -> None:
        for alias in key_aliases(key):
            self._keys[alias] = key

    def register_dict(self, key: Mapping[str, Any] | None) -> MessageKey | None:
        if not key or not key.get("id"):
            return None
        mk = MessageKey.from_dict(key)
        self.register(mk)
        return mk

    def register_messages(self, messages: Iterable[WAMessage]) -> int:
        n = 0
        for msg in messages:
            if self.register_dict(msg.get("key")) is not None:
                n += 1
        return n

    def get(self, alias: str) -> MessageKey | None:
        return self._keys.get(alias)


class MessageKeyResolver:
    """
    Turn `(chat id, client message id)` into a protocol key.

    Strategies, in order: alias index, the chat's stored messages, the
    socket's own loader, every stored chat. Each hit is re-registered so the
    next lookup is an index hit.
    """

    def __init__(
        self,
        index: MessageKeyIndex,
        store: LocalStore,
        loader: MessageLoader | None = None,
    ) -> None:
        self._index = index
        self._store = store
        self._loader = loader

    def _found(self, key: MessageKey) -> MessageKey:
        self._index.register(key)
        return key

    async def resolve(self, chat_id: str, message_id: str) -> MessageKey:
        chat_jid = to_protocol_jid(chat_id)
        parsed = parse_message_id(message_id)
        raw_id = parsed.id if parsed else message_id

        for alias in candidate_aliases(chat_jid, message_id):
            key = self._index.get(alias)
            if key is not None and key.id:
                if not key.remote_jid:
                    key = replace(key, remote_jid=chat_jid)
                return self._found(key)

        stored = self._store.get_message(chat_jid, raw_id)
        if stored is not None:
            return self._found(MessageKey.from_dict(stored["key"]))

        if self._loader is not None:
            try:
                loaded = await self._loader(chat_jid, raw_id)
            except Exception as e:
                logger.debug("message loader failed for %s/%s: %s", chat_jid, raw_id, e)
                loaded = None
            if loaded is not None and (loaded.get("key") or {}).get("id"):
                key = MessageKey.from_dict(loaded["key"])
                if not key.remote_jid:
                    key = replace(key, remote_jid=chat_jid)
                return self._found(key)

        hit = self._store.find_message(raw_id)
        if hit is not None:
            remote, msg = hit
            key = MessageKey.from_dict(msg["key"])
            if not key.remote_jid:
                key = replace(key, remote_jid=remote)
            return self._found(key)

        raise MessageNotFoundError()

    async def find_message(self, chat_id: str, message_id: str) -> tuple[MessageKey, WAMessage | None]:
        """Resolve and return the full stored message when one is available."""

        key = await self.resolve(chat_id, message_id)
        msg = self._store.get_message_by_key(key.to_dict())
        if msg is None:
            msg = self._store.get_message(key.remote_jid, key.id)
        if msg is None and self._loader is not None:
            try:
                msg = await self._loader(key.remote_jid, key.id)
            except Exception as e:
                logger.debug("message loader failed for %s/%s: %s", key.remote_jid, key.id, e)
        return key, msg
