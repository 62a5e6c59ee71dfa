from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from .constants import STATUS_BROADCAST
from .socket import WAMessage
from .storage import lock_for, read_text, write_text_atomic
from .util import json as bufferjson
from .util.timestamps import to_timestamp

logger = logging.getLogger(__name__)

MessageSlot = tuple[str, bool]


@dataclass(slots=True)
class ChatInfo:
    id: str
    name: str | None = None
    archived: bool = False
    pinned: int | None = None  # pin timestamp, None when unpinned
    mute_end_time: int | None = None
    unread_count: int = 0
    conversation_timestamp: int | None = None
    read_only: bool = False

    def apply(self, update: Mapping[str, Any]) -> None:
        """Merge a protocol-shaped partial chat record (camelCase keys)."""

        if update.get("name"):
            self.name = str(update["name"])
        if "archived" in update:
            self.archived = bool(update["archived"])
        if "pinned" in update:
            pinned = to_timestamp(update["pinned"])
            self.pinned = pinned or None
        if "muteEndTime" in update:
            mute = to_timestamp(update["muteEndTime"])
            self.mute_end_time = mute or None
        if "unreadCount" in update:
            self.unread_count = max(0, to_timestamp(update["unreadCount"]))
        if "conversationTimestamp" in update:
            ts = to_timestamp(update["conversationTimestamp"])
            if ts:
                self.conversation_timestamp = ts
        if "readOnly" in update:
            self.read_only = bool(update["readOnly"])


@dataclass(slots=True)
class ContactInfo:
    """
    Best-effort contact metadata.

    - `name` is the saved address-book name (history sync / contacts.upsert).
    - `notify` is the push name the contact set for themselves.
    """

    id: str
    name: str | None = None
    notify: str | None = None
    verified_name: str | None = None
    img_url: str | None = None
    status: str | None = None

    def apply(self, update: Mapping[str, Any]) -> None:
        # Merge, preferring new non-null values.
        self.name = update.get("name") or self.name
        self.notify = update.get("notify") or self.notify
        self.verified_name = update.get("verifiedName") or self.verified_name
        self.img_url = update.get("imgUrl") or self.img_url
        if update.get("status") is not None:
            # Preserve empty-string semantics (blocked/hidden) for status.
            self.status = update["status"]


@dataclass(slots=True)
class GroupParticipant:
    id: str
    admin: str | None = None  # "admin" | "superadmin" | None

    @property
    def is_admin(self) -> bool:
        return self.admin in ("admin", "superadmin")

    @property
    def is_super_admin(self) -> bool:
        return self.admin == "superadmin"


@dataclass(slots=True)
class GroupInfo:
    id: str
    subject: str = ""
    owner: str | None = None
    creation: int = 0
    desc: str = ""
    desc_id: str = ""
    desc_owner: str | None = None
    announce: bool = False
    restrict: bool = False
    size: int | None = None
    participants: list[GroupParticipant] = field(default_factory=list)

    @classmethod
    def from_metadata(cls, data: Mapping[str, Any]) -> GroupInfo:
        info = cls(id=str(data["id"]))
        info.apply(data)
        return info

    def apply(self, update: Mapping[str, Any]) -> None:
        if update.get("subject") is not None:
            self.subject = str(update["subject"])
        if update.get("owner"):
            self.owner = str(update["owner"])
        if update.get("creation") is not None:
            self.creation = to_timestamp(update["creation"])
        if update.get("desc") is not None:
            self.desc = str(update["desc"])
        if update.get("descId") is not None:
            self.desc_id = str(update["descId"])
        if update.get("descOwner"):
            self.desc_owner = str(update["descOwner"])
        if "announce" in update:
            self.announce = bool(update["announce"])
        if "restrict" in update:
            self.restrict = bool(update["restrict"])
        if update.get("size") is not None:
            self.size = to_timestamp(update["size"]) or None
        if isinstance(update.get("participants"), list):
            self.participants = [
                GroupParticipant(id=str(p["id"]), admin=p.get("admin") or None)
                for p in update["participants"]
                if isinstance(p, Mapping) and p.get("id")
            ]

    def find_participant(self, jid: str) -> GroupParticipant | None:
        for p in self.participants:
            if p.id == jid:
                return p
        return None

    def apply_participants(self, participants: Iterable[str], action: str) -> None:
        if action == "add":
            for jid in participants:
                if self.find_participant(jid) is None:
                    self.participants.append(GroupParticipant(id=jid))
        elif action == "remove":
            gone = set(participants)
            self.participants = [p for p in self.participants if p.id not in gone]
        elif action in ("promote", "demote"):
            for jid in participants:
                p = self.find_participant(jid)
                if p is not None:
                    p.admin = "admin" if action == "promote" else None
        if self.size is not None:
            self.size = len(self.participants)


def message_slot(key: Mapping[str, Any]) -> MessageSlot:
    return str(key.get("id") or ""), bool(key.get("fromMe"))


class LocalStore:
    """
    Per-session mirror of chats, contacts, group metadata and messages.

    Messages are kept per chat in arrival order, one record per
    `(remoteJid, id, fromMe)`; a repeated upsert overwrites the record in
    place. Everything here is synchronous and runs on the event loop; only
    `save`/`load` touch the disk.
    """

    def __init__(self) -> None:
        self.chats: dict[str, ChatInfo] = {}
        self.contacts: dict[str, ContactInfo] = {}
        self.groups: dict[str, GroupInfo] = {}
        self._messages: dict[str, dict[MessageSlot, WAMessage]] = {}

    # Messages

    def upsert_message(self, msg: WAMessage) -> bool:
        """Store `msg`; returns False when it carries no usable key."""

        key = msg.get("key") or {}
        jid = key.get("remoteJid")
        if not jid or not key.get("id"):
            return False
        self._messages.setdefault(jid, {})[message_slot(key)] = msg
        return True

    def upsert_messages(self, messages: Iterable[WAMessage], *, notify: bool = False) -> list[WAMessage]:
        stored: list[WAMessage] = []
        for msg in messages:
            if not self.upsert_message(msg):
                continue
            stored.append(msg)
            if notify:
                self._touch_chat_for(msg)
        return stored

    def _touch_chat_for(self, msg: WAMessage) -> None:
        key = msg.get("key") or {}
        jid = key["remoteJid"]
        if jid == STATUS_BROADCAST:
            return
        chat = self.chats.get(jid)
        if chat is None:
            chat = ChatInfo(id=jid)
            self.chats[jid] = chat
        ts = to_timestamp(msg.get("messageTimestamp"))
        if ts and ts > (chat.conversation_timestamp or 0):
            chat.conversation_timestamp = ts
        if not key.get("fromMe"):
            chat.unread_count += 1
        if not key.get("fromMe") and msg.get("pushName") and not chat.name:
            chat.name = str(msg["pushName"])

    def update_message(self, key: Mapping[str, Any], update: Mapping[str, Any]) -> WAMessage | None:
        msg = self.get_message_by_key(key)
        if msg is None:
            return None
        for k, v in update.items():
            if k == "key":
                continue
            if k == "message" and v is None:
                msg.pop("message", None)
                continue
            msg[k] = v
        return msg

    def apply_reaction(self, key: Mapping[str, Any], reaction: Mapping[str, Any]) -> WAMessage | None:
        """
        Record `reaction` on the message identified by `key`.

        One reaction per reacting sender; an empty `text` removes it.
        """

        msg = self.get_message_by_key(key)
        if msg is None:
            return None
        sender = reaction.get("key") or {}
        sender_id = (sender.get("participant") or sender.get("remoteJid") or "", bool(sender.get("fromMe")))
        reactions = [
            r
            for r in msg.get("reactions") or []
            if (
                ((r.get("key") or {}).get("participant") or (r.get("key") or {}).get("remoteJid") or ""),
                bool((r.get("key") or {}).get("fromMe")),
            )
            != sender_id
        ]
        if reaction.get("text"):
            reactions.append(dict(reaction))
        msg["reactions"] = reactions
        return msg

    def get_message_by_key(self, key: Mapping[str, Any]) -> WAMessage | None:
        jid = key.get("remoteJid")
        if not jid or not key.get("id"):
            return None
        bucket = self._messages.get(jid)
        if not bucket:
            return None
        return bucket.get(message_slot(key))

    def get_message(self, jid: str, message_id: str) -> WAMessage | None:
        """Look a message up by raw id within one chat (either direction)."""

        bucket = self._messages.get(jid)
        if not bucket or not message_id:
            return None
        return bucket.get((message_id, False)) or bucket.get((message_id, True))

    def find_message(self, message_id: str) -> tuple[str, WAMessage] | None:
        """
        Scan every chat for a raw message id.

        Linear in the number of stored messages.
        """

        if not message_id:
            return None
        for jid, bucket in self._messages.items():
            msg = bucket.get((message_id, False)) or bucket.get((message_id, True))
            if msg is not None:
                return jid, msg
        return None

    def get_messages(self, jid: str) -> list[WAMessage]:
        """Messages of a chat in arrival order."""

        return list((self._messages.get(jid) or {}).values())

    def sorted_messages(self, jid: str) -> list[WAMessage]:
        """Messages of a chat, newest first."""

        return sorted(
            self.get_messages(jid),
            key=lambda m: to_timestamp(m.get("messageTimestamp")),
            reverse=True,
        )

    def latest_message(self, jid: str) -> WAMessage | None:
        latest: WAMessage | None = None
        latest_ts = -1
        for msg in (self._messages.get(jid) or {}).values():
            ts = to_timestamp(msg.get("messageTimestamp"))
            if ts > latest_ts:
                latest, latest_ts = msg, ts
        return latest

    def message_chat_ids(self) -> list[str]:
        return [jid for jid, bucket in self._messages.items() if bucket]

    def iter_messages(self) -> Iterator[WAMessage]:
        for bucket in self._messages.values():
            yield from bucket.values()

    def message_count(self, jid: str | None = None) -> int:
        if jid is not None:
            return len(self._messages.get(jid) or {})
        return sum(len(b) for b in self._messages.values())

    def clear_chat_messages(self, jid: str) -> None:
        self._messages.pop(jid, None)

    # Chats

    def upsert_chats(self, chats: Iterable[Mapping[str, Any]]) -> list[ChatInfo]:
        out: list[ChatInfo] = []
        for data in chats:
            jid = data.get("id")
            if not jid:
                continue
            chat = self.chats.get(jid)
            if chat is None:
                chat = ChatInfo(id=jid)
                self.chats[jid] = chat
            chat.apply(data)
            out.append(chat)
        return out

    def update_chats(self, updates: Iterable[Mapping[str, Any]]) -> list[ChatInfo]:
        return self.upsert_chats(updates)

    def delete_chats(self, jids: Iterable[str]) -> list[str]:
        removed: list[str] = []
        for jid in jids:
            if self.chats.pop(jid, None) is not None or jid in self._messages:
                removed.append(jid)
            self._messages.pop(jid, None)
        return removed

    # Contacts

    def upsert_contacts(self, contacts: Iterable[Mapping[str, Any]]) -> list[ContactInfo]:
        out: list[ContactInfo] = []
        for data in contacts:
            jid = data.get("id")
            if not jid:
                continue
            contact = self.contacts.get(jid)
            if contact is None:
                contact = ContactInfo(id=jid)
                self.contacts[jid] = contact
            contact.apply(data)
            out.append(contact)
        return out

    def update_contacts(self, updates: Iterable[Mapping[str, Any]]) -> list[ContactInfo]:
        return self.upsert_contacts(updates)

    # Groups

    def set_group(self, metadata: Mapping[str, Any]) -> GroupInfo:
        info = GroupInfo.from_metadata(metadata)
        self.groups[info.id] = info
        return info

    def upsert_groups(self, groups: Iterable[Mapping[str, Any]]) -> list[GroupInfo]:
        return [self.set_group(g) for g in groups if g.get("id")]

    def update_groups(self, updates: Iterable[Mapping[str, Any]]) -> list[GroupInfo]:
        out: list[GroupInfo] = []
        for data in updates:
            jid = data.get("id")
            if not jid:
                continue
            info = self.groups.get(jid)
            if info is None:
                info = GroupInfo(id=jid)
                self.groups[jid] = info
            info.apply(data)
            out.append(info)
        return out

    def update_group_participants(
        self, jid: str, participants: Iterable[str], action: str
    ) -> GroupInfo | None:
        info = self.groups.get(jid)
        if info is None:
            return None
        info.apply_participants(participants, action)
        return info

    # History

    def set_history(
        self,
        *,
        chats: Iterable[Mapping[str, Any]] = (),
        contacts: Iterable[Mapping[str, Any]] = (),
        messages: Iterable[WAMessage] = (),
    ) -> list[WAMessage]:
        self.upsert_chats(chats)
        self.upsert_contacts(contacts)
        return self.upsert_messages(messages)

    # Persistence

    def to_dict(self) -> dict[str, Any]:
        return {
            "chats": [asdict(c) for c in self.chats.values()],
            "contacts": [asdict(c) for c in self.contacts.values()],
            "groups": [asdict(g) for g in self.groups.values()],
            "messages": {jid: list(bucket.values()) for jid, bucket in self._messages.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LocalStore:
        store = cls()
        for raw in data.get("chats") or []:
            chat = ChatInfo(**raw)
            store.chats[chat.id] = chat
        for raw in data.get("contacts") or []:
            contact = ContactInfo(**raw)
            store.contacts[contact.id] = contact
        for raw in data.get("groups") or []:
            participants = [GroupParticipant(**p) for p in raw.get("participants") or []]
            group = GroupInfo(**{**raw, "participants": participants})
            store.groups[group.id] = group
        for messages in (data.get("messages") or {}).values():
            for msg in messages:
                store.upsert_message(msg)
        return store

    def dumps(self) -> str:
        return bufferjson.dumps(self.to_dict())

    async def save(self, path: Path) -> None:
        # Serialize on the loop so the snapshot is consistent; write off-loop.
        await write_text_atomic(path, self.dumps())

    @classmethod
    async def load(cls, path: Path) -> LocalStore:
        """
        Load a snapshot; a missing or malformed file yields an empty store.
        """

        if not path.exists():
            return cls()
        try:
            async with lock_for(path):
                raw = await read_text(path)
            data = bufferjson.loads(raw)
            if not isinstance(data, dict):
                raise TypeError("store snapshot did not contain an object")
            return cls.from_dict(data)
        except (OSError, ValueError, TypeError, KeyError) as e:
            logger.warning("failed to load store snapshot %s: %s", path, e)
            return cls()
