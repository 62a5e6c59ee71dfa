"""
API-shaped records built from protocol data.

Everything here is pure: the caller passes the store pieces and the own
account id it wants reflected in the output.
"""

from __future__ import annotations

import time
from collections.abc import Collection, Mapping
from typing import Any

from .constants import (
    PROTOCOL_REVOKE,
    STATUS_BROADCAST,
    STATUS_DELIVERY_ACK,
    STATUS_ERROR,
    STATUS_PENDING,
    STATUS_PLAYED,
    STATUS_READ,
    STATUS_SERVER_ACK,
)
from .jid import (
    create_message_id,
    create_serialized_id,
    is_broadcast_jid,
    is_group_jid,
    phone_number,
    to_legacy_jid,
)
from .socket import WAMessage
from .store import ChatInfo, ContactInfo, GroupInfo
from .util.timestamps import to_timestamp

_ACK_BY_STATUS = {
    STATUS_ERROR: -1,
    STATUS_PENDING: 0,
    STATUS_SERVER_ACK: 1,
    STATUS_DELIVERY_ACK: 2,
    STATUS_READ: 3,
    STATUS_PLAYED: 4,
}

# protobuf JSON renders enums by name unless integers were requested
_STATUS_BY_NAME = {
    "ERROR": STATUS_ERROR,
    "PENDING": STATUS_PENDING,
    "SERVER_ACK": STATUS_SERVER_ACK,
    "DELIVERY_ACK": STATUS_DELIVERY_ACK,
    "READ": STATUS_READ,
    "PLAYED": STATUS_PLAYED,
}

_POLL_FIELDS = ("pollCreationMessage", "pollCreationMessageV2", "pollCreationMessageV3")
_CONTEXT_FIELDS = (
    "extendedTextMessage",
    "imageMessage",
    "videoMessage",
    "documentMessage",
    "audioMessage",
)


def map_status_to_ack(status: Any) -> int:
    if isinstance(status, str):
        status = _STATUS_BY_NAME.get(status.upper(), status)
    if isinstance(status, bool) or not isinstance(status, int):
        return 0
    return _ACK_BY_STATUS.get(status, 0)


def _is_revoke(message: Mapping[str, Any]) -> bool:
    proto = message.get("protocolMessage")
    if not isinstance(proto, Mapping):
        return False
    kind = proto.get("type", PROTOCOL_REVOKE)
    return kind == PROTOCOL_REVOKE or kind == "REVOKE"


def classify_message(message: Mapping[str, Any]) -> tuple[str, str, bool]:
    """Return `(type, body, has_media)` for a protobuf-JSON `Message`."""

    if message.get("conversation"):
        return "chat", str(message["conversation"]), False
    if (ext := message.get("extendedTextMessage")) is not None:
        return "chat", str(ext.get("text") or ""), False
    if (img := message.get("imageMessage")) is not None:
        return "image", str(img.get("caption") or ""), True
    if (vid := message.get("videoMessage")) is not None:
        return "video", str(vid.get("caption") or ""), True
    if (aud := message.get("audioMessage")) is not None:
        return ("ptt" if aud.get("ptt") else "audio"), "", True
    if (doc := message.get("documentMessage")) is not None:
        return "document", str(doc.get("fileName") or ""), True
    if message.get("stickerMessage") is not None:
        return "sticker", "", True
    if (card := message.get("contactMessage")) is not None:
        return "vcard", str(card.get("vcard") or ""), False
    if message.get("contactsArrayMessage") is not None:
        return "multi_vcard", "", False
    if message.get("locationMessage") is not None:
        return "location", "", False
    if message.get("liveLocationMessage") is not None:
        return "live_location", "", False
    for name in _POLL_FIELDS:
        if (poll := message.get(name)) is not None:
            return "poll", str(poll.get("name") or ""), False
    if (reaction := message.get("reactionMessage")) is not None:
        return "reaction", str(reaction.get("text") or ""), False
    if _is_revoke(message):
        return "revoked", "", False
    return "chat", "", False


def context_info(message: Mapping[str, Any]) -> Mapping[str, Any]:
    for name in _CONTEXT_FIELDS:
        inner = message.get(name)
        if isinstance(inner, Mapping) and isinstance(inner.get("contextInfo"), Mapping):
            return inner["contextInfo"]
    return {}


def format_message(msg: WAMessage, own_jid: str | None = None) -> dict[str, Any]:
    key = msg.get("key") or {}
    message = msg.get("message") or {}

    msg_type, body, has_media = classify_message(message)

    ctx = context_info(message)
    links: list[dict[str, Any]] = []
    matched = (message.get("extendedTextMessage") or {}).get("matchedText")
    if matched:
        links.append({"link": matched, "isSuspicious": False})

    remote_jid = key.get("remoteJid") or ""
    from_me = bool(key.get("fromMe"))
    participant = key.get("participant") or key.get("participantAlt")

    if from_me:
        from_jid, to_jid = own_jid or remote_jid, remote_jid
    else:
        from_jid, to_jid = participant or remote_jid, own_jid or remote_jid

    return {
        "id": create_message_id(key.get("id") or "", remote_jid, from_me),
        "body": body,
        "type": msg_type,
        "timestamp": to_timestamp(msg.get("messageTimestamp")) or int(time.time()),
        "from": to_legacy_jid(from_jid),
        "to": to_legacy_jid(to_jid),
        "author": to_legacy_jid(participant) if participant else None,
        "isForwarded": bool(ctx.get("isForwarded")),
        "forwardingScore": int(ctx.get("forwardingScore") or 0),
        "isStatus": remote_jid == STATUS_BROADCAST,
        "isStarred": bool(msg.get("starred")),
        "broadcast": is_broadcast_jid(remote_jid),
        "fromMe": from_me,
        "hasQuotedMsg": bool(ctx.get("quotedMessage")),
        "hasMedia": has_media,
        "hasReaction": bool(msg.get("reactions")),
        "ack": map_status_to_ack(msg.get("status")),
        "mentionedIds": [to_legacy_jid(j) for j in ctx.get("mentionedJid") or []],
        "groupMentions": [],
        "links": links,
        "_data": msg,
    }


def chat_timestamp(
    chat: ChatInfo | None,
    group: GroupInfo | None,
    last_message: Mapping[str, Any] | None,
) -> int:
    return (
        (chat.conversation_timestamp if chat else 0)
        or (group.creation if group else 0)
        or (last_message or {}).get("timestamp")
        or 0
    )


def format_chat(
    jid: str,
    *,
    chat: ChatInfo | None = None,
    group: GroupInfo | None = None,
    contact: ContactInfo | None = None,
    last_message: dict[str, Any] | None = None,
    now: int | None = None,
) -> dict[str, Any]:
    name = (
        (group.subject if group else None)
        or (chat.name if chat else None)
        or (contact.name if contact else None)
        or (contact.notify if contact else None)
        or phone_number(jid)
    )
    mute = (chat.mute_end_time or 0) if chat else 0
    now = int(time.time()) if now is None else now

    return {
        "id": create_serialized_id(jid).to_dict(),
        "name": name,
        "isGroup": is_group_jid(jid),
        "isReadOnly": bool(group.announce) if group else False,
        "unreadCount": chat.unread_count if chat else 0,
        "timestamp": chat_timestamp(chat, group, last_message),
        "archived": bool(chat.archived) if chat else False,
        "pinned": bool(chat.pinned) if chat else False,
        "isMuted": mute > now,
        "muteExpiration": mute if mute > 0 else None,
        "lastMessage": last_message,
    }


def format_contact(
    jid: str, contact: ContactInfo | None = None, blocked: Collection[str] = ()
) -> dict[str, Any]:
    number = phone_number(jid)
    name = (contact and (contact.name or contact.notify or contact.verified_name)) or number
    return {
        "id": create_serialized_id(jid).to_dict(),
        "number": number,
        "name": name,
        "shortName": name,
        "pushname": (contact.notify if contact else None) or name,
        "isUser": not is_group_jid(jid),
        "isGroup": is_group_jid(jid),
        "isWAContact": True,
        "isMyContact": bool(contact and contact.name),
        "isBlocked": jid in blocked,
    }


def format_group_metadata(group: GroupInfo) -> dict[str, Any]:
    return {
        "id": create_serialized_id(group.id).to_dict(),
        "subject": group.subject,
        "owner": create_serialized_id(group.owner).to_dict() if group.owner else None,
        "creation": group.creation,
        "desc": group.desc,
        "descId": group.desc_id,
        "announce": group.announce,
        "restrict": group.restrict,
        "size": group.size if group.size is not None else len(group.participants),
        "participants": [
            {
                "id": create_serialized_id(p.id).to_dict(),
                "isAdmin": p.is_admin,
                "isSuperAdmin": p.is_super_admin,
            }
            for p in group.participants
        ],
    }
