"""
Inbound stanzas pyaileys leaves untranslated.

Receipts, `w:gp2` group notifications, call offers and app-state mutations
arrive from pyaileys as raw `BinaryNode`s (or decoded `SyncActionValue`
protos). The parsers here turn them into the Baileys-style event payloads the
gateway consumes; each returns a list of `(event, payload)` pairs.
"""

from __future__ import annotations

from collections.abc import Collection
from typing import Any

from pyaileys.wabinary.types import BinaryNode

from .iq import G_US, get_child, get_children, node_text, parse_group
from .jid import is_group_jid, is_status_broadcast, same_user

Event = tuple[str, Any]

# Receipt `type` -> WebMessageInfo.Status name. A receipt without a type is a
# delivery receipt; any type not listed (retry, hist_sync, ...) is no status.
_RECEIPT_STATUS = {
    None: "DELIVERY_ACK",
    "sender": "SERVER_ACK",
    "read": "READ",
    "read-self": "READ",
    "played": "PLAYED",
    "played-self": "PLAYED",
}

_PARTICIPANT_ACTIONS = {
    "add": "add",
    "remove": "remove",
    "leave": "remove",
    "promote": "promote",
    "demote": "demote",
}

_CALL_STATUS = {
    "offer": "offer",
    "offer_notice": "offer",
    "accept": "accept",
    "reject": "reject",
    "terminate": "terminate",
}


def parse_receipt(node: BinaryNode, own_jids: Collection[str]) -> list[Event]:
    """A `<receipt>` -> one `messages.update` carrying the new status of each id."""

    attrs = node.attrs
    chat = attrs.get("from") or ""
    rtype = attrs.get("type")
    if not chat or rtype not in _RECEIPT_STATUS:
        return []

    sender = attrs.get("participant") or chat
    from_own_device = any(same_user(sender, own) for own in own_jids)
    remote_jid = chat
    if from_own_device and not is_group_jid(chat):
        remote_jid = attrs.get("recipient") or chat
    # Group and status receipts are per participant; they never change the message status.
    if is_group_jid(remote_jid) or is_status_broadcast(remote_jid):
        return []

    items = get_children(get_child(node, "list"), "item")
    ids = [attrs.get("id")] + [i.attrs.get("id") for i in items]
    key = {"remoteJid": remote_jid, "fromMe": not attrs.get("recipient")}
    status = _RECEIPT_STATUS[rtype]
    updates = [
        {"key": {**key, "id": mid}, "update": {"status": status}} for mid in dict.fromkeys(ids) if mid
    ]
    return [("messages.update", updates)] if updates else []


def parse_group_notification(node: BinaryNode) -> list[Event]:
    """A `<notification type="w:gp2">` -> group upserts, updates or participant changes."""

    group = node.attrs.get("from") or ""
    if not group.endswith(G_US):
        return []
    author = node.attrs.get("participant")

    events: list[Event] = []

    def changed(**fields: Any) -> None:
        events.append(("groups.update", [{"id": group, "author": author, **fields}]))

    for child in node.content if isinstance(node.content, list) else []:
        if not isinstance(child, BinaryNode):
            continue
        tag = child.tag
        if tag == "create":
            meta = parse_group(child)
            if author:
                meta.setdefault("author", author)
            events.append(("groups.upsert", [meta]))
        elif tag in _PARTICIPANT_ACTIONS:
            participants = [
                p.attrs["jid"] for p in get_children(child, "participant") if p.attrs.get("jid")
            ]
            if participants:
                events.append(
                    (
                        "group-participants.update",
                        {
                            "id": group,
                            "author": author,
                            "participants": participants,
                            "action": _PARTICIPANT_ACTIONS[tag],
                        },
                    )
                )
        elif tag == "subject":
            changed(subject=child.attrs.get("subject") or "")
        elif tag == "description":
            desc = node_text(get_child(child, "body")) or ""
            if child.attrs.get("id"):
                changed(desc=desc, descId=child.attrs["id"])
            else:
                changed(desc=desc)
        elif tag in ("announcement", "not_announcement"):
            changed(announce=tag == "announcement")
        elif tag in ("locked", "unlocked"):
            changed(restrict=tag == "locked")
        elif tag in ("ephemeral", "not_ephemeral"):
            expiration = child.attrs.get("expiration") or "0"
            duration = int(expiration) if tag == "ephemeral" and expiration.isdigit() else 0
            changed(ephemeralDuration=duration)
    return events


def parse_call(node: BinaryNode) -> list[Event]:
    """A `<call>` stanza -> one `call` event for its offer/accept/reject/terminate child."""

    content = node.content if isinstance(node.content, list) else []
    info = next((c for c in content if isinstance(c, BinaryNode)), None)
    if info is None or info.tag not in _CALL_STATUS:
        return []

    chat = node.attrs.get("from") or ""
    status = _CALL_STATUS[info.tag]
    if info.tag == "terminate" and info.attrs.get("reason") == "timeout":
        status = "timeout"
    call = {
        "id": info.attrs.get("call-id") or "",
        "from": info.attrs.get("call-creator") or chat,
        "chatId": chat,
        "date": int(node.attrs.get("t") or 0),
        "isVideo": get_child(info, "video") is not None,
        "isGroup": info.attrs.get("type") == "group" or bool(info.attrs.get("group-jid")),
        "status": status,
    }
    if info.attrs.get("group-jid"):
        call["groupJid"] = info.attrs["group-jid"]
    return [("call", [call])]


def parse_mutation(index: list[str], action: Any) -> list[Event]:
    """One decoded app-state mutation -> chat, contact or message events."""

    if action is None or len(index) < 2 or "@" not in (index[1] or ""):
        return []
    jid = index[1]

    def has(name: str) -> bool:
        return action.HasField(name)

    if has("archiveChatAction"):
        archived = bool(action.archiveChatAction.archived)
        return [("chats.update", [{"id": jid, "archived": archived}])]
    if has("markChatAsReadAction"):
        unread = 0 if action.markChatAsReadAction.read else -1
        return [("chats.update", [{"id": jid, "unreadCount": unread}])]
    if has("muteAction"):
        mute = action.muteAction
        end = int(mute.muteEndTimestamp or 0) if mute.muted else None
        return [("chats.update", [{"id": jid, "muteEndTime": end}])]
    if has("pinAction"):
        pinned = int(action.timestamp or 0) if action.pinAction.pinned else None
        return [("chats.update", [{"id": jid, "pinned": pinned}])]
    if has("deleteChatAction"):
        return [("chats.delete", [jid])]
    if has("contactAction"):
        contact = action.contactAction
        name = contact.fullName or contact.firstName or None
        return [("contacts.update", [{"id": jid, "name": name}])]
    if has("starAction") and len(index) >= 4:
        key: dict[str, Any] = {"remoteJid": jid, "id": index[2], "fromMe": index[3] == "1"}
        if len(index) >= 5 and index[4] not in ("", "0"):
            key["participant"] = index[4]
        starred = bool(action.starAction.starred)
        return [("messages.update", [{"key": key, "update": {"starred": starred}}])]
    return []
