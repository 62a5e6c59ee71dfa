"""
IQ stanzas for the group, blocklist and contact-lookup operations pyaileys
does not wrap itself.

Builders return the `BinaryNode` to pass to `socket.query()`; parsers take
the response node and return the Baileys-shaped dicts the gateway expects.
`stanza_ack` builds the delivery ack for stanzas pyaileys does not ack.
"""

from __future__ import annotations

import secrets
from collections.abc import Sequence
from typing import Any

from pyaileys.wabinary.jid import S_WHATSAPP_NET, jid_encode, jid_normalized_user
from pyaileys.wabinary.types import BinaryNode

from .exceptions import QueryError

G_US = "@g.us"


def get_child(node: BinaryNode | None, tag: str) -> BinaryNode | None:
    if not node or not isinstance(node.content, list):
        return None
    for c in node.content:
        if isinstance(c, BinaryNode) and c.tag == tag:
            return c
    return None


def get_children(node: BinaryNode | None, tag: str) -> list[BinaryNode]:
    if not node or not isinstance(node.content, list):
        return []
    return [c for c in node.content if isinstance(c, BinaryNode) and c.tag == tag]


def node_text(node: BinaryNode | None) -> str | None:
    if node is None:
        return None
    if isinstance(node.content, bytes):
        return node.content.decode("utf-8", errors="replace")
    if isinstance(node.content, str):
        return node.content
    return None


def message_id() -> str:
    return "3EB0" + secrets.token_hex(8).upper()


def raise_for_error(node: BinaryNode) -> None:
    if node.attrs.get("type") != "error":
        return
    err = get_child(node, "error")
    raw = (err.attrs.get("code") or "") if err else ""
    code = int(raw) if raw.isdigit() else 500
    text = err.attrs.get("text") if err else None
    raise QueryError(code, text or "server returned an error")


# Groups


def group_query(jid: str, type_: str, content: list[BinaryNode]) -> BinaryNode:
    return BinaryNode(tag="iq", attrs={"type": type_, "xmlns": "w:g2", "to": jid}, content=content)


def _participants(jids: Sequence[str]) -> list[BinaryNode]:
    return [BinaryNode(tag="participant", attrs={"jid": j}) for j in jids]


def create_group(subject: str, participants: Sequence[str]) -> BinaryNode:
    return group_query(
        G_US,
        "set",
        [
            BinaryNode(
                tag="create",
                attrs={"subject": subject, "key": message_id()},
                content=_participants(participants),
            )
        ],
    )


def update_participants(jid: str, participants: Sequence[str], action: str) -> BinaryNode:
    return group_query(jid, "set", [BinaryNode(tag=action, attrs={}, content=_participants(participants))])


def update_subject(jid: str, subject: str) -> BinaryNode:
    return group_query(jid, "set", [BinaryNode(tag="subject", attrs={}, content=subject.encode("utf-8"))])


def update_description(jid: str, description: str, prev_id: str | None) -> BinaryNode:
    attrs = {"id": message_id()} if description else {"delete": "true"}
    if prev_id:
        attrs["prev"] = prev_id
    body = [BinaryNode(tag="body", attrs={}, content=description.encode("utf-8"))] if description else None
    return group_query(jid, "set", [BinaryNode(tag="description", attrs=attrs, content=body)])


def setting(jid: str, value: str) -> BinaryNode:
    return group_query(jid, "set", [BinaryNode(tag=value, attrs={})])


def leave(jid: str) -> BinaryNode:
    return group_query(
        G_US, "set", [BinaryNode(tag="leave", attrs={}, content=[BinaryNode(tag="group", attrs={"id": jid})])]
    )


def metadata(jid: str) -> BinaryNode:
    return group_query(jid, "get", [BinaryNode(tag="query", attrs={"request": "interactive"})])


def participating() -> BinaryNode:
    return group_query(
        G_US,
        "get",
        [
            BinaryNode(
                tag="participating",
                attrs={},
                content=[BinaryNode(tag="participants", attrs={}), BinaryNode(tag="description", attrs={})],
            )
        ],
    )


def invite_code(jid: str, *, revoke: bool = False) -> BinaryNode:
    return group_query(jid, "set" if revoke else "get", [BinaryNode(tag="invite", attrs={})])


def accept_invite(code: str) -> BinaryNode:
    return group_query(G_US, "set", [BinaryNode(tag="invite", attrs={"code": code})])


def parse_group(node: BinaryNode) -> dict[str, Any]:
    """A `<group>` node (or a response wrapping one) -> group metadata dict."""

    group = node if node.tag == "group" else get_child(node, "group")
    if group is None:
        raise ValueError("response has no <group/> node")

    gid = group.attrs.get("id") or ""
    if gid and "@" not in gid:
        gid = jid_encode(gid, "g.us")

    out: dict[str, Any] = {
        "id": gid,
        "subject": group.attrs.get("subject") or "",
        "creation": int(group.attrs.get("creation") or 0),
        "restrict": get_child(group, "locked") is not None,
        "announce": get_child(group, "announcement") is not None,
        "participants": [
            {"id": p.attrs["jid"], "admin": p.attrs.get("type") or None}
            for p in get_children(group, "participant")
            if p.attrs.get("jid")
        ],
    }
    if group.attrs.get("creator"):
        out["owner"] = jid_normalized_user(group.attrs["creator"]) or group.attrs["creator"]
    if group.attrs.get("addressing_mode"):
        out["addressingMode"] = group.attrs["addressing_mode"]

    desc = get_child(group, "description")
    if desc is not None:
        out["desc"] = node_text(get_child(desc, "body")) or ""
        if desc.attrs.get("id"):
            out["descId"] = desc.attrs["id"]
        if desc.attrs.get("participant"):
            out["descOwner"] = desc.attrs["participant"]

    eph = get_child(group, "ephemeral")
    if eph is not None and (eph.attrs.get("expiration") or "").isdigit():
        out["ephemeralDuration"] = int(eph.attrs["expiration"])
    return out


def parse_participating(node: BinaryNode) -> dict[str, dict[str, Any]]:
    groups = get_child(node, "groups")
    out: dict[str, dict[str, Any]] = {}
    for g in get_children(groups, "group"):
        meta = parse_group(g)
        out[meta["id"]] = meta
    return out


def parse_participants_update(node: BinaryNode, action: str) -> list[dict[str, Any]]:
    return [
        {"jid": p.attrs.get("jid") or "", "status": p.attrs.get("error") or "200"}
        for p in get_children(get_child(node, action), "participant")
    ]


def parse_invite_code(node: BinaryNode) -> str | None:
    invite = get_child(node, "invite")
    return invite.attrs.get("code") if invite else None


def parse_accepted_group(node: BinaryNode) -> str | None:
    group = get_child(node, "group")
    return group.attrs.get("jid") if group else None


# Blocklist


def blocklist() -> BinaryNode:
    return BinaryNode(tag="iq", attrs={"xmlns": "blocklist", "to": S_WHATSAPP_NET, "type": "get"})


def block_status(jid: str, action: str) -> BinaryNode:
    return BinaryNode(
        tag="iq",
        attrs={"xmlns": "blocklist", "to": S_WHATSAPP_NET, "type": "set"},
        content=[BinaryNode(tag="item", attrs={"action": action, "jid": jid})],
    )


def parse_blocklist(node: BinaryNode) -> list[str]:
    return [i.attrs["jid"] for i in get_children(get_child(node, "list"), "item") if i.attrs.get("jid")]


# Contact lookup


def contact_usync(numbers: Sequence[str]) -> BinaryNode:
    """USync query asking whether each phone number has an account."""

    users = [
        BinaryNode(
            tag="user",
            attrs={},
            content=[BinaryNode(tag="contact", attrs={}, content=n if n.startswith("+") else f"+{n}")],
        )
        for n in dict.fromkeys(numbers)
        if n
    ]
    return BinaryNode(
        tag="iq",
        attrs={"to": S_WHATSAPP_NET, "type": "get", "xmlns": "usync"},
        content=[
            BinaryNode(
                tag="usync",
                attrs={
                    "context": "interactive",
                    "mode": "query",
                    "sid": message_id(),
                    "last": "true",
                    "index": "0",
                },
                content=[
                    BinaryNode(tag="query", attrs={}, content=[BinaryNode(tag="contact", attrs={})]),
                    BinaryNode(tag="list", attrs={}, content=users),
                ],
            )
        ],
    )


def parse_contact_usync(node: BinaryNode) -> list[dict[str, Any]]:
    users = get_children(get_child(get_child(node, "usync"), "list"), "user")
    out: list[dict[str, Any]] = []
    for u in users:
        jid = u.attrs.get("jid")
        if not jid:
            continue
        contact = get_child(u, "contact")
        out.append({"jid": jid, "exists": bool(contact and contact.attrs.get("type") == "in")})
    return out


# Acks


def stanza_ack(stanza: BinaryNode) -> BinaryNode | None:
    """The `<ack>` confirming delivery of `stanza`, or None when it has no id to ack."""

    msg_id = stanza.attrs.get("id")
    to = stanza.attrs.get("from")
    if not msg_id or not to:
        return None
    attrs = {"id": msg_id, "to": to, "class": stanza.tag}
    for name in ("participant", "recipient", "type"):
        if stanza.attrs.get(name):
            attrs[name] = stanza.attrs[name]
    return BinaryNode(tag="ack", attrs=attrs)
