"""
Address normalization between the wrapper API and the protocol.

The wrapper API uses `1234567890@c.us` for users and `...@g.us` for groups;
the protocol uses `1234567890@s.whatsapp.net` for users. Group, broadcast and
LID addresses are identical on both sides. Bare phone numbers are accepted on
input and completed with the user suffix.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .constants import (
    BROADCAST_SERVER,
    GROUP_SERVER,
    LEGACY_USER_SERVER,
    STATUS_BROADCAST,
    USER_SERVER,
)

_DIGITS_RE = re.compile(r"^\d+$")
_NON_DIGITS_RE = re.compile(r"\D")
# `<true|false>_<remote>_<id>`
_FLAGGED_ID_RE = re.compile(r"^(true|false)_([^_]+)_(.+)$")
# `<remote>_<id>` where remote carries a server part
_CHAT_PREFIXED_ID_RE = re.compile(r"^([^_@]+@[^_]+)_(.+)$")


@dataclass(frozen=True, slots=True)
class SerializedId:
    serialized: str
    user: str
    server: str

    def to_dict(self) -> dict[str, str]:
        return {"_serialized": self.serialized, "user": self.user, "server": self.server}


@dataclass(frozen=True, slots=True)
class ParsedMessageId:
    id: str
    remote_jid: str
    from_me: bool | None = None


def jid_split(jid: str | None) -> tuple[str, str]:
    if not jid:
        return "", ""
    user, sep, server = jid.partition("@")
    return user, server if sep else ""


def to_protocol_jid(jid: str) -> str:
    """Map any accepted address form to the protocol convention."""

    if not jid:
        return jid
    if jid.endswith("@" + LEGACY_USER_SERVER):
        return jid[: -len(LEGACY_USER_SERVER)] + USER_SERVER
    if _DIGITS_RE.match(jid):
        return f"{jid}@{USER_SERVER}"
    return jid


def to_legacy_jid(jid: str) -> str:
    """Map any accepted address form to the wrapper API convention."""

    if not jid:
        return jid
    if jid.endswith("@" + USER_SERVER):
        return jid[: -len(USER_SERVER)] + LEGACY_USER_SERVER
    if _DIGITS_RE.match(jid):
        return f"{jid}@{LEGACY_USER_SERVER}"
    return jid


def phone_number(jid: str | None) -> str:
    user, _ = jid_split(jid)
    # Drop a device suffix (`123:4@s.whatsapp.net`).
    return user.split(":", 1)[0]


def digits_only(value: str) -> str:
    return _NON_DIGITS_RE.sub("", value or "")


def is_group_jid(jid: str | None) -> bool:
    return bool(jid) and jid.endswith("@" + GROUP_SERVER)


def is_broadcast_jid(jid: str | None) -> bool:
    return bool(jid) and jid.endswith("@" + BROADCAST_SERVER)


def is_status_broadcast(jid: str | None) -> bool:
    return jid == STATUS_BROADCAST


def user_jid(jid: str | None) -> str:
    """Protocol user JID without the device part."""

    if not jid:
        return ""
    user, server = jid_split(to_protocol_jid(jid))
    if not server:
        return jid
    return f"{user.split(':', 1)[0]}@{server}"


def same_user(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    if a == b or user_jid(a) == user_jid(b):
        return True
    na, nb = phone_number(a), phone_number(b)
    return bool(na) and na == nb


def create_serialized_id(jid: str) -> SerializedId:
    legacy = to_legacy_jid(jid)
    user, server = jid_split(legacy)
    return SerializedId(serialized=legacy, user=user, server=server)


def serialize_message_id(message_id: str, remote_jid: str, from_me: bool) -> str:
    """The wrapper API's composite message id: `<fromMe>_<legacy remote>_<id>`."""

    return f"{bool_flag(from_me)}_{to_legacy_jid(remote_jid)}_{message_id}"


def create_message_id(message_id: str, remote_jid: str, from_me: bool) -> dict[str, object]:
    legacy = to_legacy_jid(remote_jid)
    return {
        "_serialized": serialize_message_id(message_id, remote_jid, from_me),
        "fromMe": from_me,
        "remote": legacy,
        "id": message_id,
    }


def parse_message_id(value: str) -> ParsedMessageId | None:
    """
    Decompose a composite message id.

    Accepts `<true|false>_<remote>_<id>` and `<remote>_<id>`; returns None for
    anything else (including plain protocol ids).
    """

    if not value:
        return None
    m = _FLAGGED_ID_RE.match(value)
    if m:
        return ParsedMessageId(id=m.group(3), remote_jid=m.group(2), from_me=m.group(1) == "true")
    m = _CHAT_PREFIXED_ID_RE.match(value)
    if m:
        return ParsedMessageId(id=m.group(2), remote_jid=m.group(1))
    return None


def bool_flag(value: bool) -> str:
    return "true" if value else "false"
