"""
`GatewaySocket` on top of a pyaileys `WhatsAppClient`.

pyaileys speaks its own event vocabulary (`message.decrypted`,
`history.sync`, raw `cb:` stanza callbacks) and hands out protobuf objects.
Receipts, group notifications, calls and app-state mutations are parsed by
`stanzas` into the Baileys events the gateway consumes.
`PyaileysSocket` translates both directions: protobuf messages become the
Baileys-style JSON dicts the gateway stores, and outbound content dicts are
parsed back into `proto.Message` before being relayed.

pyaileys is a subset of Baileys. Group administration, the blocklist and
number lookup are sent as raw IQ queries (see `iq`); the remaining gaps
(app-state chat modifications, stars, pairing codes) raise
`UnsupportedOperationError`, which the gateway treats as a soft failure where
it can.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import secrets
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Literal

from google.protobuf import json_format
from pyaileys import WhatsAppClient
from pyaileys.socket import DEF_CB_PREFIX
from pyaileys.store import MessageInfo
from pyaileys.wabinary.jid import S_WHATSAPP_NET, jid_normalized_user
from pyaileys.wabinary.types import BinaryNode

from . import iq, stanzas
from .exceptions import UnsupportedOperationError
from .jid import is_group_jid
from .socket import (
    AccountIdentity,
    ConnectionUpdate,
    DisconnectReason,
    GroupSetting,
    MessageContent,
    ParticipantAction,
    PresenceState,
    SaveCreds,
    WAMessage,
)
from .util.asyncio import cancel_suppress, ensure_task
from .util.events import EventBus

logger = logging.getLogger(__name__)

HISTORY_MESSAGES_PER_CHAT = 500
SEND_TIMEOUT_S = 15.0
QUERY_TIMEOUT_S = 30.0
# SyncdMutation operation; REMOVE (1) undoes an index and carries no action to report.
MUTATION_SET = 0

# Messages that only carry protocol plumbing and never reach a chat.
_PLUMBING_KEYS = frozenset({"senderKeyDistributionMessage", "messageContextInfo"})


def _proto():
    # Import lazily; the generated WAProto module is large.
    from pyaileys.proto import WAProto_pb2 as proto

    return proto


def message_to_dict(message: Any) -> dict[str, Any]:
    return json_format.MessageToDict(message, preserving_proto_field_name=True)


def dict_to_message(data: Mapping[str, Any]) -> Any:
    return json_format.ParseDict(dict(data), _proto().Message(), ignore_unknown_fields=True)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _status_code(stanza: BinaryNode) -> int:
    raw = stanza.attrs.get("code")
    if raw and raw.isdigit():
        return int(raw)
    if isinstance(stanza.content, list):
        for child in stanza.content:
            if isinstance(child, BinaryNode) and child.tag == "conflict":
                return DisconnectReason.CONNECTION_REPLACED
    return DisconnectReason.CONNECTION_CLOSED


def _context_info(
    quoted: WAMessage | None, mentions: Sequence[str] | None, own_jid: str | None
) -> dict[str, Any]:
    ctx: dict[str, Any] = {}
    if mentions:
        ctx["mentionedJid"] = list(mentions)
    if quoted and (quoted.get("key") or {}).get("id"):
        key = quoted["key"]
        participant = key.get("participant") or (own_jid if key.get("fromMe") else key.get("remoteJid"))
        ctx["stanzaId"] = key["id"]
        if participant:
            ctx["participant"] = participant
        ctx["quotedMessage"] = {
            k: v for k, v in (quoted.get("message") or {}).items() if k != "messageContextInfo"
        }
    return ctx


def _forwarded(source: WAMessage) -> dict[str, Any]:
    message = copy.deepcopy(source.get("message") or {})
    message.pop("messageContextInfo", None)
    if "conversation" in message:
        message = {"extendedTextMessage": {"text": message.pop("conversation")}}
    for inner in message.values():
        if isinstance(inner, dict):
            ctx = inner.setdefault("contextInfo", {})
            ctx["isForwarded"] = True
            ctx["forwardingScore"] = int(ctx.get("forwardingScore") or 0) + 1
            break
    return message


def build_message(
    content: Mapping[str, Any], *, quoted: WAMessage | None = None, own_jid: str | None = None
) -> tuple[dict[str, Any], str, str | None]:
    """
    Content dict -> `(message json, stanza type, mediatype attr)`.

    Covers every non-upload content kind. Media uploads go through the
    client's own send helpers instead.
    """

    if "react" in content:
        react = content["react"]
        return (
            {
                "reactionMessage": {
                    "key": react["key"],
                    "text": react.get("text") or "",
                    "senderTimestampMs": _now_ms(),
                }
            },
            "reaction",
            None,
        )
    if "delete" in content:
        return {"protocolMessage": {"key": content["delete"], "type": "REVOKE"}}, "text", None
    if "edit" in content:
        return (
            {
                "protocolMessage": {
                    "key": content["edit"],
                    "type": "MESSAGE_EDIT",
                    "editedMessage": {"conversation": content.get("text") or ""},
                    "timestampMs": _now_ms(),
                }
            },
            "text",
            None,
        )
    if "pin" in content:
        message: dict[str, Any] = {
            "pinInChatMessage": {
                "key": content["pin"],
                "type": content.get("pin_type", 1),
                "senderTimestampMs": _now_ms(),
            }
        }
        if content.get("pin_time"):
            message["messageContextInfo"] = {"messageAddOnDurationInSecs": int(content["pin_time"])}
        return message, "text", None
    if "forward" in content:
        return _forwarded(content["forward"]), "text", None

    ctx = _context_info(quoted, content.get("mentions"), own_jid)
    stanza_type, mediatype = "text", None

    if "text" in content:
        preview = content.get("link_preview")
        if not ctx and not preview:
            return {"conversation": content["text"]}, "text", None
        inner: dict[str, Any] = {"text": content["text"]}
        if preview:
            inner.update(
                matchedText=preview.get("matched_text"),
                canonicalUrl=preview.get("canonical_url"),
                title=preview.get("title"),
                description=preview.get("description"),
            )
            inner = {k: v for k, v in inner.items() if v}
        message = {"extendedTextMessage": inner}
    elif "location" in content:
        loc = content["location"]
        message = {
            "locationMessage": {
                "degreesLatitude": float(loc["latitude"]),
                "degreesLongitude": float(loc["longitude"]),
                **({"name": loc["name"]} if loc.get("name") else {}),
            }
        }
        stanza_type, mediatype = "media", "location"
    elif "poll" in content:
        poll = content["poll"]
        message = {
            "pollCreationMessage": {
                "name": poll["name"],
                "options": [{"optionName": v} for v in poll["values"]],
                "selectableOptionsCount": int(poll.get("selectable_count") or 0),
            }
        }
        stanza_type = "poll"
    elif "contacts" in content:
        data = content["contacts"]
        cards = data.get("contacts") or []
        if len(cards) == 1:
            message = {
                "contactMessage": {"displayName": data.get("display_name") or "", "vcard": cards[0]["vcard"]}
            }
            mediatype = "vcard"
        else:
            message = {
                "contactsArrayMessage": {
                    "displayName": data.get("display_name") or "",
                    "contacts": [{"vcard": c["vcard"]} for c in cards],
                }
            }
            mediatype = "contact_array"
        stanza_type = "media"
    else:
        raise UnsupportedOperationError(f"unsupported message content: {sorted(content)}")

    if ctx:
        next(iter(message.values()))["contextInfo"] = ctx
    return message, stanza_type, mediatype


class GatewayClient(WhatsAppClient):
    """`WhatsAppClient` that also keeps every app-state mutation it applies."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.mutations: list[Any] = []

    def _apply_app_state_mutation(self, mutation: Any) -> None:
        super()._apply_app_state_mutation(mutation)
        self.mutations.append(mutation)

    def drain_mutations(self) -> list[Any]:
        out, self.mutations = self.mutations, []
        return out


class PyaileysSocket:
    """Adapts one `WhatsAppClient` to the gateway's socket contract."""

    def __init__(self, client: WhatsAppClient, *, session_id: str = "") -> None:
        self.client = client
        self.session_id = session_id
        self.events = EventBus(name=f"socket[{session_id}]")

        self._restarting = False
        self._close_code: int | None = None
        self._tasks: set[asyncio.Task[None]] = set()

        on = client.socket.events.on
        on("connection.update", self._on_connection_update)
        on(f"{DEF_CB_PREFIX}stream:error", self._on_stream_error)
        on("creds.update", self._on_creds_update)
        on("message.decrypted", self._on_message_decrypted)
        on("history.sync", self._on_history_sync)
        on("stanza.receipt", self._on_receipt)
        on("stanza.call", self._on_call)
        on(f"{DEF_CB_PREFIX}notification,type:w:gp2", self._on_group_notification)
        on(f"{DEF_CB_PREFIX}notification,type:server_sync", self._on_server_sync)
        on("app_state.keys", self._on_app_state_keys)
        on("app_state.sync", self._on_app_state_sync)

    # Identity

    @property
    def user(self) -> AccountIdentity | None:
        me = self.client.socket.auth.creds.me
        if not me or not me.id:
            return None
        return AccountIdentity(id=jid_normalized_user(me.id) or me.id, name=me.name, lid=me.lid)

    def _own_jids(self) -> set[str]:
        me = self.client.socket.auth.creds.me
        if not me:
            return set()
        return {jid_normalized_user(j) for j in (me.id, me.lid) if j}

    # Event translation

    async def _on_stream_error(self, stanza: BinaryNode) -> None:
        code = _status_code(stanza)
        if code == DisconnectReason.RESTART_REQUIRED:
            # pyaileys closes and reconnects by itself; that close is not a
            # disconnect from the gateway's point of view.
            self._restarting = True
            return
        self._close_code = code

    async def _on_connection_update(self, update: Any) -> None:
        if update.qr:
            await self.events.emit("connection.update", ConnectionUpdate(qr=update.qr))

        if update.connection == "connecting":
            self._restarting = False
            self._close_code = None
            await self.events.emit("connection.update", ConnectionUpdate(connection="connecting"))
        elif update.connection == "open":
            self._restarting = False
            await self.events.emit(
                "connection.update",
                ConnectionUpdate(connection="open", is_new_login=update.is_new_login),
            )
        elif update.connection == "close":
            if self._restarting:
                logger.debug("session %s: swallowing close for server-requested restart", self.session_id)
                return
            code = self._close_code
            if code is None:
                code = (
                    DisconnectReason.CONNECTION_LOST
                    if update.last_disconnect is not None
                    else DisconnectReason.CONNECTION_CLOSED
                )
            await self.events.emit(
                "connection.update",
                ConnectionUpdate(connection="close", status_code=int(code), error=update.last_disconnect),
            )

    async def _on_creds_update(self, creds: Any) -> None:
        await self.events.emit("creds.update", creds)

    async def _on_message_decrypted(self, payload: Mapping[str, Any]) -> None:
        message = message_to_dict(payload["message"])
        if not set(message) - _PLUMBING_KEYS:
            return

        chat_jid = payload.get("chat_jid") or ""
        sender = payload.get("sender_jid")
        from_me = bool(sender) and jid_normalized_user(sender) in self._own_jids()
        key: dict[str, Any] = {"remoteJid": chat_jid, "id": payload.get("id") or "", "fromMe": from_me}
        if sender and is_group_jid(chat_jid):
            key["participant"] = jid_normalized_user(sender) or sender

        msg: WAMessage = {
            "key": key,
            "message": message,
            "messageTimestamp": int(payload.get("timestamp_s") or 0),
        }
        if sender and not from_me:
            contact = self.client.get_contact(sender)
            if contact is not None and contact.notify:
                msg["pushName"] = contact.notify

        await self.events.emit("messages.upsert", {"messages": [msg], "type": "notify"})

        reaction = message.get("reactionMessage")
        if reaction and reaction.get("key"):
            await self.events.emit(
                "messages.reaction",
                [{"key": reaction["key"], "reaction": {"text": reaction.get("text") or "", "key": key}}],
            )

    def _info_to_message(self, info: MessageInfo) -> WAMessage | None:
        proto = _proto()
        raw = info.raw
        if isinstance(raw, proto.WebMessageInfo):
            return message_to_dict(raw)
        if raw is None:
            return None
        from_me = bool(info.sender_jid) and jid_normalized_user(info.sender_jid) in self._own_jids()
        key: dict[str, Any] = {"remoteJid": info.chat_jid, "id": info.id, "fromMe": from_me}
        if info.sender_jid and is_group_jid(info.chat_jid):
            key["participant"] = info.sender_jid
        return {"key": key, "message": message_to_dict(raw), "messageTimestamp": info.timestamp_s}

    async def _on_history_sync(self, summary: Mapping[str, Any]) -> None:
        store = self.client.store
        chats = [{"id": c.jid, "name": c.name} for c in store.list_chats()]
        contacts = [
            {
                "id": c.jid,
                "name": c.name,
                "notify": c.notify,
                "verifiedName": c.verified_name,
                "imgUrl": c.img_url,
                "status": c.status,
            }
            for c in store.list_contacts()
        ]
        messages: list[WAMessage] = []
        for chat in store.list_chats():
            for info in store.get_messages(chat.jid, limit=HISTORY_MESSAGES_PER_CHAT):
                msg = self._info_to_message(info)
                if msg is not None and (msg.get("key") or {}).get("id"):
                    messages.append(msg)

        logger.debug(
            "session %s: history sync type %s (%s%%), %d chats",
            self.session_id,
            summary.get("syncType"),
            summary.get("progress"),
            len(chats),
        )
        await self.events.emit(
            "messaging-history.set", {"chats": chats, "contacts": contacts, "messages": messages}
        )

    async def _emit_all(self, events: Sequence[stanzas.Event]) -> None:
        for event, payload in events:
            await self.events.emit(event, payload)

    async def _on_receipt(self, stanza: BinaryNode) -> None:
        await self._emit_all(stanzas.parse_receipt(stanza, self._own_jids()))

    async def _on_group_notification(self, stanza: BinaryNode) -> None:
        await self._emit_all(stanzas.parse_group_notification(stanza))

    async def _on_call(self, stanza: BinaryNode) -> None:
        # pyaileys acks messages, receipts and notifications but not calls.
        ack = iq.stanza_ack(stanza)
        if ack is not None:
            try:
                await self.client.socket.send_node(ack)
            except Exception as e:
                logger.debug("session %s: call ack failed: %s", self.session_id, e)
        await self._emit_all(stanzas.parse_call(stanza))

    def _resync(self, collections: list[str] | None) -> None:
        async def run() -> None:
            try:
                await self.client.resync_app_state(collections=collections)
            except Exception as e:
                logger.warning("session %s: app state sync failed: %s", self.session_id, e)

        task = ensure_task(run(), name=f"wagateway.app_state.{self.session_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _on_server_sync(self, stanza: BinaryNode) -> None:
        collections = iq.get_children(stanza, "collection")
        names = [c.attrs["name"] for c in collections if c.attrs.get("name")]
        if names:
            self._resync(names)

    async def _on_app_state_keys(self, _summary: Any) -> None:
        # New keys can unlock patches that failed to decrypt before.
        self._resync(None)

    async def _on_app_state_sync(self, _summary: Any) -> None:
        events: list[stanzas.Event] = []
        for mutation in self.client.drain_mutations():
            if mutation.operation != MUTATION_SET:
                continue
            events.extend(stanzas.parse_mutation(list(mutation.index), mutation.action_value))
        await self._emit_all(events)

    # Lifecycle

    async def connect(self) -> None:
        await self.client.connect()

    async def end(self) -> None:
        for task in list(self._tasks):
            await cancel_suppress(task)
        await self.client.disconnect()

    async def logout(self) -> None:
        me = self.client.socket.auth.creds.me
        if me and me.id:
            await self.client.socket.query(
                BinaryNode(
                    tag="iq",
                    attrs={"to": S_WHATSAPP_NET, "type": "set", "xmlns": "md"},
                    content=[
                        BinaryNode(
                            tag="remove-companion-device",
                            attrs={"jid": me.id, "reason": "user_initiated"},
                            content=None,
                        )
                    ],
                )
            )
        await self.client.disconnect()

    async def request_pairing_code(self, phone_number: str) -> str:
        raise UnsupportedOperationError("pairing codes are not supported by pyaileys; scan the QR code")

    # Messages

    async def _relay(self, jid: str, message: dict[str, Any], stanza_type: str, mediatype: str | None) -> str:
        msg = dict_to_message(message)
        if stanza_type != "reaction":
            msg.messageContextInfo.messageSecret = secrets.token_bytes(32)
        return await self.client._send_message(
            jid,
            msg,
            stanza_type=stanza_type,
            enc_extra_attrs={"mediatype": mediatype} if mediatype else None,
            fanout=True,
            include_phash=False,
            wait_ack=False,
            timeout_s=SEND_TIMEOUT_S,
        )

    async def _send_media(self, jid: str, content: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        mimetype = content.get("mimetype")
        caption = content.get("caption") or None
        if "image" in content:
            msg_id = await self.client.send_image(
                jid, content["image"], mimetype=mimetype or "image/jpeg", caption=caption
            )
            return msg_id, {"imageMessage": {"mimetype": mimetype, "caption": caption}}
        if "video" in content:
            gif = bool(content.get("gif_playback"))
            msg_id = await self.client.send_video(
                jid, content["video"], mimetype=mimetype or "video/mp4", caption=caption, gif_playback=gif
            )
            return msg_id, {"videoMessage": {"mimetype": mimetype, "caption": caption, "gifPlayback": gif}}
        if "audio" in content and content.get("ptt"):
            msg_id = await self.client.send_voice_note(
                jid, content["audio"], mimetype=mimetype or "audio/ogg; codecs=opus"
            )
            return msg_id, {"audioMessage": {"mimetype": mimetype, "ptt": True}}
        # pyaileys has no plain audio helper; non-voice audio goes out as a document.
        data = content["document"] if "document" in content else content["audio"]
        filename = content.get("file_name") or None
        msg_id = await self.client.send_document(
            jid, data, mimetype=mimetype or "application/octet-stream", filename=filename, caption=caption
        )
        return msg_id, {"documentMessage": {"mimetype": mimetype, "fileName": filename, "caption": caption}}

    async def send_message(
        self,
        jid: str,
        content: MessageContent,
        *,
        quoted: WAMessage | None = None,
    ) -> WAMessage | None:
        if any(k in content for k in ("image", "video", "audio", "document")):
            if quoted is not None or content.get("mentions"):
                logger.debug("session %s: quotes and mentions are not attached to media", self.session_id)
            msg_id, message = await self._send_media(jid, content)
            message = {k: {f: v for f, v in inner.items() if v is not None} for k, inner in message.items()}
        else:
            user = self.user
            message, stanza_type, mediatype = build_message(
                content, quoted=quoted, own_jid=user.id if user else None
            )
            msg_id = await self._relay(jid, message, stanza_type, mediatype)

        sent: WAMessage = {
            "key": {"remoteJid": jid, "id": msg_id, "fromMe": True},
            "message": message,
            "messageTimestamp": int(time.time()),
            "status": "SERVER_ACK",
        }
        await self.events.emit("messages.upsert", {"messages": [sent], "type": "append"})
        return sent

    async def load_message(self, jid: str, message_id: str) -> WAMessage | None:
        info = self.client.store.find_message(jid, message_id)
        if info is None:
            return None
        return self._info_to_message(info)

    async def download_media(self, message: WAMessage) -> bytes:
        return await self.client.download_message_media(dict_to_message(message.get("message") or {}))

    async def send_presence_update(self, state: PresenceState, jid: str | None = None) -> None:
        if state in ("available", "unavailable"):
            await self.client.set_presence(state == "available")
            return
        if not jid:
            raise ValueError(f"presence {state!r} needs a chat jid")
        await self.client.send_chatstate(jid, state)

    async def read_messages(self, keys: Sequence[dict[str, Any]]) -> None:
        t = str(int(time.time()))
        for key in keys:
            if key.get("fromMe") or not key.get("id") or not key.get("remoteJid"):
                continue
            attrs = {"id": key["id"], "to": key["remoteJid"], "type": "read", "t": t}
            if key.get("participant"):
                attrs["participant"] = key["participant"]
            await self.client.socket.send_node(BinaryNode(tag="receipt", attrs=attrs, content=None))

    async def chat_modify(self, modification: dict[str, Any], jid: str) -> None:
        raise UnsupportedOperationError(
            "chat modifications (app state patches) are not supported by pyaileys"
        )

    async def star(self, jid: str, messages: Sequence[dict[str, Any]], star: bool) -> None:
        raise UnsupportedOperationError("starring messages is not supported by pyaileys")

    # Contacts

    async def profile_picture_url(self, jid: str) -> str | None:
        return await self.client.profile_picture_url(jid)

    async def _query(self, node: BinaryNode) -> BinaryNode:
        res = await self.client.socket.query(node, timeout_s=QUERY_TIMEOUT_S)
        iq.raise_for_error(res)
        return res

    async def fetch_blocklist(self) -> list[str]:
        return iq.parse_blocklist(await self._query(iq.blocklist()))

    async def update_block_status(self, jid: str, action: Literal["block", "unblock"]) -> None:
        await self._query(iq.block_status(jid, action))

    async def on_whatsapp(self, *numbers: str) -> list[dict[str, Any]]:
        digits = [n.split("@", 1)[0] for n in numbers if n]
        if not digits:
            return []
        return iq.parse_contact_usync(await self._query(iq.contact_usync(digits)))

    # Groups

    async def group_metadata(self, jid: str) -> dict[str, Any]:
        return iq.parse_group(await self._query(iq.metadata(jid)))

    async def group_fetch_all_participating(self) -> dict[str, dict[str, Any]]:
        return iq.parse_participating(await self._query(iq.participating()))

    async def group_create(self, subject: str, participants: Sequence[str]) -> dict[str, Any]:
        return iq.parse_group(await self._query(iq.create_group(subject, participants)))

    async def group_participants_update(
        self, jid: str, participants: Sequence[str], action: ParticipantAction
    ) -> list[dict[str, Any]]:
        res = await self._query(iq.update_participants(jid, participants, action))
        return iq.parse_participants_update(res, action)

    async def group_update_subject(self, jid: str, subject: str) -> None:
        await self._query(iq.update_subject(jid, subject))

    async def group_update_description(self, jid: str, description: str) -> None:
        # The server rejects a description change that does not name the current one.
        current = await self.group_metadata(jid)
        await self._query(iq.update_description(jid, description, current.get("descId")))

    async def group_setting_update(self, jid: str, setting: GroupSetting) -> None:
        await self._query(iq.setting(jid, setting))

    async def group_leave(self, jid: str) -> None:
        await self._query(iq.leave(jid))

    async def group_invite_code(self, jid: str) -> str | None:
        return iq.parse_invite_code(await self._query(iq.invite_code(jid)))

    async def group_revoke_invite(self, jid: str) -> str | None:
        return iq.parse_invite_code(await self._query(iq.invite_code(jid, revoke=True)))

    async def group_accept_invite(self, code: str) -> str | None:
        return iq.parse_accepted_group(await self._query(iq.accept_invite(code)))


async def pyaileys_socket_factory(session_id: str, path: Path) -> tuple[PyaileysSocket, SaveCreds]:
    """Open (or create) the multi-file auth state in `path` and wrap a client around it."""

    client, auth_state = await GatewayClient.from_auth_folder(str(path))
    return PyaileysSocket(client, session_id=session_id), auth_state.save_creds
