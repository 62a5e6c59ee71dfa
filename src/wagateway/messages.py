from __future__ import annotations

import base64
import logging
import time
from collections.abc import Mapping
from typing import Any

from .config import GatewayConfig
from .constants import (
    DEFAULT_FETCH_LIMIT,
    DEFAULT_MUTE_S,
    MAX_FETCH_LIMIT,
    PIN_DURATIONS_S,
    PIN_FOR_ALL,
    UNPIN_FOR_ALL,
)
from .content import (
    ButtonsContent,
    ContactContent,
    Content,
    ContentType,
    ListContent,
    LocationContent,
    MediaContent,
    MediaUrlContent,
    PollContent,
    SendOptions,
    TextContent,
    fallback_text,
    parse_content,
)
from .exceptions import (
    ChatHistoryRequiredError,
    InvalidContentError,
    MessageNotFoundError,
    UnsupportedContentTypeError,
    UnsupportedOperationError,
)
from .formatting import context_info
from .jid import phone_number, to_protocol_jid
from .keyindex import MessageKey
from .manager import SessionManager
from .media import fetch_media, media_kind
from .preview import get_link_preview
from .session import Session
from .socket import MessageContent, WAMessage
from .util.timestamps import to_timestamp

logger = logging.getLogger(__name__)

_MEDIA_FIELDS = (
    "imageMessage",
    "videoMessage",
    "audioMessage",
    "documentMessage",
    "stickerMessage",
    "documentWithCaptionMessage",
)


def normalize_pin_duration(value: Any) -> int:
    """Snap a requested pin duration (seconds) to 24h, 7d or 30d."""

    try:
        seconds = float(value)
    except (TypeError, ValueError):
        seconds = 0
    if seconds in PIN_DURATIONS_S:
        return int(seconds)
    day, week, month = PIN_DURATIONS_S
    if seconds > week:
        return month
    if seconds > day:
        return week
    return day


def contact_vcard(number: str) -> str:
    return (
        "BEGIN:VCARD\n"
        "VERSION:3.0\n"
        f"FN:{number}\n"
        f"TEL;type=CELL;type=VOICE;waid={number}:+{number}\n"
        "END:VCARD"
    )


def clamp_fetch_limit(limit: Any) -> int:
    try:
        n = int(limit) if limit is not None else DEFAULT_FETCH_LIMIT
    except (TypeError, ValueError):
        n = DEFAULT_FETCH_LIMIT
    return max(1, min(n or DEFAULT_FETCH_LIMIT, MAX_FETCH_LIMIT))


def _media_payload(message: Mapping[str, Any]) -> Mapping[str, Any] | None:
    for name in _MEDIA_FIELDS:
        inner = message.get(name)
        if isinstance(inner, Mapping):
            if name == "documentWithCaptionMessage":
                inner = ((inner.get("message") or {}).get("documentMessage")) or None
                if inner is None:
                    continue
            return inner
    return None


class MessageService:
    """
    Outbound sends plus message and chat actions for connected sessions.

    Every call resolves the session through the manager and fails with
    `SessionNotConnectedError` unless it is connected.
    """

    def __init__(self, manager: SessionManager) -> None:
        self.manager = manager

    @property
    def config(self) -> GatewayConfig:
        return self.manager.config

    def _formatted(self, session: Session, msg: WAMessage | None) -> dict[str, Any] | None:
        if msg is None:
            return None
        return self.manager.format_message(session.id, msg)

    # Sending

    async def send_message(
        self,
        session_id: str,
        chat_id: str,
        content_type: str | ContentType,
        content: Any,
        options: SendOptions | Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        session = self.manager.require_connected(session_id)
        parsed = parse_content(content_type, content)
        opts = options if isinstance(options, SendOptions) else SendOptions.from_dict(options)
        jid = to_protocol_jid(chat_id)

        try:
            result = await self._send_parsed(session, jid, parsed, opts)
        except Exception as e:
            logger.error("session %s: error sending %s to %s: %s", session_id, content_type, chat_id, e)
            raise
        return self._formatted(session, result)

    async def _send_parsed(
        self, session: Session, jid: str, content: Content, opts: SendOptions
    ) -> WAMessage | None:
        if isinstance(content, TextContent):
            return await self._send_text(session, jid, content.text, opts)
        if isinstance(content, MediaContent):
            return await self._send_media(session, jid, content, opts)
        if isinstance(content, MediaUrlContent):
            fetched = await fetch_media(
                content.url,
                timeout_s=self.config.media_download_timeout_s,
                max_bytes=self.config.media_max_bytes,
            )
            media = MediaContent(mimetype=fetched.mimetype, data=fetched.data, filename=fetched.filename)
            return await self._send_media(session, jid, media, opts)
        if isinstance(content, LocationContent):
            return await session.socket.send_message(
                jid,
                {
                    "location": {
                        "latitude": content.latitude,
                        "longitude": content.longitude,
                        "name": content.description or "",
                    }
                },
            )
        if isinstance(content, PollContent):
            return await session.socket.send_message(
                jid,
                {
                    "poll": {
                        "name": content.name,
                        "values": list(content.options),
                        "selectable_count": content.selectable_count,
                    }
                },
            )
        if isinstance(content, ContactContent):
            number = phone_number(to_protocol_jid(content.contact_id))
            return await session.socket.send_message(
                jid,
                {"contacts": {"display_name": number, "contacts": [{"vcard": contact_vcard(number)}]}},
            )
        if isinstance(content, ButtonsContent):
            logger.warning("button messages are deprecated; sending as plain text")
            return await session.socket.send_message(jid, {"text": fallback_text(content)})
        if isinstance(content, ListContent):
            logger.warning("list messages are deprecated; sending as plain text")
            return await session.socket.send_message(jid, {"text": fallback_text(content)})
        raise UnsupportedContentTypeError(type(content).__name__)

    async def _quoted(self, session: Session, jid: str, message_id: str | None) -> WAMessage | None:
        if not message_id:
            return None
        try:
            _, msg = await session.resolver.find_message(jid, message_id)
        except MessageNotFoundError:
            logger.debug(
                "session %s: quoted message %s not found, sending without quote", session.id, message_id
            )
            return None
        return msg

    async def _common(
        self, session: Session, jid: str, opts: SendOptions
    ) -> tuple[MessageContent, WAMessage | None]:
        extra: MessageContent = {}
        if opts.mentions:
            extra["mentions"] = [to_protocol_jid(m) for m in opts.mentions]
        return extra, await self._quoted(session, jid, opts.quoted_message_id)

    async def _send_text(self, session: Session, jid: str, text: str, opts: SendOptions) -> WAMessage | None:
        payload, quoted = await self._common(session, jid, opts)
        payload["text"] = text
        if opts.link_preview:
            preview = await get_link_preview(text, timeout_s=self.config.link_preview_timeout_s)
            if preview is not None:
                payload["link_preview"] = preview.to_content()
        return await session.socket.send_message(jid, payload, quoted=quoted)

    async def _send_media(
        self, session: Session, jid: str, media: MediaContent, opts: SendOptions
    ) -> WAMessage | None:
        payload, quoted = await self._common(session, jid, opts)
        kind = media_kind(media.mimetype)
        payload["mimetype"] = media.mimetype
        caption = opts.caption or media.filename or ""

        if kind == "image":
            payload.update(image=media.data, caption=caption)
        elif kind == "video":
            payload.update(video=media.data, caption=caption, gif_playback=opts.send_video_as_gif)
        elif kind == "audio":
            payload.update(audio=media.data, ptt=opts.send_audio_as_voice)
        else:
            payload.update(document=media.data, file_name=media.filename or "file")
            if opts.caption:
                payload["caption"] = opts.caption
        return await session.socket.send_message(jid, payload, quoted=quoted)

    # Message actions

    async def _resolve(self, session: Session, chat_id: str, message_id: str) -> MessageKey:
        return await session.resolver.resolve(chat_id, message_id)

    async def fetch_messages(
        self,
        session_id: str,
        chat_id: str,
        *,
        limit: int | None = None,
        before: str | None = None,
    ) -> list[dict[str, Any]]:
        session = self.manager.require_connected(session_id)
        n = clamp_fetch_limit(limit)
        messages = self.manager.get_messages_for_chat(session_id, chat_id)

        start = 0
        if before:
            try:
                key = await session.resolver.resolve(chat_id, before)
            except MessageNotFoundError:
                logger.debug("session %s: cursor %s not found, fetching from newest", session_id, before)
            else:
                for i, msg in enumerate(messages):
                    if (msg.get("key") or {}).get("id") == key.id:
                        start = i + 1
                        break

        return [self.manager.format_message(session_id, m) for m in messages[start : start + n]]

    async def get_message(self, session_id: str, chat_id: str, message_id: str) -> dict[str, Any] | None:
        session = self.manager.require_connected(session_id)
        _, msg = await session.resolver.find_message(chat_id, message_id)
        return self._formatted(session, msg)

    async def get_quoted_message(
        self, session_id: str, chat_id: str, message_id: str
    ) -> dict[str, Any] | None:
        """The message `message_id` replies to, or None when it is not a reply."""

        session = self.manager.require_connected(session_id)
        _, msg = await session.resolver.find_message(chat_id, message_id)
        if not msg or not msg.get("message"):
            return None

        ctx = context_info(msg["message"])
        stanza_id = ctx.get("stanzaId")
        if not stanza_id or not ctx.get("quotedMessage"):
            return None

        try:
            _, quoted = await session.resolver.find_message(chat_id, stanza_id)
        except MessageNotFoundError:
            quoted = None
        if quoted is None:
            key: dict[str, Any] = {"id": stanza_id, "remoteJid": to_protocol_jid(chat_id), "fromMe": False}
            if ctx.get("participant"):
                key["participant"] = ctx["participant"]
            quoted = {
                "key": key,
                "message": ctx["quotedMessage"],
                "messageTimestamp": msg.get("messageTimestamp"),
            }
        return self._formatted(session, quoted)

    async def react(self, session_id: str, chat_id: str, message_id: str, emoji: str) -> None:
        session = self.manager.require_connected(session_id)
        key = await self._resolve(session, chat_id, message_id)
        await session.socket.send_message(key.remote_jid, {"react": {"text": emoji, "key": key.to_dict()}})

    async def star(self, session_id: str, chat_id: str, message_id: str, star: bool = True) -> None:
        session = self.manager.require_connected(session_id)
        key = await self._resolve(session, chat_id, message_id)
        await session.socket.star(key.remote_jid, [{"id": key.id, "fromMe": key.from_me}], star)

    async def delete(
        self, session_id: str, chat_id: str, message_id: str, *, for_everyone: bool = False
    ) -> None:
        session = self.manager.require_connected(session_id)
        key = await self._resolve(session, chat_id, message_id)
        if for_everyone:
            await session.socket.send_message(key.remote_jid, {"delete": key.to_dict()})
            return
        await session.socket.chat_modify(
            {
                "delete_for_me": {
                    "key": key.to_dict(),
                    "timestamp": int(time.time() * 1000),
                    "delete_media": False,
                }
            },
            key.remote_jid,
        )

    async def forward(
        self, session_id: str, chat_id: str, message_id: str, target_chat_id: str
    ) -> dict[str, Any] | None:
        session = self.manager.require_connected(session_id)
        _, source = await session.resolver.find_message(chat_id, message_id)
        if not source or not source.get("message"):
            raise UnsupportedOperationError(
                "Forwarding needs the full source message in the local store"
            )
        result = await session.socket.send_message(to_protocol_jid(target_chat_id), {"forward": source})
        return self._formatted(session, result)

    async def pin(self, session_id: str, chat_id: str, message_id: str, duration: Any = None) -> None:
        session = self.manager.require_connected(session_id)
        key = await self._resolve(session, chat_id, message_id)
        await session.socket.send_message(
            key.remote_jid,
            {"pin": key.to_dict(), "pin_type": PIN_FOR_ALL, "pin_time": normalize_pin_duration(duration)},
        )

    async def unpin(self, session_id: str, chat_id: str, message_id: str) -> None:
        session = self.manager.require_connected(session_id)
        key = await self._resolve(session, chat_id, message_id)
        await session.socket.send_message(key.remote_jid, {"pin": key.to_dict(), "pin_type": UNPIN_FOR_ALL})

    async def edit(
        self, session_id: str, chat_id: str, message_id: str, new_text: str
    ) -> dict[str, Any] | None:
        if not new_text:
            raise InvalidContentError("new message text must not be empty")
        session = self.manager.require_connected(session_id)
        key = await self._resolve(session, chat_id, message_id)
        result = await session.socket.send_message(key.remote_jid, {"text": new_text, "edit": key.to_dict()})
        return self._formatted(session, result)

    async def download_media(self, session_id: str, chat_id: str, message_id: str) -> dict[str, Any]:
        """Download a stored message's media as `{data (base64), mimetype, filename}`."""

        session = self.manager.require_connected(session_id)
        _, msg = await session.resolver.find_message(chat_id, message_id)
        if msg is None:
            raise MessageNotFoundError()
        media = _media_payload(msg.get("message") or {})
        if media is None:
            raise InvalidContentError("Message does not contain downloadable media")

        data = await session.socket.download_media(msg)
        return {
            "data": base64.b64encode(data).decode("ascii"),
            "mimetype": media.get("mimetype") or "application/octet-stream",
            "filename": media.get("fileName"),
        }

    # Chat actions

    def _last_messages(self, session: Session, chat_id: str) -> list[dict[str, Any]]:
        """Reference to the newest local message, as chat modifications require."""

        messages = self.manager.get_last_messages(session.id, chat_id, 1)
        out = [
            {"key": m["key"], "messageTimestamp": to_timestamp(m.get("messageTimestamp")) or int(time.time())}
            for m in messages
            if (m.get("key") or {}).get("id")
        ]
        if not out:
            raise ChatHistoryRequiredError(chat_id)
        return out

    async def send_typing(self, session_id: str, chat_id: str, typing: bool = True) -> None:
        session = self.manager.require_connected(session_id)
        state = "composing" if typing else "paused"
        await session.socket.send_presence_update(state, to_protocol_jid(chat_id))

    async def send_recording(self, session_id: str, chat_id: str, recording: bool = True) -> None:
        session = self.manager.require_connected(session_id)
        state = "recording" if recording else "paused"
        await session.socket.send_presence_update(state, to_protocol_jid(chat_id))

    async def mark_read(self, session_id: str, chat_id: str) -> None:
        session = self.manager.require_connected(session_id)
        last = self._last_messages(session, chat_id)
        await session.socket.read_messages([m["key"] for m in last])

    async def mark_unread(self, session_id: str, chat_id: str) -> None:
        session = self.manager.require_connected(session_id)
        last = self._last_messages(session, chat_id)
        await session.socket.chat_modify(
            {"mark_read": False, "last_messages": last}, to_protocol_jid(chat_id)
        )

    async def archive(self, session_id: str, chat_id: str) -> None:
        await self._set_archived(session_id, chat_id, True)

    async def unarchive(self, session_id: str, chat_id: str) -> None:
        await self._set_archived(session_id, chat_id, False)

    async def _set_archived(self, session_id: str, chat_id: str, archived: bool) -> None:
        session = self.manager.require_connected(session_id)
        last = self._last_messages(session, chat_id)
        await session.socket.chat_modify(
            {"archive": archived, "last_messages": last}, to_protocol_jid(chat_id)
        )

    async def pin_chat(self, session_id: str, chat_id: str) -> None:
        session = self.manager.require_connected(session_id)
        await session.socket.chat_modify({"pin": True}, to_protocol_jid(chat_id))

    async def unpin_chat(self, session_id: str, chat_id: str) -> None:
        session = self.manager.require_connected(session_id)
        await session.socket.chat_modify({"pin": False}, to_protocol_jid(chat_id))

    async def mute(self, session_id: str, chat_id: str, duration_s: int = DEFAULT_MUTE_S) -> None:
        session = self.manager.require_connected(session_id)
        until_ms = int(time.time() * 1000) + int(duration_s) * 1000
        await session.socket.chat_modify({"mute": until_ms}, to_protocol_jid(chat_id))

    async def unmute(self, session_id: str, chat_id: str) -> None:
        session = self.manager.require_connected(session_id)
        await session.socket.chat_modify({"mute": None}, to_protocol_jid(chat_id))

    async def clear(self, session_id: str, chat_id: str) -> None:
        session = self.manager.require_connected(session_id)
        jid = to_protocol_jid(chat_id)
        await session.socket.chat_modify({"clear": True}, jid)
        session.store.clear_chat_messages(jid)
        self.manager.schedule_persist(session)

    async def delete_chat(self, session_id: str, chat_id: str) -> None:
        session = self.manager.require_connected(session_id)
        last = self._last_messages(session, chat_id)
        await session.socket.chat_modify({"delete": True, "last_messages": last}, to_protocol_jid(chat_id))
