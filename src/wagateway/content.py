"""
Typed outbound content.

Send requests arrive in the wrapper API's shape: a `contentType` tag plus a
loosely typed `content` value and an `options` object. `parse_content`
turns them into one of the dataclasses below so the message service can
dispatch on type instead of on strings.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .exceptions import InvalidContentError, UnsupportedContentTypeError


class ContentType(str, Enum):
    STRING = "string"
    MEDIA = "MessageMedia"
    MEDIA_FROM_URL = "MessageMediaFromURL"
    LOCATION = "Location"
    POLL = "Poll"
    CONTACT = "Contact"
    BUTTONS = "Buttons"
    LIST = "List"


@dataclass(frozen=True, slots=True)
class TextContent:
    text: str


@dataclass(frozen=True, slots=True)
class MediaContent:
    mimetype: str
    data: bytes
    filename: str | None = None


@dataclass(frozen=True, slots=True)
class MediaUrlContent:
    url: str


@dataclass(frozen=True, slots=True)
class LocationContent:
    latitude: float
    longitude: float
    description: str | None = None


@dataclass(frozen=True, slots=True)
class PollContent:
    name: str
    options: tuple[str, ...]
    allow_multiple_answers: bool = False

    @property
    def selectable_count(self) -> int:
        return len(self.options) if self.allow_multiple_answers else 1


@dataclass(frozen=True, slots=True)
class ContactContent:
    contact_id: str


@dataclass(frozen=True, slots=True)
class ButtonsContent:
    body: str
    title: str | None = None
    footer: str | None = None


@dataclass(frozen=True, slots=True)
class ListContent:
    body: str
    title: str | None = None
    footer: str | None = None


Content = (
    TextContent
    | MediaContent
    | MediaUrlContent
    | LocationContent
    | PollContent
    | ContactContent
    | ButtonsContent
    | ListContent
)


@dataclass(slots=True)
class SendOptions:
    quoted_message_id: str | None = None
    mentions: list[str] = field(default_factory=list)
    send_audio_as_voice: bool = False
    send_video_as_gif: bool = False
    caption: str | None = None
    link_preview: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SendOptions:
        """Accept the wrapper API's camelCase options object."""

        if not data:
            return cls()
        mentions = data.get("mentions") or []
        if not isinstance(mentions, list):
            raise InvalidContentError("options.mentions must be a list")
        return cls(
            quoted_message_id=data.get("quotedMessageId") or None,
            mentions=[str(m) for m in mentions],
            send_audio_as_voice=bool(data.get("sendAudioAsVoice")),
            send_video_as_gif=bool(data.get("sendVideoAsGif")),
            caption=data.get("caption") or None,
            link_preview=data.get("linkPreview") is not False,
        )


def fallback_text(content: ButtonsContent | ListContent) -> str:
    """Plain-text rendering for interactive messages WhatsApp no longer delivers."""

    text = content.body
    if content.title:
        text = f"{content.title}\n\n{text}"
    if content.footer:
        text = f"{text}\n\n{content.footer}"
    return text


def _require_mapping(content: Any, content_type: ContentType) -> Mapping[str, Any]:
    if not isinstance(content, Mapping):
        raise InvalidContentError(f"{content_type.value} content must be an object")
    return content


def _require_str(data: Mapping[str, Any], key: str, content_type: ContentType) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidContentError(f"{content_type.value} content requires {key!r}")
    return value


def _require_number(data: Mapping[str, Any], key: str, content_type: ContentType) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        try:
            return float(str(value))
        except ValueError:
            raise InvalidContentError(f"{content_type.value} content requires numeric {key!r}") from None
    return float(value)


def _decode_base64(raw: str) -> bytes:
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidContentError(f"media data is not valid base64: {e}") from e


def parse_content(content_type: str | ContentType, content: Any) -> Content:
    try:
        ct = ContentType(content_type)
    except ValueError:
        raise UnsupportedContentTypeError(content_type) from None

    if ct is ContentType.STRING:
        if not isinstance(content, str):
            raise InvalidContentError("string content must be a string")
        return TextContent(text=content)

    if ct is ContentType.MEDIA_FROM_URL:
        if isinstance(content, Mapping):
            content = content.get("url")
        if not isinstance(content, str) or not content:
            raise InvalidContentError("MessageMediaFromURL content must be a URL")
        return MediaUrlContent(url=content)

    data = _require_mapping(content, ct)

    if ct is ContentType.MEDIA:
        return MediaContent(
            mimetype=_require_str(data, "mimetype", ct),
            data=_decode_base64(_require_str(data, "data", ct)),
            filename=data.get("filename") or None,
        )
    if ct is ContentType.LOCATION:
        return LocationContent(
            latitude=_require_number(data, "latitude", ct),
            longitude=_require_number(data, "longitude", ct),
            description=data.get("description") or None,
        )
    if ct is ContentType.POLL:
        options = data.get("pollOptions")
        if not isinstance(options, list) or not options:
            raise InvalidContentError("Poll content requires a non-empty 'pollOptions' list")
        return PollContent(
            name=_require_str(data, "pollName", ct),
            options=tuple(str(o) for o in options),
            allow_multiple_answers=bool((data.get("options") or {}).get("allowMultipleAnswers")),
        )
    if ct is ContentType.CONTACT:
        return ContactContent(contact_id=_require_str(data, "contactId", ct))
    if ct is ContentType.BUTTONS:
        return ButtonsContent(
            body=_require_str(data, "body", ct),
            title=data.get("title") or None,
            footer=data.get("footer") or None,
        )
    if ct is ContentType.LIST:
        return ListContent(
            body=_require_str(data, "body", ct),
            title=data.get("title") or None,
            footer=data.get("footer") or None,
        )
    raise UnsupportedContentTypeError(content_type)
