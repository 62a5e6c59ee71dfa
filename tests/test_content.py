from __future__ import annotations

import pytest

from wagateway.content import (
    ButtonsContent,
    ContactContent,
    ContentType,
    LocationContent,
    MediaContent,
    MediaUrlContent,
    PollContent,
    SendOptions,
    TextContent,
    fallback_text,
    parse_content,
)
from wagateway.exceptions import InvalidContentError, UnsupportedContentTypeError, UnsupportedOperationError


def test_parse_each_type() -> None:
    assert parse_content("string", "hi") == TextContent("hi")
    assert parse_content(ContentType.MEDIA, {"mimetype": "image/png", "data": "AAE="}) == MediaContent(
        "image/png", b"\x00\x01"
    )
    assert parse_content("MessageMediaFromURL", "https://x/a.png") == MediaUrlContent("https://x/a.png")
    assert parse_content("MessageMediaFromURL", {"url": "https://x/b"}) == MediaUrlContent("https://x/b")
    assert parse_content("Location", {"latitude": "1.5", "longitude": 2}) == LocationContent(1.5, 2.0)
    assert parse_content("Contact", {"contactId": "5551@c.us"}) == ContactContent("5551@c.us")
    assert parse_content("Buttons", {"body": "b"}) == ButtonsContent("b")


def test_poll_selectable_count() -> None:
    single = parse_content("Poll", {"pollName": "Q", "pollOptions": ["a", "b", "c"]})
    multi = parse_content(
        "Poll", {"pollName": "Q", "pollOptions": ["a", "b", "c"], "options": {"allowMultipleAnswers": True}}
    )

    assert isinstance(single, PollContent)
    assert single.selectable_count == 1
    assert multi.selectable_count == 3


@pytest.mark.parametrize(
    "content_type, content",
    [
        ("string", 42),
        ("MessageMedia", "not an object"),
        ("MessageMedia", {"mimetype": "image/png"}),
        ("MessageMedia", {"mimetype": "image/png", "data": "!!"}),
        ("Location", {"latitude": "north", "longitude": 1}),
        ("Poll", {"pollName": "Q", "pollOptions": []}),
        ("Contact", {}),
        ("MessageMediaFromURL", ""),
    ],
)
def test_invalid_content(content_type: str, content: object) -> None:
    with pytest.raises(InvalidContentError):
        parse_content(content_type, content)


def test_unknown_type_is_an_unsupported_operation() -> None:
    with pytest.raises(UnsupportedContentTypeError) as exc:
        parse_content("Sticker", {})
    assert isinstance(exc.value, UnsupportedOperationError)
    assert "Sticker" in str(exc.value)


def test_send_options() -> None:
    opts = SendOptions.from_dict(
        {"quotedMessageId": "Q", "mentions": ["5551@c.us"], "sendAudioAsVoice": 1, "linkPreview": False}
    )

    assert opts.quoted_message_id == "Q"
    assert opts.mentions == ["5551@c.us"]
    assert opts.send_audio_as_voice is True
    assert opts.link_preview is False
    assert SendOptions.from_dict(None).link_preview is True
    with pytest.raises(InvalidContentError):
        SendOptions.from_dict({"mentions": "5551"})


def test_fallback_text() -> None:
    assert fallback_text(ButtonsContent(body="B")) == "B"
    assert fallback_text(ButtonsContent(body="B", title="T", footer="F")) == "T\n\nB\n\nF"
