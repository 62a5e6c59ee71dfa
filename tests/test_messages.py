from __future__ import annotations

import base64
import threading
import time

import pytest
from conftest import inbound_text

from wagateway import preview
from wagateway.exceptions import (
    ChatHistoryRequiredError,
    InvalidContentError,
    MessageNotFoundError,
    SessionNotConnectedError,
    UnsupportedContentTypeError,
    UnsupportedOperationError,
)
from wagateway.messages import MessageService, clamp_fetch_limit, contact_vcard, normalize_pin_duration
from wagateway.preview import LinkPreview


@pytest.fixture
def service(manager) -> MessageService:
    return MessageService(manager)


def _sent(sock):
    return [(args[0], args[1], kwargs["quoted"]) for args, kwargs in sock.calls_to("send_message")]


@pytest.mark.asyncio
async def test_send_text(service, connected) -> None:
    _, sock = connected

    result = await service.send_message("s1", "5551@c.us", "string", "hello")

    assert _sent(sock) == [("5551@s.whatsapp.net", {"text": "hello"}, None)]
    assert result["fromMe"] is True
    assert result["body"] == "hello"
    assert result["id"]["_serialized"] == "true_5551@c.us_SENT1"


@pytest.mark.asyncio
async def test_send_requires_connected_session(service, manager) -> None:
    await manager.start("s1")
    with pytest.raises(SessionNotConnectedError):
        await service.send_message("s1", "5551@c.us", "string", "hello")


@pytest.mark.asyncio
async def test_unsupported_content_type_is_rejected(service, connected) -> None:
    _, sock = connected
    with pytest.raises(UnsupportedContentTypeError):
        await service.send_message("s1", "5551@c.us", "Sticker", {"data": "x"})
    assert sock.calls_to("send_message") == []


@pytest.mark.asyncio
async def test_send_text_attaches_link_preview(service, connected, monkeypatch) -> None:
    _, sock = connected

    async def fake_preview(text, *, timeout_s):
        return LinkPreview(matched_text="https://example.com", canonical_url="https://example.com", title="Example")

    monkeypatch.setattr("wagateway.messages.get_link_preview", fake_preview)

    await service.send_message("s1", "5551", "string", "see https://example.com")

    (_, content, _), = _sent(sock)
    assert content["link_preview"] == {
        "matched_text": "https://example.com",
        "canonical_url": "https://example.com",
        "title": "Example",
    }


@pytest.mark.asyncio
async def test_link_preview_can_be_disabled(service, connected, monkeypatch) -> None:
    _, sock = connected

    async def fail(text, *, timeout_s):
        raise AssertionError("preview must not be fetched")

    monkeypatch.setattr("wagateway.messages.get_link_preview", fail)

    await service.send_message("s1", "5551", "string", "https://example.com", {"linkPreview": False})

    (_, content, _), = _sent(sock)
    assert content == {"text": "https://example.com"}


@pytest.mark.asyncio
async def test_hanging_link_preview_does_not_block_send(service, connected, monkeypatch, config) -> None:
    _, sock = connected
    release = threading.Event()

    def hang(url, timeout_s):
        release.wait(5)
        return ""

    monkeypatch.setattr(preview, "_fetch_html", hang)
    started = time.monotonic()
    try:
        await service.send_message("s1", "5551@c.us", "string", "look https://slow.example")
    finally:
        release.set()

    assert time.monotonic() - started < config.link_preview_timeout_s + 1.0
    (_, content, _), = _sent(sock)
    assert content == {"text": "look https://slow.example"}


@pytest.mark.asyncio
async def test_send_media_image(service, connected) -> None:
    _, sock = connected
    data = base64.b64encode(b"\x89PNG").decode()

    await service.send_message(
        "s1",
        "5551@c.us",
        "MessageMedia",
        {"mimetype": "image/png", "data": data, "filename": "a.png"},
        {"caption": "look"},
    )

    (_, content, _), = _sent(sock)
    assert content == {"mimetype": "image/png", "image": b"\x89PNG", "caption": "look"}


@pytest.mark.asyncio
async def test_send_media_document_and_voice(service, connected) -> None:
    _, sock = connected
    data = base64.b64encode(b"abc").decode()

    await service.send_message("s1", "5551", "MessageMedia", {"mimetype": "application/pdf", "data": data})
    await service.send_message(
        "s1", "5551", "MessageMedia", {"mimetype": "audio/ogg", "data": data}, {"sendAudioAsVoice": True}
    )

    (_, doc, _), (_, voice, _) = _sent(sock)
    assert doc == {"mimetype": "application/pdf", "document": b"abc", "file_name": "file"}
    assert voice == {"mimetype": "audio/ogg", "audio": b"abc", "ptt": True}


@pytest.mark.asyncio
async def test_invalid_media_payload(service, connected) -> None:
    with pytest.raises(InvalidContentError):
        await service.send_message("s1", "5551", "MessageMedia", {"mimetype": "image/png", "data": "%%%"})


@pytest.mark.asyncio
async def test_send_location_poll_contact_and_fallbacks(service, connected) -> None:
    _, sock = connected

    await service.send_message("s1", "5551", "Location", {"latitude": 1.5, "longitude": "2.5", "description": "Home"})
    await service.send_message(
        "s1", "5551", "Poll", {"pollName": "Lunch?", "pollOptions": ["A", "B"], "options": {"allowMultipleAnswers": True}}
    )
    await service.send_message("s1", "5551", "Contact", {"contactId": "5552@c.us"})
    await service.send_message("s1", "5551", "Buttons", {"body": "Pick", "title": "T", "footer": "F"})

    contents = [content for _, content, _ in _sent(sock)]
    assert contents[0] == {"location": {"latitude": 1.5, "longitude": 2.5, "name": "Home"}}
    assert contents[1] == {"poll": {"name": "Lunch?", "values": ["A", "B"], "selectable_count": 2}}
    assert contents[2] == {"contacts": {"display_name": "5552", "contacts": [{"vcard": contact_vcard("5552")}]}}
    assert contents[3] == {"text": "T\n\nPick\n\nF"}


@pytest.mark.asyncio
async def test_send_with_quote_and_mentions(service, connected) -> None:
    _, sock = connected
    original = inbound_text("question", msg_id="Q1")
    await sock.receive(original)

    await service.send_message(
        "s1",
        "5551@c.us",
        "string",
        "answer",
        {"quotedMessageId": "false_5551@c.us_Q1", "mentions": ["5552@c.us"]},
    )

    (_, content, quoted), = _sent(sock)
    assert quoted["key"]["id"] == original["key"]["id"] == "Q1"
    assert content == {"mentions": ["5552@s.whatsapp.net"], "text": "answer"}


@pytest.mark.asyncio
async def test_missing_quote_sends_without_it(service, connected) -> None:
    _, sock = connected

    await service.send_message("s1", "5551@c.us", "string", "answer", {"quotedMessageId": "nope"})

    (_, _, quoted), = _sent(sock)
    assert quoted is None


@pytest.mark.asyncio
async def test_send_error_propagates(service, connected) -> None:
    _, sock = connected
    sock.errors["send_message"] = RuntimeError("socket closed")
    with pytest.raises(RuntimeError):
        await service.send_message("s1", "5551", "string", "hello")


@pytest.mark.asyncio
async def test_react_unknown_message(service, connected) -> None:
    with pytest.raises(MessageNotFoundError):
        await service.react("s1", "5551@c.us", "false_5551@c.us_GONE", "👍")


@pytest.mark.asyncio
async def test_react_uses_socket_loader(service, connected) -> None:
    _, sock = connected
    sock.results["load_message"] = {
        "key": {"remoteJid": "5551@s.whatsapp.net", "id": "L1", "fromMe": True},
        "message": {"conversation": "from the socket"},
    }

    await service.react("s1", "5551@c.us", "L1", "❤️")

    (_, content, _), = _sent(sock)
    assert content["react"]["key"] == {"remoteJid": "5551@s.whatsapp.net", "id": "L1", "fromMe": True}


@pytest.mark.asyncio
async def test_delete_for_everyone_and_for_me(service, connected) -> None:
    _, sock = connected
    await sock.receive(inbound_text("oops", msg_id="D1"))
    key = {"remoteJid": "5551@s.whatsapp.net", "id": "D1", "fromMe": False}

    await service.delete("s1", "5551@c.us", "D1", for_everyone=True)
    await service.delete("s1", "5551@c.us", "D1")

    (_, content, _), = _sent(sock)
    assert content == {"delete": key}
    (args, _), = sock.calls_to("chat_modify")
    modification, jid = args
    assert jid == "5551@s.whatsapp.net"
    assert modification["delete_for_me"]["key"] == key
    assert modification["delete_for_me"]["delete_media"] is False


@pytest.mark.asyncio
async def test_forward_needs_stored_source(service, connected) -> None:
    _, sock = connected
    # Known only through a status update: the key resolves, the body does not.
    await sock.emit(
        "messages.update",
        [{"key": {"remoteJid": "5551@s.whatsapp.net", "id": "F0", "fromMe": False}, "update": {"status": 3}}],
    )

    with pytest.raises(UnsupportedOperationError):
        await service.forward("s1", "5551@c.us", "F0", "5552@c.us")
    assert sock.calls_to("send_message") == []


@pytest.mark.asyncio
async def test_forward_stored_message(service, connected) -> None:
    _, sock = connected
    original = inbound_text("fwd me", msg_id="F1")
    await sock.receive(original)

    await service.forward("s1", "5551@c.us", "F1", "5552@c.us")

    (jid, content, _), = _sent(sock)
    assert jid == "5552@s.whatsapp.net"
    assert content["forward"]["key"] == original["key"]


@pytest.mark.asyncio
async def test_pin_and_unpin(service, connected) -> None:
    _, sock = connected
    await sock.receive(inbound_text("pin me", msg_id="P1"))

    await service.pin("s1", "5551@c.us", "P1", 100000)
    await service.unpin("s1", "5551@c.us", "P1")

    (_, pin, _), (_, unpin, _) = _sent(sock)
    assert pin["pin_type"] == 1
    assert pin["pin_time"] == 604800
    assert unpin["pin_type"] == 2


@pytest.mark.asyncio
async def test_edit(service, connected) -> None:
    _, sock = connected
    await sock.receive(
        {
            "key": {"remoteJid": "5551@s.whatsapp.net", "id": "E1", "fromMe": True},
            "message": {"conversation": "tpyo"},
            "messageTimestamp": 1700000000,
        }
    )

    await service.edit("s1", "5551@c.us", "true_5551@c.us_E1", "typo")

    (_, content, _), = _sent(sock)
    assert content == {"text": "typo", "edit": {"remoteJid": "5551@s.whatsapp.net", "id": "E1", "fromMe": True}}


@pytest.mark.asyncio
async def test_star(service, connected) -> None:
    _, sock = connected
    await sock.receive(inbound_text("star me", msg_id="S1"))

    await service.star("s1", "5551@c.us", "S1")

    assert sock.calls_to("star") == [(("5551@s.whatsapp.net", [{"id": "S1", "fromMe": False}], True), {})]


@pytest.mark.asyncio
async def test_chat_modifications_need_local_history(service, connected) -> None:
    _, sock = connected

    for action in (service.archive, service.unarchive, service.mark_unread, service.delete_chat, service.mark_read):
        with pytest.raises(ChatHistoryRequiredError):
            await action("s1", "5559@c.us")
    assert sock.calls_to("chat_modify") == []
    assert sock.calls_to("read_messages") == []


@pytest.mark.asyncio
async def test_archive_and_mark_read_use_latest_message(service, connected) -> None:
    _, sock = connected
    await sock.receive(inbound_text("old", msg_id="A1", ts=1700000000))
    await sock.receive(inbound_text("new", msg_id="A2", ts=1700000050))

    await service.archive("s1", "5551@c.us")
    await service.mark_read("s1", "5551@c.us")

    (args, _), = sock.calls_to("chat_modify")
    modification, jid = args
    assert jid == "5551@s.whatsapp.net"
    assert modification["archive"] is True
    assert modification["last_messages"] == [
        {"key": {"remoteJid": "5551@s.whatsapp.net", "id": "A2", "fromMe": False}, "messageTimestamp": 1700000050}
    ]
    (read_args, _), = sock.calls_to("read_messages")
    assert read_args == ([{"remoteJid": "5551@s.whatsapp.net", "id": "A2", "fromMe": False}],)


@pytest.mark.asyncio
async def test_chat_toggles(service, connected) -> None:
    _, sock = connected

    await service.pin_chat("s1", "5551@c.us")
    await service.unpin_chat("s1", "5551@c.us")
    await service.mute("s1", "5551@c.us", 60)
    await service.unmute("s1", "5551@c.us")
    await service.clear("s1", "5551@c.us")

    mods = [args[0] for args, _ in sock.calls_to("chat_modify")]
    assert mods[0] == {"pin": True}
    assert mods[1] == {"pin": False}
    assert mods[2]["mute"] > int(time.time() * 1000)
    assert mods[3] == {"mute": None}
    assert mods[4] == {"clear": True}


@pytest.mark.asyncio
async def test_presence(service, connected) -> None:
    _, sock = connected

    await service.send_typing("s1", "5551@c.us")
    await service.send_recording("s1", "5551@c.us", False)

    assert sock.calls_to("send_presence_update") == [
        (("composing", "5551@s.whatsapp.net"), {}),
        (("paused", "5551@s.whatsapp.net"), {}),
    ]


@pytest.mark.asyncio
async def test_fetch_messages_with_cursor(service, connected) -> None:
    _, sock = connected
    for i in range(5):
        await sock.receive(inbound_text(f"m{i}", msg_id=f"M{i}", ts=1700000000 + i))

    newest = await service.fetch_messages("s1", "5551@c.us", limit=2)
    older = await service.fetch_messages("s1", "5551@c.us", limit=2, before="false_5551@c.us_M3")

    assert [m["body"] for m in newest] == ["m4", "m3"]
    assert [m["body"] for m in older] == ["m2", "m1"]


@pytest.mark.asyncio
async def test_get_quoted_message(service, connected) -> None:
    _, sock = connected
    await sock.receive(inbound_text("original", msg_id="O1"))
    await sock.receive(
        {
            "key": {"remoteJid": "5551@s.whatsapp.net", "id": "R1", "fromMe": False},
            "message": {
                "extendedTextMessage": {
                    "text": "reply",
                    "contextInfo": {"stanzaId": "O1", "quotedMessage": {"conversation": "original"}},
                }
            },
            "messageTimestamp": 1700000001,
        }
    )

    quoted = await service.get_quoted_message("s1", "5551@c.us", "R1")
    not_a_reply = await service.get_quoted_message("s1", "5551@c.us", "O1")

    assert quoted["body"] == "original"
    assert quoted["id"]["id"] == "O1"
    assert not_a_reply is None


@pytest.mark.asyncio
async def test_download_media(service, connected) -> None:
    _, sock = connected
    await sock.receive(
        {
            "key": {"remoteJid": "5551@s.whatsapp.net", "id": "IMG", "fromMe": False},
            "message": {"imageMessage": {"mimetype": "image/jpeg", "caption": "pic"}},
            "messageTimestamp": 1700000000,
        }
    )
    await sock.receive(inbound_text("no media", msg_id="TXT"))

    media = await service.download_media("s1", "5551@c.us", "IMG")

    assert media == {"data": base64.b64encode(b"media-bytes").decode(), "mimetype": "image/jpeg", "filename": None}
    with pytest.raises(InvalidContentError):
        await service.download_media("s1", "5551@c.us", "TXT")


def test_normalize_pin_duration() -> None:
    assert normalize_pin_duration(86400) == 86400
    assert normalize_pin_duration("604800") == 604800
    assert normalize_pin_duration(2592000) == 2592000
    assert normalize_pin_duration(100000) == 604800
    assert normalize_pin_duration(604801) == 2592000
    assert normalize_pin_duration(60) == 86400
    assert normalize_pin_duration(None) == 86400


def test_clamp_fetch_limit() -> None:
    assert clamp_fetch_limit(None) == 50
    assert clamp_fetch_limit(0) == 50
    assert clamp_fetch_limit(-3) == 1
    assert clamp_fetch_limit(10_000) == 500
    assert clamp_fetch_limit("20") == 20
    assert clamp_fetch_limit("many") == 50


@pytest.mark.asyncio
async def test_clear_drops_local_history(service, connected) -> None:
    session, sock = connected
    await sock.receive(inbound_text("old", msg_id="C1"))
    await sock.receive(inbound_text("other", jid="5552@s.whatsapp.net", msg_id="C2"))

    await service.clear("s1", "5551@c.us")

    assert session.store.message_count("5551@s.whatsapp.net") == 0
    assert session.store.message_count("5552@s.whatsapp.net") == 1
