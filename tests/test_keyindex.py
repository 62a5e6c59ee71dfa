from __future__ import annotations

import pytest

from wagateway.exceptions import MessageNotFoundError
from wagateway.keyindex import MessageKey, MessageKeyIndex, MessageKeyResolver, candidate_aliases, key_aliases
from wagateway.store import LocalStore


def _msg(msg_id: str, jid: str = "5551@s.whatsapp.net", *, from_me: bool = False) -> dict:
    return {
        "key": {"remoteJid": jid, "id": msg_id, "fromMe": from_me},
        "message": {"conversation": msg_id},
        "messageTimestamp": 1700000000,
    }


def test_every_alias_maps_to_the_key() -> None:
    key = MessageKey(remote_jid="5551@s.whatsapp.net", id="ABC", from_me=True)
    index = MessageKeyIndex()
    index.register(key)

    for alias in (
        "ABC",
        "5551@s.whatsapp.net_ABC",
        "5551@c.us_ABC",
        "true_5551@c.us_ABC",
        "false_5551@c.us_ABC",
        "true_5551@s.whatsapp.net_ABC",
    ):
        assert index.get(alias) == key, alias


def test_alt_remote_aliases() -> None:
    key = MessageKey(remote_jid="123@lid", id="X", remote_jid_alt="5551@s.whatsapp.net")

    aliases = key_aliases(key)

    assert "123@lid_X" in aliases
    assert "false_5551@c.us_X" in aliases
    assert len(aliases) == len(set(aliases))


def test_keyless_messages_are_skipped() -> None:
    index = MessageKeyIndex()

    assert index.register_messages([{"key": {"remoteJid": "a@s.whatsapp.net"}}, _msg("A")]) == 1
    assert index.register_dict(None) is None
    assert "A" in index


def test_candidate_aliases_use_embedded_remote() -> None:
    out = candidate_aliases("5559@s.whatsapp.net", "true_5551@c.us_ID")

    assert out[:2] == ["true_5551@c.us_ID", "ID"]
    assert "5551@s.whatsapp.net_ID" in out
    assert "5559@c.us_ID" in out


def test_key_to_dict_always_has_from_me() -> None:
    key = MessageKey.from_dict({"remoteJid": "g@g.us", "id": "I", "participant": "5551@s.whatsapp.net"})

    assert key.from_me is None
    assert key.to_dict() == {"remoteJid": "g@g.us", "id": "I", "fromMe": False, "participant": "5551@s.whatsapp.net"}


@pytest.mark.asyncio
async def test_resolve_from_index() -> None:
    index = MessageKeyIndex()
    index.register_dict(_msg("IDX")["key"])
    resolver = MessageKeyResolver(index, LocalStore())

    key = await resolver.resolve("5551@c.us", "false_5551@c.us_IDX")

    assert key.remote_jid == "5551@s.whatsapp.net"
    assert key.id == "IDX"


@pytest.mark.asyncio
async def test_resolve_from_chat_store_registers_alias() -> None:
    store = LocalStore()
    store.upsert_message(_msg("STORED", from_me=True))
    index = MessageKeyIndex()
    resolver = MessageKeyResolver(index, store)

    key = await resolver.resolve("5551@c.us", "STORED")

    assert key.from_me is True
    assert index.get("true_5551@c.us_STORED") == key


@pytest.mark.asyncio
async def test_resolve_from_loader() -> None:
    calls = []

    async def loader(jid, message_id):
        calls.append((jid, message_id))
        return {"key": {"id": message_id, "fromMe": False}}

    resolver = MessageKeyResolver(MessageKeyIndex(), LocalStore(), loader)

    key = await resolver.resolve("5551", "LOADED")

    assert calls == [("5551@s.whatsapp.net", "LOADED")]
    assert key.remote_jid == "5551@s.whatsapp.net"


@pytest.mark.asyncio
async def test_failing_loader_falls_through_to_global_scan() -> None:
    async def loader(jid, message_id):
        raise RuntimeError("boom")

    store = LocalStore()
    store.upsert_message(_msg("ELSEWHERE", jid="5552@s.whatsapp.net"))
    resolver = MessageKeyResolver(MessageKeyIndex(), store, loader)

    key = await resolver.resolve("5551@c.us", "ELSEWHERE")

    assert key.remote_jid == "5552@s.whatsapp.net"


@pytest.mark.asyncio
async def test_miss_raises() -> None:
    resolver = MessageKeyResolver(MessageKeyIndex(), LocalStore())

    with pytest.raises(MessageNotFoundError):
        await resolver.resolve("5551@c.us", "NOPE")


@pytest.mark.asyncio
async def test_find_message_returns_stored_body() -> None:
    store = LocalStore()
    store.upsert_message(_msg("BODY"))
    resolver = MessageKeyResolver(MessageKeyIndex(), store)

    key, msg = await resolver.find_message("5551@c.us", "5551@c.us_BODY")

    assert key.id == "BODY"
    assert msg["message"] == {"conversation": "BODY"}
