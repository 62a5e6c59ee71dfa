from __future__ import annotations

import pytest

from wagateway.jid import (
    create_message_id,
    is_group_jid,
    parse_message_id,
    phone_number,
    same_user,
    to_legacy_jid,
    to_protocol_jid,
    user_jid,
)


@pytest.mark.parametrize(
    "value, protocol, legacy",
    [
        ("5551@c.us", "5551@s.whatsapp.net", "5551@c.us"),
        ("5551@s.whatsapp.net", "5551@s.whatsapp.net", "5551@c.us"),
        ("5551", "5551@s.whatsapp.net", "5551@c.us"),
        ("120363@g.us", "120363@g.us", "120363@g.us"),
        ("status@broadcast", "status@broadcast", "status@broadcast"),
        ("987@lid", "987@lid", "987@lid"),
        ("", "", ""),
    ],
)
def test_address_conventions(value: str, protocol: str, legacy: str) -> None:
    assert to_protocol_jid(value) == protocol
    assert to_legacy_jid(value) == legacy
    assert to_protocol_jid(to_legacy_jid(value)) == protocol


def test_device_suffix() -> None:
    assert phone_number("5551:12@s.whatsapp.net") == "5551"
    assert user_jid("5551:12@s.whatsapp.net") == "5551@s.whatsapp.net"
    assert same_user("5551:3@s.whatsapp.net", "5551@c.us")
    assert not same_user("5551@c.us", None)


def test_group_detection() -> None:
    assert is_group_jid("1@g.us")
    assert not is_group_jid("1@c.us")
    assert not is_group_jid(None)


def test_composite_message_ids() -> None:
    assert create_message_id("ABC", "5551@s.whatsapp.net", True) == {
        "_serialized": "true_5551@c.us_ABC",
        "fromMe": True,
        "remote": "5551@c.us",
        "id": "ABC",
    }

    flagged = parse_message_id("false_5551@c.us_A_B")
    assert (flagged.id, flagged.remote_jid, flagged.from_me) == ("A_B", "5551@c.us", False)

    prefixed = parse_message_id("5551@s.whatsapp.net_XYZ")
    assert (prefixed.id, prefixed.remote_jid, prefixed.from_me) == ("XYZ", "5551@s.whatsapp.net", None)

    assert parse_message_id("3EB0ABCDEF") is None
    assert parse_message_id("") is None
