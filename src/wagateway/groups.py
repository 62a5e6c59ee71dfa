from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from .exceptions import InvalidContentError
from .formatting import format_group_metadata
from .jid import create_serialized_id, is_group_jid, to_protocol_jid
from .manager import SessionManager
from .session import Session
from .socket import GroupSetting, ParticipantAction

logger = logging.getLogger(__name__)


def _participant_jids(participants: Iterable[str]) -> list[str]:
    jids = [to_protocol_jid(p) for p in participants if p]
    if not jids:
        raise InvalidContentError("at least one participant is required")
    return jids


def _group_jid(group_id: str) -> str:
    jid = to_protocol_jid(group_id)
    if not is_group_jid(jid):
        raise InvalidContentError(f"not a group id: {group_id!r}")
    return jid


class GroupService:
    """Group administration for connected sessions."""

    def __init__(self, manager: SessionManager) -> None:
        self.manager = manager

    def _mirror(self, session: Session, jid: str, **update: Any) -> None:
        # Only groups already known locally are updated; unknown ones are
        # fetched on their next read.
        info = session.store.groups.get(jid)
        if info is None:
            return
        info.apply(update)
        self.manager.schedule_persist(session)

    async def create_group(
        self, session_id: str, subject: str, participants: Sequence[str]
    ) -> dict[str, Any]:
        if not subject:
            raise InvalidContentError("group subject is required")
        session = self.manager.require_connected(session_id)
        metadata = await session.socket.group_create(subject, _participant_jids(participants))
        info = session.store.set_group(metadata)
        self.manager.schedule_persist(session)
        logger.info("session %s: created group %s", session_id, info.id)
        formatted = format_group_metadata(info)
        return {
            "id": formatted["id"],
            "name": info.subject,
            "participants": formatted["participants"],
        }

    async def _update_participants(
        self, session_id: str, group_id: str, participants: Sequence[str], action: ParticipantAction
    ) -> list[dict[str, Any]]:
        session = self.manager.require_connected(session_id)
        jid = _group_jid(group_id)
        jids = _participant_jids(participants)
        results = await session.socket.group_participants_update(jid, jids, action)

        # Mirror only the participants the server accepted.
        accepted = [
            r.get("jid") or r.get("id")
            for r in results
            if str(r.get("status", "200")) == "200" and (r.get("jid") or r.get("id"))
        ]
        if accepted and session.store.update_group_participants(jid, accepted, action) is not None:
            self.manager.schedule_persist(session)
        return [
            {
                "id": create_serialized_id(str(r.get("jid") or r.get("id") or "")).to_dict(),
                "status": str(r.get("status", "200")),
            }
            for r in results
        ]

    async def add_participants(
        self, session_id: str, group_id: str, participants: Sequence[str]
    ) -> list[dict[str, Any]]:
        return await self._update_participants(session_id, group_id, participants, "add")

    async def remove_participants(
        self, session_id: str, group_id: str, participants: Sequence[str]
    ) -> list[dict[str, Any]]:
        return await self._update_participants(session_id, group_id, participants, "remove")

    async def promote_participants(
        self, session_id: str, group_id: str, participants: Sequence[str]
    ) -> list[dict[str, Any]]:
        return await self._update_participants(session_id, group_id, participants, "promote")

    async def demote_participants(
        self, session_id: str, group_id: str, participants: Sequence[str]
    ) -> list[dict[str, Any]]:
        return await self._update_participants(session_id, group_id, participants, "demote")

    async def get_participants(self, session_id: str, group_id: str) -> list[dict[str, Any]]:
        metadata = await self.manager.get_group_metadata(session_id, _group_jid(group_id))
        return metadata["participants"]

    async def set_subject(self, session_id: str, group_id: str, subject: str) -> None:
        if not subject:
            raise InvalidContentError("group subject is required")
        session = self.manager.require_connected(session_id)
        jid = _group_jid(group_id)
        await session.socket.group_update_subject(jid, subject)
        self._mirror(session, jid, subject=subject)

    async def set_description(self, session_id: str, group_id: str, description: str | None) -> None:
        session = self.manager.require_connected(session_id)
        jid = _group_jid(group_id)
        await session.socket.group_update_description(jid, description or "")
        self._mirror(session, jid, desc=description or "")

    async def _setting(self, session_id: str, group_id: str, setting: GroupSetting) -> None:
        session = self.manager.require_connected(session_id)
        jid = _group_jid(group_id)
        await session.socket.group_setting_update(jid, setting)
        if setting in ("announcement", "not_announcement"):
            self._mirror(session, jid, announce=setting == "announcement")
        else:
            self._mirror(session, jid, restrict=setting == "locked")

    async def set_messages_admins_only(
        self, session_id: str, group_id: str, admins_only: bool = True
    ) -> None:
        await self._setting(session_id, group_id, "announcement" if admins_only else "not_announcement")

    async def set_info_admins_only(
        self, session_id: str, group_id: str, admins_only: bool = True
    ) -> None:
        await self._setting(session_id, group_id, "locked" if admins_only else "unlocked")

    async def leave(self, session_id: str, group_id: str) -> None:
        session = self.manager.require_connected(session_id)
        jid = _group_jid(group_id)
        await session.socket.group_leave(jid)
        logger.info("session %s: left group %s", session_id, jid)

    async def get_invite_code(self, session_id: str, group_id: str) -> str | None:
        session = self.manager.require_connected(session_id)
        return await session.socket.group_invite_code(_group_jid(group_id))

    async def revoke_invite(self, session_id: str, group_id: str) -> str | None:
        session = self.manager.require_connected(session_id)
        return await session.socket.group_revoke_invite(_group_jid(group_id))

    async def accept_invite(self, session_id: str, invite_code: str) -> dict[str, str] | None:
        if not invite_code:
            raise InvalidContentError("invite code is required")
        session = self.manager.require_connected(session_id)
        group_jid = await session.socket.group_accept_invite(invite_code)
        if not group_jid:
            return None
        return create_serialized_id(group_jid).to_dict()

