"""
Session registry and lifecycle.

`SessionManager` owns every live `Session`: it opens sockets through the
socket factory, reconciles their event streams into the local store and the
message-key index, emits notifications, reconnects transient failures and
persists each store with a debounced writer.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from . import notify
from .config import GatewayConfig
from .constants import STORE_FILENAME
from .exceptions import (
    QueryError,
    SessionNotConnectedError,
    SessionNotFoundError,
    UnsupportedOperationError,
)
from .formatting import (
    format_chat,
    format_contact,
    format_group_metadata,
    format_message,
    map_status_to_ack,
)
from .jid import (
    create_message_id,
    create_serialized_id,
    digits_only,
    is_group_jid,
    is_status_broadcast,
    phone_number,
    to_legacy_jid,
    to_protocol_jid,
)
from .notify import NotificationSink, NullSink
from .session import Session, SessionStatus, legacy_state
from .socket import ConnectionUpdate, DisconnectReason, SocketFactory, WAMessage
from .storage import ensure_dir, list_session_ids, remove_session_dir, validate_session_id
from .store import GroupInfo, LocalStore
from .util.asyncio import Debouncer, cancel_suppress, ensure_task

logger = logging.getLogger(__name__)

Handler = Callable[[Session, Any], Awaitable[None]]


def _default_socket_factory() -> SocketFactory:
    # pyaileys is only imported when the gateway talks to the real network.
    from .adapter import pyaileys_socket_factory

    return pyaileys_socket_factory


class SessionManager:
    def __init__(
        self,
        config: GatewayConfig | None = None,
        *,
        socket_factory: SocketFactory | None = None,
        sink: NotificationSink | None = None,
    ) -> None:
        self.config = config or GatewayConfig()
        self._socket_factory = socket_factory or _default_socket_factory()
        self.sink: NotificationSink = sink or NullSink()
        self._sessions: dict[str, Session] = {}
        self._reconnect_tasks: dict[str, asyncio.Task[None]] = {}
        # start, stop, terminate and reconnect for one id run one at a time.
        self._locks: dict[str, asyncio.Lock] = {}
        self._grace_tasks: set[asyncio.Task[None]] = set()

        self._handlers: dict[str, Handler] = {
            "connection.update": self._on_connection_update,
            "creds.update": self._on_creds_update,
            "messaging-history.set": self._on_history_set,
            "messages.upsert": self._on_messages_upsert,
            "messages.update": self._on_messages_update,
            "messages.reaction": self._on_messages_reaction,
            "chats.upsert": self._on_chats_upsert,
            "chats.update": self._on_chats_update,
            "chats.delete": self._on_chats_delete,
            "contacts.upsert": self._on_contacts_upsert,
            "contacts.update": self._on_contacts_update,
            "groups.upsert": self._on_groups_upsert,
            "groups.update": self._on_groups_update,
            "group-participants.update": self._on_group_participants_update,
            "call": self._on_call,
        }

    # Registry

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def is_connected(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and session.is_connected

    def get_status(self, session_id: str) -> SessionStatus | None:
        session = self._sessions.get(session_id)
        return session.status if session else None

    def get_state(self, session_id: str) -> str:
        return legacy_state(self.get_status(session_id))

    def get_qr(self, session_id: str) -> str | None:
        session = self._sessions.get(session_id)
        return session.qr if session else None

    def get_qr_svg(self, session_id: str) -> str | None:
        qr = self.get_qr(session_id)
        if not qr:
            return None
        import qrcode
        from qrcode.image.svg import SvgImage

        img = qrcode.make(qr, image_factory=SvgImage)
        return img.to_string(encoding="unicode")

    def get_pairing_code(self, session_id: str) -> str | None:
        session = self._sessions.get(session_id)
        return session.pairing_code if session else None

    def require_connected(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None or not session.is_connected:
            raise SessionNotConnectedError(session_id)
        return session

    # Lifecycle

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def start(self, session_id: str) -> Session:
        """
        Start (or resume) a session and return it in `connecting` state.

        Starting an already-connected session returns it unchanged; any other
        existing session is stopped and replaced.
        """

        validate_session_id(session_id)
        async with self._lock_for(session_id):
            existing = self._sessions.get(session_id)
            if existing is not None and existing.is_connected:
                logger.info("session %s: already connected", session_id)
                return existing
            await self._stop(session_id)

            logger.info("session %s: starting", session_id)
            return await self._open(session_id, reconnect_attempts=0)

    async def _open(self, session_id: str, *, reconnect_attempts: int) -> Session:
        path = self.config.session_path(session_id)
        await ensure_dir(path)

        # The socket comes last so that nothing after it can fail and leak it.
        store = await LocalStore.load(path / STORE_FILENAME)
        socket, save_creds = await self._socket_factory(session_id, path)
        session = Session(
            id=session_id,
            path=path,
            socket=socket,
            save_creds=save_creds,
            store=store,
            reconnect_attempts=reconnect_attempts,
        )
        indexed = session.index.register_messages(session.store.iter_messages())
        if indexed:
            logger.debug("session %s: indexed %d stored messages", session_id, indexed)

        session.persister = Debouncer(
            self.config.store_flush_delay_s,
            functools.partial(self._persist, session),
            name=f"wagateway.persist.{session_id}",
        )
        self._sessions[session_id] = session
        for event, handler in self._handlers.items():
            socket.events.on(event, functools.partial(self._dispatch, handler, session))

        session.connect_task = ensure_task(self._connect(session), name=f"wagateway.connect.{session_id}")
        return session

    async def _connect(self, session: Session) -> None:
        try:
            await session.socket.connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("session %s: connect failed: %s", session.id, e)
            await self._on_connection_update(session, ConnectionUpdate(connection="close", error=e))

    async def stop(self, session_id: str) -> None:
        """Close the socket and flush the store; credentials stay on disk."""

        async with self._lock_for(session_id):
            await self._stop(session_id)

    async def _stop(self, session_id: str) -> None:
        await cancel_suppress(self._reconnect_tasks.pop(session_id, None))
        session = self._sessions.get(session_id)
        if session is None:
            return

        logger.info("session %s: stopping", session_id)
        session.manual_stop = True
        await self._close_session(session)
        if self._sessions.get(session_id) is session:
            del self._sessions[session_id]

        task = ensure_task(self._clear_manual_stop(session), name=f"wagateway.stop_grace.{session_id}")
        self._grace_tasks.add(task)
        task.add_done_callback(self._grace_tasks.discard)

    async def _clear_manual_stop(self, session: Session) -> None:
        await asyncio.sleep(self.config.stop_grace_s)
        session.manual_stop = False

    async def _close_session(self, session: Session) -> None:
        if session.persister is not None:
            await session.persister.flush()
        await cancel_suppress(session.connect_task)
        try:
            await session.socket.end()
        except Exception as e:
            logger.warning("session %s: error ending socket: %s", session.id, e)

    async def terminate(self, session_id: str) -> None:
        """Stop the session and delete its directory (credentials included)."""

        validate_session_id(session_id)
        logger.info("session %s: terminating", session_id)
        async with self._lock_for(session_id):
            await self._stop(session_id)
            if await remove_session_dir(self.config.sessions_path, session_id):
                logger.info("session %s: auth files deleted", session_id)

    async def logout(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        logger.info("session %s: logging out", session_id)
        try:
            await session.socket.logout()
        except Exception as e:
            logger.warning("session %s: error during logout: %s", session_id, e)
        await self.terminate(session_id)

    async def restart(self, session_id: str) -> Session:
        await self.stop(session_id)
        return await self.start(session_id)

    async def request_pairing_code(self, session_id: str, phone: str) -> str:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        number = digits_only(phone)
        previous = session.status
        session.phone_number = number
        session.status = SessionStatus.PAIRING
        try:
            code = await session.socket.request_pairing_code(number)
        except Exception:
            logger.exception("session %s: failed to request pairing code", session_id)
            if session.status is SessionStatus.PAIRING:
                session.status = previous
            raise

        session.pairing_code = code
        logger.info("session %s: pairing code requested for %s", session_id, number)
        return code

    async def auto_start(self) -> list[str]:
        """Start every session found on disk; returns the ids that started."""

        if not self.config.auto_start_sessions:
            return []

        logger.info("auto-starting existing sessions")
        started: list[str] = []
        for session_id in await list_session_ids(self.config.sessions_path):
            logger.info("session %s: auto-starting", session_id)
            try:
                await self.start(session_id)
            except Exception:
                logger.exception("session %s: failed to auto-start", session_id)
                continue
            started.append(session_id)
        return started

    async def close(self) -> None:
        for session_id in list(self._sessions):
            await self.stop(session_id)
        for task in list(self._reconnect_tasks.values()):
            await cancel_suppress(task)
        self._reconnect_tasks.clear()
        for task in list(self._grace_tasks):
            await cancel_suppress(task)

    # Reconnection

    def _schedule_reconnect(self, session: Session) -> None:
        previous = self._reconnect_tasks.get(session.id)
        if previous is not None and not previous.done():
            previous.cancel()
        self._reconnect_tasks[session.id] = ensure_task(
            self._reconnect(session), name=f"wagateway.reconnect.{session.id}"
        )

    async def _reconnect(self, old: Session) -> None:
        session_id = old.id
        try:
            await asyncio.sleep(self.config.reconnect_interval_s)
            async with self._lock_for(session_id):
                if self._sessions.get(session_id) is not old:
                    return
                logger.info("session %s: reconnecting (attempt %d)", session_id, old.reconnect_attempts)
                old.manual_stop = True
                await self._close_session(old)
                del self._sessions[session_id]
                try:
                    await self._open(session_id, reconnect_attempts=old.reconnect_attempts)
                except Exception as e:
                    logger.warning("session %s: reconnection failed: %s", session_id, e)
                    # Keep the old record so the failure counts as one more closed attempt.
                    self._forget_reconnect(session_id)
                    old.manual_stop = False
                    self._sessions[session_id] = old
                    await self._on_close(old, ConnectionUpdate(connection="close", error=e))
        finally:
            self._forget_reconnect(session_id)

    def _forget_reconnect(self, session_id: str) -> None:
        if self._reconnect_tasks.get(session_id) is asyncio.current_task():
            del self._reconnect_tasks[session_id]

    # Persistence

    async def _persist(self, session: Session) -> None:
        try:
            await session.store.save(session.store_path)
        except Exception as e:
            logger.warning("session %s: failed to persist store: %s", session.id, e)

    def _schedule_persist(self, session: Session) -> None:
        if session.persister is not None and self._is_live(session):
            session.persister.schedule()

    # Events

    def _is_live(self, session: Session) -> bool:
        return self._sessions.get(session.id) is session and not session.manual_stop

    async def _dispatch(self, handler: Handler, session: Session, payload: Any) -> None:
        if not self._is_live(session):
            return
        await handler(session, payload)

    async def _emit(self, session: Session, data_type: str, data: Any) -> None:
        try:
            await self.sink.emit(session.id, data_type, data)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("session %s: failed to emit %s", session.id, data_type)

    async def _on_connection_update(self, session: Session, update: ConnectionUpdate) -> None:
        if update.qr:
            session.qr = update.qr
            session.status = SessionStatus.QR
            logger.info("session %s: QR code generated", session.id)
            await self._emit(session, notify.QR, {"qr": update.qr})

        if update.connection == "close":
            await self._on_close(session, update)
        elif update.connection == "open":
            session.status = SessionStatus.CONNECTED
            session.qr = None
            session.reconnect_attempts = 0
            logger.info("session %s: connected", session.id)
            user = session.socket.user
            await self._emit(session, notify.AUTHENTICATED, {})
            await self._emit(
                session,
                notify.READY,
                {"id": to_legacy_jid(user.id) if user else None, "pushname": user.name if user else None},
            )

    async def _on_close(self, session: Session, update: ConnectionUpdate) -> None:
        if not self._is_live(session):
            return

        status_code = update.status_code
        session.status = SessionStatus.DISCONNECTED
        session.qr = None
        self._schedule_persist(session)

        if status_code == DisconnectReason.LOGGED_OUT:
            logger.info("session %s: logged out", session.id)
            await self._emit(session, notify.DISCONNECTED, {"reason": "logged_out"})
            await self.terminate(session.id)
            return

        if session.reconnect_attempts < self.config.max_reconnect_retries:
            session.reconnect_attempts += 1
            logger.info(
                "session %s: connection closed (code %s), reconnect attempt %d in %.1fs",
                session.id,
                status_code,
                session.reconnect_attempts,
                self.config.reconnect_interval_s,
            )
            self._schedule_reconnect(session)
            return

        if session.gave_up:
            return
        session.gave_up = True
        logger.warning(
            "session %s: connection lost, giving up after %d attempts",
            session.id,
            session.reconnect_attempts,
        )
        await self._emit(session, notify.DISCONNECTED, {"reason": "connection_lost"})

    async def _on_creds_update(self, session: Session, _creds: Any) -> None:
        await session.save_creds()

    async def _on_history_set(self, session: Session, data: Mapping[str, Any]) -> None:
        stored = session.store.set_history(
            chats=data.get("chats") or (),
            contacts=data.get("contacts") or (),
            messages=data.get("messages") or (),
        )
        session.index.register_messages(stored)
        logger.debug(
            "session %s: history sync with %d messages", session.id, len(stored)
        )
        self._schedule_persist(session)

    async def _on_messages_upsert(self, session: Session, data: Mapping[str, Any]) -> None:
        is_notify = data.get("type") == "notify"
        messages = session.store.upsert_messages(data.get("messages") or (), notify=is_notify)
        own = session.own_jid
        for msg in messages:
            session.index.register_dict(msg.get("key"))
            if not is_notify or not msg.get("message"):
                continue
            formatted = format_message(msg, own)
            await self._emit(session, notify.MESSAGE_CREATE, formatted)
            if not msg["key"].get("fromMe"):
                await self._emit(session, notify.MESSAGE, formatted)
        self._schedule_persist(session)

    async def _on_messages_update(self, session: Session, updates: Sequence[Mapping[str, Any]]) -> None:
        for item in updates:
            key = item.get("key") or {}
            update = item.get("update") or {}
            session.index.register_dict(key)
            session.store.update_message(key, update)
            if update.get("status") is not None and key.get("id") and key.get("remoteJid"):
                await self._emit(
                    session,
                    notify.MESSAGE_ACK,
                    {
                        "message": {
                            "id": create_message_id(key["id"], key["remoteJid"], bool(key.get("fromMe")))
                        },
                        "ack": map_status_to_ack(update["status"]),
                    },
                )
        self._schedule_persist(session)

    async def _on_messages_reaction(self, session: Session, reactions: Sequence[Mapping[str, Any]]) -> None:
        for item in reactions:
            key = item.get("key") or {}
            reaction = item.get("reaction") or {}
            session.index.register_dict(key)
            if not key.get("id") or not key.get("remoteJid"):
                continue
            session.store.apply_reaction(key, reaction)
            await self._emit(
                session,
                notify.MESSAGE_REACTION,
                {
                    "id": create_message_id(key["id"], key["remoteJid"], bool(key.get("fromMe"))),
                    "reaction": reaction,
                },
            )
        self._schedule_persist(session)

    async def _on_chats_upsert(self, session: Session, chats: Sequence[Mapping[str, Any]]) -> None:
        session.store.upsert_chats(chats)
        self._schedule_persist(session)

    async def _on_chats_update(self, session: Session, updates: Sequence[Mapping[str, Any]]) -> None:
        session.store.update_chats(updates)
        for update in updates:
            jid = update.get("id")
            if not jid:
                continue
            if update.get("unreadCount") is not None:
                await self._emit(
                    session,
                    notify.UNREAD_COUNT,
                    {"id": create_serialized_id(jid).to_dict(), "unreadCount": update["unreadCount"]},
                )
            if update.get("archived") is not None:
                await self._emit(
                    session,
                    notify.CHAT_ARCHIVED,
                    {
                        "chat": {"id": create_serialized_id(jid).to_dict()},
                        "archived": bool(update["archived"]),
                    },
                )
        self._schedule_persist(session)

    async def _on_chats_delete(self, session: Session, jids: Sequence[str]) -> None:
        session.store.delete_chats(jids)
        for jid in jids:
            await self._emit(session, notify.CHAT_REMOVED, {"id": create_serialized_id(jid).to_dict()})
        self._schedule_persist(session)

    async def _on_contacts_upsert(self, session: Session, contacts: Sequence[Mapping[str, Any]]) -> None:
        session.store.upsert_contacts(contacts)
        self._schedule_persist(session)

    async def _on_contacts_update(self, session: Session, updates: Sequence[Mapping[str, Any]]) -> None:
        session.store.update_contacts(updates)
        for update in updates:
            jid = update.get("id")
            if not jid:
                continue
            legacy = to_legacy_jid(jid)
            await self._emit(
                session, notify.CONTACT_CHANGED, {"message": None, "oldId": legacy, "newId": legacy}
            )
        self._schedule_persist(session)

    async def _on_groups_upsert(self, session: Session, groups: Sequence[Mapping[str, Any]]) -> None:
        session.store.upsert_groups(groups)
        self._schedule_persist(session)

    async def _on_groups_update(self, session: Session, updates: Sequence[Mapping[str, Any]]) -> None:
        session.store.update_groups(updates)
        for update in updates:
            jid = update.get("id")
            if not jid:
                continue
            payload = {**update, "id": create_serialized_id(jid).to_dict()}
            await self._emit(session, notify.GROUP_UPDATE, payload)
        self._schedule_persist(session)

    async def _on_group_participants_update(self, session: Session, data: Mapping[str, Any]) -> None:
        jid = data.get("id")
        action = data.get("action")
        participants = [str(p) for p in data.get("participants") or []]
        if not jid:
            return
        session.store.update_group_participants(jid, participants, str(action))

        data_type = {
            "add": notify.GROUP_JOIN,
            "remove": notify.GROUP_LEAVE,
            "promote": notify.GROUP_UPDATE,
            "demote": notify.GROUP_UPDATE,
        }.get(str(action))
        if data_type is not None:
            for participant in participants:
                await self._emit(
                    session,
                    data_type,
                    {
                        "id": create_serialized_id(jid).to_dict(),
                        "participant": to_legacy_jid(participant),
                        "action": action,
                    },
                )
        self._schedule_persist(session)

    async def _on_call(self, session: Session, calls: Sequence[Mapping[str, Any]]) -> None:
        for call in calls:
            await self._emit(
                session,
                notify.CALL,
                {
                    "id": call.get("id"),
                    "from": to_legacy_jid(call.get("from") or ""),
                    "isVideo": bool(call.get("isVideo")),
                    "isGroup": bool(call.get("isGroup")),
                    "status": call.get("status"),
                },
            )

    # Read APIs

    def _last_message(self, session: Session, jid: str) -> dict[str, Any] | None:
        latest = session.store.latest_message(jid)
        return format_message(latest, session.own_jid) if latest is not None else None

    def _format_chat(self, session: Session, jid: str, group: GroupInfo | None = None) -> dict[str, Any]:
        store = session.store
        return format_chat(
            jid,
            chat=store.chats.get(jid),
            group=group or store.groups.get(jid),
            contact=store.contacts.get(jid),
            last_message=self._last_message(session, jid),
        )

    async def get_chats(self, session_id: str) -> list[dict[str, Any]]:
        session = self.require_connected(session_id)
        store = session.store
        jids = [*store.chats, *store.groups, *store.message_chat_ids()]

        chats: dict[str, dict[str, Any]] = {}
        for jid in jids:
            if jid and jid not in chats and not is_status_broadcast(jid):
                chats[jid] = self._format_chat(session, jid)

        try:
            groups = await session.socket.group_fetch_all_participating()
        except Exception as e:
            logger.debug("session %s: unable to fetch groups while listing chats: %s", session_id, e)
        else:
            for jid, metadata in groups.items():
                if jid not in chats:
                    group = GroupInfo.from_metadata({**metadata, "id": jid})
                    chats[jid] = self._format_chat(session, jid, group)

        return sorted(chats.values(), key=lambda c: c["timestamp"], reverse=True)

    async def get_chat_by_id(self, session_id: str, chat_id: str) -> dict[str, Any]:
        session = self.require_connected(session_id)
        jid = to_protocol_jid(chat_id)
        if is_group_jid(jid) and jid not in session.store.groups:
            try:
                await self._fetch_group(session, jid)
            except Exception as e:
                logger.warning("session %s: group metadata for %s unavailable: %s", session_id, jid, e)
        return self._format_chat(session, jid)

    async def _fetch_group(self, session: Session, jid: str) -> GroupInfo:
        metadata = await session.socket.group_metadata(jid)
        info = session.store.set_group({**metadata, "id": metadata.get("id") or jid})
        self._schedule_persist(session)
        return info

    async def _blocked_set(self, session: Session) -> set[str]:
        try:
            return set(await session.socket.fetch_blocklist())
        except Exception as e:
            logger.debug("session %s: blocklist unavailable: %s", session.id, e)
            return set()

    async def get_contacts(self, session_id: str) -> list[dict[str, Any]]:
        session = self.require_connected(session_id)
        store = session.store
        blocked = await self._blocked_set(session)

        contacts: dict[str, dict[str, Any]] = {}
        for jid in [*store.contacts, *store.chats, *store.message_chat_ids()]:
            if not jid or jid in contacts or is_group_jid(jid) or is_status_broadcast(jid):
                continue
            contacts[jid] = format_contact(jid, store.contacts.get(jid), blocked)
        return sorted(contacts.values(), key=lambda c: c["number"])

    async def get_contact_by_id(self, session_id: str, contact_id: str) -> dict[str, Any] | None:
        """
        Contact record for `contact_id`.

        Unknown non-group ids are confirmed with the server first; None when
        the number is not on WhatsApp.
        """

        session = self.require_connected(session_id)
        jid = to_protocol_jid(contact_id)
        contact = session.store.contacts.get(jid)
        if contact is None and not is_group_jid(jid):
            try:
                results = await session.socket.on_whatsapp(phone_number(jid))
            except (UnsupportedOperationError, QueryError) as e:
                logger.debug("session %s: cannot confirm %s: %s", session_id, jid, e)
            else:
                if not results or not results[0].get("exists"):
                    return None
        return format_contact(jid, contact, await self._blocked_set(session))

    async def is_registered_user(self, session_id: str, contact_id: str) -> bool:
        session = self.require_connected(session_id)
        results = await session.socket.on_whatsapp(phone_number(to_protocol_jid(contact_id)))
        return bool(results and results[0].get("exists"))

    def get_client_info(self, session_id: str) -> dict[str, Any] | None:
        session = self._sessions.get(session_id)
        user = session.socket.user if session else None
        if user is None:
            return None
        return {
            "pushname": user.name or "",
            "wid": create_serialized_id(user.id).to_dict(),
            "me": create_serialized_id(user.id).to_dict(),
        }

    async def get_group_metadata(self, session_id: str, group_id: str) -> dict[str, Any]:
        session = self.require_connected(session_id)
        jid = to_protocol_jid(group_id)
        info = session.store.groups.get(jid)
        if info is None:
            info = await self._fetch_group(session, jid)
        return format_group_metadata(info)

    async def get_profile_pic_url(self, session_id: str, contact_id: str) -> str | None:
        session = self.require_connected(session_id)
        jid = to_protocol_jid(contact_id)
        try:
            return await session.socket.profile_picture_url(jid)
        except Exception as e:
            logger.debug("session %s: no profile picture for %s: %s", session_id, jid, e)
            return None

    async def get_blocked_contacts(self, session_id: str) -> list[dict[str, Any]]:
        session = self.require_connected(session_id)
        blocked = set(await session.socket.fetch_blocklist())
        return [format_contact(jid, session.store.contacts.get(jid), blocked) for jid in sorted(blocked)]

    async def set_blocked(self, session_id: str, contact_id: str, blocked: bool) -> None:
        session = self.require_connected(session_id)
        jid = to_protocol_jid(contact_id)
        await session.socket.update_block_status(jid, "block" if blocked else "unblock")
        logger.info("session %s: %s %s", session_id, "blocked" if blocked else "unblocked", jid)

    async def get_common_groups(self, session_id: str, contact_id: str) -> list[dict[str, Any]]:
        self.require_connected(session_id)
        raise UnsupportedOperationError("common groups are not supported by the protocol library")

    def get_messages_for_chat(self, session_id: str, chat_id: str) -> list[WAMessage]:
        session = self.require_connected(session_id)
        return session.store.sorted_messages(to_protocol_jid(chat_id))

    def get_last_messages(self, session_id: str, chat_id: str, count: int = 1) -> list[WAMessage]:
        return self.get_messages_for_chat(session_id, chat_id)[: max(count, 0)]

    async def get_message_by_id(self, session_id: str, chat_id: str, message_id: str) -> WAMessage | None:
        session = self.require_connected(session_id)
        _, msg = await session.resolver.find_message(chat_id, message_id)
        return msg

    def format_message(self, session_id: str, msg: WAMessage) -> dict[str, Any]:
        session = self._sessions.get(session_id)
        return format_message(msg, session.own_jid if session else None)

    def schedule_persist(self, session: Session) -> None:
        self._schedule_persist(session)
