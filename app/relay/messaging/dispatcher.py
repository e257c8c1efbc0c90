"""Event ingestion -- routes session events to their handlers.

:meth:`EventDispatcher.run` consumes the session client's queue and starts
one task per event, so a slow handler (disk write, contact lookup) never
holds up the events behind it. Every handler failure is logged and
swallowed; nothing raised here reaches the queue consumer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from ..state.message_store import MessageStore
from ..state.session_state import SessionStateMachine
from ..state.watchlist import WatchRegistry
from .auto_messages import AutoMessageEngine
from .broadcaster import Broadcaster, WsEvent
from .formatting import (
    ack_label,
    format_group_notification,
    format_message,
    format_reaction,
    iso,
)
from .ids import is_group_id
from .models import GroupNotification, IncomingMessage, ReactionEvent, SessionEvent, serialized_id

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[None]]


class EventDispatcher:
    """One handler per inbound event kind, isolated from one another."""

    def __init__(
        self,
        session: SessionStateMachine,
        watchlist: WatchRegistry,
        messages: MessageStore,
        auto_messages: AutoMessageEngine,
        broadcaster: Broadcaster,
    ) -> None:
        self._session = session
        self._watchlist = watchlist
        self._messages = messages
        self._auto = auto_messages
        self._broadcaster = broadcaster
        self._inflight: set[asyncio.Task[None]] = set()
        self._handlers: dict[str, Handler] = {
            "message": self._on_message,
            "message_create": self._on_message_create,
            "message_ack": self._on_message_ack,
            "message_revoke_everyone": self._on_message_revoke,
            "message_edit": self._on_message_edit,
            "message_reaction": self._on_message_reaction,
            "group_join": self._on_group_join,
            "group_leave": self._on_group_leave,
            "group_update": self._on_group_update,
            "group_admin_changed": self._on_group_admin_changed,
            "group_membership_request": self._on_group_membership_request,
            "contact_changed": self._on_contact_changed,
            "chat_archived": self._on_chat_archived,
            "qr": self._on_qr,
            "authenticated": self._on_authenticated,
            "ready": self._on_ready,
            "disconnected": self._on_disconnected,
            "auth_failure": self._on_auth_failure,
        }

    @property
    def kinds(self) -> frozenset[str]:
        return frozenset(self._handlers)

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    # -- loop ----------------------------------------------------------------

    async def run(self, queue: asyncio.Queue[SessionEvent | None]) -> None:
        """Consume *queue* until a ``None`` sentinel arrives."""
        logger.info("[dispatch] loop started")
        while True:
            event = await queue.get()
            try:
                if event is None:
                    break
                self.submit(event)
            finally:
                queue.task_done()
        logger.info("[dispatch] loop stopped")

    def submit(self, event: SessionEvent) -> asyncio.Task[None]:
        task = asyncio.create_task(self.dispatch(event), name=f"event:{event.kind}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight handler, including ones started meanwhile."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def dispatch(self, event: SessionEvent) -> None:
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.debug("[dispatch] no handler for %s", event.kind)
            return
        try:
            await handler(event.data)
        except Exception:
            logger.exception("[dispatch] error handling %s", event.kind)

    # -- message traffic -----------------------------------------------------

    async def _on_message(self, data: dict[str, Any]) -> None:
        msg = IncomingMessage.from_payload(data)
        cid = msg.conversation_id
        if is_group_id(cid):
            logger.info("[dispatch] group message in %s from %s", cid, msg.author or msg.sender)
        else:
            logger.debug("[dispatch] message from %s", cid)

        formatted = format_message(msg)
        if self._persist(msg, cid):
            self._broadcaster.broadcast(WsEvent.WATCHLIST_MESSAGE, {"chatId": cid, "message": formatted})
        self._broadcaster.broadcast(WsEvent.MESSAGE_NEW, formatted)

    async def _on_message_create(self, data: dict[str, Any]) -> None:
        msg = IncomingMessage.from_payload(data)
        if not msg.from_me:
            return
        cid = msg.conversation_id
        if self._persist(msg, cid):
            self._broadcaster.broadcast(
                WsEvent.WATCHLIST_MESSAGE, {"chatId": cid, "message": format_message(msg)},
            )

    def _persist(self, msg: IncomingMessage, cid: str) -> bool:
        """Log *msg* and refresh the watch entry; ``False`` when not watched."""
        if not self._watchlist.is_watched(cid):
            return False
        _, created = self._messages.log_message(msg)
        if created:
            self._watchlist.record_message(msg, cid)
        else:
            logger.debug("[dispatch] redelivered message %s ignored", msg.id)
        return True

    async def _on_message_ack(self, data: dict[str, Any]) -> None:
        message_id = serialized_id((data.get("message") or {}).get("id"))
        ack = int(data.get("ack", 0))
        record = self._messages.update_ack(message_id, ack)
        effective = record.ack if record is not None else ack
        self._broadcaster.broadcast(WsEvent.MESSAGE_ACK, {
            "messageId": message_id,
            "ack": effective,
            "ackLabel": ack_label(effective),
        })

    async def _on_message_revoke(self, data: dict[str, Any]) -> None:
        revoked = data.get("revoked")
        if not revoked:
            return
        message_id = serialized_id(revoked.get("id"))
        self._messages.mark_deleted(message_id)
        self._broadcaster.broadcast(WsEvent.MESSAGE_REVOKED, {"messageId": message_id})

    async def _on_message_edit(self, data: dict[str, Any]) -> None:
        message_id = serialized_id((data.get("message") or {}).get("id"))
        new_body = data.get("newBody") or ""
        old_body = data.get("oldBody") or ""
        self._messages.mark_edited(message_id, new_body)
        self._broadcaster.broadcast(WsEvent.MESSAGE_EDIT, {
            "messageId": message_id,
            "newBody": new_body,
            "oldBody": old_body,
        })

    async def _on_message_reaction(self, data: dict[str, Any]) -> None:
        reaction = ReactionEvent.from_payload(data)
        self._messages.apply_reaction(
            reaction.message_id, reaction.sender_id, reaction.emoji, reaction.timestamp,
        )
        self._broadcaster.broadcast(WsEvent.MESSAGE_REACTION, format_reaction(reaction))

    # -- groups --------------------------------------------------------------

    async def _on_group_join(self, data: dict[str, Any]) -> None:
        notification = GroupNotification.from_payload(data)
        group_id = notification.chat_id
        logger.info(
            "[dispatch] member(s) joined %s: %s", group_id, ", ".join(notification.recipient_ids),
        )
        self._broadcaster.broadcast(WsEvent.GROUP_JOIN, format_group_notification(notification))
        self._trigger(self._auto.on_join, group_id, notification.recipient_ids)
        self._watchlist_delta(group_id, "member_join", members=notification.recipient_ids)

    async def _on_group_leave(self, data: dict[str, Any]) -> None:
        notification = GroupNotification.from_payload(data)
        group_id = notification.chat_id
        logger.info(
            "[dispatch] member(s) left %s: %s", group_id, ", ".join(notification.recipient_ids),
        )
        self._broadcaster.broadcast(WsEvent.GROUP_LEAVE, format_group_notification(notification))
        self._trigger(self._auto.on_leave, group_id, notification.recipient_ids)
        self._watchlist_delta(group_id, "member_leave", members=notification.recipient_ids)

    def _trigger(self, fire, group_id: str, member_ids: list[str]) -> None:
        try:
            fire(group_id, member_ids)
        except Exception:
            logger.exception("[dispatch] auto-message trigger failed for %s", group_id)

    def _watchlist_delta(self, group_id: str, event: str, **extra: Any) -> None:
        if self._watchlist.is_watched(group_id):
            self._broadcaster.broadcast(
                WsEvent.WATCHLIST_UPDATE, {"chatId": group_id, "event": event, **extra},
            )

    async def _on_group_update(self, data: dict[str, Any]) -> None:
        notification = GroupNotification.from_payload(data)
        logger.info("[dispatch] group %s updated: %s", notification.chat_id, notification.type)
        self._broadcaster.broadcast(WsEvent.GROUP_UPDATE, format_group_notification(notification))
        self._watchlist_delta(notification.chat_id, "group_update", type=notification.type)

    async def _on_group_admin_changed(self, data: dict[str, Any]) -> None:
        notification = GroupNotification.from_payload(data)
        logger.info("[dispatch] admin changed in %s", notification.chat_id)
        self._broadcaster.broadcast(
            WsEvent.GROUP_ADMIN_CHANGED, format_group_notification(notification),
        )

    async def _on_group_membership_request(self, data: dict[str, Any]) -> None:
        notification = GroupNotification.from_payload(data)
        logger.info("[dispatch] membership request in %s", notification.chat_id)
        self._broadcaster.broadcast(WsEvent.GROUP_MEMBERSHIP_REQUEST, {
            "groupId": notification.chat_id,
            "requesterId": notification.author,
            "timestamp": iso(time.time()),
        })

    # -- contacts & chats ----------------------------------------------------

    async def _on_contact_changed(self, data: dict[str, Any]) -> None:
        self._broadcaster.broadcast(WsEvent.CONTACT_CHANGED, {
            "oldId": serialized_id(data.get("oldId")),
            "newId": serialized_id(data.get("newId")),
            "isContact": bool(data.get("isContact")),
        })

    async def _on_chat_archived(self, data: dict[str, Any]) -> None:
        self._broadcaster.broadcast(WsEvent.CHAT_ARCHIVED, {
            "chatId": serialized_id(data.get("chatId")),
            "archived": bool(data.get("archived")),
        })

    # -- lifecycle -----------------------------------------------------------

    async def _on_qr(self, data: dict[str, Any]) -> None:
        self._session.on_qr(data.get("qr") or "")

    async def _on_authenticated(self, _data: dict[str, Any]) -> None:
        self._session.on_authenticated()

    async def _on_ready(self, data: dict[str, Any]) -> None:
        self._session.on_ready(data.get("info") or {})

    async def _on_disconnected(self, data: dict[str, Any]) -> None:
        self._session.on_disconnected(data.get("reason") or "")

    async def _on_auth_failure(self, data: dict[str, Any]) -> None:
        self._session.on_failure(data.get("message") or "authentication failure")
