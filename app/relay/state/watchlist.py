"""Watchlist -- conversations monitored by the dashboard.

Only watched conversations have their traffic persisted and pushed as
``watchlist:*`` events. Entries are soft-deleted so history and settings
survive a remove/re-add cycle.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import ConversationNotFound, WatchEntryNotFound
from ..messaging.client import SessionClient
from ..messaging.formatting import preview_text
from ..messaging.ids import canonical_conversation_id, conversation_kind
from ..messaging.models import ChatSnapshot, IncomingMessage
from .documents import JsonCollection
from .message_store import MessageRecord, MessageStore
from .session_state import SessionStateMachine

logger = logging.getLogger(__name__)


@dataclass
class LastMessage:
    content: str = ""
    timestamp: float | None = None
    sender: str | None = None
    from_me: bool = False
    type: str = "chat"


@dataclass
class ChatMetadata:
    participant_count: int = 0
    description: str = ""
    is_read_only: bool = False
    is_muted: bool = False


@dataclass
class WatchEntry:
    conversation_id: str = ""
    name: str = ""
    kind: str = "private"
    is_active: bool = True
    pinned: bool = False
    notifications: bool = True
    order: int = 0
    unread_count: int = 0
    last_message: LastMessage = field(default_factory=LastMessage)
    profile_pic_url: str | None = None
    metadata: ChatMetadata = field(default_factory=ChatMetadata)
    tags: list[str] = field(default_factory=list)
    notes: str = ""
    added_at: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WatchEntry:
        known = set(cls.__dataclass_fields__)
        values = {k: v for k, v in data.items() if k in known}
        values["last_message"] = LastMessage(**(data.get("last_message") or {}))
        values["metadata"] = ChatMetadata(**(data.get("metadata") or {}))
        return cls(**values)

    @property
    def display_name(self) -> str:
        return self.name or self.conversation_id


def display_order_key(entry: WatchEntry) -> tuple[bool, float]:
    """Sort key for the display order; use with ``reverse=True``."""
    return entry.pinned, entry.last_message.timestamp or 0.0


def manual_order_key(entry: WatchEntry) -> int:
    return entry.order


def _last_message_from(msg: IncomingMessage) -> LastMessage:
    return LastMessage(
        content=preview_text(msg.type, msg.body),
        timestamp=msg.timestamp,
        sender=msg.author or msg.sender,
        from_me=msg.from_me,
        type=msg.type,
    )


def _entry_fields(snapshot: ChatSnapshot) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "name": snapshot.name or "Unknown",
        "profile_pic_url": snapshot.profile_pic_url,
        "metadata": ChatMetadata(
            participant_count=snapshot.participant_count,
            description=snapshot.description,
            is_read_only=snapshot.is_read_only,
            is_muted=snapshot.is_muted,
        ),
    }
    if snapshot.last_message is not None:
        fields["last_message"] = _last_message_from(snapshot.last_message)
    return fields


class WatchRegistry:
    """JSON-backed watchlist with explicit and display orderings."""

    def __init__(
        self,
        path: Path,
        session: SessionStateMachine,
        client: SessionClient | None = None,
        messages: MessageStore | None = None,
    ) -> None:
        self._entries: JsonCollection[WatchEntry] = JsonCollection(
            path, "conversation_id", WatchEntry.from_dict,
        )
        self._session = session
        self._client = client
        self._messages = messages

    def attach_client(self, client: SessionClient | None) -> None:
        self._client = client

    # -- lookups -------------------------------------------------------------

    def get(self, conversation_id: str) -> WatchEntry:
        cid = canonical_conversation_id(conversation_id)
        entry = self._entries.get(cid)
        if entry is None or not entry.is_active:
            raise WatchEntryNotFound(cid)
        return entry

    def is_watched(self, conversation_id: str) -> bool:
        entry = self._entries.get(conversation_id)
        return entry is not None and entry.is_active

    def list(self) -> list[WatchEntry]:
        """Display order: pinned first, then most recent activity."""
        entries = self._entries.find(lambda e: e.is_active)
        entries.sort(key=display_order_key, reverse=True)
        return entries

    def list_by_order(self) -> list[WatchEntry]:
        """Explicit drag-reorder order."""
        entries = self._entries.find(lambda e: e.is_active)
        entries.sort(key=manual_order_key)
        return entries

    # -- membership ----------------------------------------------------------

    async def add(self, conversation_id: str) -> WatchEntry:
        self._session.ensure_operational()
        cid = canonical_conversation_id(conversation_id)
        snapshot = await self._client.get_chat(cid) if self._client else None
        if snapshot is None:
            raise ConversationNotFound(cid)

        fields = _entry_fields(snapshot)
        existing = self._entries.get(cid)
        if existing is not None:
            if existing.is_active:
                return existing
            fields["is_active"] = True
            entry = self._entries.update(cid, lambda e: _assign(e, fields))
            logger.info("[watchlist] reactivated %s", cid)
            return entry  # type: ignore[return-value]

        active_orders = [e.order for e in self._entries.find(lambda e: e.is_active)]
        entry = WatchEntry(
            conversation_id=cid,
            kind="group" if snapshot.is_group else conversation_kind(cid),
            order=max(active_orders, default=0) + 1,
            added_at=time.time(),
        )
        _assign(entry, fields)
        stored, created = self._entries.insert_if_absent(entry)
        if created:
            logger.info("[watchlist] added %s (%s)", cid, stored.display_name)
        return stored

    def remove(self, conversation_id: str) -> WatchEntry:
        cid = canonical_conversation_id(conversation_id)
        entry = self._entries.update(cid, lambda e: setattr(e, "is_active", False))
        if entry is None:
            raise WatchEntryNotFound(cid)
        logger.info("[watchlist] removed %s", cid)
        return entry

    def reorder(self, ordered_ids: list[str]) -> int:
        """Assign ``order = position``; ids left out keep their old order."""
        changes = [
            (canonical_conversation_id(cid), {"order": index})
            for index, cid in enumerate(ordered_ids)
        ]
        return self._entries.set_many(changes)

    # -- field mutations -----------------------------------------------------

    def _mutate(self, conversation_id: str, mutate) -> WatchEntry:
        entry = self.get(conversation_id)
        updated = self._entries.update(entry.conversation_id, mutate)
        if updated is None:
            raise WatchEntryNotFound(entry.conversation_id)
        return updated

    async def mark_read(self, conversation_id: str) -> WatchEntry:
        entry = self.get(conversation_id)
        if self._client is not None and self._session.is_operational():
            try:
                await self._client.send_seen(entry.conversation_id)
            except Exception as exc:
                logger.warning("[watchlist] could not mark %s as seen: %s", entry.conversation_id, exc)
        return self._mutate(entry.conversation_id, lambda e: setattr(e, "unread_count", 0))

    def toggle_pin(self, conversation_id: str) -> WatchEntry:
        return self._mutate(conversation_id, lambda e: setattr(e, "pinned", not e.pinned))

    def toggle_notifications(self, conversation_id: str) -> WatchEntry:
        return self._mutate(
            conversation_id, lambda e: setattr(e, "notifications", not e.notifications),
        )

    def set_notes(self, conversation_id: str, notes: str) -> WatchEntry:
        return self._mutate(conversation_id, lambda e: setattr(e, "notes", notes))

    def add_tags(self, conversation_id: str, tags: list[str]) -> WatchEntry:
        def _add(e: WatchEntry) -> None:
            for tag in tags:
                if tag not in e.tags:
                    e.tags.append(tag)

        return self._mutate(conversation_id, _add)

    def remove_tag(self, conversation_id: str, tag: str) -> WatchEntry:
        return self._mutate(
            conversation_id, lambda e: setattr(e, "tags", [t for t in e.tags if t != tag]),
        )

    async def refresh(self, conversation_id: str) -> WatchEntry:
        """Re-fetch name, avatar and metadata from the live session."""
        self._session.ensure_operational()
        entry = self.get(conversation_id)
        snapshot = await self._client.get_chat(entry.conversation_id) if self._client else None
        if snapshot is None:
            raise ConversationNotFound(entry.conversation_id)
        fields = _entry_fields(snapshot)
        fields.pop("last_message", None)
        if not snapshot.name:
            fields["name"] = entry.name
        return self._mutate(entry.conversation_id, lambda e: _assign(e, fields))

    # -- traffic -------------------------------------------------------------

    def record_message(self, msg: IncomingMessage, conversation_id: str | None = None) -> WatchEntry | None:
        """Update the preview; bump unread for traffic not sent by us.

        The preview only moves forward in time: a message older than the
        current preview still counts as unread but does not replace it.
        Returns ``None`` when the conversation is not watched.
        """
        cid = conversation_id or msg.conversation_id
        preview = _last_message_from(msg)

        def _apply(e: WatchEntry) -> None:
            if msg.timestamp >= (e.last_message.timestamp or 0.0):
                e.last_message = preview
            if not msg.from_me:
                e.unread_count += 1

        if not self.is_watched(cid):
            return None
        return self._entries.update(cid, _apply)

    def messages(
        self,
        conversation_id: str,
        *,
        limit: int = 50,
        before: float | None = None,
        after: float | None = None,
        include_deleted: bool = False,
    ) -> list[MessageRecord]:
        entry = self.get(conversation_id)
        if self._messages is None:
            return []
        return self._messages.get_chat_messages(
            entry.conversation_id,
            limit=limit, before=before, after=after, include_deleted=include_deleted,
        )


def _assign(entry: WatchEntry, fields: dict[str, Any]) -> None:
    for name, value in fields.items():
        setattr(entry, name, value)
