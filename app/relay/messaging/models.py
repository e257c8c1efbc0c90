"""Inbound event payloads delivered by the session client.

Payloads arrive as plain dicts shaped like the session protocol's JSON
(camelCase keys, ids either as strings or ``{"_serialized": ...}``). The
``from_payload`` constructors normalize them into typed objects at the
dispatcher boundary.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from .ids import is_group_id, user_part


def serialized_id(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("_serialized") or "")
    return str(value or "")


@dataclass(frozen=True)
class SessionEvent:
    """One item from the session client's event queue."""

    kind: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class IncomingMessage:
    id: str
    sender: str
    recipient: str
    body: str = ""
    type: str = "chat"
    timestamp: float = 0.0
    from_me: bool = False
    author: str | None = None
    ack: int = 0
    has_media: bool = False
    media: dict[str, Any] | None = None
    has_quoted_msg: bool = False
    quoted_message_id: str | None = None
    is_forwarded: bool = False
    forwarding_score: int = 0
    is_starred: bool = False
    mentioned_ids: list[str] = field(default_factory=list)
    group_mentions: list[str] = field(default_factory=list)
    links: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> IncomingMessage:
        message_id = serialized_id(data.get("id"))
        if not message_id:
            raise ValueError("message payload has no id")
        quoted = data.get("quotedMsgId") or data.get("quotedMessageId")
        return cls(
            id=message_id,
            sender=serialized_id(data.get("from")),
            recipient=serialized_id(data.get("to")),
            body=data.get("body") or "",
            type=data.get("type") or "chat",
            timestamp=float(data.get("timestamp") or time.time()),
            from_me=bool(data.get("fromMe")),
            author=serialized_id(data.get("author")) or None,
            ack=int(data.get("ack") or 0),
            has_media=bool(data.get("hasMedia")),
            media=data.get("media"),
            has_quoted_msg=bool(data.get("hasQuotedMsg")),
            quoted_message_id=serialized_id(quoted) or None,
            is_forwarded=bool(data.get("isForwarded")),
            forwarding_score=int(data.get("forwardingScore") or 0),
            is_starred=bool(data.get("isStarred")),
            mentioned_ids=[serialized_id(m) for m in data.get("mentionedIds") or []],
            group_mentions=[serialized_id(m) for m in data.get("groupMentions") or []],
            links=list(data.get("links") or []),
        )

    @property
    def conversation_id(self) -> str:
        """Group id for group traffic, otherwise the counterpart's id."""
        if is_group_id(self.sender):
            return self.sender
        return self.recipient if self.from_me else self.sender


@dataclass
class GroupNotification:
    id: str
    type: str
    chat_id: str
    author: str | None = None
    recipient_ids: list[str] = field(default_factory=list)
    timestamp: float = 0.0

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> GroupNotification:
        return cls(
            id=serialized_id(data.get("id")),
            type=data.get("type") or "",
            chat_id=serialized_id(data.get("chatId")),
            author=serialized_id(data.get("author")) or None,
            recipient_ids=[serialized_id(r) for r in data.get("recipientIds") or []],
            timestamp=float(data.get("timestamp") or time.time()),
        )


@dataclass
class ReactionEvent:
    id: str
    message_id: str
    emoji: str
    sender_id: str
    timestamp: float = 0.0
    orphaned: bool = False

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ReactionEvent:
        return cls(
            id=serialized_id(data.get("id")),
            message_id=serialized_id(data.get("msgId")),
            emoji=data.get("reaction") or "",
            sender_id=serialized_id(data.get("senderId")),
            timestamp=float(data.get("timestamp") or time.time()),
            orphaned=bool(data.get("orphaned")),
        )


@dataclass
class Contact:
    id: str
    number: str = ""
    pushname: str = ""
    name: str = ""

    @property
    def handle(self) -> str:
        """Mentionable handle, the phone number when the contact exposes one."""
        return self.number or user_part(self.id)


@dataclass
class ChatSnapshot:
    """Live metadata for one conversation as reported by the session."""

    id: str
    name: str = ""
    is_group: bool = False
    participant_count: int = 0
    description: str = ""
    is_read_only: bool = False
    is_muted: bool = False
    profile_pic_url: str | None = None
    last_message: IncomingMessage | None = None
