"""Dashboard payload formatting for broadcast events."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from .models import GroupNotification, IncomingMessage, ReactionEvent

ACK_LABELS: dict[int, str] = {
    -1: "error",
    0: "pending",
    1: "sent",
    2: "received",
    3: "read",
    4: "played",
}

_PREVIEW_LABELS: dict[str, str] = {
    "image": "📷 Photo",
    "video": "🎥 Video",
    "audio": "🎵 Audio",
    "ptt": "🎵 Audio",
    "document": "📄 Document",
    "sticker": "🎨 Sticker",
    "location": "📍 Location",
    "vcard": "👤 Contact",
}

PREVIEW_MAX_CHARS = 50


def iso(ts: float | None) -> str | None:
    if not ts:
        return None
    return datetime.fromtimestamp(ts, UTC).isoformat()


def ack_label(ack: int) -> str:
    return ACK_LABELS.get(ack, "unknown")


def format_ack(ack: int) -> dict[str, Any]:
    return {"status": ack, "label": ack_label(ack)}


def preview_text(msg_type: str, body: str) -> str:
    if msg_type in _PREVIEW_LABELS:
        return _PREVIEW_LABELS[msg_type]
    if len(body) > PREVIEW_MAX_CHARS:
        return body[:PREVIEW_MAX_CHARS] + "..."
    return body


def format_message(msg: IncomingMessage) -> dict[str, Any]:
    return {
        "id": msg.id,
        "chatId": msg.conversation_id,
        "body": msg.body,
        "type": msg.type,
        "timestamp": iso(msg.timestamp),
        "from": msg.sender,
        "to": msg.recipient,
        "author": msg.author,
        "fromMe": msg.from_me,
        "hasMedia": msg.has_media,
        "hasQuotedMsg": msg.has_quoted_msg,
        "isForwarded": msg.is_forwarded,
        "forwardingScore": msg.forwarding_score,
        "isStarred": msg.is_starred,
        "mentionedIds": list(msg.mentioned_ids),
        "groupMentions": list(msg.group_mentions),
        "ack": format_ack(msg.ack),
        "links": list(msg.links),
    }


def format_group_notification(notification: GroupNotification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type,
        "chatId": notification.chat_id,
        "author": notification.author,
        "recipientIds": list(notification.recipient_ids),
        "timestamp": iso(notification.timestamp),
    }


def format_reaction(reaction: ReactionEvent) -> dict[str, Any]:
    return {
        "id": reaction.id,
        "msgId": reaction.message_id,
        "reaction": reaction.emoji,
        "senderId": reaction.sender_id,
        "timestamp": iso(reaction.timestamp),
        "orphaned": reaction.orphaned,
    }
