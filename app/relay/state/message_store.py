"""Message history -- one append-only JSON-lines journal per conversation.

Records are created once per message id and never re-created: a redelivered
message returns the stored record untouched. Acks, edits, revokes and
reactions mutate the stored record through their own methods; each change
appends the full record to the journal, and the journal is compacted on load.

Each conversation keeps its records ordered by timestamp in memory, so pages
are slices located with :mod:`bisect` rather than scans.
"""

from __future__ import annotations

import bisect
import copy
import logging
import re
import time
from collections.abc import Callable, Iterator
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from ..errors import DuplicateIgnored
from ..messaging.models import IncomingMessage
from .documents import JsonLinesLog

logger = logging.getLogger(__name__)

TOMBSTONE_BODY = "This message was deleted"

ACK_ERROR = -1
ACK_PENDING = 0
ACK_PLAYED = 4

_UNSAFE_FILENAME = re.compile(r"[^\w.@-]")


@dataclass
class Reaction:
    emoji: str = ""
    sender_id: str = ""
    timestamp: float = 0.0


@dataclass
class MediaInfo:
    mimetype: str | None = None
    filename: str | None = None
    filesize: int | None = None
    url: str | None = None


@dataclass
class MessageRecord:
    message_id: str = ""
    conversation_id: str = ""
    sender: str = ""
    recipient: str = ""
    author: str | None = None
    body: str = ""
    type: str = "chat"
    timestamp: float = 0.0
    from_me: bool = False
    ack: int = ACK_PENDING
    has_media: bool = False
    media: MediaInfo = field(default_factory=MediaInfo)
    has_quoted_msg: bool = False
    quoted_message_id: str | None = None
    is_forwarded: bool = False
    forwarding_score: int = 0
    is_starred: bool = False
    is_edited: bool = False
    is_deleted: bool = False
    mentioned_ids: list[str] = field(default_factory=list)
    group_mentions: list[str] = field(default_factory=list)
    links: list[dict[str, Any]] = field(default_factory=list)
    reactions: list[Reaction] = field(default_factory=list)
    logged_at: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageRecord:
        known = set(cls.__dataclass_fields__)
        values = {k: v for k, v in data.items() if k in known}
        values["media"] = MediaInfo(**(data.get("media") or {}))
        values["reactions"] = [Reaction(**r) for r in data.get("reactions") or []]
        return cls(**values)

    @classmethod
    def from_message(cls, msg: IncomingMessage) -> MessageRecord:
        media = msg.media or {}
        return cls(
            message_id=msg.id,
            conversation_id=msg.conversation_id,
            sender=msg.sender,
            recipient=msg.recipient,
            author=msg.author,
            body=msg.body,
            type=msg.type,
            timestamp=msg.timestamp,
            from_me=msg.from_me,
            ack=msg.ack,
            has_media=msg.has_media,
            media=MediaInfo(
                mimetype=media.get("mimetype"),
                filename=media.get("filename"),
                filesize=media.get("filesize"),
                url=media.get("url"),
            ),
            has_quoted_msg=msg.has_quoted_msg,
            quoted_message_id=msg.quoted_message_id,
            is_forwarded=msg.is_forwarded,
            forwarding_score=msg.forwarding_score,
            is_starred=msg.is_starred,
            mentioned_ids=list(msg.mentioned_ids),
            group_mentions=list(msg.group_mentions),
            links=list(msg.links),
            logged_at=time.time(),
        )



class _Conversation:
    """In-memory records of one conversation plus its timestamp index."""

    def __init__(self, log: JsonLinesLog) -> None:
        self.log = log
        self.records: dict[str, MessageRecord] = {}
        self.stamps: list[float] = []
        self.ids: list[str] = []

    def add(self, record: MessageRecord) -> None:
        self.records[record.message_id] = record
        pos = bisect.bisect_right(self.stamps, record.timestamp)
        self.stamps.insert(pos, record.timestamp)
        self.ids.insert(pos, record.message_id)

    def newest_first(self, lo: int = 0, hi: int | None = None) -> Iterator[MessageRecord]:
        hi = len(self.ids) if hi is None else hi
        for pos in range(hi - 1, lo - 1, -1):
            yield self.records[self.ids[pos]]


class MessageStore:
    """Idempotent message log with cursor-paginated reads."""

    def __init__(self, directory: Path) -> None:
        self._dir = directory
        self._dir.mkdir(parents=True, exist_ok=True)
        self._chats: dict[str, _Conversation] = {}
        self._index: dict[str, str] = {}
        self._load_all()

    def _load_all(self) -> None:
        for path in sorted(self._dir.glob("*.jsonl")):
            log = JsonLinesLog(path, "message_id")
            records = sorted(
                (MessageRecord.from_dict(item) for item in log.load()),
                key=lambda r: r.timestamp,
            )
            if not records:
                continue
            conv = _Conversation(log)
            for rec in records:
                conv.add(rec)
                self._index[rec.message_id] = rec.conversation_id
            self._chats[records[0].conversation_id] = conv
        logger.debug(
            "[messages] loaded %d message(s) across %d chat(s)",
            len(self._index), len(self._chats),
        )

    def _chat(self, conversation_id: str) -> _Conversation:
        conv = self._chats.get(conversation_id)
        if conv is None:
            name = _UNSAFE_FILENAME.sub("_", conversation_id) or "_"
            conv = _Conversation(JsonLinesLog(self._dir / f"{name}.jsonl", "message_id"))
            self._chats[conversation_id] = conv
        return conv

    def _update(self, message_id: str, mutate: Callable[[MessageRecord], None]) -> MessageRecord | None:
        conversation_id = self._index.get(message_id)
        conv = self._chats.get(conversation_id) if conversation_id else None
        if conv is None:
            return None
        record = conv.records[message_id]
        mutate(record)
        conv.log.append(asdict(record))
        return copy.deepcopy(record)

    async def flush(self) -> None:
        """Wait for every buffered journal write to reach disk."""
        for conv in list(self._chats.values()):
            await conv.log.flush()

    # -- creation ------------------------------------------------------------

    def insert(self, msg: IncomingMessage) -> MessageRecord:
        """Create the record for *msg*; raises :class:`DuplicateIgnored` if it exists."""
        if msg.id in self._index:
            raise DuplicateIgnored(msg.id)
        record = MessageRecord.from_message(msg)
        conv = self._chat(record.conversation_id)
        conv.add(record)
        self._index[record.message_id] = record.conversation_id
        conv.log.append(asdict(record))
        return copy.deepcopy(record)

    def log_message(self, msg: IncomingMessage) -> tuple[MessageRecord, bool]:
        """First write wins: returns ``(record, created)``."""
        try:
            return self.insert(msg), True
        except DuplicateIgnored:
            logger.debug("[messages] %s already logged", msg.id)
            return self.get(msg.id), False  # type: ignore[return-value]

    # -- reads ---------------------------------------------------------------

    def get(self, message_id: str) -> MessageRecord | None:
        conversation_id = self._index.get(message_id)
        conv = self._chats.get(conversation_id) if conversation_id else None
        if conv is None:
            return None
        return copy.deepcopy(conv.records[message_id])

    def get_chat_messages(
        self,
        conversation_id: str,
        *,
        limit: int = 50,
        before: float | None = None,
        after: float | None = None,
        include_deleted: bool = False,
    ) -> list[MessageRecord]:
        """Newest *limit* matching records, returned oldest first.

        ``before`` takes precedence over ``after`` when both are given.
        """
        conv = self._chats.get(conversation_id)
        if conv is None or limit < 1:
            return []
        lo, hi = 0, len(conv.ids)
        if before is not None:
            hi = bisect.bisect_left(conv.stamps, before)
        elif after is not None:
            lo = bisect.bisect_right(conv.stamps, after)

        rows: list[MessageRecord] = []
        for rec in conv.newest_first(lo, hi):
            if rec.is_deleted and not include_deleted:
                continue
            rows.append(copy.deepcopy(rec))
            if len(rows) == limit:
                break
        rows.reverse()
        return rows

    def search_messages(self, conversation_id: str, text: str, limit: int = 50) -> list[MessageRecord]:
        conv = self._chats.get(conversation_id)
        if conv is None or not text:
            return []
        needle = text.casefold()
        rows: list[MessageRecord] = []
        for rec in conv.newest_first():
            if not rec.is_deleted and needle in rec.body.casefold():
                rows.append(copy.deepcopy(rec))
                if len(rows) == limit:
                    break
        return rows

    def get_starred_messages(self, conversation_id: str | None = None) -> list[MessageRecord]:
        if conversation_id is not None:
            chats = [self._chats[conversation_id]] if conversation_id in self._chats else []
        else:
            chats = list(self._chats.values())
        rows = [copy.deepcopy(r) for c in chats for r in c.records.values() if r.is_starred]
        rows.sort(key=lambda r: r.timestamp, reverse=True)
        return rows

    # -- sub-state updates ---------------------------------------------------

    def update_ack(self, message_id: str, ack: int) -> MessageRecord | None:
        """Raise the stored ack level; never lowers it.

        ``ERROR`` is accepted only while the message is still pending.
        Returns ``None`` when the message was never logged.
        """

        def _apply(r: MessageRecord) -> None:
            if ack == ACK_ERROR:
                if r.ack == ACK_PENDING:
                    r.ack = ACK_ERROR
            elif ack > r.ack:
                r.ack = min(ack, ACK_PLAYED)

        return self._update(message_id, _apply)

    def mark_deleted(self, message_id: str) -> MessageRecord | None:
        def _apply(r: MessageRecord) -> None:
            r.is_deleted = True
            r.body = TOMBSTONE_BODY

        return self._update(message_id, _apply)

    def mark_edited(self, message_id: str, new_body: str) -> MessageRecord | None:
        def _apply(r: MessageRecord) -> None:
            r.body = new_body
            r.is_edited = True

        return self._update(message_id, _apply)

    def set_starred(self, message_id: str, starred: bool) -> MessageRecord | None:
        return self._update(message_id, lambda r: setattr(r, "is_starred", starred))

    def apply_reaction(
        self, message_id: str, sender_id: str, emoji: str, timestamp: float | None = None,
    ) -> MessageRecord | None:
        """Replace *sender_id*'s reaction; an empty *emoji* removes it."""

        def _apply(r: MessageRecord) -> None:
            r.reactions = [x for x in r.reactions if x.sender_id != sender_id]
            if emoji:
                r.reactions.append(Reaction(emoji, sender_id, timestamp or time.time()))

        return self._update(message_id, _apply)
