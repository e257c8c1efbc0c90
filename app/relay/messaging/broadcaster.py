"""Fan-out to real-time subscribers through a single injected sink."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

BroadcastSink = Callable[[str, Any], None]


class WsEvent(StrEnum):
    CLIENT_READY = "client:ready"
    CLIENT_QR = "client:qr"
    CLIENT_AUTHENTICATED = "client:authenticated"
    CLIENT_DISCONNECTED = "client:disconnected"
    CLIENT_STATUS = "client:status"

    MESSAGE_NEW = "message:new"
    MESSAGE_ACK = "message:ack"
    MESSAGE_REVOKED = "message:revoked"
    MESSAGE_EDIT = "message:edit"
    MESSAGE_REACTION = "message:reaction"

    GROUP_JOIN = "group:join"
    GROUP_LEAVE = "group:leave"
    GROUP_UPDATE = "group:update"
    GROUP_ADMIN_CHANGED = "group:admin_changed"
    GROUP_MEMBERSHIP_REQUEST = "group:membership_request"

    CHAT_ARCHIVED = "chat:archived"
    CONTACT_CHANGED = "contact:changed"

    WATCHLIST_UPDATE = "watchlist:update"
    WATCHLIST_MESSAGE = "watchlist:message"


_KNOWN_EVENTS = frozenset(e.value for e in WsEvent)


def to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


class Broadcaster:
    """Forwards ``(event, payload)`` pairs to the hosting transport.

    The sink is set by whoever owns the subscribers (the WebSocket hub). The
    relay never waits on it and never sees its failures.
    """

    def __init__(self, sink: BroadcastSink | None = None) -> None:
        self._sink = sink

    def set_sink(self, sink: BroadcastSink | None) -> None:
        self._sink = sink

    @property
    def has_sink(self) -> bool:
        return self._sink is not None

    def broadcast(self, event: str, payload: Any = None) -> None:
        if event not in _KNOWN_EVENTS:
            logger.warning("[broadcast] dropping unknown event %r", event)
            return
        sink = self._sink
        if sink is None:
            return
        try:
            sink(str(event), to_jsonable(payload if payload is not None else {}))
        except Exception:
            logger.exception("[broadcast] sink failed for %s", event)
