"""Connection lifecycle of the single messaging session.

The machine owns the in-memory :class:`ClientSession` and mirrors
``status``/``last_active`` (plus identity once ready) into ``session.json``.
The pairing payload is kept in memory only; a restart before pairing
completes needs a fresh :meth:`SessionStateMachine.initialize`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from ..errors import InvalidTransition, SessionNotOperational
from ..messaging.broadcaster import Broadcaster, WsEvent
from .documents import JsonCollection

logger = logging.getLogger(__name__)


class SessionStatus(StrEnum):
    INITIALIZING = "initializing"
    QR_READY = "qr_ready"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


S = SessionStatus

TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    S.INITIALIZING: frozenset({S.QR_READY, S.AUTHENTICATED, S.DISCONNECTED, S.FAILED}),
    S.QR_READY: frozenset({S.QR_READY, S.AUTHENTICATED, S.DISCONNECTED, S.FAILED}),
    S.AUTHENTICATED: frozenset({S.READY, S.DISCONNECTED, S.FAILED}),
    S.READY: frozenset({S.DISCONNECTED, S.FAILED}),
    S.DISCONNECTED: frozenset({S.INITIALIZING, S.FAILED}),
    S.FAILED: frozenset({S.INITIALIZING}),
}


@dataclass
class ClientSession:
    session_id: str = "default"
    status: str = SessionStatus.DISCONNECTED.value
    phone_number: str | None = None
    pushname: str | None = None
    platform: str | None = None
    authenticated: bool = False
    last_active: float = 0.0
    last_qr_generated: float | None = None
    connections_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientSession:
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


class SessionStateMachine:
    """Tracks the session's status and exposes it to the rest of the relay."""

    def __init__(
        self,
        path: Path,
        broadcaster: Broadcaster,
        session_id: str = "default",
        starter: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._store: JsonCollection[ClientSession] = JsonCollection(
            path, "session_id", ClientSession.from_dict,
        )
        self._broadcaster = broadcaster
        self._session_id = session_id
        self._starter = starter
        self._pairing_payload: str | None = None
        stored = self._store.get(session_id)
        # A previous process may have died mid-session; the live
        # connection never survives a restart.
        self._session = stored or ClientSession(session_id=session_id)
        self._session.status = SessionStatus.DISCONNECTED.value

    # -- queries -----------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return SessionStatus(self._session.status)

    @property
    def pending_pairing_payload(self) -> str | None:
        return self._pairing_payload if self.status is S.QR_READY else None

    @property
    def session(self) -> ClientSession:
        return self._session

    def is_operational(self) -> bool:
        return self.status is S.READY

    def ensure_operational(self) -> None:
        if not self.is_operational():
            raise SessionNotOperational(self.status.value)

    def snapshot(self) -> dict[str, Any]:
        s = self._session
        return {
            "status": s.status,
            "operational": self.is_operational(),
            "qr": self.pending_pairing_payload,
            "phoneNumber": s.phone_number,
            "pushname": s.pushname,
            "platform": s.platform,
            "authenticated": s.authenticated,
            "lastActive": s.last_active,
            "connectionsCount": s.connections_count,
        }

    # -- lifecycle ---------------------------------------------------------

    def set_starter(self, starter: Callable[[], Awaitable[None]] | None) -> None:
        self._starter = starter

    async def initialize(self) -> bool:
        """(Re)start the session; only valid from DISCONNECTED or FAILED.

        Errors raised by the session client are logged and leave the machine
        in FAILED. Nothing here retries.
        """
        if self.status not in (S.DISCONNECTED, S.FAILED):
            logger.info("[session] initialize ignored, status is %s", self.status.value)
            return False
        self._transition(S.INITIALIZING)
        if self._starter is None:
            return True
        try:
            await self._starter()
        except Exception as exc:
            logger.error("[session] initialization failed: %s", exc, exc_info=True)
            self.on_failure(str(exc))
            return False
        return True

    def on_qr(self, payload: str) -> None:
        self._require(S.QR_READY)
        self._pairing_payload = payload
        self._session.last_qr_generated = time.time()
        self._transition(S.QR_READY)
        logger.info("[session] pairing payload received")
        self._broadcaster.broadcast(WsEvent.CLIENT_QR, {"qr": payload})

    def on_authenticated(self) -> None:
        self._transition(S.AUTHENTICATED)
        self._pairing_payload = None
        logger.info("[session] authenticated")
        self._broadcaster.broadcast(WsEvent.CLIENT_AUTHENTICATED, {})

    def on_ready(self, info: dict[str, Any] | None = None) -> None:
        self._require(S.READY)
        info = info or {}
        wid = info.get("wid") or {}
        s = self._session
        s.phone_number = (wid.get("user") if isinstance(wid, dict) else None) or info.get("phoneNumber")
        s.pushname = info.get("pushname")
        s.platform = info.get("platform")
        s.authenticated = True
        s.connections_count += 1
        self._transition(S.READY, identity=True)
        logger.info("[session] ready as %s (%s)", s.pushname or "?", s.phone_number or "?")
        self._broadcaster.broadcast(WsEvent.CLIENT_READY, info)

    def on_disconnected(self, reason: str = "") -> None:
        self._require(S.DISCONNECTED)
        self._pairing_payload = None
        self._session.authenticated = False
        self._transition(S.DISCONNECTED, identity=True)
        logger.warning("[session] disconnected: %s", reason or "(no reason)")
        self._broadcaster.broadcast(WsEvent.CLIENT_DISCONNECTED, {"reason": reason})

    def on_failure(self, error: str = "") -> None:
        if self.status is S.FAILED:
            logger.error("[session] failure while already failed: %s", error)
            return
        self._pairing_payload = None
        self._transition(S.FAILED)
        logger.error("[session] failed: %s", error or "(unknown error)")

    # -- internals ---------------------------------------------------------

    def _require(self, target: SessionStatus) -> None:
        if target not in TRANSITIONS[self.status]:
            raise InvalidTransition(self.status.value, target.value)

    def _transition(self, target: SessionStatus, *, identity: bool = False) -> None:
        current = self.status
        self._require(target)
        s = self._session
        s.status = target.value
        s.last_active = time.time()
        changes: dict[str, Any] = {"status": s.status, "last_active": s.last_active}
        if identity:
            changes.update(
                phone_number=s.phone_number,
                pushname=s.pushname,
                platform=s.platform,
                authenticated=s.authenticated,
                connections_count=s.connections_count,
            )
        if target is S.QR_READY:
            changes["last_qr_generated"] = s.last_qr_generated
        try:
            self._store.upsert(
                self._session_id, changes,
                default=lambda: ClientSession(session_id=self._session_id),
            )
        except OSError as exc:
            logger.error("[session] failed to persist status %s: %s", target.value, exc)
        logger.debug("[session] %s -> %s", current.value, target.value)
        self._broadcaster.broadcast(WsEvent.CLIENT_STATUS, {"status": target.value})
