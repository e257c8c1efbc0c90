"""WebSocket fan-out hub -- /api/events/ws."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from aiohttp import WSMsgType, web

from ..state.session_state import SessionStateMachine

logger = logging.getLogger(__name__)


class EventHub:
    """Tracks dashboard subscribers and serves as the broadcaster's sink.

    :meth:`publish` is synchronous and never waits on a subscriber; each send
    runs in its own task and a failed send drops that subscriber.
    """

    def __init__(self, session: SessionStateMachine | None = None) -> None:
        self._session = session
        self._clients: set[web.WebSocketResponse] = set()
        self._sends: set[asyncio.Task[None]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._clients)

    def register(self, router: web.UrlDispatcher) -> None:
        router.add_get("/api/events/ws", self.handle)

    async def handle(self, req: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30)
        await ws.prepare(req)
        self._clients.add(ws)
        logger.info("[events.handle] subscriber connected from %s (%d total)", req.remote, len(self._clients))

        if self._session is not None:
            await ws.send_json({"event": "client:status", "data": self._session.snapshot()})

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT and msg.data == "ping":
                    await ws.send_str("pong")
                elif msg.type == WSMsgType.ERROR:
                    logger.error("[events.handle] WebSocket error: %s", ws.exception())
        finally:
            self._clients.discard(ws)
            logger.info("[events.handle] subscriber disconnected (%d left)", len(self._clients))
        return ws

    def publish(self, event: str, payload: Any) -> None:
        if not self._clients:
            return
        message = {"event": event, "data": payload}
        for ws in list(self._clients):
            task = asyncio.create_task(self._send(ws, message))
            self._sends.add(task)
            task.add_done_callback(self._sends.discard)

    async def _send(self, ws: web.WebSocketResponse, message: dict[str, Any]) -> None:
        if ws.closed:
            self._clients.discard(ws)
            return
        try:
            await ws.send_json(message)
        except (ConnectionResetError, RuntimeError) as exc:
            logger.debug("[events] dropping subscriber: %s", exc)
            self._clients.discard(ws)

    async def close(self) -> None:
        for ws in list(self._clients):
            await ws.close()
        self._clients.clear()
        if self._sends:
            await asyncio.gather(*list(self._sends), return_exceptions=True)
