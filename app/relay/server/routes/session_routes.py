"""Session status API routes -- /api/status, /api/session/*."""

from __future__ import annotations

from aiohttp import web

from ...state.session_state import SessionStateMachine


class SessionRoutes:
    """Reports and (re)starts the messaging session."""

    def __init__(self, session: SessionStateMachine) -> None:
        self._session = session

    def register(self, router: web.UrlDispatcher) -> None:
        router.add_get("/api/status", self._status)
        router.add_post("/api/session/init", self._init)

    async def _status(self, _req: web.Request) -> web.Response:
        return web.json_response(self._session.snapshot())

    async def _init(self, _req: web.Request) -> web.Response:
        started = await self._session.initialize()
        if not started:
            return web.json_response(
                {
                    "status": "error",
                    "message": f"Session cannot be initialized from {self._session.status.value}",
                    "session": self._session.snapshot(),
                },
                status=409,
            )
        return web.json_response({"status": "ok", "session": self._session.snapshot()})
