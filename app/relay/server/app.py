"""Admin server -- app factory and entry point."""

from __future__ import annotations

import json
import logging

from aiohttp import web
from aiohttp.abc import AbstractAccessLogger

from .. import __version__
from ..config.settings import cfg
from ..errors import (
    ConversationNotFound,
    InvalidTransition,
    MessageNotFound,
    RelayError,
    SessionNotOperational,
    ValidationError,
    WatchEntryNotFound,
)
from ..runtime import RelayRuntime
from .events_ws import EventHub
from .routes import GroupRoutes, SessionRoutes, WatchlistRoutes

logger = logging.getLogger(__name__)

_QUIET_PATHS = frozenset({"/health", "/api/status"})
_PUBLIC_PREFIXES = ("/health",)

RUNTIME_KEY = web.AppKey("relay_runtime", RelayRuntime)
HUB_KEY = web.AppKey("relay_events", EventHub)


# ---------------------------------------------------------------------------
# Access logger
# ---------------------------------------------------------------------------


class QuietAccessLogger(AbstractAccessLogger):
    """Demotes polling-endpoint log entries to DEBUG."""

    def log(self, request: web.BaseRequest, response: web.StreamResponse, time: float) -> None:
        level = logging.DEBUG if request.path in _QUIET_PATHS else logging.INFO
        self.logger.log(
            level,
            "%s %s %s %s %.3fs",
            request.remote,
            request.method,
            request.path,
            response.status,
            time,
        )


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"status": "error", "message": message}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler):  # type: ignore[type-arg]
    try:
        return await handler(request)
    except SessionNotOperational as exc:
        return _error(str(exc), 503)
    except (ConversationNotFound, MessageNotFound, WatchEntryNotFound) as exc:
        return _error(str(exc), 404)
    except ValidationError as exc:
        return _error(str(exc), 400)
    except InvalidTransition as exc:
        return _error(str(exc), 409)
    except json.JSONDecodeError:
        return _error("Invalid JSON body", 400)
    except RelayError as exc:
        logger.error("[server] unhandled relay error on %s: %s", request.path, exc)
        return _error(str(exc), 500)


def make_auth_middleware(secret: str):
    @web.middleware
    async def auth_middleware(request: web.Request, handler):  # type: ignore[type-arg]
        if not secret:
            return await handler(request)

        path = request.path
        if not path.startswith("/api/") or any(path.startswith(p) for p in _PUBLIC_PREFIXES):
            return await handler(request)

        auth = request.headers.get("Authorization", "")
        if auth == f"Bearer {secret}":
            return await handler(request)

        # Browsers cannot set headers on WebSocket upgrades.
        if request.query.get("token") == secret:
            return await handler(request)

        return web.json_response(
            {"status": "unauthorized", "message": "Invalid or missing admin secret"},
            status=401,
        )

    return auth_middleware


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


async def create_app() -> web.Application:
    factory = AppFactory()
    return await factory.build()


class AppFactory:
    """Builds the aiohttp application around a :class:`RelayRuntime`."""

    def __init__(
        self,
        runtime: RelayRuntime | None = None,
        *,
        admin_secret: str | None = None,
        start_session: bool = True,
    ) -> None:
        self._runtime = runtime
        self._admin_secret = cfg.admin_secret if admin_secret is None else admin_secret
        self._start_session = start_session

    async def build(self) -> web.Application:
        if self._runtime is None:
            cfg.ensure_dirs()
            self._runtime = RelayRuntime.from_config()
        runtime = self._runtime

        hub = EventHub(runtime.session)
        runtime.broadcaster.set_sink(hub.publish)

        app = web.Application(
            middlewares=[make_auth_middleware(self._admin_secret), error_middleware],
        )
        app[RUNTIME_KEY] = runtime
        app[HUB_KEY] = hub

        self._register_routes(app, runtime, hub)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    def _register_routes(self, app: web.Application, runtime: RelayRuntime, hub: EventHub) -> None:
        router = app.router
        hub.register(router)
        SessionRoutes(runtime.session).register(router)
        WatchlistRoutes(
            runtime.watchlist,
            runtime.messages,
            fetch_limit=cfg.message_fetch_limit,
            search_limit=cfg.search_limit,
        ).register(router)
        GroupRoutes(runtime.group_settings).register(router)
        router.add_get("/health", _health)

    async def _on_startup(self, app: web.Application) -> None:
        runtime = app[RUNTIME_KEY]
        await runtime.start(initialize=self._start_session)
        logger.info("[server] relay started, session status %s", runtime.session.status.value)

    async def _on_cleanup(self, app: web.Application) -> None:
        runtime = app[RUNTIME_KEY]
        await runtime.stop()
        runtime.broadcaster.set_sink(None)
        await app[HUB_KEY].close()


async def _health(req: web.Request) -> web.Response:
    runtime = req.app[RUNTIME_KEY]
    return web.json_response({
        "status": "ok",
        "version": __version__,
        "session": runtime.session.status.value,
        "subscribers": req.app[HUB_KEY].subscriber_count,
    })


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(port: int | None = None) -> None:
    cfg.reload()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s  %(name)s  %(levelname)s  %(message)s",
    )
    port = port or cfg.admin_port
    logger.info("Starting relay server on port %d ...", port)
    if not cfg.admin_secret:
        logger.warning("ADMIN_SECRET is not set -- /api/* is open to anyone who can reach port %d", port)
    web.run_app(create_app(), host="0.0.0.0", port=port, access_log_class=QuietAccessLogger)


if __name__ == "__main__":
    main()
