"""Group auto-message API routes -- /api/groups/{group_id}/*."""

from __future__ import annotations

from dataclasses import asdict

from aiohttp import web

from ...errors import ValidationError
from ...messaging.ids import normalize_group_id
from ...state.group_settings import GroupSettingsStore


class GroupRoutes:
    """Welcome/farewell/rules configuration per group."""

    def __init__(self, store: GroupSettingsStore) -> None:
        self._store = store

    def register(self, router: web.UrlDispatcher) -> None:
        router.add_get("/api/groups/{group_id}/auto-messages", self._get)
        router.add_get("/api/groups/{group_id}/auto-messages/{trigger}", self._get_trigger)
        router.add_put("/api/groups/{group_id}/auto-messages/{trigger}", self._update)
        router.add_post("/api/groups/{group_id}/auto-messages/{trigger}/toggle", self._toggle)
        router.add_put("/api/groups/{group_id}/rules", self._rules)

    @staticmethod
    def _group_id(req: web.Request) -> str:
        return normalize_group_id(req.match_info["group_id"])

    async def _get(self, req: web.Request) -> web.Response:
        config = self._store.get_or_create(self._group_id(req))
        return web.json_response({"status": "ok", "settings": self._store.to_dict(config)})

    async def _get_trigger(self, req: web.Request) -> web.Response:
        config = self._store.get_or_create(self._group_id(req))
        trigger = req.match_info["trigger"]
        return web.json_response({
            "status": "ok",
            "trigger": trigger,
            "settings": asdict(config.trigger(trigger)),
        })

    async def _update(self, req: web.Request) -> web.Response:
        body = await req.json()
        if not isinstance(body, dict):
            raise ValidationError("Expected a JSON object")
        config = self._store.update_trigger(self._group_id(req), req.match_info["trigger"], body)
        return web.json_response({"status": "ok", "settings": self._store.to_dict(config)})

    async def _toggle(self, req: web.Request) -> web.Response:
        trigger = req.match_info["trigger"]
        config = self._store.toggle_trigger(self._group_id(req), trigger)
        return web.json_response({"status": "ok", "enabled": config.trigger(trigger).enabled})

    async def _rules(self, req: web.Request) -> web.Response:
        body = await req.json()
        rules = body.get("rules") if isinstance(body, dict) else None
        if not isinstance(rules, str):
            raise ValidationError("rules must be a string")
        config = self._store.set_rules(self._group_id(req), rules)
        return web.json_response({"status": "ok", "settings": self._store.to_dict(config)})
