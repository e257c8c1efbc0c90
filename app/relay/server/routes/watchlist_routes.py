"""Watchlist API routes -- /api/watchlist/*."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from aiohttp import web

from ...errors import MessageNotFound, ValidationError
from ...messaging.ids import canonical_conversation_id
from ...state.message_store import MessageStore
from ...state.watchlist import WatchEntry, WatchRegistry


def _int_param(req: web.Request, name: str, default: int) -> int:
    raw = req.query.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer") from None
    if value < 1:
        raise ValidationError(f"{name} must be positive")
    return value


def _float_param(req: web.Request, name: str) -> float | None:
    raw = req.query.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a timestamp") from None


def _entry(entry: WatchEntry) -> dict[str, Any]:
    return asdict(entry)


class WatchlistRoutes:
    """REST handler for the monitored-conversation registry."""

    def __init__(
        self,
        registry: WatchRegistry,
        messages: MessageStore,
        *,
        fetch_limit: int = 50,
        search_limit: int = 50,
    ) -> None:
        self._registry = registry
        self._messages = messages
        self._fetch_limit = fetch_limit
        self._search_limit = search_limit

    def register(self, router: web.UrlDispatcher) -> None:
        router.add_get("/api/watchlist", self._list)
        router.add_post("/api/watchlist", self._add)
        router.add_put("/api/watchlist/order", self._reorder)
        router.add_delete("/api/watchlist/{chat_id}", self._remove)
        router.add_post("/api/watchlist/{chat_id}/read", self._read)
        router.add_post("/api/watchlist/{chat_id}/pin", self._pin)
        router.add_post("/api/watchlist/{chat_id}/notifications", self._notifications)
        router.add_get("/api/watchlist/{chat_id}/messages", self._history)
        router.add_get("/api/watchlist/{chat_id}/search", self._search)
        router.add_put("/api/watchlist/{chat_id}/notes", self._notes)
        router.add_post("/api/watchlist/{chat_id}/tags", self._add_tags)
        router.add_delete("/api/watchlist/{chat_id}/tags/{tag}", self._remove_tag)
        router.add_post("/api/watchlist/{chat_id}/refresh", self._refresh)
        router.add_get("/api/messages/starred", self._starred)
        router.add_post("/api/messages/{message_id}/star", self._star)
        router.add_delete("/api/messages/{message_id}/star", self._unstar)

    async def _list(self, req: web.Request) -> web.Response:
        if req.query.get("order") == "manual":
            entries = self._registry.list_by_order()
        else:
            entries = self._registry.list()
        return web.json_response({"status": "ok", "chats": [_entry(e) for e in entries]})

    async def _add(self, req: web.Request) -> web.Response:
        body = await req.json()
        chat_id = (body.get("chatId") or "").strip()
        if not chat_id:
            raise ValidationError("chatId is required")
        entry = await self._registry.add(chat_id)
        return web.json_response({"status": "ok", "chat": _entry(entry)})

    async def _remove(self, req: web.Request) -> web.Response:
        entry = self._registry.remove(req.match_info["chat_id"])
        return web.json_response({"status": "ok", "chatId": entry.conversation_id})

    async def _reorder(self, req: web.Request) -> web.Response:
        body = await req.json()
        ids = body.get("chatIds")
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise ValidationError("chatIds must be a list of chat ids")
        updated = self._registry.reorder(ids)
        return web.json_response({"status": "ok", "updated": updated})

    async def _read(self, req: web.Request) -> web.Response:
        entry = await self._registry.mark_read(req.match_info["chat_id"])
        return web.json_response({"status": "ok", "chat": _entry(entry)})

    async def _pin(self, req: web.Request) -> web.Response:
        entry = self._registry.toggle_pin(req.match_info["chat_id"])
        return web.json_response({"status": "ok", "pinned": entry.pinned})

    async def _notifications(self, req: web.Request) -> web.Response:
        entry = self._registry.toggle_notifications(req.match_info["chat_id"])
        return web.json_response({"status": "ok", "notifications": entry.notifications})

    async def _history(self, req: web.Request) -> web.Response:
        records = self._registry.messages(
            req.match_info["chat_id"],
            limit=_int_param(req, "limit", self._fetch_limit),
            before=_float_param(req, "before"),
            after=_float_param(req, "after"),
            include_deleted=req.query.get("includeDeleted") == "true",
        )
        return web.json_response({"status": "ok", "messages": [asdict(r) for r in records]})

    async def _search(self, req: web.Request) -> web.Response:
        entry = self._registry.get(req.match_info["chat_id"])
        query = req.query.get("q", "").strip()
        if not query:
            raise ValidationError("q is required")
        records = self._messages.search_messages(
            entry.conversation_id, query, limit=_int_param(req, "limit", self._search_limit),
        )
        return web.json_response({"status": "ok", "messages": [asdict(r) for r in records]})

    async def _notes(self, req: web.Request) -> web.Response:
        body = await req.json()
        notes = body.get("notes", "")
        if not isinstance(notes, str):
            raise ValidationError("notes must be a string")
        entry = self._registry.set_notes(req.match_info["chat_id"], notes)
        return web.json_response({"status": "ok", "chat": _entry(entry)})

    async def _add_tags(self, req: web.Request) -> web.Response:
        body = await req.json()
        tags = body.get("tags")
        if not isinstance(tags, list) or not tags or not all(isinstance(t, str) and t.strip() for t in tags):
            raise ValidationError("tags must be a non-empty list of strings")
        entry = self._registry.add_tags(req.match_info["chat_id"], [t.strip() for t in tags])
        return web.json_response({"status": "ok", "tags": entry.tags})

    async def _remove_tag(self, req: web.Request) -> web.Response:
        entry = self._registry.remove_tag(req.match_info["chat_id"], req.match_info["tag"])
        return web.json_response({"status": "ok", "tags": entry.tags})

    async def _refresh(self, req: web.Request) -> web.Response:
        entry = await self._registry.refresh(req.match_info["chat_id"])
        return web.json_response({"status": "ok", "chat": _entry(entry)})

    # -- starred messages ----------------------------------------------------

    async def _starred(self, req: web.Request) -> web.Response:
        chat_id = req.query.get("chatId", "").strip()
        records = self._messages.get_starred_messages(
            canonical_conversation_id(chat_id) if chat_id else None,
        )
        return web.json_response({"status": "ok", "messages": [asdict(r) for r in records]})

    async def _star(self, req: web.Request) -> web.Response:
        return self._set_starred(req.match_info["message_id"], True)

    async def _unstar(self, req: web.Request) -> web.Response:
        return self._set_starred(req.match_info["message_id"], False)

    def _set_starred(self, message_id: str, starred: bool) -> web.Response:
        record = self._messages.set_starred(message_id, starred)
        if record is None:
            raise MessageNotFound(message_id)
        return web.json_response({"status": "ok", "messageId": message_id, "starred": record.is_starred})
