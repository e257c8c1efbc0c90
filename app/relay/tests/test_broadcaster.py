"""Tests for the fan-out broadcaster."""

from __future__ import annotations

from dataclasses import dataclass

from app.relay.messaging.broadcaster import Broadcaster, WsEvent, to_jsonable


@dataclass
class _Point:
    x: int
    y: int


class TestBroadcaster:
    def test_no_sink_drops_silently(self) -> None:
        b = Broadcaster()
        assert not b.has_sink
        b.broadcast(WsEvent.MESSAGE_NEW, {"id": "m1"})

    def test_forwards_to_sink(self, recorder) -> None:
        b = Broadcaster(recorder)
        b.broadcast(WsEvent.CLIENT_STATUS, {"status": "ready"})
        b.broadcast("watchlist:update")
        assert recorder.events == [("client:status", {"status": "ready"}), ("watchlist:update", {})]

    def test_unknown_event_rejected(self, recorder) -> None:
        b = Broadcaster(recorder)
        b.broadcast("message:exploded", {"id": "m1"})
        assert recorder.events == []

    def test_sink_failure_swallowed(self) -> None:
        def broken(_event, _payload):
            raise ConnectionResetError("subscriber went away")

        b = Broadcaster(broken)
        b.broadcast(WsEvent.MESSAGE_ACK, {"ack": 2})

    def test_set_sink(self, recorder) -> None:
        b = Broadcaster()
        b.set_sink(recorder)
        b.broadcast(WsEvent.CHAT_ARCHIVED, {"chatId": "1@c.us", "archived": True})
        b.set_sink(None)
        b.broadcast(WsEvent.CHAT_ARCHIVED, {"chatId": "1@c.us", "archived": False})
        assert len(recorder.events) == 1

    def test_payloads_made_json_ready(self) -> None:
        out = to_jsonable({"p": _Point(1, 2), "ids": ("a", "b"), "n": None, "obj": object})
        assert out["p"] == {"x": 1, "y": 2}
        assert out["ids"] == ["a", "b"]
        assert out["n"] is None
        assert isinstance(out["obj"], str)
