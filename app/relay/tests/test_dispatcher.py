"""Tests for event ingestion through the dispatcher."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from app.relay.messaging.broadcaster import Broadcaster
from app.relay.messaging.models import SessionEvent
from app.relay.runtime import RelayRuntime

ALICE = "15550001111@c.us"
ME = "15559990000@c.us"
GROUP = "120363@g.us"


@pytest.fixture()
def runtime(data_dir: Path, broadcaster: Broadcaster, mock_client: MagicMock) -> RelayRuntime:
    return RelayRuntime(mock_client, data_dir=data_dir, broadcaster=broadcaster, default_delay=0)


def _message(message_id: str, chat: str = ALICE, ts: float = 100, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": {"_serialized": message_id},
        "from": chat,
        "to": ME,
        "body": "hello",
        "timestamp": ts,
    }
    payload.update(extra)
    return payload


async def _ready(runtime: RelayRuntime) -> None:
    await runtime.session.initialize()
    await runtime.dispatcher.dispatch(SessionEvent("authenticated"))
    await runtime.dispatcher.dispatch(SessionEvent("ready", {"info": {"wid": {"user": "15559990000"}}}))


class TestMessages:
    @pytest.mark.asyncio
    async def test_unwatched_message_only_broadcast(self, runtime: RelayRuntime, recorder) -> None:
        await runtime.dispatcher.dispatch(SessionEvent("message", _message("m1")))
        assert recorder.names() == ["message:new"]
        assert runtime.messages.get("m1") is None

    @pytest.mark.asyncio
    async def test_watched_message_logged_once(self, runtime: RelayRuntime, recorder) -> None:
        await _ready(runtime)
        await runtime.watchlist.add(ALICE)
        recorder.events.clear()

        event = SessionEvent("message", _message("m1"))
        await runtime.dispatcher.dispatch(event)
        await runtime.dispatcher.dispatch(event)

        assert len(runtime.messages.get_chat_messages(ALICE)) == 1
        assert runtime.watchlist.get(ALICE).unread_count == 1
        assert recorder.names().count("watchlist:message") == 2
        assert recorder.of("watchlist:message")[0]["chatId"] == ALICE

    @pytest.mark.asyncio
    async def test_own_message_echo(self, runtime: RelayRuntime, recorder) -> None:
        await _ready(runtime)
        await runtime.watchlist.add(ALICE)
        recorder.events.clear()

        await runtime.dispatcher.dispatch(
            SessionEvent("message_create", _message("out1", chat=ME, to=ALICE, fromMe=True)),
        )
        await runtime.dispatcher.dispatch(SessionEvent("message_create", _message("in1")))

        assert recorder.names() == ["watchlist:message"]
        assert runtime.messages.get("out1").conversation_id == ALICE
        assert runtime.messages.get("in1") is None
        assert runtime.watchlist.get(ALICE).unread_count == 0

    @pytest.mark.asyncio
    async def test_ack_revoke_edit_reaction(self, runtime: RelayRuntime, recorder) -> None:
        await _ready(runtime)
        await runtime.watchlist.add(ALICE)
        await runtime.dispatcher.dispatch(SessionEvent("message", _message("m1")))
        recorder.events.clear()

        d = runtime.dispatcher
        await d.dispatch(SessionEvent("message_ack", {"message": {"id": {"_serialized": "m1"}}, "ack": 3}))
        await d.dispatch(SessionEvent("message_ack", {"message": {"id": {"_serialized": "m1"}}, "ack": 2}))
        await d.dispatch(SessionEvent("message_edit", {
            "message": {"id": {"_serialized": "m1"}}, "newBody": "hello!", "oldBody": "hello",
        }))
        await d.dispatch(SessionEvent("message_reaction", {
            "id": "r1", "msgId": {"_serialized": "m1"}, "reaction": "👍", "senderId": "a@c.us",
        }))

        record = runtime.messages.get("m1")
        assert record.ack == 3
        assert record.body == "hello!"
        assert [r.emoji for r in record.reactions] == ["👍"]
        assert [p["ack"] for p in recorder.of("message:ack")] == [3, 3]
        assert recorder.of("message:edit") == [{"messageId": "m1", "newBody": "hello!", "oldBody": "hello"}]

        await d.dispatch(SessionEvent("message_revoke_everyone", {"revoked": {"id": {"_serialized": "m1"}}}))
        assert runtime.messages.get_chat_messages(ALICE) == []
        assert runtime.messages.get_chat_messages(ALICE, include_deleted=True)[0].is_deleted
        assert recorder.of("message:revoked") == [{"messageId": "m1"}]

    @pytest.mark.asyncio
    async def test_ack_for_unlogged_message_still_broadcast(self, runtime: RelayRuntime, recorder) -> None:
        await runtime.dispatcher.dispatch(SessionEvent("message_ack", {"message": {"id": "ghost"}, "ack": 2}))
        assert recorder.of("message:ack") == [{"messageId": "ghost", "ack": 2, "ackLabel": "received"}]


class TestGroups:
    @pytest.mark.asyncio
    async def test_join_without_welcome_still_broadcast(self, runtime: RelayRuntime, recorder, mock_client) -> None:
        await _ready(runtime)
        recorder.events.clear()
        await runtime.dispatcher.dispatch(SessionEvent("group_join", {
            "id": "n1", "chatId": GROUP, "type": "add", "recipientIds": ["15550003333@c.us"],
        }))
        await runtime.auto_messages.wait_idle()
        assert recorder.names() == ["group:join"]
        mock_client.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_join_fires_welcome_and_watchlist_update(self, runtime: RelayRuntime, recorder, mock_client) -> None:
        await _ready(runtime)
        await runtime.watchlist.add(GROUP)
        runtime.group_settings.update_trigger(GROUP, "welcome", {"enabled": True, "message": "Hi @{user}!"})
        recorder.events.clear()

        await runtime.dispatcher.dispatch(SessionEvent("group_join", {
            "id": "n1", "chatId": GROUP, "type": "add", "recipientIds": ["15550003333@c.us"],
        }))
        results = await runtime.auto_messages.wait_idle()

        assert [bool(r) for r in results] == [True]
        mock_client.send_message.assert_awaited_once_with(GROUP, "Hi @15550003333!", ["15550003333@c.us"])
        assert recorder.of("watchlist:update") == [
            {"chatId": GROUP, "event": "member_join", "members": ["15550003333@c.us"]},
        ]

    @pytest.mark.asyncio
    async def test_leave_and_update(self, runtime: RelayRuntime, recorder) -> None:
        await _ready(runtime)
        await runtime.watchlist.add(GROUP)
        recorder.events.clear()
        d = runtime.dispatcher
        await d.dispatch(SessionEvent("group_leave", {"id": "n2", "chatId": GROUP, "type": "leave", "recipientIds": ["x@c.us"]}))
        await d.dispatch(SessionEvent("group_update", {"id": "n3", "chatId": GROUP, "type": "subject"}))
        assert recorder.names() == ["group:leave", "watchlist:update", "group:update", "watchlist:update"]
        assert recorder.of("watchlist:update")[1] == {"chatId": GROUP, "event": "group_update", "type": "subject"}

    @pytest.mark.asyncio
    async def test_membership_request(self, runtime: RelayRuntime, recorder) -> None:
        await runtime.dispatcher.dispatch(SessionEvent("group_membership_request", {
            "id": "n4", "chatId": GROUP, "author": "15550005555@c.us",
        }))
        payload = recorder.of("group:membership_request")[0]
        assert payload["groupId"] == GROUP
        assert payload["requesterId"] == "15550005555@c.us"


class TestDeferredSends:
    @pytest.mark.asyncio
    async def test_pending_welcome_does_not_hold_back_later_events(
        self, runtime: RelayRuntime, recorder, mock_client,
    ) -> None:
        await _ready(runtime)
        runtime.group_settings.update_trigger(GROUP, "welcome", {
            "enabled": True, "message": "Welcome!", "mention_user": False, "delay_seconds": 0.2,
        })
        recorder.events.clear()
        mock_client.send_message.side_effect = lambda chat_id, text, mentions: recorder("sent", chat_id)

        d = runtime.dispatcher
        d.submit(SessionEvent("group_join", {
            "id": "n1", "chatId": GROUP, "type": "add", "recipientIds": ["15550003333@c.us"],
        }))
        d.submit(SessionEvent("message", _message("m1")))
        await d.drain()

        assert recorder.names() == ["group:join", "message:new"]
        mock_client.send_message.assert_not_awaited()
        assert runtime.auto_messages.pending == 1

        await runtime.auto_messages.wait_idle()
        assert recorder.names() == ["group:join", "message:new", "sent"]
        mock_client.send_message.assert_awaited_once_with(GROUP, "Welcome!", [])


class TestIsolation:
    @pytest.mark.asyncio
    async def test_handler_failure_is_contained(self, runtime: RelayRuntime, recorder) -> None:
        await runtime.dispatcher.dispatch(SessionEvent("message", {"body": "no id"}))
        await runtime.dispatcher.dispatch(SessionEvent("contact_changed", {
            "oldId": "1@c.us", "newId": "2@c.us", "isContact": True,
        }))
        assert recorder.of("contact:changed") == [{"oldId": "1@c.us", "newId": "2@c.us", "isContact": True}]

    @pytest.mark.asyncio
    async def test_invalid_lifecycle_event_is_contained(self, runtime: RelayRuntime) -> None:
        await runtime.dispatcher.dispatch(SessionEvent("ready", {}))
        assert runtime.session.status.value == "disconnected"

    @pytest.mark.asyncio
    async def test_unknown_kind_ignored(self, runtime: RelayRuntime, recorder) -> None:
        await runtime.dispatcher.dispatch(SessionEvent("call", {}))
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_chat_archived(self, runtime: RelayRuntime, recorder) -> None:
        await runtime.dispatcher.dispatch(SessionEvent("chat_archived", {"chatId": {"_serialized": ALICE}, "archived": True}))
        assert recorder.of("chat:archived") == [{"chatId": ALICE, "archived": True}]


class TestRuntimeLoop:
    @pytest.mark.asyncio
    async def test_queue_drives_lifecycle(self, runtime: RelayRuntime, mock_client, recorder) -> None:
        await runtime.start()
        assert runtime.running
        mock_client.initialize.assert_awaited_once()

        mock_client.events.put_nowait(SessionEvent("qr", {"qr": "payload"}))
        mock_client.events.put_nowait(SessionEvent("authenticated"))
        await mock_client.events.join()
        await runtime.dispatcher.drain()
        assert runtime.session.status.value == "authenticated"

        await runtime.stop()
        assert not runtime.running
        assert "client:qr" in recorder.names()

    @pytest.mark.asyncio
    async def test_start_without_client(self, data_dir: Path) -> None:
        runtime = RelayRuntime(data_dir=data_dir)
        await runtime.start()
        assert not runtime.running
        await runtime.stop()
