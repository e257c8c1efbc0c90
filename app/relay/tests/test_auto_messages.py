"""Tests for the welcome/farewell engine."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from app.relay.messaging.auto_messages import AutoMessageEngine, render_template
from app.relay.state.group_settings import GroupSettingsStore
from app.relay.state.session_state import SessionStateMachine

GROUP = "120363@g.us"
NEWBIE = "15550003333@c.us"


@pytest.fixture()
def settings(data_dir: Path) -> GroupSettingsStore:
    return GroupSettingsStore(data_dir / "group_settings.json", default_delay=0)


@pytest.fixture()
def engine(settings: GroupSettingsStore, session: SessionStateMachine, mock_client: MagicMock) -> AutoMessageEngine:
    return AutoMessageEngine(settings, session, mock_client)


class TestTemplates:
    def test_at_placeholder_replaced_whole(self) -> None:
        assert render_template("Hi @{user}!", "@123") == "Hi @123!"

    def test_bare_placeholder(self) -> None:
        assert render_template("Bye {user}", "members") == "Bye members"


class TestWelcome:
    @pytest.mark.asyncio
    async def test_welcome_mentions_member(self, engine, settings, session, make_ready, mock_client) -> None:
        await make_ready(session)
        settings.update_trigger(GROUP, "welcome", {"enabled": True, "message": "Hi @{user}!", "delay_seconds": 0})

        task = engine.on_join(GROUP, [NEWBIE])
        result = await task

        assert result
        assert result.group_id == GROUP
        assert result.text == "Hi @15550003333!"
        mock_client.send_message.assert_awaited_once_with(GROUP, "Hi @15550003333!", [NEWBIE])

    @pytest.mark.asyncio
    async def test_multiple_members_share_one_message(self, engine, settings, session, make_ready, mock_client) -> None:
        await make_ready(session)
        settings.update_trigger(GROUP, "welcome", {"enabled": True, "message": "Welcome {user}"})
        await engine.on_join(GROUP, [NEWBIE, "15550004444@c.us"])
        mock_client.send_message.assert_awaited_once_with(
            GROUP, "Welcome @15550003333 @15550004444", [NEWBIE, "15550004444@c.us"],
        )

    @pytest.mark.asyncio
    async def test_unresolvable_member_skipped(self, engine, settings, session, make_ready, mock_client) -> None:
        await make_ready(session)
        settings.update_trigger(GROUP, "welcome", {"enabled": True, "message": "Hi @{user}!"})

        async def lookup(contact_id):
            if contact_id == NEWBIE:
                raise RuntimeError("lookup failed")
            return MagicMock(id=contact_id, handle="4444")

        mock_client.get_contact.side_effect = lookup
        await engine.on_join(GROUP, [NEWBIE, "15550004444@c.us"])
        mock_client.send_message.assert_awaited_once_with(GROUP, "Hi @4444!", ["15550004444@c.us"])

    @pytest.mark.asyncio
    async def test_without_mentions_template_kept(self, engine, settings, session, make_ready, mock_client) -> None:
        await make_ready(session)
        settings.update_trigger(
            GROUP, "welcome", {"enabled": True, "message": "Welcome aboard!", "mention_user": False},
        )
        await engine.on_join(GROUP, [NEWBIE])
        mock_client.get_contact.assert_not_awaited()
        mock_client.send_message.assert_awaited_once_with(GROUP, "Welcome aboard!", [])

    @pytest.mark.asyncio
    async def test_rules_appended(self, engine, settings, session, make_ready, mock_client) -> None:
        await make_ready(session)
        settings.set_rules(GROUP, "1. Be kind")
        settings.update_trigger(GROUP, "welcome", {
            "enabled": True, "message": "Hi", "mention_user": False, "include_group_rules": True,
        })
        await engine.on_join(GROUP, [NEWBIE])
        text = mock_client.send_message.await_args.args[1]
        assert text == "Hi\n\n📋 *Group Rules*:\n1. Be kind"

    def test_disabled_or_unconfigured_schedules_nothing(self, engine, settings) -> None:
        assert engine.on_join(GROUP, [NEWBIE]) is None
        settings.get_or_create(GROUP)
        assert engine.on_join(GROUP, [NEWBIE]) is None
        assert engine.pending == 0


class TestFarewell:
    @pytest.mark.asyncio
    async def test_farewell_noun(self, engine, settings, session, make_ready, mock_client) -> None:
        await make_ready(session)
        settings.update_trigger(GROUP, "farewell", {"enabled": True, "message": "Goodbye, {user}!"})
        await engine.on_leave(GROUP, [NEWBIE])
        await engine.on_leave(GROUP, [NEWBIE, "15550004444@c.us"])
        sent = [call.args[1] for call in mock_client.send_message.await_args_list]
        assert sent == ["Goodbye, member!", "Goodbye, members!"]


class TestSendFailures:
    @pytest.mark.asyncio
    async def test_not_operational_is_reported(self, engine, settings, mock_client) -> None:
        settings.update_trigger(GROUP, "farewell", {"enabled": True})
        result = await engine.on_leave(GROUP, [NEWBIE])
        assert not result
        assert result.message == "session not operational"
        mock_client.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_error_not_retried(self, engine, settings, session, make_ready, mock_client) -> None:
        await make_ready(session)
        mock_client.send_message.side_effect = RuntimeError("rate limited")
        settings.update_trigger(GROUP, "farewell", {"enabled": True})
        result = await engine.on_leave(GROUP, [NEWBIE])
        assert not result
        assert mock_client.send_message.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_template_skipped(self, engine, settings, session, make_ready, mock_client) -> None:
        await make_ready(session)
        settings.update_trigger(GROUP, "farewell", {"enabled": True, "message": "   "})
        result = await engine.on_leave(GROUP, [NEWBIE])
        assert result.message == "empty message"

    @pytest.mark.asyncio
    async def test_wait_idle_collects_results(self, engine, settings, session, make_ready) -> None:
        await make_ready(session)
        settings.update_trigger(GROUP, "farewell", {"enabled": True})
        engine.on_leave(GROUP, [NEWBIE])
        engine.on_leave(GROUP, [NEWBIE])
        results = await engine.wait_idle()
        assert len(results) == 2
        assert all(results)
        assert engine.pending == 0


class TestDelay:
    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_send_waits_for_configured_delay(self, engine, settings, session, make_ready, mock_client) -> None:
        await make_ready(session)
        settings.update_trigger(GROUP, "farewell", {"enabled": True, "delay_seconds": 1})
        task = engine.on_leave(GROUP, [NEWBIE])
        await asyncio.sleep(0.5)
        mock_client.send_message.assert_not_awaited()
        assert engine.pending == 1
        assert await task
        mock_client.send_message.assert_awaited_once()
