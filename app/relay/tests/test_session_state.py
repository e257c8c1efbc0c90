"""Tests for the session state machine."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from app.relay.errors import InvalidTransition, SessionNotOperational
from app.relay.messaging.broadcaster import Broadcaster
from app.relay.state.session_state import SessionStateMachine, SessionStatus


class TestLifecycle:
    def test_starts_disconnected(self, session: SessionStateMachine) -> None:
        assert session.status is SessionStatus.DISCONNECTED
        assert not session.is_operational()
        assert session.pending_pairing_payload is None

    @pytest.mark.asyncio
    async def test_pairing_flow(self, session: SessionStateMachine, recorder) -> None:
        assert await session.initialize() is True
        session.on_qr("qr-payload-1")
        assert session.status is SessionStatus.QR_READY
        assert session.pending_pairing_payload == "qr-payload-1"

        session.on_authenticated()
        assert session.pending_pairing_payload is None
        session.on_ready({"wid": {"user": "15550001111"}, "pushname": "Relay", "platform": "android"})

        assert session.is_operational()
        assert session.session.phone_number == "15550001111"
        assert session.session.connections_count == 1
        assert recorder.of("client:status") == [
            {"status": "initializing"},
            {"status": "qr_ready"},
            {"status": "authenticated"},
            {"status": "ready"},
        ]
        assert recorder.of("client:qr") == [{"qr": "qr-payload-1"}]
        assert len(recorder.of("client:ready")) == 1

    @pytest.mark.asyncio
    async def test_qr_refresh_keeps_latest_payload(self, session: SessionStateMachine) -> None:
        await session.initialize()
        session.on_qr("first")
        session.on_qr("second")
        assert session.pending_pairing_payload == "second"

    @pytest.mark.asyncio
    async def test_disconnect_clears_operational(self, session: SessionStateMachine, make_ready, recorder) -> None:
        await make_ready(session)
        session.on_disconnected("NAVIGATION")
        assert session.status is SessionStatus.DISCONNECTED
        assert not session.is_operational()
        assert recorder.of("client:disconnected") == [{"reason": "NAVIGATION"}]

    @pytest.mark.asyncio
    async def test_initialize_ignored_while_running(self, session: SessionStateMachine, make_ready) -> None:
        await make_ready(session)
        assert await session.initialize() is False
        assert session.status is SessionStatus.READY

    @pytest.mark.asyncio
    async def test_failing_starter_moves_to_failed(self, session: SessionStateMachine) -> None:
        session.set_starter(AsyncMock(side_effect=RuntimeError("browser crashed")))
        assert await session.initialize() is False
        assert session.status is SessionStatus.FAILED
        # FAILED -> INITIALIZING is the only way out
        session.set_starter(AsyncMock())
        assert await session.initialize() is True
        assert session.status is SessionStatus.INITIALIZING

    def test_ready_before_authentication_rejected(self, session: SessionStateMachine) -> None:
        with pytest.raises(InvalidTransition):
            session.on_ready({})
        assert session.session.connections_count == 0

    def test_ensure_operational(self, session: SessionStateMachine) -> None:
        with pytest.raises(SessionNotOperational) as exc:
            session.ensure_operational()
        assert exc.value.status == "disconnected"


class TestPersistence:
    @pytest.mark.asyncio
    async def test_identity_persisted(self, data_dir: Path, session: SessionStateMachine, make_ready) -> None:
        await make_ready(session)
        stored = json.loads((data_dir / "session.json").read_text())
        assert stored[0]["status"] == "ready"
        assert stored[0]["pushname"] == "Relay"

    @pytest.mark.asyncio
    async def test_restart_forgets_live_status(self, data_dir: Path, session: SessionStateMachine, make_ready) -> None:
        await make_ready(session)
        again = SessionStateMachine(data_dir / "session.json", Broadcaster())
        assert again.status is SessionStatus.DISCONNECTED
        assert again.session.phone_number == "15550001111"
        assert again.session.connections_count == 1

    def test_snapshot_shape(self, session: SessionStateMachine) -> None:
        snap = session.snapshot()
        assert snap["status"] == "disconnected"
        assert snap["operational"] is False
        assert snap["qr"] is None
