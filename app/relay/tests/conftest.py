"""Shared pytest fixtures for app.relay tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.relay.messaging.broadcaster import Broadcaster
from app.relay.messaging.models import ChatSnapshot, Contact
from app.relay.state.session_state import SessionStateMachine


@pytest.fixture(autouse=True)
def _isolate_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setenv("CHATRELAY_DATA_DIR", str(data_dir))
    monkeypatch.setenv("DOTENV_PATH", str(tmp_path / ".env"))
    for key in ("ADMIN_SECRET", "SESSION_CLIENT", "SESSION_ID", "AUTO_MESSAGE_DEFAULT_DELAY"):
        monkeypatch.delenv(key, raising=False)
    return data_dir


@pytest.fixture(autouse=True)
def _reset_singletons(_isolate_data_dir: Path):
    from app.relay.util.singletons import reset_all_singletons

    reset_all_singletons()
    yield
    reset_all_singletons()


@pytest.fixture()
def data_dir(_isolate_data_dir: Path) -> Path:
    return _isolate_data_dir


class EventRecorder:
    """Broadcast sink that keeps every ``(event, payload)`` pair."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def __call__(self, event: str, payload: Any) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> list[Any]:
        return [payload for event, payload in self.events if event == name]


@pytest.fixture()
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture()
def broadcaster(recorder: EventRecorder) -> Broadcaster:
    return Broadcaster(recorder)


@pytest.fixture()
def session(data_dir: Path, broadcaster: Broadcaster) -> SessionStateMachine:
    return SessionStateMachine(data_dir / "session.json", broadcaster)


@pytest.fixture()
def make_ready():
    """Walk a session machine through the normal pairing sequence."""

    async def _ready(machine: SessionStateMachine) -> SessionStateMachine:
        await machine.initialize()
        machine.on_authenticated()
        machine.on_ready({"wid": {"user": "15550001111"}, "pushname": "Relay", "platform": "android"})
        return machine

    return _ready


@pytest.fixture()
def mock_client() -> MagicMock:
    client = MagicMock()
    client.events = asyncio.Queue()
    client.initialize = AsyncMock()
    client.send_message = AsyncMock()
    client.send_seen = AsyncMock()
    client.get_chat = AsyncMock(
        side_effect=lambda chat_id: ChatSnapshot(
            id=chat_id,
            name=f"Chat {chat_id.split('@')[0]}",
            is_group=chat_id.endswith("@g.us"),
            participant_count=3 if chat_id.endswith("@g.us") else 0,
        ),
    )
    client.get_contact = AsyncMock(
        side_effect=lambda contact_id: Contact(id=contact_id, number=contact_id.split("@")[0]),
    )
    return client
