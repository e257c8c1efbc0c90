"""Runtime orchestrator -- wires every relay component around one session."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from .config.settings import cfg
from .messaging.auto_messages import AutoMessageEngine
from .messaging.broadcaster import Broadcaster
from .messaging.client import SessionClient, load_client
from .messaging.dispatcher import EventDispatcher
from .state.group_settings import GroupSettingsStore
from .state.message_store import MessageStore
from .state.session_state import SessionStateMachine
from .state.watchlist import WatchRegistry

logger = logging.getLogger(__name__)


class RelayRuntime:
    """Owns the session context and the components that share it.

    Paths default to the ones derived from :data:`cfg`; pass *data_dir* to
    keep everything under one directory instead (tests do).
    """

    def __init__(
        self,
        client: SessionClient | None = None,
        *,
        data_dir: Path | None = None,
        broadcaster: Broadcaster | None = None,
        session_id: str | None = None,
        default_delay: float | None = None,
    ) -> None:
        if data_dir is not None:
            session_path = data_dir / "session.json"
            watchlist_path = data_dir / "watchlist.json"
            group_settings_path = data_dir / "group_settings.json"
            messages_dir = data_dir / "messages"
        else:
            cfg.ensure_dirs()
            session_path = cfg.session_path
            watchlist_path = cfg.watchlist_path
            group_settings_path = cfg.group_settings_path
            messages_dir = cfg.messages_dir

        self.broadcaster = broadcaster or Broadcaster()
        self.session = SessionStateMachine(
            session_path, self.broadcaster, session_id=session_id or cfg.session_id,
        )
        self.messages = MessageStore(messages_dir)
        self.watchlist = WatchRegistry(watchlist_path, self.session, messages=self.messages)
        self.group_settings = GroupSettingsStore(
            group_settings_path,
            default_delay=cfg.auto_message_default_delay if default_delay is None else default_delay,
        )
        self.auto_messages = AutoMessageEngine(self.group_settings, self.session)
        self.dispatcher = EventDispatcher(
            self.session, self.watchlist, self.messages, self.auto_messages, self.broadcaster,
        )
        self.client: SessionClient | None = None
        self._loop_task: asyncio.Task[None] | None = None
        if client is not None:
            self.attach_client(client)

    @classmethod
    def from_config(cls) -> RelayRuntime:
        """Build a runtime for the client named by ``SESSION_CLIENT``, if any."""
        client = load_client(cfg.session_client) if cfg.session_client else None
        if client is None:
            logger.warning("[runtime] SESSION_CLIENT not set; running without a session")
        return cls(client)

    def attach_client(self, client: SessionClient) -> None:
        self.client = client
        self.watchlist.attach_client(client)
        self.auto_messages.attach_client(client)
        self.session.set_starter(client.initialize)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self, *, initialize: bool = True) -> None:
        """Start the dispatch loop and, optionally, the session itself."""
        if self.client is None:
            logger.info("[runtime] no session client attached, nothing to start")
            return
        if not self.running:
            self._loop_task = asyncio.create_task(
                self.dispatcher.run(self.client.events), name="relay-dispatch",
            )
        if initialize:
            await self.session.initialize()

    async def stop(self) -> None:
        """Stop consuming events and wait for in-flight handlers.

        Pending auto-message sends are cancelled and buffered history writes
        are flushed.
        """
        if self._loop_task is not None:
            if self.client is not None and not self._loop_task.done():
                self.client.events.put_nowait(None)
            try:
                await asyncio.wait_for(self._loop_task, timeout=5)
            except asyncio.TimeoutError:
                logger.warning("[runtime] dispatch loop did not stop in time, cancelling")
                self._loop_task.cancel()
            self._loop_task = None
        await self.dispatcher.drain()
        self.auto_messages.cancel_all()
        await self.auto_messages.wait_idle()
        await self.messages.flush()
        logger.info("[runtime] stopped")
