"""Contract for the live messaging session the relay sits on top of.

The relay never speaks the messaging protocol itself. A client
implementation pushes :class:`SessionEvent` objects onto ``events`` and
answers the handful of lookups and actions below. ``SESSION_CLIENT`` names a
``module:factory`` that builds one.
"""

from __future__ import annotations

import asyncio
import importlib
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from .models import ChatSnapshot, Contact, SessionEvent


@runtime_checkable
class SessionClient(Protocol):
    events: asyncio.Queue[SessionEvent | None]

    async def initialize(self) -> None:
        """Start connecting; lifecycle progress arrives as events."""

    async def get_chat(self, chat_id: str) -> ChatSnapshot | None: ...

    async def get_contact(self, contact_id: str) -> Contact | None: ...

    async def send_message(
        self, chat_id: str, text: str, mentions: Sequence[str] = (),
    ) -> None: ...

    async def send_seen(self, chat_id: str) -> None: ...


def load_client(spec: str) -> SessionClient:
    """Build a client from a ``"package.module:factory"`` string."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"SESSION_CLIENT must look like 'module:factory', got {spec!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    client = factory()
    if not isinstance(client, SessionClient):
        raise TypeError(f"{spec} did not return a SessionClient")
    return client
