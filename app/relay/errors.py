"""Domain exceptions.

Ingestion handlers log and swallow these; operations called from a request
context let them propagate so the server layer can translate them
(:mod:`app.relay.server.app`).
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for every error the relay raises on purpose."""


class ConversationNotFound(RelayError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Chat not found: {conversation_id}")
        self.conversation_id = conversation_id


class WatchEntryNotFound(RelayError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Chat not found in watchlist: {conversation_id}")
        self.conversation_id = conversation_id


class SessionNotOperational(RelayError):
    def __init__(self, status: str) -> None:
        super().__init__(f"Messaging session is not ready (status: {status})")
        self.status = status


class ValidationError(RelayError):
    """Bad caller input, e.g. an unknown auto-message trigger."""


class InvalidTransition(RelayError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid session transition {current} -> {target}")
        self.current = current
        self.target = target


class DuplicateIgnored(RelayError):
    """A message id was already logged; the stored record is kept as-is."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message already logged: {message_id}")
        self.message_id = message_id


class MessageNotFound(RelayError):
    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message not found: {message_id}")
        self.message_id = message_id
