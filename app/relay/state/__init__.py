"""Durable state -- session, watchlist, message history and group settings."""

__all__ = [
    "documents",
    "group_settings",
    "message_store",
    "session_state",
    "watchlist",
]
