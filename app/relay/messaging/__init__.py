"""Session-facing pipeline -- event models, dispatch, auto-messages and fan-out."""

__all__ = [
    "auto_messages",
    "broadcaster",
    "client",
    "dispatcher",
    "formatting",
    "ids",
    "models",
]
