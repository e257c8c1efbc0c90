"""Server route handlers."""

from __future__ import annotations

from .group_routes import GroupRoutes
from .session_routes import SessionRoutes
from .watchlist_routes import WatchlistRoutes

__all__ = [
    "GroupRoutes",
    "SessionRoutes",
    "WatchlistRoutes",
]
