"""Application settings -- reads from environment and ``.env`` file.

Everything the relay needs to locate its data and talk to its collaborators
is read here; components take explicit paths so tests can point them at a
temporary directory.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar

from ..util.env_file import EnvFile
from ..util.singletons import register_singleton


class Settings:
    """Runtime configuration sourced from environment variables and ``.env``."""

    _DATA_DIR_ENV: ClassVar[str] = "CHATRELAY_DATA_DIR"

    def __init__(self) -> None:
        # Resolve .env path: explicit DOTENV_PATH > data_dir/.env > CWD/.env
        dotenv = os.getenv("DOTENV_PATH")
        if not dotenv:
            data_dir = os.getenv(self._DATA_DIR_ENV)
            dotenv = str(Path(data_dir) / ".env") if data_dir else ".env"
        self.env = EnvFile(dotenv)
        self.reload()

    def reload(self) -> None:
        """Re-read the ``.env`` file and environment variables."""
        e = self._read

        self.admin_port: int = int(e("ADMIN_PORT") or "8000")
        self.admin_secret: str = e("ADMIN_SECRET")
        self.log_level: str = (e("LOG_LEVEL") or "INFO").upper()

        self.session_id: str = e("SESSION_ID") or "default"
        self.session_client: str = e("SESSION_CLIENT")

        self.auto_message_default_delay: float = float(e("AUTO_MESSAGE_DEFAULT_DELAY") or "3")
        self.message_fetch_limit: int = int(e("MESSAGE_FETCH_LIMIT") or "50")
        self.search_limit: int = int(e("SEARCH_LIMIT") or "50")

    # -- derived paths -----------------------------------------------------

    @property
    def data_dir(self) -> Path:
        return Path(os.getenv(self._DATA_DIR_ENV, str(Path.home() / ".chatrelay")))

    @property
    def session_path(self) -> Path:
        return self.data_dir / "session.json"

    @property
    def watchlist_path(self) -> Path:
        return self.data_dir / "watchlist.json"

    @property
    def group_settings_path(self) -> Path:
        return self.data_dir / "group_settings.json"

    @property
    def messages_dir(self) -> Path:
        return self.data_dir / "messages"

    # -- helpers -----------------------------------------------------------

    def _read(self, key: str) -> str:
        return self.env.read(key) or os.getenv(key, "")

    def ensure_dirs(self) -> None:
        for d in (self.data_dir, self.messages_dir):
            d.mkdir(parents=True, exist_ok=True)

    def write_env(self, **kwargs: str) -> None:
        self.env.write(**kwargs)
        self.reload()


# Module-level singleton
cfg = Settings()


def _reset_cfg() -> None:
    # Rebuilt in place: other modules hold a direct reference to ``cfg``.
    Settings.__init__(cfg)


register_singleton(_reset_cfg)
