"""JSON-file document stores.

:class:`JsonCollection` holds a list of dataclass documents keyed by a unique
field in one JSON file. Every mutating method runs to completion without
yielding to the event loop, so a read-check-write inside one call is atomic
with respect to concurrently running handlers.

:class:`JsonLinesLog` is the append-only variant for large, write-heavy
histories: one JSON object per line, last line per key wins.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import asdict
from pathlib import Path
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def quarantine(path: Path) -> Path:
    """Move an unreadable file aside as ``<name>.corrupt`` and return the new path."""
    target = path.with_name(path.name + ".corrupt")
    path.replace(target)
    logger.warning("Moved unreadable %s to %s", path, target)
    return target


class JsonCollection(Generic[T]):
    """Unique-keyed collection persisted to a single JSON file.

    Returned documents are copies; changes go through :meth:`upsert`,
    :meth:`update` or :meth:`set_many`.
    """

    def __init__(self, path: Path, key: str, factory: Callable[[dict[str, Any]], T]) -> None:
        self._path = path
        self._key = key
        self._factory = factory
        self._docs: dict[str, T] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text())
            docs = [self._factory(item) for item in raw]
        except (json.JSONDecodeError, AttributeError, TypeError, KeyError) as exc:
            logger.warning("Failed to load %s: %s", self._path, exc)
            quarantine(self._path)
            return
        except OSError as exc:
            logger.warning("Failed to read %s: %s", self._path, exc)
            return
        for doc in docs:
            self._docs[getattr(doc, self._key)] = doc

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(
            json.dumps([asdict(d) for d in self._docs.values()], indent=2, default=str) + "\n"
        )
        tmp.replace(self._path)

    # -- reads -------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._docs)

    def __contains__(self, key: object) -> bool:
        return key in self._docs

    def get(self, key: str) -> T | None:
        doc = self._docs.get(key)
        return copy.deepcopy(doc) if doc is not None else None

    def find(self, predicate: Callable[[T], bool] | None = None) -> list[T]:
        return [
            copy.deepcopy(d) for d in self._docs.values()
            if predicate is None or predicate(d)
        ]

    # -- writes ------------------------------------------------------------

    def insert_if_absent(self, doc: T) -> tuple[T, bool]:
        """Store *doc* unless its key exists; return ``(stored, created)``."""
        key = getattr(doc, self._key)
        existing = self._docs.get(key)
        if existing is not None:
            return copy.deepcopy(existing), False
        self._docs[key] = copy.deepcopy(doc)
        self._save()
        return copy.deepcopy(doc), True

    def upsert(self, key: str, changes: dict[str, Any], default: Callable[[], T]) -> T:
        doc = self._docs.get(key)
        if doc is None:
            doc = default()
            self._docs[key] = doc
        for name, value in changes.items():
            setattr(doc, name, value)
        self._save()
        return copy.deepcopy(doc)

    def update(self, key: str, mutate: Callable[[T], None]) -> T | None:
        """Apply *mutate* to the stored document in place; ``None`` if absent."""
        doc = self._docs.get(key)
        if doc is None:
            return None
        mutate(doc)
        self._save()
        return copy.deepcopy(doc)

    def set_many(self, changes: Iterable[tuple[str, dict[str, Any]]]) -> int:
        """Bulk field assignment; unknown keys are skipped. Returns the match count."""
        matched = 0
        for key, fields in changes:
            doc = self._docs.get(key)
            if doc is None:
                continue
            for name, value in fields.items():
                setattr(doc, name, value)
            matched += 1
        if matched:
            self._save()
        return matched


class JsonLinesLog:
    """Append-only JSON-lines journal of keyed documents.

    Every write appends the full document as one line; the last line for a
    key wins. :meth:`load` replays the file and rewrites it compacted when it
    holds superseded lines.

    Appends are buffered. Inside a running event loop a single flush task
    writes them from a worker thread, so callers never wait on disk; with no
    loop running they are written immediately.
    """

    def __init__(self, path: Path, key: str) -> None:
        self._path = path
        self._key = key
        self._pending: list[str] = []
        self._flusher: asyncio.Task[None] | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def pending(self) -> int:
        return len(self._pending)

    def load(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        docs: dict[str, dict[str, Any]] = {}
        lines = 0
        with self._path.open(encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                lines += 1
                try:
                    item = json.loads(line)
                    docs[item[self._key]] = item
                except (json.JSONDecodeError, TypeError, KeyError) as exc:
                    logger.warning("Skipping line %d of %s: %s", lineno, self._path, exc)
        if lines > len(docs):
            self._rewrite(docs.values())
            logger.debug("Compacted %s: %d line(s) -> %d", self._path, lines, len(docs))
        return list(docs.values())

    def append(self, doc: dict[str, Any]) -> None:
        self._pending.append(json.dumps(doc, default=str, ensure_ascii=False))
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(self._take())
            return
        if self._flusher is None or self._flusher.done():
            self._flusher = loop.create_task(self._flush_pending())

    async def flush(self) -> None:
        """Wait until every appended line is on disk."""
        if self._flusher is not None and not self._flusher.done():
            await self._flusher
        if self._pending:
            await asyncio.to_thread(self._write, self._take())

    def _take(self) -> list[str]:
        batch, self._pending = self._pending, []
        return batch

    async def _flush_pending(self) -> None:
        while self._pending:
            batch = self._take()
            try:
                await asyncio.to_thread(self._write, batch)
            except OSError as exc:
                logger.error("Failed to append to %s: %s", self._path, exc)
                self._pending[:0] = batch
                return

    def _write(self, lines: list[str]) -> None:
        if not lines:
            return
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write("\n".join(lines) + "\n")

    def _rewrite(self, docs: Iterable[dict[str, Any]]) -> None:
        with self._lock:
            tmp = self._path.with_name(self._path.name + ".tmp")
            tmp.write_text(
                "".join(json.dumps(d, default=str, ensure_ascii=False) + "\n" for d in docs),
                encoding="utf-8",
            )
            tmp.replace(self._path)
