# -*- coding: utf-8 -*-
"""Remote multi-device document store.

The remote side is a collaborator reached over the network; the engine only
talks to it through :class:`RemoteStore`. Documents live under
``<user_id>/<collection>/<doc_id>`` and are plain JSON-able dicts.

Two implementations ship here:
    MemoryRemoteStore: in-process, with switches to simulate an outage.
    SqliteRemoteStore: aiosqlite-backed document table, usable from a
                       shared path as a small self-hosted remote.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
import copy
import json
import secrets

import aiosqlite

from .errors import PersistenceFailed

# Remote collection names
CHATS = "chats"
MOOD_HISTORY = "moodHistory"
JOURNAL_ENTRIES = "journalEntries"
SETTINGS = "settings"
SETTINGS_DOC = "preferences"

Document = Dict[str, Any]


def new_doc_id() -> str:
    """Store-assigned document id (20 url-safe characters)."""
    return secrets.token_urlsafe(15)


class RemoteStore(ABC):
    """Async document store namespaced per user identity."""

    @abstractmethod
    async def ping(self) -> None:
        """Raise :class:`PersistenceFailed` if the store is unreachable."""

    @abstractmethod
    async def get(self, user_id: str, collection: str, doc_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def put(self, user_id: str, collection: str, doc_id: str,
                  data: Document, merge: bool = False) -> None:
        ...

    @abstractmethod
    async def add(self, user_id: str, collection: str, data: Document) -> str:
        """Create a document under a store-assigned id; return the id."""

    @abstractmethod
    async def list(self, user_id: str, collection: str) -> List[Tuple[str, Document]]:
        """Return every (doc_id, data) pair in *collection*."""


# ---------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------

class MemoryRemoteStore(RemoteStore):
    """Dict-backed remote. ``offline``/``fail_writes`` simulate outages."""

    def __init__(self) -> None:
        self._docs: Dict[Tuple[str, str], Dict[str, Document]] = {}
        self.offline = False
        self.fail_writes = False

    def _check(self, write: bool = False) -> None:
        if self.offline:
            raise PersistenceFailed("Remote store is unreachable")
        if write and self.fail_writes:
            raise PersistenceFailed("Remote store rejected the write")

    def _collection(self, user_id: str, collection: str) -> Dict[str, Document]:
        return self._docs.setdefault((user_id, collection), {})

    async def ping(self) -> None:
        self._check()

    async def get(self, user_id: str, collection: str, doc_id: str) -> Optional[Document]:
        self._check()
        doc = self._collection(user_id, collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def put(self, user_id: str, collection: str, doc_id: str,
                  data: Document, merge: bool = False) -> None:
        self._check(write=True)
        docs = self._collection(user_id, collection)
        if merge and doc_id in docs:
            docs[doc_id].update(copy.deepcopy(data))
        else:
            docs[doc_id] = copy.deepcopy(data)

    async def add(self, user_id: str, collection: str, data: Document) -> str:
        doc_id = new_doc_id()
        await self.put(user_id, collection, doc_id, data)
        return doc_id

    async def list(self, user_id: str, collection: str) -> List[Tuple[str, Document]]:
        self._check()
        return [(k, copy.deepcopy(v)) for k, v in self._collection(user_id, collection).items()]


# ---------------------------------------------------------------------
# SQLite document store
# ---------------------------------------------------------------------

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS documents (
    user_id     TEXT NOT NULL,
    collection  TEXT NOT NULL,
    doc_id      TEXT NOT NULL,
    data        TEXT NOT NULL,
    PRIMARY KEY (user_id, collection, doc_id)
);
"""


class SqliteRemoteStore(RemoteStore):
    """Document table in its own SQLite file."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    async def init_db(self) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.executescript(SCHEMA_SQL)
                await db.commit()
        except (aiosqlite.Error, OSError) as exc:
            raise PersistenceFailed(f"Cannot initialize remote store at {self.db_path}") from exc

    async def ping(self) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute("SELECT 1 FROM documents LIMIT 1")
                await cur.close()
        except (aiosqlite.Error, OSError) as exc:
            raise PersistenceFailed("Remote store is unreachable") from exc

    async def get(self, user_id: str, collection: str, doc_id: str) -> Optional[Document]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute(
                    """
                    SELECT data
                      FROM documents
                     WHERE user_id = ? AND collection = ? AND doc_id = ?
                    """,
                    (user_id, collection, doc_id),
                )
                row = await cur.fetchone()
                await cur.close()
        except (aiosqlite.Error, OSError) as exc:
            raise PersistenceFailed(f"Cannot read {collection}/{doc_id}") from exc
        return json.loads(row[0]) if row else None

    async def put(self, user_id: str, collection: str, doc_id: str,
                  data: Document, merge: bool = False) -> None:
        if merge:
            existing = await self.get(user_id, collection, doc_id) or {}
            existing.update(data)
            data = existing
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO documents (user_id, collection, doc_id, data)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id, collection, doc_id) DO UPDATE
                       SET data = excluded.data
                    """,
                    (user_id, collection, doc_id, json.dumps(data, ensure_ascii=False)),
                )
                await db.commit()
        except (aiosqlite.Error, OSError) as exc:
            raise PersistenceFailed(f"Cannot write {collection}/{doc_id}") from exc

    async def add(self, user_id: str, collection: str, data: Document) -> str:
        doc_id = new_doc_id()
        await self.put(user_id, collection, doc_id, data)
        return doc_id

    async def list(self, user_id: str, collection: str) -> List[Tuple[str, Document]]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute(
                    """
                    SELECT doc_id, data
                      FROM documents
                     WHERE user_id = ? AND collection = ?
                     ORDER BY doc_id
                    """,
                    (user_id, collection),
                )
                rows = await cur.fetchall()
                await cur.close()
        except (aiosqlite.Error, OSError) as exc:
            raise PersistenceFailed(f"Cannot list {collection}") from exc
        return [(r[0], json.loads(r[1])) for r in rows]
