# -*- coding: utf-8 -*-
"""SQLite key/value store and async data access for mindjournal.

Every named collection (``mood_history``, ``journal_entries_encrypted``, key
material, flags, ...) is one row whose value is JSON text.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
import json
import os

import aiosqlite

from .errors import PersistenceFailed


DB_PATH = os.environ.get("MINDJOURNAL_DB", "mindjournal.sqlite3")

# Collection / item names
JOURNAL_ENCRYPTED = "journal_entries_encrypted"
JOURNAL_LEGACY = "journal_entries"
MOOD_HISTORY = "mood_history"
CHATS = "chats"
SETTINGS = "settings"
KEY_ITEM = "journal_encryption_key"
SALT_ITEM = "journal_key_salt"
PASSWORD_ENABLED_ITEM = "journal_password_enabled"
PASSWORD_HASH_ITEM = "journal_password_hash"
MIGRATED_FLAG = "migrated_to_remote"
DEVICE_ID_ITEM = "device_id"


# ---------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS kv_store (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""


class LocalStore:
    """Durable per-device store, shaped like browser local storage."""

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = db_path or DB_PATH

    async def init_db(self) -> None:
        """Create the table if it doesn't exist."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.executescript(SCHEMA_SQL)
                await db.commit()
        except (aiosqlite.Error, OSError) as exc:
            raise PersistenceFailed(f"Cannot initialize local store at {self.db_path}") from exc

    # -----------------------------------------------------------------
    # Items
    # -----------------------------------------------------------------

    async def get_item(self, key: str, default: Any = None) -> Any:
        """Return the decoded value stored under *key*, or *default*."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
                row = await cur.fetchone()
                await cur.close()
        except (aiosqlite.Error, OSError) as exc:
            raise PersistenceFailed(f"Cannot read '{key}' from local store") from exc
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except ValueError as exc:
            raise PersistenceFailed(f"Local item '{key}' is not valid JSON") from exc

    async def set_item(self, key: str, value: Any) -> None:
        """Insert or replace *key* with the JSON encoding of *value*."""
        payload = json.dumps(value, ensure_ascii=False)
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at)
                    VALUES (?, ?, strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
                    ON CONFLICT(key) DO UPDATE
                       SET value = excluded.value,
                           updated_at = excluded.updated_at
                    """,
                    (key, payload),
                )
                await db.commit()
        except (aiosqlite.Error, OSError) as exc:
            raise PersistenceFailed(f"Cannot write '{key}' to local store") from exc

    async def remove_item(self, key: str) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                await db.commit()
        except (aiosqlite.Error, OSError) as exc:
            raise PersistenceFailed(f"Cannot remove '{key}' from local store") from exc

    async def has_item(self, key: str) -> bool:
        return await self.get_item(key) is not None

    # -----------------------------------------------------------------
    # Collections (ordered JSON arrays)
    # -----------------------------------------------------------------

    async def get_list(self, key: str) -> List[Dict[str, Any]]:
        """Return the JSON array stored under *key* (empty if missing)."""
        value = await self.get_item(key, [])
        if not isinstance(value, list):
            raise PersistenceFailed(f"Local collection '{key}' is not a list")
        return value

    async def set_list(self, key: str, items: List[Dict[str, Any]]) -> None:
        await self.set_item(key, list(items))

    async def upsert_by_id(self, key: str, record: Dict[str, Any]) -> None:
        """Replace the element with the same ``id`` in place, or append."""
        items = await self.get_list(key)
        for i, existing in enumerate(items):
            if str(existing.get("id")) == str(record["id"]):
                items[i] = record
                break
        else:
            items.append(record)
        await self.set_list(key, items)
