# -*- coding: utf-8 -*-
"""Persistence orchestration that composes the stores, keys and cipher.

This module provides the public API used by the application. It decides, per
operation, whether the local or the remote store holds the authoritative copy,
keeps mood check-ins to one per day, and runs the one-time migrations. All
side effects (store + config I/O) are explicit and local.
"""
from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
import asyncio
import json
import logging
import os
import secrets
import time

from . import db, remote as rs
from .crypto import decrypt_entry, encrypt_entry
from .errors import DecryptionFailed, PersistenceFailed
from .keys import KeyManager
from .models import (
    BackendMode,
    EncryptedRecord,
    JournalEntry,
    JournalLoad,
    MigrationReport,
    MoodEntry,
    MoodTag,
    RecordError,
    format_ts,
    local_day,
    now_local,
    parse_ts,
)
from .remote import RemoteStore, SqliteRemoteStore
from .state import DeviceState

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Config management (JSON on disk)
# ---------------------------------------------------------------------

APP_NAME = "mindjournal"

DEFAULT_CONFIG: Dict[str, Any] = {
    "db_path": "mindjournal.sqlite3",
    # No remote until one is configured; the device stays local-only
    "remote_db_path": None,
    "user_id": None,
    "log_level": "INFO",
}

ENV_OVERRIDES = {
    "MINDJOURNAL_DB": "db_path",
    "MINDJOURNAL_REMOTE_DB": "remote_db_path",
    "LOG_LEVEL": "log_level",
}

def _config_dir() -> Path:
    """Return the config directory path for this platform."""
    if os.name == "nt":
        base = os.environ.get("APPDATA", os.path.expanduser("~\\AppData\\Roaming"))
        return Path(base) / APP_NAME
    base = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(base) / APP_NAME

def _config_path() -> Path:
    return _config_dir() / "config.json"

def load_config() -> Dict[str, Any]:
    """Load the merged configuration (defaults + file + environment)."""
    path = _config_path()
    merged = json.loads(json.dumps(DEFAULT_CONFIG))
    if not path.exists():
        save_config(DEFAULT_CONFIG)
    else:
        with path.open("r", encoding="utf-8") as f:
            merged.update(json.load(f))
    for env, key in ENV_OVERRIDES.items():
        if os.environ.get(env):
            merged[key] = os.environ[env]
    return merged

def save_config(cfg: Dict[str, Any]) -> None:
    """Persist *cfg* to the JSON config file."""
    _config_dir().mkdir(parents=True, exist_ok=True)
    with _config_path().open("w", encoding="utf-8") as f:
        json.dump(cfg, f, indent=2)


# ---------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------

async def build_orchestrator(cfg: Dict[str, Any]) -> "PersistenceOrchestrator":
    """Open the stores named in *cfg* and return a ready orchestrator."""
    state = await DeviceState.load(db.LocalStore(cfg.get("db_path")))
    remote: Optional[RemoteStore] = None
    if cfg.get("remote_db_path"):
        remote = SqliteRemoteStore(str(cfg["remote_db_path"]))
        await remote.init_db()
    return PersistenceOrchestrator(state, KeyManager(state), remote, user_id=cfg.get("user_id"))


# ---------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------

def _day_of(record: Dict[str, Any]) -> Optional[date]:
    """Local calendar day of a stored mood record, None if unparseable."""
    try:
        return local_day(parse_ts(record["timestamp"]))
    except (KeyError, TypeError, ValueError):
        return None


class PersistenceOrchestrator:
    """Uniform save/load API over the local and remote stores.

    The backend mode only ever moves LOCAL_ONLY -> REMOTE_ACTIVE, when a
    migration completes or is skipped. Remote read failures fall back to the
    local copy for that one call; remote write failures raise
    :class:`PersistenceFailed`.
    """

    def __init__(
        self,
        state: DeviceState,
        keys: KeyManager,
        remote: Optional[RemoteStore] = None,
        user_id: Optional[str] = None,
        clock: Callable[[], datetime] = now_local,
    ) -> None:
        self.state = state
        self.keys = keys
        self.remote = remote
        self.user_id = user_id
        self.clock = clock
        self._mood_lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._legacy_checked = False

    def _lock(self) -> asyncio.Lock:
        """Mood check-then-act lock, one per running event loop."""
        loop = asyncio.get_running_loop()
        if self._mood_lock is None or self._lock_loop is not loop:
            self._mood_lock, self._lock_loop = asyncio.Lock(), loop
        return self._mood_lock

    @property
    def local(self) -> db.LocalStore:
        return self.state.store

    @property
    def mode(self) -> BackendMode:
        return self.state.mode

    def _remote_active(self) -> bool:
        return self.state.mode is BackendMode.REMOTE_ACTIVE

    def _require_remote(self) -> RemoteStore:
        if self.remote is None:
            raise PersistenceFailed("No remote store is configured")
        return self.remote

    async def _user(self) -> str:
        if self.user_id is None:
            self.user_id = await self.get_device_id()
        return self.user_id

    async def get_device_id(self) -> str:
        """Return this device's persisted identity, creating it on first use."""
        device_id = await self.local.get_item(db.DEVICE_ID_ITEM)
        if not device_id:
            device_id = f"device_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"
            await self.local.set_item(db.DEVICE_ID_ITEM, device_id)
        return device_id

    async def check_connection(self) -> bool:
        """True if a remote store is configured and answers."""
        if self.remote is None:
            return False
        try:
            await self.remote.ping()
        except PersistenceFailed as exc:
            logger.warning("Remote store connection check failed: %s", exc)
            return False
        return True

    # -----------------------------------------------------------------
    # Journal entries
    # -----------------------------------------------------------------

    def _seal(self, entry: JournalEntry, key: bytes) -> EncryptedRecord:
        return EncryptedRecord(id=entry.id, encrypted=encrypt_entry(entry, key), timestamp=entry.timestamp)

    async def _write_journal_remote(self, record: EncryptedRecord) -> None:
        record.created_at = self.clock()
        await self._require_remote().put(
            await self._user(), rs.JOURNAL_ENTRIES, record.id, record.to_remote()
        )

    async def save_journal_entry(self, entry: JournalEntry, password: Optional[str] = None) -> EncryptedRecord:
        """Encrypt *entry* and write it to the active backend.

        Returns once the write completed. In REMOTE_ACTIVE mode a failed
        remote write raises :class:`PersistenceFailed`; nothing is written
        locally instead.
        """
        key = await self.keys.current_key(password)
        record = self._seal(entry, key)
        if self._remote_active():
            await self._write_journal_remote(record)
        else:
            await self.local.upsert_by_id(db.JOURNAL_ENCRYPTED, record.to_local())
        return record

    async def _read_journal_records(self) -> Tuple[List[Dict[str, Any]], BackendMode]:
        if self._remote_active():
            try:
                docs = await self._require_remote().list(await self._user(), rs.JOURNAL_ENTRIES)
                return [doc for _, doc in docs], BackendMode.REMOTE_ACTIVE
            except PersistenceFailed as exc:
                logger.warning("Remote journal unavailable, reading local copy: %s", exc)
        return await self.local.get_list(db.JOURNAL_ENCRYPTED), BackendMode.LOCAL_ONLY

    def _open_record(self, raw: Dict[str, Any], key: bytes, collection: str) -> Tuple[JournalEntry, Optional[RecordError]]:
        record_id = str(raw.get("id"))
        try:
            record = EncryptedRecord.from_dict(raw)
        except (KeyError, TypeError, ValueError) as exc:
            try:
                timestamp = parse_ts(raw["timestamp"])
            except (KeyError, TypeError, ValueError):
                timestamp = self.clock()
            error = RecordError(record_id, collection, "MalformedRecord", f"bad field {exc}")
            return JournalEntry.unreadable(record_id, timestamp), error
        try:
            return decrypt_entry(record.encrypted, key), None
        except DecryptionFailed as exc:
            error = RecordError(record.id, collection, "DecryptionFailed", str(exc))
        return JournalEntry.unreadable(record.id, record.timestamp), error

    async def _ensure_legacy_migrated(self, password: Optional[str]) -> None:
        """Encrypt leftover plaintext entries once, before journal reads."""
        if self._legacy_checked:
            return
        try:
            await self.legacy_plaintext_migration(password)
        except (DecryptionFailed, PersistenceFailed) as exc:
            # Wrong password or remote down: leave the plaintext for a later call
            logger.warning("Legacy journal entries not migrated: %s", exc)
            return
        self._legacy_checked = True

    async def load_journal_entries(self, password: Optional[str] = None) -> JournalLoad:
        """Read and decrypt every journal entry, newest first.

        Records that cannot be decrypted, including every record when the
        password is wrong, come back as placeholder entries with
        ``error=True`` and a matching :class:`RecordError`; they never abort
        the load. Legacy plaintext entries are encrypted first.
        """
        await self._ensure_legacy_migrated(password)
        key = await self.keys.current_key(password, verify=False)
        raw_records, source = await self._read_journal_records()
        collection = rs.JOURNAL_ENTRIES if source is BackendMode.REMOTE_ACTIVE else db.JOURNAL_ENCRYPTED

        result = JournalLoad(entries=[], source=source)
        for raw in raw_records:
            entry, error = self._open_record(raw, key, collection)
            result.entries.append(entry)
            if error is not None:
                logger.warning("Journal record %s unreadable: %s", error.record_id, error.message)
                result.errors.append(error)
        result.entries.sort(key=lambda e: e.timestamp, reverse=True)
        return result

    # -----------------------------------------------------------------
    # Mood history
    # -----------------------------------------------------------------

    async def save_mood_entry(self, mood: MoodTag, chat_id: Optional[str] = None) -> MoodEntry:
        """Record *mood* for today, replacing today's earlier check-in if any."""
        async with self._lock():
            now = self.clock()
            if self._remote_active():
                return await self._save_mood_remote(mood, now, chat_id)
            return await self._save_mood_local(mood, now, chat_id)

    async def _save_mood_local(self, mood: MoodTag, now: datetime, chat_id: Optional[str]) -> MoodEntry:
        today = local_day(now)
        items = await self.local.get_list(db.MOOD_HISTORY)
        for i in range(len(items) - 1, -1, -1):
            if _day_of(items[i]) == today:
                items[i] = dict(items[i], mood=mood.to_dict(), timestamp=format_ts(now))
                await self.local.set_list(db.MOOD_HISTORY, items)
                return MoodEntry.from_dict(items[i])
        entry = MoodEntry(mood=mood, timestamp=now, chat_id=chat_id)
        items.append(entry.to_dict())
        await self.local.set_list(db.MOOD_HISTORY, items)
        return entry

    async def _save_mood_remote(self, mood: MoodTag, now: datetime, chat_id: Optional[str]) -> MoodEntry:
        remote, user = self._require_remote(), await self._user()
        existing = await self._find_remote_mood(user, local_day(now))
        if existing is not None:
            update = {"mood": mood.to_dict(), "timestamp": format_ts(now), "updatedAt": format_ts(now)}
            await remote.put(user, rs.MOOD_HISTORY, existing.id, update, merge=True)
            existing.mood, existing.timestamp = mood, now
            return existing
        entry = MoodEntry(mood=mood, timestamp=now, chat_id=chat_id)
        entry.id = await remote.add(user, rs.MOOD_HISTORY, dict(entry.to_dict(), createdAt=format_ts(now)))
        return entry

    async def _find_remote_mood(self, user: str, day: date) -> Optional[MoodEntry]:
        found = None
        for doc_id, doc in await self._require_remote().list(user, rs.MOOD_HISTORY):
            if _day_of(doc) != day:
                continue
            entry = MoodEntry.from_dict(doc, doc_id=doc_id)
            if found is None or entry.timestamp > found.timestamp:
                found = entry
        return found

    async def get_mood_history(self) -> List[MoodEntry]:
        """All mood check-ins, oldest first."""
        pairs: Optional[List[Tuple[Optional[str], Dict[str, Any]]]] = None
        if self._remote_active():
            try:
                pairs = list(await self._require_remote().list(await self._user(), rs.MOOD_HISTORY))
            except PersistenceFailed as exc:
                logger.warning("Remote mood history unavailable, reading local copy: %s", exc)
        if pairs is None:
            pairs = [(None, item) for item in await self.local.get_list(db.MOOD_HISTORY)]

        history: List[MoodEntry] = []
        for doc_id, doc in pairs:
            try:
                history.append(MoodEntry.from_dict(doc, doc_id=doc_id))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed mood record %s: %s", doc_id, exc)
        history.sort(key=lambda e: e.timestamp)
        return history

    async def get_todays_mood_entry(self) -> Optional[MoodEntry]:
        today = local_day(self.clock())
        todays = [e for e in await self.get_mood_history() if e.day == today]
        return todays[-1] if todays else None

    # -----------------------------------------------------------------
    # Settings
    # -----------------------------------------------------------------

    async def save_settings(self, settings: Dict[str, Any]) -> None:
        """Merge *settings* into the stored preferences."""
        data = dict(settings, updatedAt=format_ts(self.clock()))
        if self._remote_active():
            await self._require_remote().put(
                await self._user(), rs.SETTINGS, rs.SETTINGS_DOC, data, merge=True
            )
            return
        current = await self.local.get_item(db.SETTINGS, {})
        if not isinstance(current, dict):
            raise PersistenceFailed(f"Local item '{db.SETTINGS}' is not an object")
        current.update(data)
        await self.local.set_item(db.SETTINGS, current)

    async def get_settings(self) -> Optional[Dict[str, Any]]:
        if self._remote_active():
            try:
                return await self._require_remote().get(await self._user(), rs.SETTINGS, rs.SETTINGS_DOC)
            except PersistenceFailed as exc:
                logger.warning("Remote settings unavailable, reading local copy: %s", exc)
        return await self.local.get_item(db.SETTINGS)

    # -----------------------------------------------------------------
    # Migration to the remote store
    # -----------------------------------------------------------------

    async def needs_migration(self) -> bool:
        return await self.local.get_item(db.MIGRATED_FLAG, False) is not True

    async def _mark_migrated(self) -> None:
        await self.local.set_item(db.MIGRATED_FLAG, True)
        self.state.mode = BackendMode.REMOTE_ACTIVE

    async def skip_migration(self) -> None:
        """User opted out: switch to the remote store without copying data."""
        self._require_remote()
        await self._mark_migrated()
        logger.info("Migration skipped by user; remote store is now active")

    async def migrate_local_to_remote(self, password: Optional[str] = None) -> MigrationReport:
        """Copy local journal, mood, chat and settings records to the remote.

        Runs at most once: the flag is set only when no record failed at the
        I/O layer, so an interrupted pass can simply be run again. Records that
        only fail to decrypt are reported and do not block completion.

        Raises:
            PersistenceFailed: no remote, remote unreachable, or a local
                collection could not be read at all. The flag stays unset.
        """
        report = MigrationReport()
        if not await self.needs_migration():
            report.skipped = True
            return report

        remote = self._require_remote()
        await remote.ping()
        user = await self._user()

        # Still LOCAL_ONLY here, so legacy entries land in the collection copied below
        await self.legacy_plaintext_migration(password)
        self._legacy_checked = True

        journal = await self.local.get_list(db.JOURNAL_ENCRYPTED)
        moods = await self.local.get_list(db.MOOD_HISTORY)
        chats = await self.local.get_list(db.CHATS)
        settings = await self.local.get_item(db.SETTINGS)

        if journal:
            key = await self.keys.current_key(password)
            await self._migrate_journal(journal, key, report)
        await self._migrate_moods(user, moods, report)
        await self._migrate_chats(user, chats, report)
        if settings:
            try:
                data = dict(settings, updatedAt=format_ts(self.clock()))
                await remote.put(user, rs.SETTINGS, rs.SETTINGS_DOC, data, merge=True)
                report.count(rs.SETTINGS)
            except PersistenceFailed as exc:
                self._record_failure(report, None, rs.SETTINGS, "PersistenceFailed", exc)

        if any(e.kind == "PersistenceFailed" for e in report.errors):
            logger.error("Migration incomplete: %d record(s) failed to write", len(report.errors))
            return report

        await self._mark_migrated()
        report.completed = True
        logger.info("Migration complete: %s", report.migrated)
        return report

    def _record_failure(self, report: MigrationReport, record_id: Optional[str],
                        collection: str, kind: str, exc: Exception) -> None:
        logger.warning("Failed to migrate %s record %s: %s", collection, record_id, exc)
        report.errors.append(RecordError(record_id, collection, kind, str(exc)))

    async def _migrate_journal(self, journal: List[Dict[str, Any]], key: bytes, report: MigrationReport) -> None:
        for raw in journal:
            record_id = str(raw.get("id"))
            try:
                entry = decrypt_entry(raw["encrypted"], key)
                await self._write_journal_remote(self._seal(entry, key))
            except (KeyError, TypeError) as exc:
                self._record_failure(report, record_id, rs.JOURNAL_ENTRIES, "MalformedRecord", exc)
            except DecryptionFailed as exc:
                self._record_failure(report, record_id, rs.JOURNAL_ENTRIES, "DecryptionFailed", exc)
            except PersistenceFailed as exc:
                self._record_failure(report, record_id, rs.JOURNAL_ENTRIES, "PersistenceFailed", exc)
            else:
                report.count(rs.JOURNAL_ENTRIES)

    async def _migrate_moods(self, user: str, moods: List[Dict[str, Any]], report: MigrationReport) -> None:
        remote = self._require_remote()
        remote_days: Dict[date, str] = {}
        for doc_id, doc in await remote.list(user, rs.MOOD_HISTORY):
            day = _day_of(doc)
            if day is not None:
                remote_days[day] = doc_id

        for raw in moods:
            try:
                entry = MoodEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                self._record_failure(report, None, rs.MOOD_HISTORY, "MalformedRecord", exc)
                continue
            # One document per day; reruns overwrite their own earlier write
            doc_id = entry.id or f"day-{entry.day.isoformat()}"
            if remote_days.get(entry.day, doc_id) != doc_id:
                logger.info("Remote already has a mood for %s; keeping it", entry.day)
                continue
            try:
                await remote.put(user, rs.MOOD_HISTORY, doc_id,
                                 dict(entry.to_dict(), createdAt=format_ts(self.clock())))
            except PersistenceFailed as exc:
                self._record_failure(report, doc_id, rs.MOOD_HISTORY, "PersistenceFailed", exc)
            else:
                remote_days[entry.day] = doc_id
                report.count(rs.MOOD_HISTORY)

    async def _migrate_chats(self, user: str, chats: List[Dict[str, Any]], report: MigrationReport) -> None:
        remote = self._require_remote()
        for chat in chats:
            chat_id = chat.get("id") if isinstance(chat, dict) else None
            if chat_id is None:
                self._record_failure(report, None, rs.CHATS, "MalformedRecord", ValueError("chat has no id"))
                continue
            try:
                await remote.put(user, rs.CHATS, str(chat_id), chat, merge=True)
            except PersistenceFailed as exc:
                self._record_failure(report, str(chat_id), rs.CHATS, "PersistenceFailed", exc)
            else:
                report.count(rs.CHATS)

    # -----------------------------------------------------------------
    # Legacy plaintext entries
    # -----------------------------------------------------------------

    async def legacy_plaintext_migration(self, password: Optional[str] = None) -> int:
        """Encrypt pre-encryption journal entries into the active backend.

        Safe to call repeatedly: entries already present in the encrypted
        collection are not written twice (remote writes key on the entry id),
        and the plaintext collection is removed once every record in it was
        converted. A failed remote write raises before anything is removed.
        Returns the number of entries newly encrypted.
        """
        legacy = await self.local.get_item(db.JOURNAL_LEGACY)
        if legacy is None:
            return 0
        if not isinstance(legacy, list):
            raise PersistenceFailed(f"Local collection '{db.JOURNAL_LEGACY}' is not a list")

        to_remote = self._remote_active()
        encrypted = [] if to_remote else await self.local.get_list(db.JOURNAL_ENCRYPTED)
        known = {str(r.get("id")) for r in encrypted}
        key = await self.keys.current_key(password) if legacy else None

        leftovers: List[Any] = []
        migrated = 0
        for raw in legacy:
            try:
                entry = JournalEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Keeping unreadable legacy journal record: %s", exc)
                leftovers.append(raw)
                continue
            if entry.id in known:
                continue
            record = self._seal(entry, key)
            if to_remote:
                await self._write_journal_remote(record)
            else:
                encrypted.append(record.to_local())
            known.add(entry.id)
            migrated += 1

        if migrated and not to_remote:
            await self.local.set_list(db.JOURNAL_ENCRYPTED, encrypted)
        if leftovers:
            await self.local.set_list(db.JOURNAL_LEGACY, leftovers)
        else:
            await self.local.remove_item(db.JOURNAL_LEGACY)
        logger.info("Encrypted %d legacy journal entries", migrated)
        return migrated

    # -----------------------------------------------------------------
    # Key reset
    # -----------------------------------------------------------------

    async def reset_encryption(self, confirmation: str) -> None:
        """Delete all key material; every stored entry becomes unreadable."""
        await self.keys.reset_key(confirmation)
