# -*- coding: utf-8 -*-
"""Record types shared by the cipher, the stores and the orchestrator.

Everything here is plain data: dataclasses with ``to_dict``/``from_dict``
helpers that produce the JSON shapes written to the local and remote stores.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import secrets
import time

UNREADABLE_ENTRY_TEXT = (
    "[Encrypted - Unable to decrypt. The encryption key may have been "
    "reset or the password is incorrect.]"
)


# ---------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------

def now_local() -> datetime:
    """Current instant as an aware datetime in the device's local zone."""
    return datetime.now().astimezone()

def parse_ts(value: Any) -> datetime:
    """Parse an ISO timestamp; naive values are taken as device-local."""
    if isinstance(value, datetime):
        ts = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.astimezone()
    return ts

def format_ts(ts: datetime) -> str:
    return ts.isoformat()

def local_day(ts: datetime) -> date:
    """Calendar day of *ts* in device-local time (midnight boundary)."""
    return parse_ts(ts).astimezone().date()

def new_entry_id() -> str:
    """Time-ordered unique identifier: millisecond clock + random suffix."""
    return f"{time.time_ns() // 1_000_000:013d}-{secrets.token_hex(4)}"


# ---------------------------------------------------------------------
# Moods
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class MoodTag:
    """One of the fixed mood options; embedded by value, never stored alone."""

    emoji: str
    label: str
    color: str
    value: int

    def __post_init__(self) -> None:
        if not 1 <= self.value <= 5:
            raise ValueError(f"Mood value must be in 1..5, got {self.value}")

    def to_dict(self) -> Dict[str, Any]:
        return {"emoji": self.emoji, "label": self.label, "color": self.color, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MoodTag":
        return cls(
            emoji=data.get("emoji", ""),
            label=data.get("label", ""),
            color=data.get("color", ""),
            value=int(data["value"]),
        )


MOODS = (
    MoodTag("\U0001F60A", "Great", "#10b981", 5),
    MoodTag("\U0001F642", "Good", "#3b82f6", 4),
    MoodTag("\U0001F610", "Okay", "#f59e0b", 3),
    MoodTag("\U0001F614", "Low", "#f97316", 2),
    MoodTag("\U0001F622", "Struggling", "#ef4444", 1),
)

def mood_by_label(label: str) -> MoodTag:
    """Look up one of :data:`MOODS` by (case-insensitive) label."""
    for mood in MOODS:
        if mood.label.lower() == label.lower():
            return mood
    raise KeyError(label)


# ---------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------

@dataclass
class JournalEntry:
    """A plaintext journal entry.

    ``error`` is only ever set on entries returned by a load, when the stored
    record could not be decrypted and ``content`` holds the placeholder text.
    """

    id: str
    content: str
    timestamp: datetime
    mood: Optional[MoodTag] = None
    error: bool = False

    @classmethod
    def create(cls, content: str, mood: Optional[MoodTag] = None,
               timestamp: Optional[datetime] = None) -> "JournalEntry":
        return cls(id=new_entry_id(), content=content,
                   timestamp=timestamp or now_local(), mood=mood)

    @classmethod
    def unreadable(cls, entry_id: str, timestamp: datetime) -> "JournalEntry":
        return cls(id=entry_id, content=UNREADABLE_ENTRY_TEXT, timestamp=timestamp, error=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "timestamp": format_ts(self.timestamp),
            "mood": self.mood.to_dict() if self.mood else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JournalEntry":
        mood = data.get("mood")
        return cls(
            id=str(data["id"]),
            content=data["content"],
            timestamp=parse_ts(data["timestamp"]),
            mood=MoodTag.from_dict(mood) if mood else None,
        )


@dataclass
class MoodEntry:
    """A daily mood check-in. At most one exists per local calendar day."""

    mood: MoodTag
    timestamp: datetime
    chat_id: Optional[str] = None
    id: Optional[str] = None

    @property
    def day(self) -> date:
        return local_day(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mood": self.mood.to_dict(),
            "timestamp": format_ts(self.timestamp),
            "chatId": self.chat_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> "MoodEntry":
        chat_id = data.get("chatId")
        return cls(
            mood=MoodTag.from_dict(data["mood"]),
            timestamp=parse_ts(data["timestamp"]),
            chat_id=str(chat_id) if chat_id is not None else None,
            id=doc_id if doc_id is not None else data.get("id"),
        )


@dataclass
class EncryptedRecord:
    """Storage form of a journal entry; ``encrypted`` is opaque to stores."""

    id: str
    encrypted: str
    timestamp: datetime
    created_at: Optional[datetime] = None

    def to_local(self) -> Dict[str, Any]:
        return {"id": self.id, "encrypted": self.encrypted, "timestamp": format_ts(self.timestamp)}

    def to_remote(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "encrypted": self.encrypted,
            "timestamp": format_ts(self.timestamp),
            "createdAt": format_ts(self.created_at or now_local()),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedRecord":
        created = data.get("createdAt")
        return cls(
            id=str(data["id"]),
            encrypted=data["encrypted"],
            timestamp=parse_ts(data["timestamp"]),
            created_at=parse_ts(created) if created else None,
        )


@dataclass
class KeyMaterial:
    key: bytes
    salt: Optional[bytes] = None


# ---------------------------------------------------------------------
# Backend state and per-record reports
# ---------------------------------------------------------------------

class BackendMode(str, Enum):
    LOCAL_ONLY = "local_only"
    REMOTE_ACTIVE = "remote_active"


@dataclass
class RecordError:
    """Why one record could not be read or migrated."""

    record_id: Optional[str]
    collection: str
    kind: str
    message: str


@dataclass
class JournalLoad:
    """Result of a journal load: all entries (degraded ones included)."""

    entries: List[JournalEntry]
    errors: List[RecordError] = field(default_factory=list)
    source: BackendMode = BackendMode.LOCAL_ONLY

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class MigrationReport:
    skipped: bool = False
    completed: bool = False
    migrated: Dict[str, int] = field(default_factory=dict)
    errors: List[RecordError] = field(default_factory=list)

    def count(self, collection: str) -> None:
        self.migrated[collection] = self.migrated.get(collection, 0) + 1
