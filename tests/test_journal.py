"""Tests for journal save/load through the orchestrator."""

from datetime import datetime, timedelta, timezone

import pytest

from mindjournal import crypto, db, remote as rs
from mindjournal.errors import DecryptionFailed, KeyUnavailable, PersistenceFailed
from mindjournal.keys import RESET_CONFIRMATION
from mindjournal.models import MOODS, UNREADABLE_ENTRY_TEXT, BackendMode, JournalEntry

from .conftest import run

T = datetime(2026, 3, 4, 21, 0, tzinfo=timezone.utc)


def _entry(n, content=None, **overrides):
    defaults = dict(id=str(n), content=content or f"entry {n}", timestamp=T + timedelta(hours=n))
    defaults.update(overrides)
    return JournalEntry(**defaults)


class TestLocalJournal:
    def test_stored_record_never_contains_plaintext(self, orch, store):
        run(orch.save_journal_entry(_entry(1, "Today was hard")))
        (stored,) = run(store.get_list(db.JOURNAL_ENCRYPTED))
        assert set(stored) == {"id", "encrypted", "timestamp"}
        assert "Today was hard" not in str(stored)

    def test_save_then_reset_orphans_record(self, orch, store, keys):
        entry = _entry(1, "Today was hard", mood=MOODS[3])
        run(orch.save_journal_entry(entry))
        (stored,) = run(store.get_list(db.JOURNAL_ENCRYPTED))
        old_key = run(keys.get_or_create_device_key())
        assert crypto.decrypt_entry(stored["encrypted"], old_key) == entry

        run(orch.reset_encryption(RESET_CONFIRMATION))
        new_key = run(keys.get_or_create_device_key())
        with pytest.raises(DecryptionFailed):
            crypto.decrypt_entry(stored["encrypted"], new_key)

    def test_load_sorted_newest_first(self, orch):
        for n in (2, 1, 3):
            run(orch.save_journal_entry(_entry(n)))
        result = run(orch.load_journal_entries())
        assert [e.id for e in result.entries] == ["3", "2", "1"]
        assert result.ok
        assert result.source is BackendMode.LOCAL_ONLY

    def test_same_id_is_written_once(self, orch, store):
        run(orch.save_journal_entry(_entry(1)))
        run(orch.save_journal_entry(_entry(1, "rewritten")))
        assert len(run(store.get_list(db.JOURNAL_ENCRYPTED))) == 1

    def test_one_corrupted_record_does_not_block_the_rest(self, orch, store):
        for n in range(1, 6):
            run(orch.save_journal_entry(_entry(n)))
        records = run(store.get_list(db.JOURNAL_ENCRYPTED))
        records[2]["encrypted"] = crypto.encrypt(b"junk", crypto.generate_key())
        run(store.set_list(db.JOURNAL_ENCRYPTED, records))

        result = run(orch.load_journal_entries())
        assert len(result.entries) == 5
        bad = [e for e in result.entries if e.error]
        assert len(bad) == 1
        assert bad[0].id == "3"
        assert bad[0].content == UNREADABLE_ENTRY_TEXT
        assert [err.kind for err in result.errors] == ["DecryptionFailed"]
        assert all(e.content == f"entry {e.id}" for e in result.entries if not e.error)

    def test_malformed_record_is_degraded(self, orch, store):
        run(store.set_list(db.JOURNAL_ENCRYPTED, [{"id": 9, "timestamp": T.isoformat()}]))
        result = run(orch.load_journal_entries())
        assert result.entries[0].error
        assert result.errors[0].kind == "MalformedRecord"

    def test_after_reset_everything_is_unreadable(self, orch):
        run(orch.save_journal_entry(_entry(1)))
        run(orch.reset_encryption(RESET_CONFIRMATION))
        result = run(orch.load_journal_entries())
        assert [e.error for e in result.entries] == [True]


class TestPasswordMode:
    def test_round_trip_with_password(self, orch):
        run(orch.save_journal_entry(_entry(1), password="pw"))
        result = run(orch.load_journal_entries(password="pw"))
        assert result.entries[0].content == "entry 1"

    def test_missing_password_fails_fast(self, orch):
        run(orch.save_journal_entry(_entry(1), password="pw"))
        with pytest.raises(KeyUnavailable):
            run(orch.save_journal_entry(_entry(2)))
        with pytest.raises(KeyUnavailable):
            run(orch.load_journal_entries())

    def test_wrong_password_degrades_every_record(self, orch):
        for n in (1, 2, 3):
            run(orch.save_journal_entry(_entry(n), password="pw"))
        result = run(orch.load_journal_entries(password="nope"))
        assert [e.id for e in result.entries] == ["3", "2", "1"]
        assert all(e.error and e.content == UNREADABLE_ENTRY_TEXT for e in result.entries)
        assert [err.kind for err in result.errors] == ["DecryptionFailed"] * 3

        result = run(orch.load_journal_entries(password="pw"))
        assert result.ok

    def test_wrong_password_save_fails_fast(self, orch, store):
        run(orch.save_journal_entry(_entry(1), password="pw"))
        with pytest.raises(DecryptionFailed):
            run(orch.save_journal_entry(_entry(2), password="nope"))
        assert len(run(store.get_list(db.JOURNAL_ENCRYPTED))) == 1


class TestNewEntries:
    def test_created_entries_get_unique_ordered_ids(self):
        first = JournalEntry.create("one")
        second = JournalEntry.create("two", mood=MOODS[0])
        assert first.id != second.id
        assert first.id[:13] <= second.id[:13]
        assert first.timestamp.tzinfo is not None
        assert second.mood == MOODS[0] and not second.error

    def test_created_entry_round_trips(self, orch):
        entry = JournalEntry.create("fresh", timestamp=T)
        run(orch.save_journal_entry(entry))
        (loaded,) = run(orch.load_journal_entries()).entries
        assert loaded == entry


class TestRemoteJournal:
    def test_remote_record_shape(self, orch, remote, state):
        state.mode = BackendMode.REMOTE_ACTIVE
        run(orch.save_journal_entry(_entry(1, "secret words")))
        (doc_id, doc), = run(remote.list("user-1", rs.JOURNAL_ENTRIES))
        assert doc_id == "1"
        assert set(doc) == {"id", "encrypted", "timestamp", "createdAt"}
        assert "secret words" not in str(doc)

    def test_remote_write_failure_is_surfaced(self, orch, remote, state, store):
        state.mode = BackendMode.REMOTE_ACTIVE
        remote.fail_writes = True
        with pytest.raises(PersistenceFailed):
            run(orch.save_journal_entry(_entry(1)))
        assert run(store.get_list(db.JOURNAL_ENCRYPTED)) == []

    def test_remote_read_failure_falls_back_to_local(self, orch, remote, state):
        run(orch.save_journal_entry(_entry(1)))
        state.mode = BackendMode.REMOTE_ACTIVE
        remote.offline = True
        result = run(orch.load_journal_entries())
        assert result.source is BackendMode.LOCAL_ONLY
        assert [e.id for e in result.entries] == ["1"]

    def test_no_remote_configured(self, state, keys, clock):
        from mindjournal.logic import PersistenceOrchestrator

        state.mode = BackendMode.REMOTE_ACTIVE
        orch = PersistenceOrchestrator(state, keys, None, user_id="u", clock=clock)
        with pytest.raises(PersistenceFailed):
            run(orch.save_journal_entry(_entry(1)))
