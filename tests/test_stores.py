"""Tests for the local key/value store and the remote document stores."""

import pytest

from mindjournal.db import LocalStore
from mindjournal.errors import PersistenceFailed
from mindjournal.remote import MemoryRemoteStore, SqliteRemoteStore

from .conftest import run


class TestLocalStore:
    def test_missing_item_returns_default(self, store):
        assert run(store.get_item("nope")) is None
        assert run(store.get_item("nope", [])) == []

    def test_set_get_remove(self, store):
        run(store.set_item("flag", True))
        assert run(store.get_item("flag")) is True
        run(store.set_item("flag", False))
        assert run(store.get_item("flag")) is False
        run(store.remove_item("flag"))
        assert not run(store.has_item("flag"))

    def test_upsert_by_id_replaces_in_place(self, store):
        run(store.set_list("things", [{"id": 1, "v": "a"}, {"id": 2, "v": "b"}]))
        run(store.upsert_by_id("things", {"id": "1", "v": "c"}))
        run(store.upsert_by_id("things", {"id": 3, "v": "d"}))
        assert [t["v"] for t in run(store.get_list("things"))] == ["c", "b", "d"]

    def test_non_list_collection_fails(self, store):
        run(store.set_item("things", {"a": 1}))
        with pytest.raises(PersistenceFailed):
            run(store.get_list("things"))

    def test_unreachable_path_fails(self, tmp_path):
        broken = LocalStore(str(tmp_path / "missing" / "dir" / "db.sqlite3"))
        with pytest.raises(PersistenceFailed):
            run(broken.get_item("x"))


@pytest.fixture(params=["memory", "sqlite"])
def doc_store(request, tmp_path):
    if request.param == "memory":
        return MemoryRemoteStore()
    store = SqliteRemoteStore(str(tmp_path / "remote.sqlite3"))
    run(store.init_db())
    return store


class TestRemoteStores:
    def test_put_get(self, doc_store):
        run(doc_store.put("u", "c", "d1", {"a": 1}))
        assert run(doc_store.get("u", "c", "d1")) == {"a": 1}
        assert run(doc_store.get("u", "c", "missing")) is None

    def test_merge(self, doc_store):
        run(doc_store.put("u", "c", "d1", {"a": 1, "b": 2}))
        run(doc_store.put("u", "c", "d1", {"b": 3}, merge=True))
        assert run(doc_store.get("u", "c", "d1")) == {"a": 1, "b": 3}
        run(doc_store.put("u", "c", "d1", {"b": 4}))
        assert run(doc_store.get("u", "c", "d1")) == {"b": 4}

    def test_add_assigns_ids(self, doc_store):
        first = run(doc_store.add("u", "c", {"n": 1}))
        second = run(doc_store.add("u", "c", {"n": 2}))
        assert first != second
        assert sorted(d["n"] for _, d in run(doc_store.list("u", "c"))) == [1, 2]

    def test_namespaced_per_user(self, doc_store):
        run(doc_store.put("alice", "c", "d", {"who": "alice"}))
        assert run(doc_store.list("bob", "c")) == []

    def test_ping(self, doc_store):
        run(doc_store.ping())


class TestMemoryOutage:
    def test_offline_fails_everything(self):
        store = MemoryRemoteStore()
        store.offline = True
        with pytest.raises(PersistenceFailed):
            run(store.ping())
        with pytest.raises(PersistenceFailed):
            run(store.list("u", "c"))

    def test_fail_writes_allows_reads(self):
        store = MemoryRemoteStore()
        store.fail_writes = True
        assert run(store.list("u", "c")) == []
        with pytest.raises(PersistenceFailed):
            run(store.put("u", "c", "d", {}))
