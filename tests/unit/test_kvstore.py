"""
Unit tests for memfabric/persist/sqlite_store.py

Tests thread-safe SQLite KV operations with WAL mode and delta queries.
"""
import threading
import time

import pytest
from memfabric.persist.sqlite_store import KVStore


def test_set_get_roundtrip(kv):
    """Basic set/get operations."""
    kv.set("records", "key1", b"value1")
    assert kv.get("records", "key1") == b"value1"
    assert kv.get("records", "missing") is None

    kv.set("records", "key1", b"value2")
    assert kv.get("records", "key1") == b"value2"


def test_persistence_after_reopen(tmp_path):
    """Values should persist after closing and reopening store."""
    db_path = tmp_path / "persist_test.db"

    store1 = KVStore(db_path)
    store1.set("records", "key1", b"value1")
    store1.close()

    store2 = KVStore(db_path)
    assert store2.get("records", "key1") == b"value1"
    store2.close()


def test_unknown_table_rejected(kv):
    with pytest.raises(ValueError):
        kv.set("nope", "k", b"v")


def test_reserved_word_table_names(tmp_path):
    """SQL keywords are valid table names."""
    store = KVStore(tmp_path / "reserved.db", tables=("index", "order"))
    store.set("index", "k", b"1")
    store.set_many("order", [("k", b"2")])

    assert store.get("index", "k") == b"1"
    assert store.items("order") == [("k", b"2")]
    assert [k for k, _, _ in store.items_since("index", 0.0)] == ["k"]
    assert store.stats("order")["count"] == 1
    store.close()


def test_invalid_table_name_rejected(tmp_path):
    with pytest.raises(ValueError):
        KVStore(tmp_path / "bad.db", tables=('records"; DROP TABLE x; --',))


def test_items_since_returns_only_newer_rows(kv):
    kv.set("records", "old", b"1", ts=100.0)
    kv.set("records", "mid", b"2", ts=200.0)
    kv.set("records", "new", b"3", ts=300.0)

    rows = kv.items_since("records", 150.0)

    assert [k for k, _, _ in rows] == ["mid", "new"]
    assert rows[0][2] == 200.0
    assert kv.items_since("records", 300.0) == []


def test_set_many_and_items(kv):
    written = kv.set_many("index_snapshot", [("b", b"2"), ("a", b"1")])

    assert written == 2
    assert kv.items("index_snapshot") == [("a", b"1"), ("b", b"2")]


def test_tables_are_independent(kv):
    kv.set("records", "k", b"records")
    kv.set("index_snapshot", "k", b"snapshot")

    assert kv.get("records", "k") == b"records"
    assert kv.get("index_snapshot", "k") == b"snapshot"


def test_parallel_writes_no_crash(kv):
    """Parallel writes from multiple threads should not crash."""
    errors = []

    def write_task(thread_id):
        try:
            for i in range(20):
                kv.set("records", f"thread_{thread_id}_key_{i}", f"value_{i}".encode())
                time.sleep(0.001)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=write_task, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert kv.stats("records")["count"] == 8 * 20


def test_stats(kv):
    assert kv.stats("records") == {"count": 0, "total_bytes": 0, "oldest_ts": 0, "newest_ts": 0}

    for i in range(5):
        kv.set("records", f"k{i}", b"x" * 10, ts=float(i + 1))

    stats = kv.stats("records")
    assert stats["count"] == 5
    assert stats["total_bytes"] == 50
    assert stats["oldest_ts"] == 1.0
    assert stats["newest_ts"] == 5.0


def test_close_is_idempotent(tmp_path):
    store = KVStore(tmp_path / "close.db")
    store.close()
    store.close()
    assert store.closed
