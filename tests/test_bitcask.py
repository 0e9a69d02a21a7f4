import contextlib
import os
import struct
import time

import pytest

from fincaskv.bitcask import Bitcask, RecordFlag
from fincaskv.file_manager import decode_record
from fincaskv.options import MemIndexType, default_options
from fincaskv.records import (
    DBClosedError,
    EmptyKeyError,
    KeyNotFoundError,
    data_file_name,
)


@pytest.fixture
def data_dir(tmp_path):
    return str(tmp_path / "db")


@pytest.fixture
def make_db(data_dir):
    opened = []

    def factory(**overrides):
        settings = dict(data_dir=data_dir, auto_merge=False, sync_interval=0.5)
        settings.update(overrides)
        db = Bitcask(default_options(**settings))
        opened.append(db)
        return db

    yield factory
    for db in opened:
        with contextlib.suppress(DBClosedError):
            db.close()


@pytest.mark.parametrize(
    "index_type",
    [MemIndexType.SWISS_TABLE, MemIndexType.BTREE, MemIndexType.SKIPLIST],
)
def test_put_get_round_trip(make_db, index_type):
    db = make_db(mem_index_ds=index_type)
    db.put("alpha", b"one")
    db.put("beta", b"two")
    assert db.get("alpha") == b"one"
    assert db.get("beta") == b"two"


def test_get_without_cache_reads_from_disk(make_db):
    db = make_db(open_mem_cache=False)
    db.put("k", b"value")
    db.put("k", b"newer")
    assert db.get("k") == b"newer"


def test_empty_value_and_unicode_key(make_db):
    db = make_db(open_mem_cache=False)
    db.put("ключ", b"")
    assert db.get("ключ") == b""


def test_missing_key_raises(make_db):
    db = make_db()
    with pytest.raises(KeyNotFoundError):
        db.get("nope")


def test_empty_key_rejected(make_db):
    db = make_db()
    with pytest.raises(EmptyKeyError):
        db.put("", b"v")
    with pytest.raises(EmptyKeyError):
        db.get("")
    with pytest.raises(EmptyKeyError):
        db.delete("")


def test_delete_then_get(make_db):
    db = make_db()
    db.put("k", b"v")
    db.delete("k")
    with pytest.raises(KeyNotFoundError):
        db.get("k")


def test_delete_unknown_key(make_db):
    db = make_db()
    with pytest.raises(KeyNotFoundError):
        db.delete("never-written")


def test_delete_twice_fails_on_index(make_db):
    db = make_db()
    db.put("k", b"v")
    db.delete("k")
    with pytest.raises(KeyNotFoundError):
        db.delete("k")


def test_persistence_across_reopen(make_db):
    db = make_db()
    db.put("keep", b"1")
    db.put("drop", b"2")
    db.put("keep", b"3")
    db.delete("drop")
    db.close()

    reopened = make_db()
    assert reopened.get("keep") == b"3"
    with pytest.raises(KeyNotFoundError):
        reopened.get("drop")
    assert reopened.list_keys() == ["keep"]


def test_tombstone_written_to_log(make_db, data_dir):
    db = make_db()
    db.put("a", b"x")
    db.delete("a")
    db.close()

    with open(os.path.join(data_dir, data_file_name(1)), "rb") as f:
        raw = f.read()
    flags = []
    offset = 0
    while offset < len(raw):
        _, _, key_len, value_len = struct.unpack_from(">qIII", raw, offset)
        size = 20 + key_len + value_len + 8
        flags.append(decode_record(raw[offset:offset + size]).flags)
        offset += size
    assert flags == [RecordFlag.NORMAL, RecordFlag.DELETED]


def test_list_keys(make_db):
    db = make_db()
    for key in ("c", "a", "b"):
        db.put(key, key.encode())
    db.delete("b")
    assert sorted(db.list_keys()) == ["a", "c"]


def test_fold_visits_all_and_stops(make_db):
    db = make_db()
    expected = {"a": b"1", "b": b"2", "c": b"3"}
    for key, value in expected.items():
        db.put(key, value)

    seen = {}
    db.fold(lambda k, v: seen.__setitem__(k, v) or True)
    assert seen == expected

    visited = []
    db.fold(lambda k, v: visited.append(k) and False)
    assert len(visited) == 1


def test_index_and_filter_accessors(make_db, data_dir):
    db = make_db()
    db.put("k", b"value")
    entry = db.mem_index.get("k")
    assert entry.file_id == 1
    assert entry.offset == 0
    assert entry.size == 20 + len(b"k") + len(b"value") + 8
    assert db.filter.contains(b"k")
    assert db.data_dir == data_dir


def test_closed_database_rejects_operations(make_db):
    db = make_db()
    db.put("k", b"v")
    db.close()
    with pytest.raises(DBClosedError):
        db.get("k")
    with pytest.raises(DBClosedError):
        db.put("k", b"v")
    with pytest.raises(DBClosedError):
        db.list_keys()
    with pytest.raises(DBClosedError):
        db.close()


def test_context_manager_closes(data_dir):
    with Bitcask(default_options(data_dir=data_dir, auto_merge=False)) as db:
        db.put("k", b"v")
        db.sync()
        assert db.get("k") == b"v"
    with pytest.raises(DBClosedError):
        db.put("k", b"v")


def test_invalid_ratio_on_empty_store(make_db):
    db = make_db()
    assert db.estimate_invalid_ratio() == 0.0


def test_merge_drops_stale_records(make_db):
    db = make_db(open_mem_cache=False)
    for value in (b"first", b"second", b"third"):
        db.put("k", value)
    db.put("gone", b"x")
    db.delete("gone")
    assert db.estimate_invalid_ratio() > 0

    db.merge()
    assert db.estimate_invalid_ratio() == 0.0
    assert db.get("k") == b"third"
    with pytest.raises(KeyNotFoundError):
        db.get("gone")
    db.put("after", b"merge")
    db.close()

    reopened = make_db(open_mem_cache=False)
    assert reopened.get("k") == b"third"
    assert reopened.get("after") == b"merge"
    assert sorted(reopened.list_keys()) == ["after", "k"]


def test_periodic_merge(make_db):
    db = make_db(open_mem_cache=False, min_merge_ratio=0.1)
    for i in range(5):
        db.put("k", str(i).encode())
    assert db.estimate_invalid_ratio() > 0

    db.start_merge(0.05)
    deadline = time.monotonic() + 10
    while db.estimate_invalid_ratio() > 0 and time.monotonic() < deadline:
        time.sleep(0.05)
    db.stop_merge()

    assert db.estimate_invalid_ratio() == 0.0
    assert db.get("k") == b"4"