import threading

import pytest

from fincaskv.records import (
    FILE_PREFIX,
    FILE_SUFFIX,
    DataFile,
    DBClosedError,
    EmptyKeyError,
    Entry,
    KeyNotFoundError,
    Record,
    StorageError,
    data_file_name,
    parse_data_file_name,
)


def test_data_file_name_uses_prefix_and_suffix():
    assert data_file_name(3) == "data-3.flog"
    name = data_file_name(42)
    assert name.startswith(FILE_PREFIX)
    assert name.endswith(FILE_SUFFIX)


@pytest.mark.parametrize("file_id", [1, 7, 100, 123456])
def test_file_name_round_trip(file_id):
    assert parse_data_file_name(data_file_name(file_id)) == file_id


@pytest.mark.parametrize("name", ["notes.txt", "data-x.flog", "data-1.txt", "merge", ""])
def test_parse_rejects_foreign_names(name):
    assert parse_data_file_name(name) is None


def test_parse_accepts_leading_zeros():
    assert parse_data_file_name("data-007.flog") == 7


def test_record_defaults():
    record = Record(key=b"k")
    assert record.value == b""
    assert (record.timestamp, record.flags, record.checksum) == (0, 0, 0)


def test_entry_is_immutable_and_comparable():
    entry = Entry(file_id=1, offset=10, size=30, timestamp=5)
    assert entry == Entry(1, 10, 30, 5)
    with pytest.raises(AttributeError):
        entry.offset = 11  # type: ignore[misc]


def test_data_file_has_own_lock(tmp_path):
    path = tmp_path / data_file_name(1)
    with open(path, "w+b") as fh:
        first = DataFile(file_id=1, path=str(path), file=fh)
        second = DataFile(file_id=2, path=str(path), file=fh)
        assert first.offset == 0
        assert first.closed is False
        assert first.lock is not second.lock
        with first.lock:
            assert second.lock.acquire(blocking=False)
            second.lock.release()


def test_errors_carry_messages_and_share_base():
    assert str(DBClosedError()) == DBClosedError.default_message
    assert str(EmptyKeyError("custom detail")) == "custom detail"
    with pytest.raises(StorageError):
        raise KeyNotFoundError()
    with pytest.raises(LookupError):
        raise KeyNotFoundError("missing")


def test_data_file_lock_is_usable_across_threads(tmp_path):
    data_file = DataFile(file_id=1, path=str(tmp_path / "f"))
    counter = []

    def bump():
        for _ in range(100):
            with data_file.lock:
                data_file.offset += 1
        counter.append(1)

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert data_file.offset == 400
    assert len(counter) == 4