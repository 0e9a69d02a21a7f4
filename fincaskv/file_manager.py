"""Append-only data files: record encoding, rotation, async writes, periodic fsync."""

from __future__ import annotations

import os
import queue
import struct
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from typing import BinaryIO, Dict, Optional, Tuple

from .records import (
    CHECKSUM_SIZE,
    HEADER_SIZE,
    MAX_KEY_SIZE,
    MAX_VALUE_SIZE,
    ChecksumInvalidError,
    ChecksumMismatchError,
    DataFile,
    DataLengthInvalidError,
    DBClosedError,
    EmptyKeyError,
    Entry,
    FileNotFoundInStoreError,
    InsufficientDataError,
    KeyTooLargeError,
    ReadFailedError,
    Record,
    StorageError,
    ValueTooLargeError,
    WriteFailedError,
    data_file_name,
    parse_data_file_name,
)

_MASK64 = (1 << 64) - 1
_MASK32 = (1 << 32) - 1
_CRC64_ISO_POLY = 0xD800000000000000
_HEADER = struct.Struct(">QIII")
_HEADER_SIGNED = struct.Struct(">qIII")
_CHECKSUM = struct.Struct(">Q")
_WRITE_QUEUE_SIZE = 1024


def _make_crc64_table(poly: int) -> Tuple[int, ...]:
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            crc = (crc >> 1) ^ poly if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_CRC64_ISO_TABLE = _make_crc64_table(_CRC64_ISO_POLY)


def crc64_iso(data: bytes) -> int:
    """CRC-64 with the ISO polynomial, reflected, with inverted init and output."""
    crc = _MASK64
    table = _CRC64_ISO_TABLE
    for byte in data:
        crc = table[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ _MASK64


def encode_record(record: Optional[Record]) -> bytes:
    """Serialise a record as header | key | value | checksum."""
    if record is None:
        raise StorageError("record is nil")
    key = bytes(record.key)
    value = bytes(record.value or b"")
    if not key:
        raise EmptyKeyError()
    if len(key) > MAX_KEY_SIZE:
        raise KeyTooLargeError(
            f"key too large: key length {len(key)} exceeds maximum {MAX_KEY_SIZE}"
        )
    if len(value) > MAX_VALUE_SIZE:
        raise ValueTooLargeError(
            f"value too large: value length {len(value)} exceeds maximum {MAX_VALUE_SIZE}"
        )
    body = (
        _HEADER.pack(record.timestamp & _MASK64, record.flags & _MASK32, len(key), len(value))
        + key
        + value
    )
    return body + _CHECKSUM.pack(crc64_iso(body))


def decode_record(data: bytes) -> Record:
    """Parse and verify bytes produced by :func:`encode_record`."""
    data = bytes(data)
    minimum = HEADER_SIZE + CHECKSUM_SIZE
    if len(data) < minimum:
        raise InsufficientDataError(
            f"insufficient data: got {len(data)} bytes, need at least {minimum}"
        )
    timestamp, flags, key_len, value_len = _HEADER_SIGNED.unpack_from(data)
    expected = HEADER_SIZE + key_len + value_len + CHECKSUM_SIZE
    if len(data) != expected:
        raise DataLengthInvalidError(
            f"data length invalid: got {len(data)} bytes, expected {expected}"
        )
    if key_len > MAX_KEY_SIZE:
        raise KeyTooLargeError()
    if value_len > MAX_VALUE_SIZE:
        raise ValueTooLargeError()

    data_size = len(data) - CHECKSUM_SIZE
    (stored,) = _CHECKSUM.unpack_from(data, data_size)
    calculated = crc64_iso(data[:data_size])
    if stored != calculated:
        raise ChecksumMismatchError(
            f"checksum mismatch: stored={stored:x}, calculated={calculated:x}"
        )
    key_end = HEADER_SIZE + key_len
    return Record(
        key=data[HEADER_SIZE:key_end],
        value=data[key_end:key_end + value_len],
        timestamp=timestamp,
        flags=flags,
        checksum=stored,
    )


def validate_checksum(record: Optional[Record]) -> bool:
    """Return True if the record's stored checksum matches its contents."""
    if record is None:
        raise StorageError("record is nil")
    if record.checksum == 0:
        return False
    try:
        data = encode_record(record)
    except StorageError as exc:
        raise StorageError(f"failed to encode record: {exc}") from exc
    (calculated,) = _CHECKSUM.unpack_from(data, len(data) - CHECKSUM_SIZE)
    return calculated == record.checksum


def _open_existing(path: str) -> BinaryIO:
    return os.fdopen(os.open(path, os.O_RDWR), "r+b", buffering=0)


def _open_or_create(path: str) -> BinaryIO:
    return os.fdopen(os.open(path, os.O_RDWR | os.O_CREAT, 0o644), "r+b", buffering=0)


def _fsync(f: BinaryIO) -> None:
    if f.closed:
        return
    try:
        f.flush()
        os.fsync(f.fileno())
    except OSError:
        pass


def _close_quietly(f: BinaryIO) -> None:
    _fsync(f)
    try:
        f.close()
    except OSError:
        pass


def _read_at(f: BinaryIO, offset: int, size: int) -> bytes:
    f.seek(offset)
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = f.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


class FileManager:
    """Owns the data files of one directory.

    Writes go through a single background thread to the active file, which is
    rotated once it would exceed ``max_file_size``. Read handles are kept in an
    LRU of at most ``max_open_files`` entries, and the active file is fsynced
    every ``sync_interval`` seconds.
    """

    def __init__(
        self,
        data_dir: str,
        max_file_size: int,
        max_open_files: int,
        sync_interval: float,
    ) -> None:
        if max_open_files <= 0:
            raise ValueError("must provide a positive size")
        if sync_interval <= 0:
            raise ValueError("non-positive interval for sync")
        os.makedirs(data_dir, exist_ok=True)

        self.data_dir = str(data_dir)
        self.max_file_size = max_file_size
        self.max_open_files = max_open_files
        self.sync_interval = sync_interval

        self._active: Optional[DataFile] = None
        self._next_id = 1
        self._file_mu = threading.RLock()
        self._lock = threading.RLock()
        self._state_lock = threading.Lock()
        self._open_files: "OrderedDict[int, BinaryIO]" = OrderedDict()
        self._closed = False
        self._stop = threading.Event()
        self._queue: "queue.Queue[Optional[Tuple[bytes, Future]]]" = queue.Queue(
            maxsize=_WRITE_QUEUE_SIZE
        )

        self._initialize()

        self._writer = threading.Thread(
            target=self._process_writes, name="fincaskv-writer", daemon=True
        )
        self._syncer = threading.Thread(
            target=self._auto_sync, name="fincaskv-sync", daemon=True
        )
        self._writer.start()
        self._syncer.start()

    def _path(self, file_id: int) -> str:
        return os.path.join(self.data_dir, data_file_name(file_id))

    def _initialize(self) -> None:
        ids = (parse_data_file_name(name) for name in os.listdir(self.data_dir))
        max_id = max((i for i in ids if i is not None and i > 0), default=0)
        self._next_id = max_id + 1
        if max_id == 0:
            self._rotate()
            return
        path = self._path(max_id)
        f = _open_existing(path)
        try:
            size = os.fstat(f.fileno()).st_size
        except OSError:
            f.close()
            raise
        self._active = DataFile(file_id=max_id, path=path, file=f, offset=size)
        with self._lock:
            self._cache_add(max_id, f)

    def _cache_add(self, file_id: int, f: BinaryIO) -> None:
        """Add a handle to the LRU; callers hold ``self._lock``."""
        previous = self._open_files.get(file_id)
        if previous is not None and previous is not f:
            _close_quietly(previous)
        self._open_files[file_id] = f
        self._open_files.move_to_end(file_id)
        active = self._active
        while len(self._open_files) > self.max_open_files:
            _, evicted = self._open_files.popitem(last=False)
            if active is None or evicted is not active.file:
                _close_quietly(evicted)

    def _rotate(self) -> DataFile:
        with self._file_mu:
            old = self._active
            if old is not None and not old.closed:
                old.closed = True
                with self._lock:
                    if old.file is not None:
                        _close_quietly(old.file)
                    if self._open_files.get(old.file_id) is old.file:
                        del self._open_files[old.file_id]

            file_id = self._next_id
            path = self._path(file_id)
            try:
                f = _open_or_create(path)
            except OSError as exc:
                raise StorageError(f"create file failed: {exc}") from exc
            df = DataFile(file_id=file_id, path=path, file=f, offset=0)
            self._active = df
            with self._lock:
                self._cache_add(file_id, f)
            self._next_id += 1
            return df

    def write_async(self, record: Record) -> "Future[Entry]":
        """Queue a record for writing and return a future for its entry."""
        future: "Future[Entry]" = Future()
        try:
            data = encode_record(record)
        except StorageError as exc:
            future.set_exception(exc)
            return future
        with self._state_lock:
            if self._closed:
                future.set_exception(DBClosedError())
                return future
            self._queue.put((data, future))
        return future

    def write(self, record: Record) -> Entry:
        """Write a record and wait for its entry."""
        return self.write_async(record).result()

    def _process_writes(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            data, future = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                entry = self._sync_write(data)
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(entry)

    def _sync_write(self, data: bytes) -> Entry:
        size = len(data)
        while True:
            current = self._active
            if current is None:
                raise FileNotFoundInStoreError()
            if current.closed:
                self._rotate()
                continue
            if size > self.max_file_size:
                raise WriteFailedError(
                    f"write failed: record of {size} bytes exceeds max file size {self.max_file_size}"
                )
            if current.offset + size > self.max_file_size:
                self._rotate()
                continue

            with current.lock:
                position = current.offset
                current.offset += size

            try:
                with self._lock:
                    current.file.seek(position)
                    written = current.file.write(data)
            except (OSError, ValueError):
                written = -1

            if written != size:
                with self._file_mu:
                    current.closed = True
                    with self._lock:
                        _close_quietly(current.file)
                        if self._open_files.get(current.file_id) is current.file:
                            del self._open_files[current.file_id]
                self._rotate()
                raise WriteFailedError()

            return Entry(
                file_id=current.file_id,
                offset=position,
                size=size,
                timestamp=time.time_ns(),
            )

    def read(self, entry: Entry) -> Record:
        """Read and verify the record an entry points to."""
        with self._lock:
            f = self.get_file(entry.file_id)
            try:
                buf = _read_at(f, entry.offset, entry.size)
            except (OSError, ValueError) as exc:
                raise ReadFailedError(f"read failed: {exc}") from exc
        if len(buf) < entry.size:
            raise ReadFailedError(f"read failed: unexpected EOF (fileID={entry.file_id})")
        record = decode_record(buf)
        try:
            valid = validate_checksum(record)
        except StorageError:
            valid = False
        if not valid:
            raise ChecksumInvalidError()
        return record

    def get_file(self, file_id: int) -> BinaryIO:
        """Return an open handle for a data file, opening it if needed."""
        with self._lock:
            f = self._open_files.get(file_id)
            if f is not None and not f.closed:
                self._open_files.move_to_end(file_id)
                return f
            try:
                f = _open_existing(self._path(file_id))
            except FileNotFoundError:
                raise FileNotFoundInStoreError(
                    f"data file not found: fileID={file_id}"
                ) from None
            except OSError as exc:
                raise StorageError(f"open file failed (ID={file_id}): {exc}") from exc
            self._cache_add(file_id, f)
            return f

    def active_file(self) -> Optional[DataFile]:
        """Return the file currently being appended to."""
        return self._active

    def _auto_sync(self) -> None:
        while not self._stop.wait(self.sync_interval):
            with self._file_mu:
                current = self._active
                if current is not None and not current.closed:
                    with self._lock:
                        _fsync(current.file)

    def close(self) -> None:
        """Finish queued writes, stop background threads and close all files."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        self._stop.set()
        self._queue.put(None)
        self._writer.join()
        self._syncer.join()

        with self._file_mu:
            current = self._active
            with self._lock:
                if current is not None and not current.closed:
                    current.closed = True
                    _close_quietly(current.file)
                for f in self._open_files.values():
                    _close_quietly(f)
                self._open_files.clear()

    def __enter__(self) -> "FileManager":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _cached_ids(self) -> Dict[int, BinaryIO]:
        with self._lock:
            return dict(self._open_files)