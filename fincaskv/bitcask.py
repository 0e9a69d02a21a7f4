"""Log-structured key/value store with an in-memory index, cache and Bloom filter."""

from __future__ import annotations

import os
import shutil
import threading
import time
from enum import IntEnum
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Tuple

from .bloom import BloomConfig, ShardedBloomFilter
from .file_manager import FileManager, decode_record
from .lru_cache import LRUCache
from .memindex import MemIndexShard
from .options import MemCacheType, Options, default_options
from .records import (
    CHECKSUM_SIZE,
    HEADER_SIZE,
    DBClosedError,
    EmptyKeyError,
    Entry,
    KeyNotFoundError,
    Record,
    StorageError,
    parse_data_file_name,
)

_FILTER_EXPECTED_ELEMENTS = 1 << 10
_FILTER_FALSE_POSITIVE_RATE = 0.01


class RecordFlag(IntEnum):
    """State stored with every record in the log."""

    NORMAL = 0
    DELETED = 1


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


class Bitcask:
    """A Bitcask store over the files of ``options.data_dir``."""

    def __init__(self, options: Optional[Options] = None) -> None:
        cfg = options if options is not None else default_options()
        self._cfg = cfg
        self._lock = threading.RLock()
        self._merge_flag_lock = threading.Lock()
        self._merge_running = False
        self._merge_thread: Optional[threading.Thread] = None
        self._merge_stop: Optional[threading.Event] = None
        self._worker_lock = threading.Lock()
        self._closed = False

        self._fm = self._new_file_manager(cfg.data_dir)
        try:
            self._index: MemIndexShard[str, Entry] = MemIndexShard(
                cfg.mem_index_ds,
                cfg.mem_index_shard_count,
                cfg.btree_degree,
                cfg.btree_comparator,
                cfg.skiplist_rand_source,
                cfg.skiplist_comparator,
                cfg.swiss_table_size,
            )
            self._cache: Optional[LRUCache[str, bytes]] = None
            if cfg.open_mem_cache:
                if cfg.mem_cache_ds is MemCacheType.LRU:
                    self._cache = LRUCache(cfg.mem_cache_size)
                else:
                    raise ValueError(f"unsupported memcache DS: {cfg.mem_cache_ds}")
            self._filter = ShardedBloomFilter(
                BloomConfig(
                    expected_elements=_FILTER_EXPECTED_ELEMENTS,
                    false_positive_rate=_FILTER_FALSE_POSITIVE_RATE,
                    auto_scale=True,
                )
            )
            self._load_data_files()
        except BaseException:
            self._fm.close()
            raise

        if cfg.auto_merge:
            self._start_merge_worker(cfg.merge_interval)

    def _new_file_manager(self, directory: str) -> FileManager:
        cfg = self._cfg
        return FileManager(directory, cfg.max_file_size, cfg.max_open_files, cfg.sync_interval)

    # ------------------------------------------------------------------ loading

    def _load_data_files(self) -> None:
        try:
            names = os.listdir(self._cfg.data_dir)
        except OSError as exc:
            raise StorageError(f"read data directory failed: {exc}") from exc
        ids = sorted(i for i in map(parse_data_file_name, names) if i is not None)
        for file_id in ids:
            try:
                self._load_data_file(file_id)
            except StorageError as exc:
                raise StorageError(f"load data file {file_id} failed: {exc}") from exc

    def _load_data_file(self, file_id: int) -> None:
        f = self._fm.get_file(file_id)
        offset = 0
        while True:
            header = _read_at(f, offset, HEADER_SIZE)
            if len(header) < HEADER_SIZE:
                break
            key_len = int.from_bytes(header[12:16], "big")
            value_len = int.from_bytes(header[16:20], "big")
            record_size = HEADER_SIZE + key_len + value_len + CHECKSUM_SIZE

            raw = _read_at(f, offset, record_size)
            if len(raw) < record_size:
                break
            try:
                record = decode_record(raw)
            except StorageError as exc:
                raise StorageError(f"decode record failed: {exc}") from exc

            key = record.key.decode("utf-8", errors="surrogateescape")
            if record.flags == RecordFlag.DELETED:
                try:
                    self._index.delete(key)
                except KeyNotFoundError:
                    pass
            else:
                self._index.put(
                    key,
                    Entry(
                        file_id=file_id,
                        offset=offset,
                        size=record_size,
                        timestamp=record.timestamp,
                    ),
                )
                self._filter.add(record.key)
            offset += record_size

    # -------------------------------------------------------------- operations

    def _check_open(self) -> None:
        if self._closed:
            raise DBClosedError()

    def _check_key(self, key: str) -> None:
        self._check_open()
        if not key:
            raise EmptyKeyError()

    @staticmethod
    def _key_bytes(key: str) -> bytes:
        return key.encode("utf-8", errors="surrogateescape")

    def put(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``."""
        self._check_key(key)
        value = bytes(value)
        with self._lock:
            record = Record(
                key=self._key_bytes(key),
                value=value,
                timestamp=time.time_ns(),
                flags=RecordFlag.NORMAL,
            )
            try:
                entry = self._fm.write(record)
            except StorageError as exc:
                raise type(exc)(f"write record failed: {exc}") from exc
            self._index.put(key, entry)
            if self._cache is not None:
                self._cache.insert(key, value)
            self._filter.add(record.key)

    def get(self, key: str) -> bytes:
        """Return the value of ``key``; raises KeyNotFoundError."""
        self._check_key(key)
        with self._lock:
            if not self._filter.contains(self._key_bytes(key)):
                raise KeyNotFoundError()
            if self._cache is not None:
                try:
                    return self._cache.find(key)
                except KeyNotFoundError:
                    pass
            try:
                entry = self._index.get(key)
            except KeyNotFoundError:
                raise KeyNotFoundError() from None
            record = self._fm.read(entry)
            if record.flags == RecordFlag.DELETED:
                raise KeyNotFoundError()
            if self._cache is not None:
                self._cache.insert(key, record.value)
            return record.value

    def delete(self, key: str) -> None:
        """Write a tombstone for ``key`` and drop it from the index."""
        self._check_key(key)
        with self._lock:
            key_bytes = self._key_bytes(key)
            if not self._filter.contains(key_bytes):
                raise KeyNotFoundError()
            record = Record(
                key=key_bytes,
                value=b"",
                timestamp=time.time_ns(),
                flags=RecordFlag.DELETED,
            )
            try:
                self._fm.write(record)
            except StorageError as exc:
                raise type(exc)(f"write delete record failed: {exc}") from exc
            try:
                self._index.delete(key)
            except KeyNotFoundError as exc:
                raise KeyNotFoundError(f"remove from index failed: {exc}") from None
            if self._cache is not None:
                try:
                    self._cache.delete(key)
                except KeyNotFoundError:
                    pass

    def list_keys(self) -> List[str]:
        """Return every live key."""
        self._check_open()
        keys: List[str] = []
        with self._lock:
            self._index.foreach(lambda key, _entry: keys.append(key) or True)
        return keys

    def fold(self, fn: Callable[[str, bytes], Any]) -> None:
        """Call ``fn(key, value)`` for every live pair until it returns false."""
        self._check_open()
        with self._lock:
            def visit(key: str, entry: Entry) -> bool:
                try:
                    record = self._fm.read(entry)
                except StorageError:
                    return False
                if record.flags == RecordFlag.DELETED:
                    return True
                return bool(fn(key, record.value))

            self._index.foreach(visit)

    # ------------------------------------------------------------------- merge

    def _merge_dir(self) -> str:
        data_dir = os.path.normpath(os.path.abspath(self._cfg.data_dir))
        return os.path.join(os.path.dirname(data_dir), "merge")

    def merge(self) -> None:
        """Rewrite only the live records into fresh data files."""
        self._check_open()
        with self._merge_flag_lock:
            if self._merge_running:
                raise StorageError("merge is already running")
            self._merge_running = True
        try:
            with self._lock:
                self._check_open()
                self._merge_locked()
        finally:
            with self._merge_flag_lock:
                self._merge_running = False

    def _merge_locked(self) -> None:
        merge_dir = self._merge_dir()
        try:
            if os.path.isdir(merge_dir):
                shutil.rmtree(merge_dir)
            os.makedirs(merge_dir, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"create merge directory failed: {exc}") from exc

        merge_fm = self._new_file_manager(merge_dir)
        live: List[Tuple[str, Entry]] = []
        self._index.foreach(lambda key, entry: live.append((key, entry)) or True)

        new_entries: Dict[str, Entry] = {}
        try:
            for key, entry in live:
                record = self._fm.read(entry)
                if record.flags == RecordFlag.DELETED:
                    continue
                new_entries[key] = merge_fm.write(record)
        except StorageError as exc:
            merge_fm.close()
            shutil.rmtree(merge_dir, ignore_errors=True)
            raise StorageError(f"merge failed: {exc}") from exc
        merge_fm.close()

        self._fm.close()
        data_dir = self._cfg.data_dir
        try:
            shutil.rmtree(data_dir)
        except OSError as exc:
            raise StorageError(f"remove original directory failed: {exc}") from exc
        try:
            os.rename(merge_dir, data_dir)
        except OSError as exc:
            raise StorageError(f"rename merge directory failed: {exc}") from exc

        self._fm = self._new_file_manager(data_dir)
        for key, entry in new_entries.items():
            self._index.put(key, entry)

    def estimate_invalid_ratio(self) -> float:
        """Fraction of bytes on disk that no live key refers to."""
        self._check_open()
        with self._lock:
            total = 0
            try:
                with os.scandir(self._cfg.data_dir) as entries:
                    for item in entries:
                        try:
                            if item.is_file():
                                total += item.stat().st_size
                        except OSError:
                            continue
            except OSError as exc:
                raise StorageError(f"read directory failed: {exc}") from exc
            if total == 0:
                return 0.0
            valid = 0

            def add(_key: str, entry: Entry) -> bool:
                nonlocal valid
                valid += entry.size
                return True

            self._index.foreach(add)
            return 1 - valid / total

    def _auto_merge(self, interval: float, stop: threading.Event) -> None:
        while not stop.wait(interval):
            if self._closed:
                return
            try:
                if self.estimate_invalid_ratio() >= self._cfg.min_merge_ratio:
                    self.merge()
            except StorageError:
                continue

    def _start_merge_worker(self, interval: float) -> None:
        self._stop_merge_worker()
        with self._worker_lock:
            stop = threading.Event()
            thread = threading.Thread(
                target=self._auto_merge,
                args=(interval, stop),
                name="fincaskv-merge",
                daemon=True,
            )
            self._merge_stop = stop
            self._merge_thread = thread
            thread.start()

    def _stop_merge_worker(self) -> None:
        with self._worker_lock:
            stop, thread = self._merge_stop, self._merge_thread
            self._merge_stop = None
            self._merge_thread = None
        if stop is not None:
            stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def start_merge(self, interval: float) -> None:
        """(Re)start periodic merging every ``interval`` seconds."""
        self._start_merge_worker(interval)

    def stop_merge(self) -> None:
        """Stop periodic merging."""
        self._stop_merge_worker()

    # -------------------------------------------------------------- accessors

    @property
    def filter(self) -> ShardedBloomFilter:
        return self._filter

    @property
    def mem_index(self) -> MemIndexShard:
        return self._index

    @property
    def data_dir(self) -> str:
        return self._cfg.data_dir

    # -------------------------------------------------------------- lifecycle

    def sync(self) -> None:
        """Flush the active data file to disk."""
        self._check_open()
        with self._lock:
            current = self._fm.active_file()
            if current is None or current.closed or current.file is None:
                return
            current.file.flush()
            os.fsync(current.file.fileno())

    def close(self) -> None:
        """Stop merging and close all files; raises DBClosedError if already closed."""
        self._check_open()
        self._stop_merge_worker()
        with self._lock:
            self._check_open()
            self._closed = True
            self._fm.close()

    def __enter__(self) -> "Bitcask":
        return self

    def __exit__(self, *args) -> None:
        if not self._closed:
            self.close()