# fincaskv

A Bitcask-style, log-structured key-value storage engine. It has no
dependencies outside the standard library.

Records are appended to rolling data files named `data-<id>.flog`. Each
record is framed as a big-endian header (timestamp, flags, key length,
value length), then the key, the value and a CRC-64 (ISO) checksum. An
in-memory index maps every live key to the position of its latest record.
Deletes are written as tombstone records. A merge rewrites only the live
records into fresh files.

## Modules

- `fincaskv.bitcask`: `Bitcask`, the store. It offers `put`, `get`, `delete`,
  `list_keys`, `fold`, `merge`, `estimate_invalid_ratio`, `start_merge`,
  `stop_merge`, `sync` and `close`, and works as a context manager. The
  `RecordFlag` enum marks records as `NORMAL` or `DELETED`.
- `fincaskv.options`: `Options`, a dataclass of engine settings, and
  `default_options(**overrides)`. It also defines the `MemIndexType` enum
  (`BTREE`, `SKIPLIST`, `SWISS_TABLE`) and the `MemCacheType` enum (`LRU`).
  `sync_interval` and `merge_interval` are given in seconds.
- `fincaskv.memindex`: `MemIndexShard`, which spreads keys over several
  sub-indexes by an FNV-1a hash of the key.
- `fincaskv.btree_index`, `fincaskv.skiplist_index`, `fincaskv.swiss_index`:
  the sub-indexes. `BTreeIndex` is ordered by a "less" function.
  `SkipListIndex` is ordered by a three-way compare function. `SwissIndex`
  is an unordered hash table.
- `fincaskv.lru_cache`: `LRUCache`, the optional read cache.
- `fincaskv.bloom`: `ShardedBloomFilter` and `BloomConfig`. The store uses
  the filter so that lookups of absent keys fail without touching the index.
- `fincaskv.file_manager`: `FileManager`, plus `encode_record`,
  `decode_record`, `validate_checksum` and `crc64_iso`. `FileManager` handles
  file rotation, a single background writer thread, an LRU of open file
  handles and periodic fsync.
- `fincaskv.records`: `Record`, `Entry`, `DataFile`, the file-name helpers
  and the error classes. Every error derives from `StorageError`, for
  example `KeyNotFoundError`, `DBClosedError` and `ChecksumMismatchError`.
- `fincaskv.randsource`: `SecureRandSource`, a small PCG-style generator,
  and `new_secure_rand_source()`, which seeds it from OS entropy and the
  clock.
- `fincaskv.resp`: `Parser`, `Writer`, `Command` and `InvalidRESPError`, for
  the RESP wire format.
- `fincaskv.conn`: `Connection`, which wraps a binary stream or a socket with
  a parser and a writer and counts activity in `ConnStats`.
- `fincaskv.server_stats`: `ServerStats`, thread-safe server-wide counters.

## Installation

```
pip install fincaskv
```

## Usage

```python
from fincaskv.bitcask import Bitcask
from fincaskv.options import default_options, MemIndexType

options = default_options(
    data_dir="/tmp/fincas-demo/data",
    mem_index_ds=MemIndexType.SKIPLIST,
    auto_merge=False,
)

with Bitcask(options) as db:
    db.put("greeting", b"hello")
    print(db.get("greeting"))       # b'hello'
    db.delete("greeting")
    print(db.list_keys())           # []
    print(db.estimate_invalid_ratio())
    db.merge()
```

A missing key raises `KeyNotFoundError`. Any operation on a closed store
raises `DBClosedError`, and calling `close()` a second time does too.

`merge()` builds the new files in a directory named `merge`, next to the data
directory, and then moves them into place. With `auto_merge=True` (the
default), a background thread checks every `merge_interval` seconds and
merges once the invalid ratio reaches `min_merge_ratio`.

### RESP parsing and writing

```python
import io
from fincaskv.resp import Parser, Writer

parser = Parser(io.BytesIO(b"*2\r\n$3\r\nGET\r\n$3\r\nkey\r\n"))
command = parser.parse()
print(command.name, command.args)   # GET [b'key']

out = io.BytesIO()
Writer(out).write_array([b"a", b"bc"])
print(out.getvalue())               # b'*2\r\n$1\r\na\r\n$2\r\nbc\r\n'
```

`Parser.parse()` raises `EOFError` at the end of the input. It raises
`InvalidRESPError` for anything that is not an array of bulk strings.

## Limitations

- The package is a library. It has no network server, no command
  dispatcher that maps commands such as `SET` or `GET` onto the store, no
  cluster mode and no command-line program. `Connection`, the RESP helpers
  and `ServerStats` are building blocks that you connect to the store
  yourself.
- The store keeps byte values under string keys. It has no hash, list, set
  or sorted-set types.
- When the Bloom filter grows (with auto-scaling, once its fill rate passes
  0.75), it starts again empty. Keys that were added before the growth are
  then no longer reported as present, and `get` and `delete` raise
  `KeyNotFoundError` for them until they are written again.

## Running the tests

```
pip install -e ".[test]"
pytest
```