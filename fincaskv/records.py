"""On-disk record layout, index entries, data files and storage errors."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import BinaryIO, Optional

FILE_PREFIX = "data-"
FILE_SUFFIX = ".flog"
# timestamp(8) + flags(4) + key length(4) + value length(4)
HEADER_SIZE = 20
CHECKSUM_SIZE = 8
MAX_KEY_SIZE = 32 << 20
MAX_VALUE_SIZE = 32 << 20

_NAME_RE = re.compile(re.escape(FILE_PREFIX) + r"([+-]?\d+)" + re.escape(FILE_SUFFIX))


class StorageError(Exception):
    """Base class of every error raised by the storage engine."""

    default_message = "storage error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(self.default_message if message is None else message)


class DBClosedError(StorageError):
    default_message = "database is closed"


class EmptyKeyError(StorageError, ValueError):
    default_message = "key is empty"


class KeyNotFoundError(StorageError, LookupError):
    default_message = "key not found"


class KeyTooLargeError(StorageError, ValueError):
    default_message = "key too large"


class ValueTooLargeError(StorageError, ValueError):
    default_message = "value too large"


class InsufficientDataError(StorageError):
    default_message = "insufficient data"


class DataLengthInvalidError(StorageError):
    default_message = "data length invalid"


class ChecksumMismatchError(StorageError):
    default_message = "checksum mismatch"


class ChecksumInvalidError(StorageError):
    default_message = "checksum invalid"


class FileNotFoundInStoreError(StorageError, LookupError):
    default_message = "data file not found"


class WriteFailedError(StorageError):
    default_message = "write failed"


class ReadFailedError(StorageError):
    default_message = "read failed"


@dataclass
class Record:
    """A key/value pair together with its log metadata."""

    key: bytes
    value: bytes = b""
    timestamp: int = 0
    flags: int = 0
    checksum: int = 0


@dataclass(frozen=True)
class Entry:
    """Location of a record inside a data file."""

    file_id: int
    offset: int
    size: int
    timestamp: int = 0


@dataclass
class DataFile:
    """An open data file and its current write offset."""

    file_id: int
    path: str
    file: Optional[BinaryIO] = None
    offset: int = 0
    closed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


def data_file_name(file_id: int) -> str:
    """Return the file name used for the data file with the given id."""
    return f"{FILE_PREFIX}{file_id}{FILE_SUFFIX}"


def parse_data_file_name(name: str) -> Optional[int]:
    """Return the id encoded in a data file name, or None if it is not one."""
    match = _NAME_RE.match(name)
    if match is None:
        return None
    return int(match.group(1))