"""Reading commands and writing replies in the RESP wire format."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Iterable, List, Optional

STRING = b"+"
ERROR = b"-"
INTEGER = b":"
BULK = b"$"
ARRAY = b"*"
CRLF = b"\r\n"
NULL_BULK = b"$-1\r\n"

_INTEGER_RE = re.compile(rb"[+-]?[0-9]+\Z")


class InvalidRESPError(ValueError):
    """Raised when the input does not follow the RESP format."""

    def __init__(self, message: str = "invalid RESP") -> None:
        super().__init__(message)


@dataclass
class Command:
    """A command name with its raw arguments; a nil bulk argument is None."""

    name: str
    args: List[Optional[bytes]] = field(default_factory=list)


class Parser:
    """Reads commands, each sent as an array of bulk strings."""

    def __init__(self, reader: BinaryIO) -> None:
        self._reader = reader

    def parse(self) -> Command:
        """Read the next command; raises EOFError at end of input."""
        kind = self._read_exact(1)
        if kind != ARRAY:
            raise InvalidRESPError()
        return self._parse_array()

    def _read_exact(self, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self._reader.read(remaining)
            if not chunk:
                raise EOFError("unexpected end of input")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def _parse_integer(self) -> int:
        line = self._reader.readline()
        if not line.endswith(b"\n"):
            raise EOFError("unexpected end of input")
        if len(line) < 3 or line[-2:-1] != b"\r":
            raise InvalidRESPError()
        digits = line[:-2]
        if not _INTEGER_RE.match(digits):
            raise InvalidRESPError(f"invalid integer: {digits!r}")
        return int(digits)

    def _parse_bulk_string(self) -> Optional[bytes]:
        length = self._parse_integer()
        if length < 0:
            return None
        bulk = self._read_exact(length)
        if self._read_exact(2) != CRLF:
            raise InvalidRESPError()
        return bulk

    def _parse_array(self) -> Command:
        length = self._parse_integer()
        if length < 1:
            raise InvalidRESPError()
        items: List[Optional[bytes]] = []
        for _ in range(length):
            if self._read_exact(1) != BULK:
                raise InvalidRESPError()
            items.append(self._parse_bulk_string())
        head = items[0] or b""
        return Command(name=head.decode("utf-8", errors="surrogateescape"), args=items[1:])


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8", errors="surrogateescape")
    return bytes(value)


class Writer:
    """Writes RESP replies to a binary stream."""

    def __init__(self, writer: BinaryIO) -> None:
        self._writer = writer

    def _emit(self, data: bytes) -> None:
        self._writer.write(data)
        flush = getattr(self._writer, "flush", None)
        if flush is not None:
            flush()

    def write_string(self, s: str) -> None:
        self._emit(STRING + _as_bytes(s) + CRLF)

    def write_error(self, err: Any) -> None:
        self._emit(ERROR + _as_bytes(str(err)) + CRLF)

    def write_integer(self, n: int) -> None:
        self._emit(INTEGER + str(int(n)).encode("ascii") + CRLF)

    @staticmethod
    def _bulk(b: Optional[Any]) -> bytes:
        if b is None:
            return NULL_BULK
        data = _as_bytes(b)
        return BULK + str(len(data)).encode("ascii") + CRLF + data + CRLF

    def write_bulk(self, b: Optional[Any]) -> None:
        """Write a bulk string; None is written as the nil bulk."""
        self._emit(self._bulk(b))

    def write_array(self, arr: Optional[Iterable[Optional[Any]]]) -> None:
        """Write an array of bulk strings; None is written as the nil bulk."""
        if arr is None:
            self._emit(NULL_BULK)
            return
        items = list(arr)
        parts = [ARRAY, str(len(items)).encode("ascii"), CRLF]
        parts.extend(self._bulk(item) for item in items)
        self._emit(b"".join(parts))