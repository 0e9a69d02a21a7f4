"""A client connection that reads commands and writes replies with statistics."""

from __future__ import annotations

import dataclasses
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .resp import Command, Parser, Writer


@dataclass
class ConnStats:
    """Counters for one connection; times are seconds since the epoch."""

    created: float = field(default_factory=time.time)
    last_active: float = field(default_factory=time.time)
    read_bytes: int = 0
    write_bytes: int = 0
    read_cmds: int = 0
    write_cmds: int = 0
    errors: int = 0


class Connection:
    """Wraps a binary stream (or a socket) with a RESP parser and writer."""

    def __init__(self, stream: Any) -> None:
        self._socket: Optional[socket.socket] = None
        if isinstance(stream, socket.socket):
            self._socket = stream
            stream = stream.makefile("rwb")
        self._stream = stream
        self._parser = Parser(stream)
        self._writer = Writer(stream)
        now = time.time()
        self._stats = ConnStats(created=now, last_active=now)
        self._closed = False
        self._lock = threading.RLock()

    def stats(self) -> ConnStats:
        """Return a snapshot of the connection's counters."""
        with self._lock:
            return dataclasses.replace(self._stats)

    def close(self) -> None:
        """Close the underlying stream; closing twice does nothing."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._stream.close()
            finally:
                if self._socket is not None:
                    self._socket.close()

    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    def read_command(self) -> Command:
        """Read the next command; any failure is counted and re-raised."""
        with self._lock:
            try:
                cmd = self._parser.parse()
            except Exception:
                self._stats.errors += 1
                raise
            self._stats.read_cmds += 1
            self._stats.last_active = time.time()
            return cmd

    def _write(self, action) -> None:
        with self._lock:
            try:
                action()
            except Exception:
                self._stats.errors += 1
                raise
            self._stats.write_cmds += 1
            self._stats.last_active = time.time()

    def write_string(self, s: str) -> None:
        self._write(lambda: self._writer.write_string(s))

    def write_error(self, err: Any) -> None:
        """Send an error reply; the error counter grows whether or not it is sent."""
        with self._lock:
            self._stats.errors += 1
            self._writer.write_error(err)
            self._stats.last_active = time.time()

    def write_integer(self, n: int) -> None:
        self._write(lambda: self._writer.write_integer(n))

    def write_bulk(self, b: Optional[bytes]) -> None:
        self._write(lambda: self._writer.write_bulk(b))

    def write_array(self, arr: Optional[Iterable[Optional[bytes]]]) -> None:
        self._write(lambda: self._writer.write_array(arr))

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *args) -> None:
        self.close()