"""Server-wide counters."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field


@dataclass
class ServerStats:
    """Thread-safe counters for a running server."""

    start_time: float = field(default_factory=time.time)
    conn_count: int = 0
    cmd_count: int = 0
    bytes_received: int = 0
    bytes_sent: int = 0
    error_count: int = 0
    slow_count: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def incr_conn_count(self) -> None:
        with self._lock:
            self.conn_count += 1

    def decr_conn_count(self) -> None:
        with self._lock:
            self.conn_count -= 1

    def incr_cmd_count(self) -> None:
        with self._lock:
            self.cmd_count += 1

    def add_bytes_received(self, n: int) -> None:
        with self._lock:
            self.bytes_received += n

    def add_bytes_sent(self, n: int) -> None:
        with self._lock:
            self.bytes_sent += n

    def incr_error_count(self) -> None:
        with self._lock:
            self.error_count += 1

    def incr_slow_count(self) -> None:
        with self._lock:
            self.slow_count += 1