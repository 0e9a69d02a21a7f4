"""Unordered in-memory hash index."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Generic, TypeVar

from .records import KeyNotFoundError

K = TypeVar("K")
V = TypeVar("V")


class SwissIndex(Generic[K, V]):
    """Hash-table index; ``size`` is the initial capacity hint."""

    def __init__(self, size: int = 1 << 10) -> None:
        self.size = size
        self._table: Dict[K, V] = {}
        self._lock = threading.RLock()

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._table[key] = value

    def get(self, key: K) -> V:
        """Return the value for ``key``; raises KeyNotFoundError."""
        with self._lock:
            try:
                return self._table[key]
            except KeyError:
                raise KeyNotFoundError(f"no value found for key {key}") from None

    def delete(self, key: K) -> None:
        """Remove ``key``; raises KeyNotFoundError if it is absent."""
        with self._lock:
            if self._table.pop(key, _MISSING) is _MISSING:
                raise KeyNotFoundError("delete failed")

    def foreach(self, fn: Callable[[K, V], Any]) -> None:
        """Call ``fn`` on each pair until it returns false."""
        with self._lock:
            items = list(self._table.items())
        for key, value in items:
            if not fn(key, value):
                break

    def clear(self) -> None:
        with self._lock:
            self._table.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._table)


_MISSING = object()