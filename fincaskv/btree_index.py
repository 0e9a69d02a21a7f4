"""Ordered in-memory index driven by a caller-supplied "less" function."""

from __future__ import annotations

import threading
from bisect import bisect_left
from functools import cmp_to_key
from typing import Any, Callable, Generic, List, TypeVar

from .records import KeyNotFoundError

K = TypeVar("K")
V = TypeVar("V")


class BTreeIndex(Generic[K, V]):
    """Keeps keys in ascending order as defined by ``less``.

    ``degree`` is kept for configuration compatibility; it must be at least 2.
    """

    def __init__(self, degree: int, less: Callable[[K, K], bool]) -> None:
        if degree <= 1:
            raise ValueError("bad degree")
        self.degree = degree
        self._less = less
        self._sort_key = cmp_to_key(self._compare)
        self._keys: List[K] = []
        self._values: List[V] = []
        self._lock = threading.RLock()

    def _compare(self, a: K, b: K) -> int:
        if self._less(a, b):
            return -1
        if self._less(b, a):
            return 1
        return 0

    def _locate(self, key: K) -> tuple[int, bool]:
        pos = bisect_left(self._keys, self._sort_key(key), key=self._sort_key)
        found = pos < len(self._keys) and not self._less(key, self._keys[pos])
        return pos, found

    def put(self, key: K, value: V) -> None:
        """Insert ``key`` or replace its value."""
        with self._lock:
            pos, found = self._locate(key)
            if found:
                self._keys[pos] = key
                self._values[pos] = value
            else:
                self._keys.insert(pos, key)
                self._values.insert(pos, value)

    def get(self, key: K) -> V:
        """Return the value stored for ``key``; raises KeyNotFoundError."""
        with self._lock:
            pos, found = self._locate(key)
            if not found:
                raise KeyNotFoundError(f"key not found: {key}")
            return self._values[pos]

    def delete(self, key: K) -> None:
        """Remove ``key``; raises KeyNotFoundError if it is absent."""
        with self._lock:
            pos, found = self._locate(key)
            if not found:
                raise KeyNotFoundError(f"key not found: {key}")
            del self._keys[pos]
            del self._values[pos]

    def foreach(self, fn: Callable[[K, V], Any]) -> None:
        """Call ``fn`` on each pair in ascending order until it returns false."""
        with self._lock:
            items = list(zip(self._keys, self._values))
        for key, value in items:
            if not fn(key, value):
                break

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()
            self._values.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)