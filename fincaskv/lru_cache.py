"""Fixed-size least-recently-used cache."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Generic, TypeVar

from .records import KeyNotFoundError

K = TypeVar("K")
V = TypeVar("V")

logger = logging.getLogger(__name__)


class LRUCache(Generic[K, V]):
    """Evicts the least recently used entry once ``size`` entries are held."""

    def __init__(self, size: int) -> None:
        if size <= 0:
            raise ValueError("must provide a positive size")
        self.size = size
        self._items: "OrderedDict[K, V]" = OrderedDict()
        self._lock = threading.Lock()

    def insert(self, key: K, value: V) -> None:
        """Store ``key``, marking it most recently used."""
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)
                self._items[key] = value
                return
            self._items[key] = value
            if len(self._items) > self.size:
                old_key, old_value = self._items.popitem(last=False)
                logger.info(
                    "LRUCache: evicted when insert {key=%r value=%r}", old_key, old_value
                )

    def find(self, key: K) -> V:
        """Return the cached value, marking it used; raises KeyNotFoundError."""
        with self._lock:
            try:
                self._items.move_to_end(key)
            except KeyError:
                raise KeyNotFoundError(f"cannot find value [{key}] into LRU cache") from None
            return self._items[key]

    def delete(self, key: K) -> None:
        """Drop ``key``; raises KeyNotFoundError if it was not cached."""
        with self._lock:
            try:
                del self._items[key]
            except KeyError:
                raise KeyNotFoundError(f"cannot find value [{key}] into LRU cache") from None

    def exist(self, key: K) -> bool:
        """Report whether ``key`` is cached without changing its recency."""
        with self._lock:
            return key in self._items

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)