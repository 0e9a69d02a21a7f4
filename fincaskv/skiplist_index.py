"""Ordered in-memory index backed by a skip list."""

from __future__ import annotations

import random
import threading
import time
from typing import Any, Callable, Generic, List, Optional, Protocol, TypeVar

from .records import KeyNotFoundError

K = TypeVar("K")
V = TypeVar("V")

MAX_LEVEL = 32
PROBABILITY = 0.25


class _RandomSource(Protocol):
    def random(self) -> float: ...


class _Node:
    __slots__ = ("key", "value", "forward")

    def __init__(self, key: Any, value: Any, level: int) -> None:
        self.key = key
        self.value = value
        self.forward: List[Optional[_Node]] = [None] * level


class SkipListIndex(Generic[K, V]):
    """Skip list ordered by ``compare(a, b)`` returning <0, 0 or >0."""

    def __init__(
        self,
        compare: Callable[[K, K], int],
        rand_source: Optional[_RandomSource] = None,
    ) -> None:
        if compare is None:
            raise ValueError("compare function cannot be nil")
        self._compare = compare
        self._rand = rand_source if rand_source is not None else random.Random(time.time_ns())
        self._head = _Node(None, None, MAX_LEVEL)
        self._level = 1
        self._size = 0
        self._lock = threading.RLock()

    def _random_level(self) -> int:
        level = 1
        while level < MAX_LEVEL and self._rand.random() < PROBABILITY:
            level += 1
        return level

    def _search(self, key: K) -> tuple[List[_Node], Optional[_Node]]:
        update: List[_Node] = [self._head] * MAX_LEVEL
        current = self._head
        for i in reversed(range(self._level)):
            while (nxt := current.forward[i]) is not None and self._compare(nxt.key, key) < 0:
                current = nxt
            update[i] = current
        candidate = current.forward[0]
        if candidate is not None and self._compare(candidate.key, key) == 0:
            return update, candidate
        return update, None

    def put(self, key: K, value: V) -> None:
        """Insert ``key`` or replace its value."""
        with self._lock:
            update, found = self._search(key)
            if found is not None:
                found.value = value
                return
            level = self._random_level()
            if level > self._level:
                self._level = level
            node = _Node(key, value, level)
            for i, prev in enumerate(update[:level]):
                node.forward[i] = prev.forward[i]
                prev.forward[i] = node
            self._size += 1

    def get(self, key: K) -> V:
        """Return the value for ``key``; raises KeyNotFoundError."""
        with self._lock:
            _, found = self._search(key)
            if found is None:
                raise KeyNotFoundError()
            return found.value

    def delete(self, key: K) -> None:
        """Remove ``key``; raises KeyNotFoundError if it is absent."""
        with self._lock:
            update, found = self._search(key)
            if found is None:
                raise KeyNotFoundError()
            for i, prev in enumerate(update[: self._level]):
                if prev.forward[i] is not found:
                    break
                prev.forward[i] = found.forward[i]
            while self._level > 1 and self._head.forward[self._level - 1] is None:
                self._level -= 1
            self._size -= 1

    def foreach(self, fn: Callable[[K, V], Any]) -> None:
        """Call ``fn`` on each pair in order until it returns false."""
        with self._lock:
            items = []
            node = self._head.forward[0]
            while node is not None:
                items.append((node.key, node.value))
                node = node.forward[0]
        for key, value in items:
            if not fn(key, value):
                break

    def clear(self) -> None:
        with self._lock:
            self._head = _Node(None, None, MAX_LEVEL)
            self._level = 1
            self._size = 0

    def __len__(self) -> int:
        with self._lock:
            return self._size