"""Sharded in-memory index that spreads keys over several sub-indexes."""

from __future__ import annotations

import threading
from typing import Any, Callable, Generic, List, Optional, TypeVar, Union

from .btree_index import BTreeIndex
from .options import MemIndexType
from .skiplist_index import SkipListIndex
from .swiss_index import SwissIndex

K = TypeVar("K")
V = TypeVar("V")

_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193
_MASK32 = (1 << 32) - 1


def _fnv1a32(data: bytes) -> int:
    h = _FNV32_OFFSET
    for byte in data:
        h ^= byte
        h = (h * _FNV32_PRIME) & _MASK32
    return h


class MemIndexShard(Generic[K, V]):
    """Routes each key to one of ``shard_count`` indexes of the chosen type."""

    def __init__(
        self,
        index_type: Union[MemIndexType, str],
        shard_count: int,
        btree_degree: int = 8,
        btree_less: Optional[Callable[[K, K], bool]] = None,
        skiplist_rand_source: Any = None,
        skiplist_compare: Optional[Callable[[K, K], int]] = None,
        swiss_table_size: int = 1 << 10,
    ) -> None:
        try:
            index_type = MemIndexType(index_type)
        except ValueError:
            raise ValueError("Unsupported memIndex type") from None
        if shard_count <= 0:
            raise ValueError("shard count must be greater than 0")

        if index_type is MemIndexType.BTREE:
            if btree_degree <= 0:
                raise ValueError("BTree degree must be greater than 0")
            if btree_less is None:
                raise ValueError("BTree less func cannot be nil")
            factory = lambda: BTreeIndex(btree_degree, btree_less)  # noqa: E731
        elif index_type is MemIndexType.SKIPLIST:
            if skiplist_compare is None:
                raise ValueError("SkipList less func cannot be nil")
            factory = lambda: SkipListIndex(skiplist_compare, skiplist_rand_source)  # noqa: E731
        else:
            size = swiss_table_size if swiss_table_size > 0 else 1 << 10
            factory = lambda: SwissIndex(size)  # noqa: E731

        self.index_type = index_type
        self._shards: List[Any] = [factory() for _ in range(shard_count)]
        self._lock = threading.RLock()

    def _shard_for(self, key: K) -> Any:
        return self._shards[_fnv1a32(str(key).encode()) % len(self._shards)]

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._shard_for(key).put(key, value)

    def get(self, key: K) -> V:
        """Return the value for ``key``; raises KeyNotFoundError."""
        with self._lock:
            return self._shard_for(key).get(key)

    def delete(self, key: K) -> None:
        """Remove ``key``; raises KeyNotFoundError if it is absent."""
        with self._lock:
            self._shard_for(key).delete(key)

    def foreach(self, fn: Callable[[K, V], Any]) -> None:
        """Visit every pair shard by shard until ``fn`` returns false."""
        with self._lock:
            shards = list(self._shards)
        stopped = False

        def visit(key: K, value: V) -> bool:
            nonlocal stopped
            if not fn(key, value):
                stopped = True
                return False
            return True

        for shard in shards:
            shard.foreach(visit)
            if stopped:
                break

    def clear(self) -> None:
        with self._lock:
            for shard in self._shards:
                shard.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(shard) for shard in self._shards)