"""Configuration for the storage engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from .randsource import SecureRandSource, new_secure_rand_source


class MemIndexType(str, Enum):
    BTREE = "btree"
    SKIPLIST = "skiplist"
    SWISS_TABLE = "swisstable"


class MemCacheType(str, Enum):
    LRU = "lru"


def _string_less(a: str, b: str) -> bool:
    return a < b


def _string_compare(a: str, b: str) -> int:
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


@dataclass
class Options:
    """Storage engine settings; intervals are in seconds."""

    data_dir: str = "/tmp/fincas"

    mem_index_ds: MemIndexType = MemIndexType.SWISS_TABLE
    mem_index_shard_count: int = 1 << 8
    btree_degree: int = 8
    btree_comparator: Callable[[str, str], bool] = _string_less
    skiplist_rand_source: Optional[SecureRandSource] = field(
        default_factory=new_secure_rand_source
    )
    skiplist_comparator: Callable[[str, str], int] = _string_compare
    swiss_table_size: int = 1 << 10

    open_mem_cache: bool = True
    mem_cache_ds: MemCacheType = MemCacheType.LRU
    mem_cache_size: int = 1 << 10

    max_file_size: int = 1 << 30
    max_open_files: int = 10
    sync_interval: float = 5.0

    auto_merge: bool = True
    merge_interval: float = 3600.0
    min_merge_ratio: float = 0.3

    def __post_init__(self) -> None:
        self.mem_index_ds = MemIndexType(self.mem_index_ds)
        self.mem_cache_ds = MemCacheType(self.mem_cache_ds)


def default_options(**kwargs) -> Options:
    """Return the default options with the given fields overridden."""
    return Options(**kwargs)