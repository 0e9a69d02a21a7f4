"""A sharded Bloom filter with optional growth."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Tuple

DEFAULT_SHARDS = 16
DEFAULT_BITS_PER_SHARD = 1024
DEFAULT_HASH_FUNCS = 4
GROWTH_FACTOR = 2
GROWTH_THRESHOLD = 0.75

_MASK64 = (1 << 64) - 1
_FNV64_OFFSET = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3


@dataclass
class BloomConfig:
    expected_elements: int
    false_positive_rate: float
    auto_scale: bool = False
    num_shards: int = 0
    bits_per_shard: int = 0
    num_hash_funcs: int = 0


def is_power_of_two(x: int) -> bool:
    return x != 0 and (x & (x - 1)) == 0


def next_power_of_2(x: int) -> int:
    """Smallest power of two >= x, wrapping to 0 as a 64-bit value would."""
    if x == 0:
        return 0
    return (1 << (x - 1).bit_length()) & _MASK64


def optimal_bits(n: int, p: float) -> int:
    """Number of bits needed for n elements at false positive rate p."""
    return int(math.ceil(-float(n) * math.log(p) / (math.log(2) ** 2)))


def optimal_hash_funcs(n: int, m: int) -> int:
    """Number of hash functions for n elements in m bits, at least the default."""
    k = int(math.floor(float(m // n) * math.log(2) + 0.5))
    return max(k, DEFAULT_HASH_FUNCS)


def _fnv1a64(data: bytes) -> int:
    h = _FNV64_OFFSET
    for byte in data:
        h ^= byte
        h = (h * _FNV64_PRIME) & _MASK64
    return h


class ShardedBloomFilter:
    """Bloom filter split into shards; growing discards the bits already set."""

    def __init__(self, config: BloomConfig) -> None:
        if config.expected_elements <= 0:
            raise ValueError("expected elements must be > 0")
        if not 0 < config.false_positive_rate < 1:
            raise ValueError("false positive rate must be in (0,1)")

        m = optimal_bits(config.expected_elements, config.false_positive_rate)
        k = optimal_hash_funcs(config.expected_elements, m)

        num_shards = config.num_shards or DEFAULT_SHARDS
        bits_per_shard = config.bits_per_shard or DEFAULT_BITS_PER_SHARD
        if not is_power_of_two(num_shards):
            num_shards = next_power_of_2(num_shards)
        if m > num_shards * bits_per_shard:
            bits_per_shard = next_power_of_2(m // num_shards)

        self._lock = threading.RLock()
        self._shards = [0] * num_shards
        self._k = k
        self._m = m
        self._n = 0
        self._shard_mask = num_shards - 1
        self._shard_bits = bits_per_shard
        self._auto_scale = config.auto_scale

    def _positions(self, data: bytes) -> Iterator[Tuple[int, int]]:
        h = _fnv1a64(data)
        for i in range(self._k):
            value = (h + i * h) & _MASK64
            yield value & self._shard_mask, (value >> self._k) % self._shard_bits

    def _grow(self) -> None:
        new_count = len(self._shards) * GROWTH_FACTOR
        new_bits = self._shard_bits * GROWTH_FACTOR
        self._shards = [0] * new_count
        self._m = new_count * new_bits
        self._shard_mask = new_count - 1
        self._shard_bits = new_bits

    def add(self, data: bytes) -> None:
        """Add an element; raises ValueError for empty data."""
        if not data:
            raise ValueError("empty data")
        with self._lock:
            if self._auto_scale and self._n / self._m > GROWTH_THRESHOLD:
                self._grow()
            for shard, bit in self._positions(bytes(data)):
                self._shards[shard] |= 1 << bit
            self._n += 1

    def contains(self, data: bytes) -> bool:
        """Return False if the element was certainly never added."""
        if not data:
            return False
        with self._lock:
            return all(
                self._shards[shard] >> bit & 1 for shard, bit in self._positions(bytes(data))
            )

    def __contains__(self, data: bytes) -> bool:
        return self.contains(data)

    def _estimate_fpp(self, n: int) -> float:
        if n == 0:
            return 0.0
        return (1 - math.exp(-self._k * n / self._m)) ** self._k

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            n = self._n
            return {
                "total_bits": self._m,
                "num_items": n,
                "num_shards": len(self._shards),
                "bits_per_shard": self._shard_bits,
                "num_hash_funcs": self._k,
                "auto_scale": self._auto_scale,
                "estimated_fpp": self._estimate_fpp(n),
                "current_fill_rate": n / self._m,
            }

    def reset(self) -> None:
        """Clear every bit and the element count."""
        with self._lock:
            self._n = 0
            self._shards = [0] * len(self._shards)

    def shard_count(self) -> int:
        with self._lock:
            return len(self._shards)