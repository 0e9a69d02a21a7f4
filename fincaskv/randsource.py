"""A small PCG-style random source seeded from OS entropy and the clock."""

from __future__ import annotations

import os
import struct
import threading
import time

_MASK64 = (1 << 64) - 1
_MASK32 = (1 << 32) - 1
_MULTIPLIER = 6364136223846793005


def _rotl64(value: int, shift: int) -> int:
    return ((value << shift) | (value >> (64 - shift))) & _MASK64


class SecureRandSource:
    """Thread-safe generator producing 32-bit values from a 64-bit state."""

    def __init__(self, seed: int = 0) -> None:
        self._lock = threading.Lock()
        self._state = seed & _MASK64

    def seed(self, seed: int) -> None:
        """Reset the generator state."""
        with self._lock:
            self._state = seed & _MASK64

    def int63(self) -> int:
        """Return the next non-negative value (always below 2**32)."""
        with self._lock:
            old = self._state
            self._state = (old * _MULTIPLIER + 1) & _MASK64
        xorshifted = (((old >> 18) ^ old) >> 27) & _MASK32
        rot = (old >> 59) & _MASK32
        return ((xorshifted >> rot) | (xorshifted << ((-rot) & 31))) & _MASK32

    def uint64(self) -> int:
        """Combine two draws into one 64-bit value."""
        low = self.int63() >> 31
        high = (self.int63() << 32) & _MASK64
        return low | high

    def random(self) -> float:
        """Return a float in [0, 1) derived from int63 as a 63-bit fraction."""
        while True:
            value = self.int63() / (1 << 63)
            if value < 1.0:
                return value


def new_secure_rand_source() -> SecureRandSource:
    """Create a source seeded from OS entropy mixed with the current time."""
    entropy = os.urandom(8)
    time_nano = time.time_ns() & _MASK64
    seed = struct.unpack("<Q", entropy)[0]
    seed ^= time_nano
    seed = _rotl64(seed, 13) ^ time_nano
    return SecureRandSource(seed)