"""Bitcask-style log-structured key-value store with in-memory indexes, a Bloom filter and RESP helpers."""

__version__ = "1.0.0"