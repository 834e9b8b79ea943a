"""Sharded Bloom filter used to skip lookups for keys never stored."""

from __future__ import annotations

import hashlib
import math

SHARD_COUNT = 16


def _as_bytes(key: bytes | str) -> bytes:
    return key.encode() if isinstance(key, str) else bytes(key)


class BloomShard:
    """A single Bloom filter of a fixed number of bits."""

    def __init__(self, bits: int, expected: int) -> None:
        if bits < 1:
            raise ValueError("a Bloom filter needs at least one bit")
        self.num_bits = bits
        ratio = bits / max(expected, 1)
        self.num_hashes = max(1, round(ratio * math.log(2)))
        self._bits = bytearray((bits + 7) // 8)

    def _positions(self, key: bytes) -> list[int]:
        digest = hashlib.blake2b(key, digest_size=16).digest()
        first = int.from_bytes(digest[:8], "little")
        second = int.from_bytes(digest[8:], "little") | 1
        return [(first + step * second) % self.num_bits for step in range(self.num_hashes)]

    def contains(self, key: bytes | str) -> bool:
        """Return False if ``key`` was certainly never inserted."""
        return all(
            self._bits[pos >> 3] & (1 << (pos & 7))
            for pos in self._positions(_as_bytes(key))
        )

    def insert(self, key: bytes | str) -> bool:
        """Add ``key``; return whether it was already reported present."""
        present = True
        for pos in self._positions(_as_bytes(key)):
            mask = 1 << (pos & 7)
            if not self._bits[pos >> 3] & mask:
                present = False
                self._bits[pos >> 3] |= mask
        return present


class ShardedBloom:
    """Bloom filter split across a fixed number of shards chosen by key hash."""

    def __init__(self, size: int, expected: int) -> None:
        self.shard_count = SHARD_COUNT
        bits_per_shard = -(-size // self.shard_count)
        expected_per_shard = -(-expected // self.shard_count)
        self.shards = [
            BloomShard(bits_per_shard, expected_per_shard)
            for _ in range(self.shard_count)
        ]

    def shard_index(self, key: bytes | str) -> int:
        """Return the shard that holds ``key``."""
        digest = hashlib.blake2b(_as_bytes(key), digest_size=8, person=b"shard").digest()
        return int.from_bytes(digest, "little") % self.shard_count

    def contains(self, key: bytes | str) -> bool:
        """Return False if ``key`` was certainly never inserted."""
        return self.shards[self.shard_index(key)].contains(key)

    def insert(self, key: bytes | str) -> bool:
        """Add ``key``; return whether it was already reported present."""
        return self.shards[self.shard_index(key)].insert(key)