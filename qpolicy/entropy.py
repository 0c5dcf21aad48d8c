"""Entropy providers for the one-ply tie-break."""

import hashlib
import os
from typing import Protocol, Sequence


class EntropyProvider(Protocol):
    def entropy(self) -> bytes: ...


class SystemEntropy:
    """Unpredictable bytes from the operating system."""

    def __init__(self, num_bytes: int = 32):
        self.num_bytes = num_bytes

    def entropy(self) -> bytes:
        return os.urandom(self.num_bytes)


class FixedEntropy:
    """Always returns the same bytes; for tests and replayable decisions."""

    def __init__(self, value: bytes):
        self.value = bytes(value)

    def entropy(self) -> bytes:
        return self.value


def derive_seed(entropy: bytes, move_indices: Sequence[int]) -> int:
    """Bind raw entropy to a specific candidate list.

    SHA-256 over the entropy followed by each move index as 2 big-endian
    bytes; the digest is read as an unsigned integer.
    """
    digest = hashlib.sha256()
    digest.update(entropy)
    for index in move_indices:
        digest.update(int(index).to_bytes(2, "big"))
    return int.from_bytes(digest.digest(), "big")
