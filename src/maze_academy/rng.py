from __future__ import annotations

from typing import Optional, Sequence, TypeVar

import numpy as np

T = TypeVar("T")

# Salts for the private per-trial generators owned by individual agents.
DOUBLE_Q_SALT = 0x9E3779B9
DYNA_Q_SALT = 0x85EBCA6B


class DeterministicRng:
    """Seeded uniform generator used for exploration and tie-breaking.

    Backed by a numpy ``Generator`` so a fixed seed always reproduces the same
    stream of draws.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._gen = np.random.default_rng(None if seed is None else _to_uint32(seed))

    def next(self) -> float:
        """Uniform float in [0, 1)."""
        return float(self._gen.random())

    def int(self, low: int, high_inclusive: int) -> int:
        if high_inclusive < low:
            raise ValueError(f"empty range [{low}, {high_inclusive}]")
        return int(self._gen.integers(low, high_inclusive + 1))

    def pick(self, items: Sequence[T]) -> T:
        if len(items) == 0:
            raise ValueError("cannot pick from an empty sequence")
        return items[int(self._gen.integers(0, len(items)))]

    @classmethod
    def derive(cls, seed: int, salt: int) -> "DeterministicRng":
        """Private generator for algorithm-internal randomness, reseeded per trial."""
        return cls(_to_uint32(seed) ^ salt)


def _to_uint32(seed: int) -> int:
    return int(seed) & 0xFFFFFFFF
