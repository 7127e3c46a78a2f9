"""Seeded random number source owned by a KMC simulator."""

from __future__ import annotations

import numpy as np


class RandomSource:
    """
    Sequential uniform draws from a seeded numpy generator.

    Attributes:
        seed: Seed the stream was last started from (None for OS entropy).
    """

    def __init__(self, seed: int | None = None) -> None:
        """
        Initialize the source.

        Args:
            seed: Random seed for reproducibility.
        """
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def uniform(self) -> float:
        """Draw from [0, 1)."""
        return float(self._rng.random())

    def open_uniform(self) -> float:
        """Draw from (0, 1), re-drawing zeros."""
        u = self.uniform()
        while u == 0.0:
            u = self.uniform()
        return u

    def reseed(self, seed: int | None) -> None:
        """Restart the stream from ``seed``."""
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def __repr__(self) -> str:
        """String representation."""
        return f"RandomSource(seed={self.seed})"
