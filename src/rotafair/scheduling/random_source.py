"""Injectable sources of uniform random numbers.

The selector never touches a global generator. It draws from a
``RandomSource`` handed to it, so runs are reproducible from a seed and tests
can substitute a fixed sequence.
"""

import math
from abc import ABC, abstractmethod
from typing import Iterable

import numpy as np

# Uniform draws are kept away from 0 and 1 before the double log
_UNIFORM_FLOOR = 1e-20
_UNIFORM_CEILING = 1.0 - 1e-12


class RandomSource(ABC):
    """Abstract source of uniform floats in [0, 1)."""

    @abstractmethod
    def next_float(self) -> float:
        """Draw the next uniform float."""
        pass


class NumpyRandomSource(RandomSource):
    """Seeded source backed by ``numpy.random.Generator``.

    Example:
        >>> source = NumpyRandomSource(seed=42)
        >>> value = source.next_float()
    """

    def __init__(self, seed: int = 42):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def next_float(self) -> float:
        return float(self._rng.random())


class SequenceRandomSource(RandomSource):
    """Replays a fixed sequence of floats, cycling when exhausted."""

    def __init__(self, values: Iterable[float]):
        self.values = list(values)
        if not self.values:
            raise ValueError("SequenceRandomSource needs at least one value")
        self._position = 0

    def next_float(self) -> float:
        value = self.values[self._position % len(self.values)]
        self._position += 1
        return value


def sample_gumbel(source: RandomSource) -> float:
    """Draw from the standard Gumbel distribution by inverse transform."""
    u = min(max(source.next_float(), _UNIFORM_FLOOR), _UNIFORM_CEILING)
    return -math.log(-math.log(u))
