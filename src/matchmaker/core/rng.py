from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")


@dataclass
class RNG:
    seed: int | str

    def __post_init__(self) -> None:
        self._r = random.Random(self.seed)

    def random(self) -> float:
        return self._r.random()

    def expovariate(self, rate: float) -> float:
        return self._r.expovariate(rate)

    def choice(self, seq: Sequence[T]) -> T:
        return self._r.choice(seq)

    def sample(self, population: Sequence[T], k: int) -> list[T]:
        return self._r.sample(population, k)
