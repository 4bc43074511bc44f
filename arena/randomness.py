"""The random source threaded through every engine call."""

from __future__ import annotations

import random
from typing import Protocol, Sequence, TypeVar

T = TypeVar("T")


class RandomSource(Protocol):
    """Anything with ``random() -> float`` in ``[0, 1)``.

    :class:`random.Random` satisfies this, and tests pass small stubs that
    replay fixed draws.
    """

    def random(self) -> float: ...


def default_source() -> RandomSource:
    return random.Random()


def pick_index(rng: RandomSource, count: int) -> int:
    if count <= 0:
        raise ValueError("cannot pick from an empty collection")
    return min(count - 1, int(rng.random() * count))


def pick(rng: RandomSource, options: Sequence[T]) -> T:
    return options[pick_index(rng, len(options))]


__all__ = ["RandomSource", "default_source", "pick", "pick_index"]
