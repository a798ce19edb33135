"""Seeds and deterministic random streams.

A ``Seed`` is the canonical 31-bit integer that drives every random
decision in one generation run. Layers never share a stream: each derives
its own sub-seed (``seed.derive("hydrology", "springs")``) so that the
output of one layer does not depend on how many draws another layer made.

Derivation uses fixed primes for the well-known layers and sub-layers and a
djb2 string hash for anything else, fed through a 31-bit avalanche mixer.
Python's built-in ``hash()`` is never used since it is salted per process.
"""

import hashlib
import math
import random
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, ClassVar, TypeVar

from battlemap import errors

T = TypeVar("T")

_MASK_31 = 0x7FFFFFFF

LAYER_PRIMES: dict[str, int] = {
    "geology": 31,
    "topography": 37,
    "hydrology": 41,
    "vegetation": 43,
    "structures": 47,
    "features": 53,
}

SUB_LAYER_PRIMES: dict[str, int] = {
    "formations": 59,
    "weathering": 61,
    "erosion": 67,
    "springs": 71,
    "streams": 73,
    "trees": 79,
    "undergrowth": 83,
    "buildings": 89,
    "roads": 97,
    "hazards": 101,
    "resources": 103,
}

TILE_PRIME = 107
REGION_PRIME = 109


def mix_seed(value: int, prime: int) -> int:
    """Avalanche ``value`` with ``prime`` into a positive 31-bit integer."""
    h = (value * prime) & _MASK_31
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK_31
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK_31
    h ^= h >> 16
    return max(1, h)


def djb2(label: str) -> int:
    """djb2 string hash truncated to 31 bits."""
    h = 5381
    for ch in label:
        h = ((h << 5) + h + ord(ch)) & _MASK_31
    return h


def _label_prime(label: str | int) -> int:
    key = str(label)
    if key in LAYER_PRIMES:
        return LAYER_PRIMES[key]
    if key in SUB_LAYER_PRIMES:
        return SUB_LAYER_PRIMES[key]
    # odd multipliers keep every bit of the parent seed in play
    return djb2(key) | 1


def cantor_pair(x: int, y: int) -> int:
    """Cantor pairing of two non-negative integers."""
    return (x + y) * (x + y + 1) // 2 + y


@dataclass(frozen=True, order=True)
class Seed:
    """Canonical seed in ``[MIN_VALUE, MAX_VALUE]``."""

    value: int

    MIN_VALUE: ClassVar[int] = 1
    MAX_VALUE: ClassVar[int] = 2_147_483_647
    DEFAULT_VALUE: ClassVar[int] = 42

    def __post_init__(self) -> None:
        if not self.MIN_VALUE <= self.value <= self.MAX_VALUE:
            raise errors.seed_out_of_range(self.value, self.MIN_VALUE, self.MAX_VALUE)

    def __int__(self) -> int:
        return self.value

    @classmethod
    def default(cls) -> "Seed":
        return cls(cls.DEFAULT_VALUE)

    @classmethod
    def from_number(cls, number: Any) -> "Seed":
        """Create a seed from an integral number inside the valid range."""
        if isinstance(number, bool) or not isinstance(number, (int, float)):
            raise errors.seed_invalid_type(number)
        if isinstance(number, float):
            if not math.isfinite(number):
                raise errors.seed_not_finite(number)
            if not number.is_integer():
                raise errors.seed_out_of_range(number, cls.MIN_VALUE, cls.MAX_VALUE)
            number = int(number)
        return cls(number)

    @classmethod
    def from_string(cls, text: str) -> "Seed":
        """Hash a string into a seed.

        Whitespace-only strings are rejected. Otherwise the exact characters
        are hashed with SHA-256, so distinct strings give distinct seeds
        barring a 31-bit collision.
        """
        if not isinstance(text, str):
            raise errors.seed_invalid_type(text)
        if not text.strip():
            raise errors.seed_empty_string()

        digest = hashlib.sha256(text.encode("utf-8", "surrogatepass")).digest()
        return cls(int.from_bytes(digest[:8], "big") % cls.MAX_VALUE + 1)

    @classmethod
    def from_input(cls, value: Any) -> "Seed":
        """Normalize a number or string into a seed."""
        if isinstance(value, Seed):
            return value
        if isinstance(value, str):
            return cls.from_string(value)
        return cls.from_number(value)

    def derive(self, *labels: str | int) -> "Seed":
        """Derive an independent sub-seed, one mixing round per label."""
        value = self.value
        for label in labels:
            value = mix_seed(value, _label_prime(label))
        return Seed(value)

    def for_tile(self, x: int, y: int) -> "Seed":
        """Per-tile seed, independent of iteration order."""
        return Seed(mix_seed(self.value ^ (cantor_pair(x, y) & _MASK_31), TILE_PRIME))

    def for_region(self, x: int, y: int, region_size: int = 8) -> "Seed":
        """Seed shared by every tile of the ``region_size`` block containing (x, y)."""
        rx, ry = x // region_size, y // region_size
        return Seed(mix_seed(self.value ^ (cantor_pair(rx, ry) & _MASK_31), REGION_PRIME))

    def rng(self) -> "SeededRandom":
        return SeededRandom(self.value)


class SeededRandom(random.Random):
    """Random stream pinned to a seed.

    Replaying N draws from the same seed always yields the same sequence.
    """

    def __init__(self, seed_value: int) -> None:
        self.seed_value = seed_value
        super().__init__(seed_value)

    def chance(self, probability: float) -> bool:
        """Return True with the given probability."""
        return self.random() < probability

    def pick_weighted(self, options: Sequence[T], weights: Sequence[float]) -> T:
        """Pick one option with the given relative weights."""
        return self.choices(options, weights=weights, k=1)[0]

    def derive(self, label: str | int) -> "SeededRandom":
        """Independent child stream; does not consume draws from this one."""
        return Seed(self.seed_value).derive(label).rng()
