"""
SLOTENGINE — Uniform Sources

Every random choice in the engine goes through a *uniform source*: any
object with a `random()` method returning a float in [0, 1).
`random.Random` satisfies it, as does the seeded `Mulberry32` below, which
drives catalog construction so a master seed reproduces the same deck and
the same scenario grids.
"""

from __future__ import annotations

import random as _random
from typing import Protocol, Sequence, TypeVar, runtime_checkable

T = TypeVar("T")

UINT32_MASK = 0xFFFFFFFF


@runtime_checkable
class UniformSource(Protocol):
    def random(self) -> float:
        ...


class Mulberry32:
    """Mulberry32 PRNG — 32-bit state, fast, deterministic."""

    def __init__(self, seed: int = 0):
        self.state = seed & UINT32_MASK

    def random(self) -> float:
        """Float in [0, 1)."""
        self.state = (self.state + 0x6D2B79F5) & UINT32_MASK
        t = self.state
        t = ((t ^ (t >> 15)) * (t | 1)) & UINT32_MASK
        t ^= (t + (((t ^ (t >> 7)) * (t | 61)) & UINT32_MASK)) & UINT32_MASK
        return ((t ^ (t >> 14)) & UINT32_MASK) / 4294967296


def system_source() -> UniformSource:
    """Unseeded source for per-call draws."""
    return _random.Random()


def pick_index(source: UniformSource, size: int) -> int:
    """Uniform index in [0, size). Clamped in case a source returns 1.0."""
    if size <= 0:
        raise ValueError("Cannot pick from an empty range")
    return min(int(source.random() * size), size - 1)


def pick(items: Sequence[T], source: UniformSource) -> T:
    return items[pick_index(source, len(items))]


def derive_seed(source: UniformSource) -> int:
    """Independent 32-bit seed drawn from a source."""
    return int(source.random() * UINT32_MASK) & UINT32_MASK


def shuffle_in_place(items: list, source: UniformSource) -> None:
    """Fisher–Yates, walking from the tail."""
    for i in range(len(items) - 1, 0, -1):
        j = pick_index(source, i + 1)
        items[i], items[j] = items[j], items[i]
