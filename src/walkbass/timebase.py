from __future__ import annotations

"""
Timebase utilities: ticks <-> beats, time signatures and bar ranges.

Beats are natural beats (quarter notes for x/4 meters). PPQ is ticks per
quarter note, as stored in MIDI files.
"""

from dataclasses import dataclass
from typing import Iterator

from .errors import InvalidArgumentError


def ticks_to_beats(ticks: int, ppq: int) -> float:
    """Convert absolute ticks to beats."""
    return float(ticks) / float(ppq)


def beats_to_ticks(beats: float, ppq: int) -> int:
    """Convert beats to integer ticks (rounded)."""
    return int(round(beats * ppq))


@dataclass(frozen=True)
class TimeSignature:
    beats_per_bar: int = 4

    def __post_init__(self) -> None:
        if self.beats_per_bar < 1:
            raise InvalidArgumentError(f"beats_per_bar must be >= 1, got {self.beats_per_bar}")

    def __str__(self) -> str:
        return f"{self.beats_per_bar}/4"


FOUR_FOUR = TimeSignature(4)


@dataclass(frozen=True, order=True)
class BarRange:
    """Inclusive range of bar indexes."""

    from_bar: int
    to_bar: int

    def __post_init__(self) -> None:
        if self.from_bar < 0 or self.to_bar < self.from_bar:
            raise InvalidArgumentError(f"invalid bar range [{self.from_bar};{self.to_bar}]")

    @classmethod
    def of_size(cls, from_bar: int, size: int) -> "BarRange":
        return cls(from_bar, from_bar + size - 1)

    @property
    def size(self) -> int:
        return self.to_bar - self.from_bar + 1

    def contains(self, other: "int | BarRange") -> bool:
        if isinstance(other, BarRange):
            return self.from_bar <= other.from_bar and other.to_bar <= self.to_bar
        return self.from_bar <= other <= self.to_bar

    def intersects(self, other: "BarRange") -> bool:
        return self.from_bar <= other.to_bar and other.from_bar <= self.to_bar

    def union(self, other: "BarRange") -> "BarRange":
        return BarRange(min(self.from_bar, other.from_bar), max(self.to_bar, other.to_bar))

    def shifted(self, offset: int) -> "BarRange":
        return BarRange(self.from_bar + offset, self.to_bar + offset)

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.from_bar, self.to_bar + 1))

    def __len__(self) -> int:
        return self.size

    def __str__(self) -> str:
        return f"[{self.from_bar};{self.to_bar}]"
