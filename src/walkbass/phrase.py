from __future__ import annotations

"""
Note events and immutable phrases.

All positions are in beats, relative to the start of the phrase window.
"""

from dataclasses import dataclass, field, replace
from typing import Iterable, Iterator, List, Optional, Tuple

from .errors import InvalidArgumentError
from .harmony import format_pitch


@dataclass(frozen=True, order=True)
class NoteEvent:
    start: float
    pitch: int
    duration: float = 1.0
    velocity: int = 64

    def __post_init__(self) -> None:
        if not 0 <= self.pitch <= 127:
            raise InvalidArgumentError(f"pitch out of range: {self.pitch}")
        if self.duration <= 0:
            raise InvalidArgumentError(f"duration must be > 0, got {self.duration}")
        if not 0 <= self.velocity <= 127:
            raise InvalidArgumentError(f"velocity out of range: {self.velocity}")

    @property
    def end(self) -> float:
        return self.start + self.duration

    def shifted(self, beats: float) -> "NoteEvent":
        return replace(self, start=self.start + beats)

    def transposed(self, semitones: int) -> "NoteEvent":
        return replace(self, pitch=self.pitch + semitones)

    def __str__(self) -> str:
        return f"{format_pitch(self.pitch)}@{self.start:.2f}({self.duration:.2f})"


@dataclass(frozen=True)
class Phrase:
    """Time-ordered immutable collection of NoteEvents."""

    notes: Tuple[NoteEvent, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "notes", tuple(sorted(self.notes)))

    @classmethod
    def of(cls, notes: Iterable[NoteEvent]) -> "Phrase":
        return cls(tuple(notes))

    def __len__(self) -> int:
        return len(self.notes)

    def __iter__(self) -> Iterator[NoteEvent]:
        return iter(self.notes)

    def __getitem__(self, idx: int) -> NoteEvent:
        return self.notes[idx]

    def is_empty(self) -> bool:
        return not self.notes

    def first(self) -> Optional[NoteEvent]:
        return self.notes[0] if self.notes else None

    def last(self) -> Optional[NoteEvent]:
        return self.notes[-1] if self.notes else None

    def end(self) -> float:
        return max((n.end for n in self.notes), default=0.0)

    def pitch_range(self) -> Tuple[int, int]:
        if not self.notes:
            raise InvalidArgumentError("empty phrase has no pitch range")
        pitches = [n.pitch for n in self.notes]
        return min(pitches), max(pitches)

    def slice(self, from_beat: float, to_beat: float, cut_right: bool = True) -> "Phrase":
        """Notes starting in [from_beat, to_beat). Positions are unchanged.

        With cut_right, notes lasting beyond to_beat are shortened to end there.
        """
        if to_beat < from_beat:
            raise InvalidArgumentError(f"invalid beat range [{from_beat};{to_beat}]")
        res: List[NoteEvent] = []
        for n in self.notes:
            if from_beat <= n.start < to_beat:
                if cut_right and n.end > to_beat:
                    n = replace(n, duration=to_beat - n.start)
                res.append(n)
        return Phrase(tuple(res))

    def shifted(self, beats: float) -> "Phrase":
        if beats == 0:
            return self
        return Phrase(tuple(n.shifted(beats) for n in self.notes))

    def transposed(self, semitones: int) -> "Phrase":
        if semitones == 0:
            return self
        return Phrase(tuple(n.transposed(semitones) for n in self.notes))

    def without(self, removed: Iterable[NoteEvent]) -> "Phrase":
        drop = set(removed)
        return Phrase(tuple(n for n in self.notes if n not in drop))

    def with_note_replaced(self, old: NoteEvent, new: NoteEvent) -> "Phrase":
        return Phrase(tuple(new if n == old else n for n in self.notes))

    def crossing_notes(self, beat: float, window: float = 0.0) -> List[NoteEvent]:
        """Notes sounding across `beat`, ignoring overlaps up to `window` on either side."""
        return [n for n in self.notes if n.start < beat - window and n.end > beat + window]

    def equals_as_intervals(self, other: "Phrase", window: float, compare_durations: bool = False) -> bool:
        """True if both phrases have the same relative shape, possibly transposed.

        Note positions must match within +/- window, durations (if compared)
        within 2 * window, and every consecutive pitch delta must be equal.
        """
        if len(self.notes) != len(other.notes):
            return False
        prev_a: Optional[NoteEvent] = None
        prev_b: Optional[NoteEvent] = None
        for a, b in zip(self.notes, other.notes):
            if abs(a.start - b.start) > window:
                return False
            if compare_durations and abs(a.duration - b.duration) > 2 * window:
                return False
            if prev_a is not None and prev_b is not None:
                if a.pitch - prev_a.pitch != b.pitch - prev_b.pitch:
                    return False
            prev_a, prev_b = a, b
        return True

    def __str__(self) -> str:
        return "[" + " ".join(str(n) for n in self.notes) + "]"
