from __future__ import annotations

"""
Chord sequences over a bar range, their root profile, and the usable-bar
extension used as a tiling target.

A chord sequence is immutable once built. Derived sequences (sub ranges,
shifts, merges) are new instances.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Iterator, List, Optional, Tuple

from .errors import InvalidArgumentError
from .harmony import ChordSymbol
from .timebase import FOUR_FOUR, BarRange, TimeSignature

# Ordered (beat offset from sequence start, root pitch class relative to the first chord root) pairs
RootProfile = Tuple[Tuple[float, int], ...]


@dataclass(frozen=True, order=True)
class Position:
    bar: int
    beat: float = 0.0

    def to_beats(self, ts: TimeSignature) -> float:
        return self.bar * ts.beats_per_bar + self.beat

    def shifted(self, bars: int) -> "Position":
        return Position(self.bar + bars, self.beat)

    def __str__(self) -> str:
        beat = int(self.beat) if float(self.beat).is_integer() else self.beat
        return f"{self.bar}:{beat}"


@dataclass(frozen=True)
class ChordSlot:
    position: Position
    symbol: ChordSymbol

    def shifted(self, bars: int) -> "ChordSlot":
        return ChordSlot(self.position.shifted(bars), self.symbol)

    def __str__(self) -> str:
        return f"{self.symbol}@{self.position}"


class ChordSequence:
    """Ordered chord slots over an inclusive bar range and one time signature."""

    def __init__(
        self,
        bar_range: BarRange,
        time_signature: TimeSignature = FOUR_FOUR,
        slots: Iterable[ChordSlot] = (),
    ) -> None:
        ordered = sorted(slots, key=lambda s: s.position)
        seen = set()
        for s in ordered:
            if not bar_range.contains(s.position.bar):
                raise InvalidArgumentError(f"chord {s} outside bar range {bar_range}")
            if not 0 <= s.position.beat < time_signature.beats_per_bar:
                raise InvalidArgumentError(f"chord {s} has an invalid beat for {time_signature}")
            if s.position in seen:
                raise InvalidArgumentError(f"two chords at position {s.position}")
            seen.add(s.position)
        self._bar_range = bar_range
        self._ts = time_signature
        self._slots: Tuple[ChordSlot, ...] = tuple(ordered)
        self._root_profile: Optional[RootProfile] = None

    @classmethod
    def parse(cls, text: str, time_signature: TimeSignature = FOUR_FOUR, start_bar: int = 0) -> "ChordSequence":
        """Build a sequence from text such as "Cm7 F7 Bbmaj7,G7".

        Whitespace separates bars. Commas split a bar into equal parts, "%"
        repeats the previous bar's last chord.
        """
        bars = [tok for tok in (text or "").replace("|", " ").split() if tok]
        if not bars:
            raise InvalidArgumentError("no chords in chord sequence text")
        slots: List[ChordSlot] = []
        bpb = time_signature.beats_per_bar
        for i, tok in enumerate(bars):
            if tok == "%":
                continue
            parts = [p for p in tok.split(",") if p]
            for j, part in enumerate(parts):
                beat = float(j * bpb) / len(parts)
                slots.append(ChordSlot(Position(start_bar + i, beat), ChordSymbol.parse(part)))
        if not slots or slots[0].position != Position(start_bar, 0.0):
            raise InvalidArgumentError("chord sequence text must start with a chord")
        return cls(BarRange(start_bar, start_bar + len(bars) - 1), time_signature, slots)

    @property
    def bar_range(self) -> BarRange:
        return self._bar_range

    @property
    def time_signature(self) -> TimeSignature:
        return self._ts

    @property
    def slots(self) -> Tuple[ChordSlot, ...]:
        return self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[ChordSlot]:
        return iter(self._slots)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ChordSequence):
            return NotImplemented
        return (self._bar_range, self._ts, self._slots) == (other._bar_range, other._ts, other._slots)

    def __hash__(self) -> int:
        return hash((self._bar_range, self._ts, self._slots))

    def first(self) -> Optional[ChordSlot]:
        return self._slots[0] if self._slots else None

    def start_beat(self) -> float:
        return float(self._bar_range.from_bar * self._ts.beats_per_bar)

    def end_beat(self) -> float:
        return float((self._bar_range.to_bar + 1) * self._ts.beats_per_bar)

    def chord_at(self, position: Position) -> Optional[ChordSlot]:
        """The slot active at position: the last one at or before it."""
        res = None
        for s in self._slots:
            if s.position <= position:
                res = s
            else:
                break
        return res

    def beat_range(self, slot: ChordSlot) -> Tuple[float, float]:
        """Absolute [start, end) beats of slot, ending at the next chord or the sequence end."""
        idx = self._slots.index(slot)
        start = slot.position.to_beats(self._ts)
        if idx + 1 < len(self._slots):
            end = self._slots[idx + 1].position.to_beats(self._ts)
        else:
            end = self.end_beat()
        return start, end

    def root_profile(self) -> RootProfile:
        if self._root_profile is None:
            if not self._slots:
                self._root_profile = ()
            else:
                first_root = self._slots[0].symbol.root
                origin = self.start_beat()
                self._root_profile = tuple(
                    (s.position.to_beats(self._ts) - origin, (s.symbol.root - first_root) % 12) for s in self._slots
                )
        return self._root_profile

    def _check_sub_range(self, bar_range: BarRange) -> None:
        if not self._bar_range.contains(bar_range):
            raise InvalidArgumentError(f"{bar_range} is not inside {self._bar_range}")

    def _sub_slots(self, bar_range: BarRange, carry_in: bool) -> List[ChordSlot]:
        self._check_sub_range(bar_range)
        res = [s for s in self._slots if bar_range.contains(s.position.bar)]
        start = Position(bar_range.from_bar, 0.0)
        if carry_in and (not res or res[0].position != start):
            active = self.chord_at(start)
            if active is not None:
                res.insert(0, ChordSlot(start, active.symbol))
        return res

    def sub_sequence(self, bar_range: BarRange, carry_in: bool = False) -> "ChordSequence":
        """Chords inside bar_range. With carry_in, the chord active at the range start is added there."""
        return ChordSequence(bar_range, self._ts, self._sub_slots(bar_range, carry_in))

    def shifted(self, bars: int) -> "ChordSequence":
        return ChordSequence(self._bar_range.shifted(bars), self._ts, [s.shifted(bars) for s in self._slots])

    def normalized(self) -> "ChordSequence":
        """Same chords, shifted so the sequence starts at bar 0."""
        return self.shifted(-self._bar_range.from_bar)

    def _merged_slots(self, other: "ChordSequence") -> Tuple[BarRange, List[ChordSlot]]:
        if other.time_signature != self._ts:
            raise InvalidArgumentError(f"can't merge {self._ts} and {other.time_signature} chord sequences")
        slots = {s.position: s for s in other.slots}
        slots.update({s.position: s for s in self._slots})
        return self._bar_range.union(other.bar_range), list(slots.values())

    def merged(self, other: "ChordSequence") -> "ChordSequence":
        """Union of both sequences. Our chords win on identical positions."""
        bar_range, slots = self._merged_slots(other)
        return ChordSequence(bar_range, self._ts, slots)

    def __str__(self) -> str:
        return f"{self._bar_range}[" + " ".join(str(s) for s in self._slots) + "]"

    __repr__ = __str__


class UsableChordSequence(ChordSequence):
    """A chord sequence plus the subset of its bars usable for fragment placement."""

    def __init__(
        self,
        bar_range: BarRange,
        time_signature: TimeSignature = FOUR_FOUR,
        slots: Iterable[ChordSlot] = (),
        usable_bars: Optional[Iterable[int]] = None,
    ) -> None:
        super().__init__(bar_range, time_signature, slots)
        usable = frozenset(bar_range) if usable_bars is None else frozenset(usable_bars)
        outside = sorted(b for b in usable if not bar_range.contains(b))
        if outside:
            raise InvalidArgumentError(f"usable bars {outside} outside {bar_range}")
        self._usable: FrozenSet[int] = usable

    @classmethod
    def from_sequence(cls, seq: ChordSequence, usable_bars: Optional[Iterable[int]] = None) -> "UsableChordSequence":
        return cls(seq.bar_range, seq.time_signature, seq.slots, usable_bars)

    @property
    def usable_bars(self) -> FrozenSet[int]:
        return self._usable

    def is_usable(self, bars: "int | BarRange") -> bool:
        """A range is usable only if every bar in it is usable."""
        if isinstance(bars, BarRange):
            return all(b in self._usable for b in bars)
        return bars in self._usable

    def usable_ranges(self) -> List[BarRange]:
        """Maximal contiguous ranges of usable bars, in order."""
        res: List[BarRange] = []
        start = None
        for bar in self.bar_range:
            if bar in self._usable:
                if start is None:
                    start = bar
            elif start is not None:
                res.append(BarRange(start, bar - 1))
                start = None
        if start is not None:
            res.append(BarRange(start, self.bar_range.to_bar))
        return res

    def sub_sequence(self, bar_range: BarRange, carry_in: bool = False) -> "UsableChordSequence":
        slots = self._sub_slots(bar_range, carry_in)
        return UsableChordSequence(bar_range, self.time_signature, slots, (b for b in self._usable if bar_range.contains(b)))

    def shifted(self, bars: int) -> "UsableChordSequence":
        return UsableChordSequence(
            self.bar_range.shifted(bars),
            self.time_signature,
            [s.shifted(bars) for s in self.slots],
            (b + bars for b in self._usable),
        )

    def normalized(self) -> "UsableChordSequence":
        return self.shifted(-self.bar_range.from_bar)

    def merged(self, other: ChordSequence, add_usable_bars: bool = True) -> "UsableChordSequence":
        """Union of both sequences.

        With add_usable_bars, bars usable in other (all of its bars for a plain
        ChordSequence) become usable too.
        """
        bar_range, slots = self._merged_slots(other)
        usable = set(self._usable)
        if add_usable_bars:
            if isinstance(other, UsableChordSequence):
                usable |= other.usable_bars
            else:
                usable |= set(other.bar_range)
        return UsableChordSequence(bar_range, self.time_signature, slots, usable)

    def __eq__(self, other: object) -> bool:
        res = super().__eq__(other)
        if res is NotImplemented or not res:
            return res
        return self._usable == getattr(other, "_usable", frozenset(other.bar_range))  # type: ignore[union-attr]

    def __hash__(self) -> int:
        return hash((super().__hash__(), self._usable))
