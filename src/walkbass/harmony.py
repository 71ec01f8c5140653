"""Harmony primitives: pitch classes, the chord-type catalogue and chord symbols.

Also hosts the chord-type compatibility oracle used by the scorer: given the
chord type a fragment was recorded on, the chord type it should now play and
(optionally) how long each interval is actually played, it rates how well
the recorded line fits the new chord on a [0;100] scale, 0 meaning
incompatible.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ChordSymbolError, InvalidArgumentError

_NOTE_TO_SEMI = {
    "C": 0, "B#": 0,
    "C#": 1, "Db": 1,
    "D": 2,
    "D#": 3, "Eb": 3,
    "E": 4, "Fb": 4,
    "F": 5, "E#": 5,
    "F#": 6, "Gb": 6,
    "G": 7,
    "G#": 8, "Ab": 8,
    "A": 9,
    "A#": 10, "Bb": 10,
    "B": 11, "Cb": 11,
}

_NOTE_NAMES = ["C", "Db", "D", "Eb", "E", "F", "Gb", "G", "Ab", "A", "Bb", "B"]


def pitch_class(name: str) -> int:
    """Return the pitch class (0-11) of a note name such as 'F#' or 'Bb'."""
    raw = (name or "").strip()
    if not raw:
        raise InvalidArgumentError("empty note name")
    base = raw[0].upper()
    acc = raw[1:].strip().replace("♭", "b").replace("♯", "#")
    key = base + acc[:1] if acc[:1] in ("b", "#") else base
    if key not in _NOTE_TO_SEMI:
        raise InvalidArgumentError(f"unknown note name '{name}'")
    return _NOTE_TO_SEMI[key]


def pitch_class_name(pc: int) -> str:
    return _NOTE_NAMES[pc % 12]


def format_pitch(pitch: int) -> str:
    """MIDI pitch as a note name with octave, C4=60."""
    return f"{_NOTE_NAMES[pitch % 12]}{(pitch // 12) - 1}"


# =============================================================================
# Chord types
# =============================================================================

MAJOR, MINOR, SUS = "major", "minor", "sus"


@dataclass(frozen=True)
class ChordType:
    """A chord quality.

    `intervals` are semitones above the root in degree order: root,
    third (or fourth for sus chords), fifth, then 6th/7th, then extensions.
    """

    name: str
    intervals: Tuple[int, ...]
    family: str

    @property
    def nb_degrees(self) -> int:
        return len(self.intervals)

    def equals_sixth_major_seventh(self, other: "ChordType") -> bool:
        """True if both types are equal once the 6th and major 7th degrees are considered the same (C6=CM7, Cm69=CmM79)."""
        def _norm(intervals: Iterable[int]) -> frozenset:
            return frozenset(11 if i == 9 else i for i in intervals)

        if self.nb_degrees != other.nb_degrees:
            return False
        return _norm(self.intervals) == _norm(other.intervals)

    def simplified(self, nb_degrees: int) -> "ChordType":
        """Catalogue type made of our first `nb_degrees` degrees, or self when none matches."""
        for n in range(min(nb_degrees, self.nb_degrees), 2, -1):
            found = _BY_INTERVALS.get(frozenset(self.intervals[:n]))
            if found is not None:
                return found
        return self

    def __str__(self) -> str:
        return self.name


_CATALOGUE: List[ChordType] = [
    ChordType("", (0, 4, 7), MAJOR),
    ChordType("+", (0, 4, 8), MAJOR),
    ChordType("6", (0, 4, 7, 9), MAJOR),
    ChordType("M7", (0, 4, 7, 11), MAJOR),
    ChordType("7", (0, 4, 7, 10), MAJOR),
    ChordType("7b5", (0, 4, 6, 10), MAJOR),
    ChordType("7#5", (0, 4, 8, 10), MAJOR),
    ChordType("69", (0, 4, 7, 9, 2), MAJOR),
    ChordType("M9", (0, 4, 7, 11, 2), MAJOR),
    ChordType("9", (0, 4, 7, 10, 2), MAJOR),
    ChordType("7b9", (0, 4, 7, 10, 1), MAJOR),
    ChordType("7#9", (0, 4, 7, 10, 3), MAJOR),
    ChordType("7#11", (0, 4, 7, 10, 6), MAJOR),
    ChordType("13", (0, 4, 7, 10, 2, 9), MAJOR),
    ChordType("m", (0, 3, 7), MINOR),
    ChordType("m6", (0, 3, 7, 9), MINOR),
    ChordType("m7", (0, 3, 7, 10), MINOR),
    ChordType("mM7", (0, 3, 7, 11), MINOR),
    ChordType("m7b5", (0, 3, 6, 10), MINOR),
    ChordType("dim", (0, 3, 6), MINOR),
    ChordType("dim7", (0, 3, 6, 9), MINOR),
    ChordType("m9", (0, 3, 7, 10, 2), MINOR),
    ChordType("m11", (0, 3, 7, 10, 2, 5), MINOR),
    ChordType("sus", (0, 5, 7), SUS),
    ChordType("7sus", (0, 5, 7, 10), SUS),
    ChordType("9sus", (0, 5, 7, 10, 2), SUS),
    ChordType("2", (0, 2, 7), SUS),
]

_BY_NAME: Dict[str, ChordType] = {ct.name: ct for ct in _CATALOGUE}
_BY_INTERVALS: Dict[frozenset, ChordType] = {}
for _ct in _CATALOGUE:
    _BY_INTERVALS.setdefault(frozenset(_ct.intervals), _ct)

_ALIASES = {
    "maj": "", "M": "", "major": "",
    "aug": "+", "#5": "+",
    "maj7": "M7", "Maj7": "M7", "ma7": "M7", "j7": "M7", "Δ": "M7", "7M": "M7",
    "maj9": "M9", "Maj9": "M9",
    "6/9": "69",
    "min": "m", "mi": "m", "-": "m",
    "min6": "m6", "-6": "m6",
    "min7": "m7", "mi7": "m7", "-7": "m7",
    "mmaj7": "mM7", "m7M": "mM7", "-maj7": "mM7",
    "ø": "m7b5", "ø7": "m7b5", "-7b5": "m7b5",
    "o": "dim", "°": "dim",
    "o7": "dim7", "°7": "dim7",
    "min9": "m9", "-9": "m9",
    "sus4": "sus", "7sus4": "7sus", "9sus4": "9sus",
    "sus2": "2",
}


def chord_types() -> List[ChordType]:
    """The full supported chord-type catalogue."""
    return list(_CATALOGUE)


def chord_type(name: str) -> ChordType:
    """Look up a chord type by suffix (aliases accepted)."""
    key = _ALIASES.get(name, name)
    try:
        return _BY_NAME[key]
    except KeyError:
        raise ChordSymbolError(f"unknown chord type '{name}'") from None


# =============================================================================
# Chord symbols
# =============================================================================

_CHORD_RE = re.compile(r"^\s*([A-Ga-g][#b♯♭]?)([^/\s]*)(?:/([A-Ga-g][#b♯♭]?))?\s*$")


@dataclass(frozen=True)
class ChordSymbol:
    root: int
    chord_type: ChordType
    bass: int = -1

    def __post_init__(self) -> None:
        if not 0 <= self.root <= 11:
            raise InvalidArgumentError(f"root must be a pitch class, got {self.root}")
        if self.bass == -1:
            object.__setattr__(self, "bass", self.root)
        elif not 0 <= self.bass <= 11:
            raise InvalidArgumentError(f"bass must be a pitch class, got {self.bass}")

    @classmethod
    def parse(cls, text: str) -> "ChordSymbol":
        """Parse 'Cm7', 'F#7b9', 'Bbmaj7/D'..."""
        m = _CHORD_RE.match(text or "")
        if not m:
            raise ChordSymbolError(f"invalid chord symbol '{text}'")
        root = pitch_class(m.group(1))
        ct = chord_type(m.group(2))
        bass = pitch_class(m.group(3)) if m.group(3) else root
        return cls(root, ct, bass)

    @property
    def name(self) -> str:
        res = pitch_class_name(self.root) + self.chord_type.name
        if self.bass != self.root:
            res += "/" + pitch_class_name(self.bass)
        return res

    def pitch_classes(self) -> List[int]:
        return [(self.root + i) % 12 for i in self.chord_type.intervals]

    def contains_pitch_class(self, pc: int) -> bool:
        return (pc - self.root) % 12 in self.chord_type.intervals

    def transposed(self, semitones: int) -> "ChordSymbol":
        return ChordSymbol((self.root + semitones) % 12, self.chord_type, (self.bass + semitones) % 12)

    def __str__(self) -> str:
        return self.name


# =============================================================================
# Compatibility oracle
# =============================================================================

# For each degree (semitones above root): the neighbour intervals which clash
# with it when actually played. Intervals that are themselves degrees of the
# target chord never clash.
INCOMPATIBLE_NEIGHBORS: Dict[int, frozenset] = {
    0: frozenset(),
    1: frozenset({2}),
    2: frozenset({1, 3}),
    3: frozenset({4}),
    4: frozenset({3}),
    5: frozenset({4}),
    6: frozenset({7}),
    7: frozenset({6, 8}),
    8: frozenset({7}),
    9: frozenset({8, 10}),
    10: frozenset({11}),
    11: frozenset({10}),
}

# A degree played this many times longer than its clashing notes wins
DEGREE_DOMINANCE_RATIO = 1.5


def chord_type_compatibility(
    src: ChordType,
    target: ChordType,
    interval_durations: Optional[Mapping[int, float]] = None,
) -> float:
    """Rate how well material recorded over `src` fits `target`.

    interval_durations maps an interval above the source root to the total
    number of beats it is played. When None, every source chord tone is
    assumed played for one beat.

    Returns 100 for equal types (6th == major 7th), 0 if src has more
    degrees than target or if a target degree is dominated by clashing
    notes, otherwise 100 minus 10 per target degree never played (15 for
    the root).
    """
    if src.equals_sixth_major_seventh(target):
        return 100.0
    if src.nb_degrees > target.nb_degrees:
        return 0.0

    durations = dict(interval_durations) if interval_durations is not None else {i: 1.0 for i in src.intervals}
    target_set = frozenset(target.intervals)
    res = 100.0
    for degree in target.intervals:
        clashing = INCOMPATIBLE_NEIGHBORS[degree] - target_set
        clash_dur = sum(durations.get(i, 0.0) for i in clashing)
        degree_dur = durations.get(degree, 0.0)
        if clash_dur > 0 and degree_dur < DEGREE_DOMINANCE_RATIO * clash_dur:
            return 0.0
        if degree_dur == 0:
            res -= 15 if degree == 0 else 10
    return max(1.0, min(100.0, res))
