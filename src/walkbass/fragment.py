from __future__ import annotations

"""
Fragments: immutable 1-4 bar bass-line excerpts cut out of recorded sessions.

A Session is the recorded source (chords + bass phrase). Session.extract_fragments()
cuts every 1, 2, 3 and 4 bar window into a Fragment. Fragments keep their local
chord sequence normalized to bar 0 and a phrase on the same window.
"""

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .chord_sequence import ChordSequence, ChordSlot, Position, RootProfile
from .errors import InvalidArgumentError
from .harmony import ChordSymbol, ChordType, chord_type_compatibility, chord_types
from .phrase import NoteEvent, Phrase
from .timebase import FOUR_FOUR, BarRange, TimeSignature

logger = logging.getLogger(__name__)

SIZE_MIN = 1
SIZE_MAX = 4

# Live-played notes may be this early or late (beats)
NON_QUANTIZED_WINDOW = 0.15
GHOST_NOTE_MAX_DURATION = 0.15

BASS_GOOD_PITCH_RANGE = (28, 52)      # E1-E3
BASS_EXTENDED_PITCH_RANGE = (28, 64)  # E1-E4
IDEAL_CENTRAL_PITCH = 40              # E2


def is_valid_size(size: int) -> bool:
    return SIZE_MIN <= size <= SIZE_MAX


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


class BassStyle(str, Enum):
    WALKING = "walking"
    WALKING_DOUBLE_NOTE = "walking_double_note"
    TWO_FEEL = "two_feel"

    @classmethod
    def parse(cls, text: str) -> "BassStyle":
        key = (text or "").strip().lower().replace("-", "_")
        for style in cls:
            if style.value == key or style.name.lower() == key:
                return style
        raise InvalidArgumentError(f"unknown bass style '{text}'")

    @classmethod
    def from_tags(cls, tags: Iterable[str]) -> "BassStyle":
        lowered = [t.lower() for t in tags]
        if any(t.startswith("2feel") for t in lowered):
            return cls.TWO_FEEL
        if "dbl" in lowered:
            return cls.WALKING_DOUBLE_NOTE
        return cls.WALKING


class Fragment:
    """A 1-4 bar bass-line excerpt with its local harmony. Never mutated after construction.

    Identity is the id "{session}#fr={bar}#sz={size}".
    """

    def __init__(
        self,
        session_id: str,
        session_bar_offset: int,
        chord_sequence: ChordSequence,
        phrase: Phrase,
        style: BassStyle = BassStyle.WALKING,
        target_note: Optional[int] = None,
        tags: Sequence[str] = (),
        first_note_beat_shift: float = 0.0,
    ) -> None:
        if not session_id or not session_id.strip():
            raise InvalidArgumentError("session_id must not be blank")
        if session_bar_offset < 0:
            raise InvalidArgumentError(f"session_bar_offset={session_bar_offset}")
        if not -NON_QUANTIZED_WINDOW - 1e-6 <= first_note_beat_shift <= 0:
            raise InvalidArgumentError(f"first_note_beat_shift={first_note_beat_shift}")
        br = chord_sequence.bar_range
        if br.from_bar != 0:
            raise InvalidArgumentError(f"chord sequence must start at bar 0, got {br}")
        if not is_valid_size(br.size):
            raise InvalidArgumentError(f"invalid fragment size {br.size}")
        first = chord_sequence.first()
        if first is None or first.position != Position(0, 0.0):
            raise InvalidArgumentError(f"chord sequence must have a chord on bar 0 beat 0: {chord_sequence}")
        if target_note is not None and not 0 <= target_note <= 127:
            raise InvalidArgumentError(f"target_note out of range: {target_note}")
        end = chord_sequence.end_beat()
        if any(n.start < 0 or n.start >= end for n in phrase):
            raise InvalidArgumentError(f"phrase notes outside [0;{end}): {phrase}")

        phrase = _fix_octave(_remove_cut_ghost_notes(phrase, end))
        if phrase.is_empty():
            raise InvalidArgumentError("fragment phrase has no notes")

        self._session_id = session_id
        self._session_bar_offset = session_bar_offset
        self._id = f"{session_id}#fr={session_bar_offset}#sz={br.size}"
        self._chord_sequence = chord_sequence
        self._phrase = phrase
        self._style = style
        self._target_note = target_note
        self._tags: Tuple[str, ...] = tuple(t.lower() for t in tags)
        self._first_note_beat_shift = float(first_note_beat_shift)
        # Filled here so that concurrent scorers only read
        self._slices: Dict[ChordSlot, FragmentSlice] = {slot: FragmentSlice(self, slot) for slot in chord_sequence.slots}
        # destination root pitch class -> (score, transposition)
        self._transposability: Dict[int, Tuple[int, int]] = {root: self._compute_transposability(root) for root in range(12)}

    # --- identity ---------------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Fragment):
            return NotImplemented
        return self._id == other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __str__(self) -> str:
        return f"{self._id}{self._chord_sequence}"

    __repr__ = __str__

    # --- attributes -------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def session_bar_offset(self) -> int:
        return self._session_bar_offset

    @property
    def size(self) -> int:
        return self._chord_sequence.bar_range.size

    @property
    def bar_range(self) -> BarRange:
        return self._chord_sequence.bar_range

    @property
    def session_bar_range(self) -> BarRange:
        return BarRange.of_size(self._session_bar_offset, self.size)

    @property
    def chord_sequence(self) -> ChordSequence:
        return self._chord_sequence

    @property
    def time_signature(self) -> TimeSignature:
        return self._chord_sequence.time_signature

    @property
    def phrase(self) -> Phrase:
        return self._phrase

    @property
    def style(self) -> BassStyle:
        return self._style

    @property
    def target_note(self) -> Optional[int]:
        return self._target_note

    @property
    def tags(self) -> Tuple[str, ...]:
        return self._tags

    @property
    def first_note_beat_shift(self) -> float:
        return self._first_note_beat_shift

    @property
    def root_profile(self) -> RootProfile:
        return self._chord_sequence.root_profile()

    @property
    def first_note(self) -> NoteEvent:
        return self._phrase.notes[0]

    @property
    def last_note(self) -> NoteEvent:
        return self._phrase.notes[-1]

    @property
    def first_chord(self) -> ChordSlot:
        return self._chord_sequence.slots[0]

    @property
    def last_chord(self) -> ChordSlot:
        return self._chord_sequence.slots[-1]

    # --- derived ----------------------------------------------------------

    def is_starting_on_chord_bass(self) -> bool:
        return self.first_note.pitch % 12 == self.first_chord.symbol.bass

    def is_ending_on_chord_tone(self) -> bool:
        symbol = self.last_chord.symbol
        pc = self.last_note.pitch % 12
        return symbol.contains_pitch_class(pc) or pc == symbol.bass

    def slice(self, slot: ChordSlot) -> "FragmentSlice":
        if slot not in self._chord_sequence.slots:
            raise InvalidArgumentError(f"{slot} is not a chord of {self._id}")
        return self._slices[slot]

    def transposability(self, dest_root: int) -> int:
        """Score in [0;100] of transposing our phrase so that our first chord root becomes dest_root.

        The transposition direction (up or down) which keeps most notes in the
        usual bass register wins.
        """
        return self._transposability[dest_root % 12][0]

    def _compute_transposability(self, dest_root: int) -> Tuple[int, int]:
        src_root = self.first_chord.symbol.root
        if dest_root == src_root:
            return 100, 0

        up = (dest_root - src_root) % 12
        down = (src_root - dest_root) % 12
        good_up, ext_up, out_up = _count_ranges(self._phrase, up)
        good_down, ext_down, out_down = _count_ranges(self._phrase, -down)
        pitch_avg = _round_half_up(sum(n.pitch for n in self._phrase) / len(self._phrase))

        if out_up == out_down:
            if ext_up == ext_down:
                use_down = abs(pitch_avg - down - IDEAL_CENTRAL_PITCH) < abs(pitch_avg + up - IDEAL_CENTRAL_PITCH)
            else:
                use_down = ext_down < ext_up
        else:
            use_down = out_down < out_up

        good, ext, out = (good_down, ext_down, out_down) if use_down else (good_up, ext_up, out_up)
        transpose = -down if use_down else up
        distance = min(11, abs(pitch_avg + transpose - IDEAL_CENTRAL_PITCH))
        ratio_central = (11 - distance) / 11.0
        ratio_outside = good / (good + out) if good + out else 0.0
        ratio_extended = good / (good + ext) if good + ext else 0.0
        max_factor = 0.49 if out > 0 else 1.0
        score = _round_half_up(max_factor * (60 * ratio_outside + 20 * ratio_extended + 20 * ratio_central))

        logger.debug(
            "transposability %s src_root=%d dest_root=%d transpose=%d good=%d ext=%d out=%d score=%d",
            self._id, src_root, dest_root, transpose, good, ext, out, score,
        )
        return score, transpose

    def required_transposition(self, dest_root: int) -> int:
        """Semitones to move our phrase so that our first chord root becomes dest_root."""
        return self._transposability[dest_root % 12][1]

    def transposed_phrase(self, dest_root: int) -> Phrase:
        return self._phrase.transposed(self.required_transposition(dest_root))

    def transposed_target_note(self, dest_root: int) -> Optional[int]:
        if self._target_note is None:
            return None
        return self._target_note + self.required_transposition(dest_root)


def _count_ranges(phrase: Phrase, transpose: int) -> Tuple[int, int, int]:
    good = ext = out = 0
    for n in phrase:
        p = n.pitch + transpose
        if BASS_GOOD_PITCH_RANGE[0] <= p <= BASS_GOOD_PITCH_RANGE[1]:
            good += 1
        elif BASS_EXTENDED_PITCH_RANGE[0] <= p <= BASS_EXTENDED_PITCH_RANGE[1]:
            ext += 1
        else:
            out += 1
    return good, ext, out


def _remove_cut_ghost_notes(phrase: Phrase, end_beat: float) -> Phrase:
    """Drop a very short last note left by slicing a longer note at the window end."""
    last = phrase.last()
    if (
        last is not None
        and len(phrase) > 1
        and last.duration <= GHOST_NOTE_MAX_DURATION
        and last.end >= end_beat - NON_QUANTIZED_WINDOW - 1e-3
    ):
        return phrase.without([last])
    return phrase


def _fix_octave(phrase: Phrase) -> Phrase:
    """Move the phrase one octave down when it sits too high for a bass line."""
    if phrase.is_empty():
        return phrase
    lo, hi = phrase.pitch_range()
    if lo >= 47 or (lo >= 44 and hi >= 56):
        return phrase.transposed(-12)
    return phrase


class FragmentSlice:
    """The notes a fragment plays under one of its chords.

    Notes are not quantized: the slice window is moved NON_QUANTIZED_WINDOW
    earlier so that anticipated notes belong to the chord they anticipate.
    """

    # Look for the next note that far after the slice end
    NEXT_NOTE_WINDOW = 0.3

    def __init__(self, fragment: Fragment, slot: ChordSlot) -> None:
        self.fragment = fragment
        self.slot = slot
        seq = fragment.chord_sequence
        start, end = seq.beat_range(slot)
        from_offset = NON_QUANTIZED_WINDOW if start >= NON_QUANTIZED_WINDOW else 0.0
        to_offset = NON_QUANTIZED_WINDOW if end - start > NON_QUANTIZED_WINDOW else 0.0
        self.from_beat = start - from_offset
        self.to_beat = end - to_offset

        self.notes: List[NoteEvent] = list(fragment.phrase.slice(self.from_beat, self.to_beat, cut_right=False))
        self.notes_no_ghost = [n for n in self.notes if n.duration > GHOST_NOTE_MAX_DURATION]

        if slot == seq.slots[-1]:
            self.target_note = fragment.target_note
        else:
            nxt = fragment.phrase.slice(self.to_beat, self.to_beat + self.NEXT_NOTE_WINDOW, cut_right=False).first()
            self.target_note = nxt.pitch if nxt is not None else None

        self.harmonic_notes = list(self.notes_no_ghost)
        if self.harmonic_notes and self.target_note is not None:
            last = self.harmonic_notes[-1]
            if (
                last.start >= self.to_beat - 1 - NON_QUANTIZED_WINDOW
                and not slot.symbol.contains_pitch_class(last.pitch % 12)
                and abs(last.pitch - self.target_note) == 1
            ):
                # Semitone approach note into the next chord
                self.harmonic_notes.pop()

    @property
    def chord_type(self) -> ChordType:
        return self.slot.symbol.chord_type

    def interval_durations(self) -> Dict[int, float]:
        """Total duration played per interval above the chord root."""
        root = self.slot.symbol.root
        res: Dict[int, float] = {}
        for n in self.harmonic_notes:
            iv = (n.pitch - root) % 12
            res[iv] = res.get(iv, 0.0) + n.duration
        return res

    def harmonic_compatibility(self, target: ChordSymbol) -> float:
        """[0;100] compatibility of our notes with the target chord, 0 meaning incompatible."""
        return chord_type_compatibility(self.chord_type, target.chord_type, self.interval_durations())

    def __str__(self) -> str:
        return f"{self.fragment.id}:{self.slot}"


@dataclass(frozen=True)
class Session:
    """A recorded bass line over a chord sequence, the material fragments are cut from."""

    id: str
    chord_sequence: ChordSequence
    phrase: Phrase
    tags: Tuple[str, ...] = ()
    target_note: Optional[int] = None
    style: Optional[BassStyle] = None

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise InvalidArgumentError("session id must not be blank")
        if self.chord_sequence.bar_range.from_bar != 0:
            object.__setattr__(self, "chord_sequence", self.chord_sequence.normalized())
        object.__setattr__(self, "tags", tuple(t.lower() for t in self.tags))
        if self.style is None:
            object.__setattr__(self, "style", BassStyle.from_tags(self.tags))

    @property
    def nb_bars(self) -> int:
        return self.chord_sequence.bar_range.size

    def extract_fragments(self, sizes: Iterable[int] = range(SIZE_MIN, SIZE_MAX + 1)) -> List[Fragment]:
        """Cut every window of the given sizes into a Fragment.

        Windows whose start or end is crossed by a sustained note, and windows
        without notes, are skipped.
        """
        seq = self.chord_sequence
        bpb = seq.time_signature.beats_per_bar
        w = NON_QUANTIZED_WINDOW
        res: List[Fragment] = []
        for size in sizes:
            if not is_valid_size(size):
                raise InvalidArgumentError(f"invalid fragment size {size}")
            for bar in range(0, self.nb_bars - size + 1):
                from_beat = float(bar * bpb)
                to_beat = float((bar + size) * bpb)
                if self.phrase.crossing_notes(from_beat, w) or self.phrase.crossing_notes(to_beat, w):
                    continue
                notes = self.phrase.slice(from_beat - w, to_beat - w).shifted(-from_beat)
                first = notes.first()
                if first is None:
                    continue
                shift = 0.0
                if first.start < 0:
                    shift = first.start
                    notes = notes.with_note_replaced(first, replace(first, start=0.0))
                sub_seq = seq.sub_sequence(BarRange.of_size(bar, size), carry_in=True).normalized()
                nxt = self.phrase.slice(to_beat - w, to_beat + w, cut_right=False).first()
                target = nxt.pitch if nxt is not None else self.target_note
                try:
                    res.append(
                        Fragment(self.id, bar, sub_seq, notes, self.style, target, self.tags, shift)
                    )
                except InvalidArgumentError as exc:
                    logger.warning("session %s: skipping bar %d size %d: %s", self.id, bar, size, exc)
        return res


# =============================================================================
# Stub material
# =============================================================================

def base_chord_types() -> List[ChordType]:
    """Catalogue chord types simplified to at most 4 degrees, without duplicates."""
    res: List[ChordType] = []
    for ct in chord_types():
        simple = ct.simplified(4)
        if simple not in res:
            res.append(simple)
    return res


def _root_pitch(pc: int) -> int:
    """Bass register pitch of a pitch class, E1 to Eb2."""
    return 28 + (pc - 4) % 12


def _chord_notes(symbol: ChordSymbol, start: float, end: float, style: BassStyle) -> List[NoteEvent]:
    """A plain line over one chord: bass note first, then chord degrees upward."""
    root = _root_pitch(symbol.root)
    iv = list(symbol.chord_type.intervals) + [12]
    two_feel = style == BassStyle.TWO_FEEL
    degrees = (0, 2) if two_feel else (0, 1, 2, 3)
    step = 2.0 if two_feel else 1.0
    res: List[NoteEvent] = []
    k = 0
    beat = start
    while beat < end - 1e-6:
        length = min(step, end - beat)
        pitch = root + iv[degrees[k % len(degrees)]]
        if k == 0:
            pitch = root + (symbol.bass - symbol.root) % 12
        if style == BassStyle.WALKING_DOUBLE_NOTE:
            half = length / 2
            res.append(NoteEvent(start=beat, pitch=pitch, duration=0.9 * half, velocity=80))
            res.append(NoteEvent(start=beat + half, pitch=pitch, duration=0.9 * half, velocity=80))
        else:
            res.append(NoteEvent(start=beat, pitch=pitch, duration=max(length - 0.1, 0.5 * length), velocity=80))
        beat += length
        k += 1
    return res


def _stub_notes(ct: ChordType, style: BassStyle) -> List[NoteEvent]:
    return _chord_notes(ChordSymbol(0, ct), 0.0, 4.0, style)


def custom_session(
    session_id: str,
    chord_sequence: ChordSequence,
    style: BassStyle,
    target_note: Optional[int] = None,
) -> Session:
    """A generated session following chord_sequence, for chords no recorded material fits."""
    seq = chord_sequence.normalized()
    notes: List[NoteEvent] = []
    for slot in seq.slots:
        start, end = seq.beat_range(slot)
        notes.extend(_chord_notes(slot.symbol, start, end, style))
    first = seq.first()
    if target_note is None and first is not None:
        target_note = _root_pitch(first.symbol.root)
    return Session(
        id=session_id,
        chord_sequence=ChordSequence(seq.bar_range, seq.time_signature, list(seq.slots)),
        phrase=Phrase.of(notes),
        tags=("custom",),
        target_note=target_note,
        style=style,
    )


def stub_sessions(styles: Iterable[BassStyle] = tuple(BassStyle), time_signature: TimeSignature = FOUR_FOUR) -> List[Session]:
    """One-bar C sessions for every base chord type and style."""
    if time_signature != FOUR_FOUR:
        raise InvalidArgumentError(f"stub sessions are only available in 4/4, not {time_signature}")
    res: List[Session] = []
    for style in styles:
        for ct in base_chord_types():
            seq = ChordSequence(BarRange(0, 0), time_signature, [ChordSlot(Position(0, 0.0), ChordSymbol(0, ct))])
            name = ct.name or "maj"
            res.append(
                Session(
                    id=f"stub-{style.value}-{name}",
                    chord_sequence=seq,
                    phrase=Phrase.of(_stub_notes(ct, style)),
                    tags=("stub",),
                    target_note=_root_pitch(0),
                    style=style,
                )
            )
    return res
