from __future__ import annotations

"""
Offline diagnostics of a fragment database for one bass style.

Findings are logged and returned, never raised.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Tuple

from .chord_sequence import ChordSequence, ChordSlot, Position
from .fragment import BassStyle, base_chord_types
from .harmony import ChordSymbol, chord_type, pitch_class_name
from .logging_utils import log_event
from .scorer import Scorer
from .timebase import BarRange

if TYPE_CHECKING:
    from .database import FragmentDatabase

logger = logging.getLogger(__name__)

# Notes closer than this (beats) or shorter than this are suspicious
MIN_NOTE_GAP = 0.06
MIN_NOTE_DURATION = 0.06

# Chord types combined two per bar
SPLIT_BAR_CHORD_TYPES = ("", "+", "m", "sus")


@dataclass
class ConsistencyReport:
    style: BassStyle
    # (chord sequence, number of distinct compatible one-bar fragments)
    weak_chords: List[Tuple[str, int]] = field(default_factory=list)
    weak_split_bars: List[Tuple[str, int]] = field(default_factory=list)
    # (fragment id, description)
    suspicious_notes: List[Tuple[str, str]] = field(default_factory=list)
    summaries: List[str] = field(default_factory=list)

    @property
    def is_ok(self) -> bool:
        return not (self.weak_chords or self.weak_split_bars or self.suspicious_notes)


def _one_bar(database: "FragmentDatabase", *chords: Tuple[float, ChordSymbol]) -> ChordSequence:
    slots = [ChordSlot(Position(0, beat), cs) for beat, cs in chords]
    return ChordSequence(BarRange(0, 0), database.time_signature, slots)


def _count_fragments(scorer: Scorer, seq: ChordSequence) -> int:
    return len({a.fragment.id for a in scorer.find_candidates(seq)})


def check_consistency(database: "FragmentDatabase", style: BassStyle) -> ConsistencyReport:
    """Check chord coverage and note artifacts of the one-bar fragments of style."""
    report = ConsistencyReport(style)
    scorer = Scorer(database, styles=(style,))

    for ct in base_chord_types():
        seq = _one_bar(database, (0.0, ChordSymbol(0, ct)))
        n = _count_fragments(scorer, seq)
        if n < 2:
            name = "C" + ct.name
            report.weak_chords.append((name, n))
            logger.warning("style=%s chord %s: only %d compatible one-bar fragment(s)", style.value, name, n)

    bpb = database.time_signature.beats_per_bar
    if bpb >= 2:
        half = float(bpb // 2)
        types = [chord_type(name) for name in SPLIT_BAR_CHORD_TYPES]
        for ct1 in types:
            for ct2 in types:
                for root in range(12):
                    seq = _one_bar(database, (0.0, ChordSymbol(0, ct1)), (half, ChordSymbol(root, ct2)))
                    n = _count_fragments(scorer, seq)
                    if n <= 1:
                        name = f"C{ct1.name} {pitch_class_name(root)}{ct2.name}"
                        report.weak_split_bars.append((name, n))
                        logger.warning("style=%s split bar %s: only %d compatible one-bar fragment(s)", style.value, name, n)

    for f in database.fragments_of(1, style):
        prev = None
        for note in f.phrase:
            if prev is not None and note.start - prev.start < MIN_NOTE_GAP:
                desc = f"note {note} starts {note.start - prev.start:.3f} beat after {prev}"
                report.suspicious_notes.append((f.id, desc))
                logger.warning("style=%s fragment %s: %s", style.value, f.id, desc)
            if note.duration < MIN_NOTE_DURATION:
                desc = f"note {note} lasts {note.duration:.3f} beat"
                report.suspicious_notes.append((f.id, desc))
                logger.warning("style=%s fragment %s: %s", style.value, f.id, desc)
            prev = note

    if report.weak_chords:
        report.summaries.append(f"{len(report.weak_chords)} chord types have fewer than 2 one-bar fragments.")
    if report.weak_split_bars:
        report.summaries.append(f"{len(report.weak_split_bars)} two-chord bars have at most 1 one-bar fragment.")
    if report.suspicious_notes:
        report.summaries.append(f"{len(report.suspicious_notes)} suspicious notes in one-bar fragments.")
    log_event(
        logger,
        "consistency_checked",
        style=style.value,
        weak_chords=len(report.weak_chords),
        weak_split_bars=len(report.weak_split_bars),
        suspicious_notes=len(report.suspicious_notes),
    )
    return report
