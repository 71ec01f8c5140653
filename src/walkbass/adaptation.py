from __future__ import annotations

"""
Fragment adaptations: a fragment placed over a slice of the target chord
sequence, plus the phrase adapters which turn it into playable notes.
"""

from dataclasses import replace
from typing import Optional, Tuple

from .chord_sequence import ChordSequence
from .errors import InvalidArgumentError
from .fragment import Fragment
from .phrase import Phrase
from .score import ZERO, CompatibilityScore
from .timebase import BarRange


class PhraseAdapter:
    """Turns an adaptation into notes for its target bars.

    phrase() returns notes at absolute target positions (beats from bar 0 of
    the target sequence). target_pitch() is the adapted fragment target note,
    or None.
    """

    def phrase(self, adaptation: "FragmentAdaptation") -> Phrase:
        raise NotImplementedError

    def target_pitch(self, adaptation: "FragmentAdaptation") -> Optional[int]:
        raise NotImplementedError


class TransposerPhraseAdapter(PhraseAdapter):
    """Transpose the fragment phrase to the target root, keeping its original timing."""

    def phrase(self, adaptation: "FragmentAdaptation") -> Phrase:
        fragment = adaptation.fragment
        root = adaptation.first_target_root
        p = fragment.transposed_phrase(root).shifted(adaptation.chord_sequence.start_beat())
        shift = fragment.first_note_beat_shift
        first = p.first()
        if shift < 0 and first is not None and first.start + shift >= 0:
            p = p.with_note_replaced(first, replace(first, start=first.start + shift))
        return p

    def target_pitch(self, adaptation: "FragmentAdaptation") -> Optional[int]:
        return adaptation.fragment.transposed_target_note(adaptation.first_target_root)


class FragmentAdaptation:
    """A fragment placed over target chords.

    `score` is the single mutable cache field, written by the Scorer.
    Adapted phrase and target pitch are computed once per adapter.
    """

    def __init__(self, fragment: Fragment, chord_sequence: ChordSequence) -> None:
        if chord_sequence.first() is None:
            raise InvalidArgumentError("target chord sequence has no chord")
        self.fragment = fragment
        self.chord_sequence = chord_sequence
        self.score: CompatibilityScore = ZERO
        self._adapter: Optional[PhraseAdapter] = None
        # (adapted phrase, adapted target pitch)
        self._adapted: Tuple[Phrase, Optional[int]] = (Phrase.of(()), None)

    @property
    def bar_range(self) -> BarRange:
        return self.chord_sequence.bar_range

    @property
    def first_target_root(self) -> int:
        return self.chord_sequence.slots[0].symbol.root

    def _adapted_by(self, adapter: PhraseAdapter) -> Tuple[Phrase, Optional[int]]:
        if self._adapter is not adapter:
            self._adapted = (adapter.phrase(self), adapter.target_pitch(self))
            self._adapter = adapter
        return self._adapted

    def adapted_phrase(self, adapter: PhraseAdapter) -> Phrase:
        return self._adapted_by(adapter)[0]

    def adapted_target_pitch(self, adapter: PhraseAdapter) -> Optional[int]:
        return self._adapted_by(adapter)[1]

    def adapted_first_pitch(self, adapter: PhraseAdapter) -> Optional[int]:
        first = self.adapted_phrase(adapter).first()
        return first.pitch if first is not None else None

    def __str__(self) -> str:
        return f"{self.fragment.id}->{self.bar_range} {self.score}"

    __repr__ = __str__
