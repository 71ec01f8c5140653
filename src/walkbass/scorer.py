from __future__ import annotations

"""
Compatibility scoring of fragments against target chord sequence slices.

The scorer is a function of (fragment adaptation, optional tiling). Its only
side effect is storing the computed score on the adaptation.
"""

import logging
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Sequence, Tuple

from .adaptation import FragmentAdaptation, PhraseAdapter
from .chord_sequence import ChordSequence
from .fragment import BassStyle, Fragment
from .score import ZERO, CompatibilityScore

if TYPE_CHECKING:
    from .database import FragmentDatabase
    from .tiling import Tiling

logger = logging.getLogger(__name__)

TARGET_NOTE_MATCH = 100.0


def default_accept(score: CompatibilityScore) -> bool:
    return score.overall > 0


class Scorer:
    """Score fragment adaptations and search the database for candidates.

    - phrase_adapter: needed for pre/post target note continuity, which is 0 without it
    - styles: restrict find_candidates() to these styles, all styles if empty
    - accept: scores failing this test become the zero score
    - strict_start_end: a fragment not starting on its chord bass needs a matching
      previous target note, one not ending on a chord tone needs a matching next
      first note, otherwise its score is zero. The rule is applied once both
      neighbour bars are assigned or can never be
    """

    def __init__(
        self,
        database: "FragmentDatabase",
        phrase_adapter: Optional[PhraseAdapter] = None,
        styles: Sequence[BassStyle] = (),
        accept: Optional[Callable[[CompatibilityScore], bool]] = None,
        strict_start_end: bool = False,
    ) -> None:
        self.database = database
        self.phrase_adapter = phrase_adapter
        self.styles: Tuple[BassStyle, ...] = tuple(styles)
        self.accept = accept if accept is not None else default_accept
        self.strict_start_end = strict_start_end

    def score(self, adaptation: FragmentAdaptation, tiling: Optional["Tiling"] = None) -> CompatibilityScore:
        """Compute, store on the adaptation and return its compatibility score."""
        res = self._compute(adaptation, tiling)
        adaptation.score = res
        logger.debug("score %s", adaptation)
        return res

    def _compute(self, adaptation: FragmentAdaptation, tiling: Optional["Tiling"]) -> CompatibilityScore:
        fragment = adaptation.fragment
        seq = adaptation.chord_sequence
        if not is_shape_compatible(fragment, seq):
            return ZERO

        harmonic = harmonic_compatibility(fragment, seq)
        if harmonic == 0:
            return ZERO

        transposability = fragment.transposability(adaptation.first_target_root)

        pre = post = 0.0
        adapter = self.phrase_adapter
        if adapter is not None and tiling is not None:
            first_pitch = adaptation.adapted_first_pitch(adapter)
            prev = tiling.previous_of(adaptation.bar_range)
            if prev is not None and first_pitch is not None and prev.adapted_target_pitch(adapter) == first_pitch:
                pre = TARGET_NOTE_MATCH
            nxt = tiling.next_of(adaptation.bar_range)
            target_pitch = adaptation.adapted_target_pitch(adapter)
            if nxt is not None and target_pitch is not None and nxt.adapted_first_pitch(adapter) == target_pitch:
                post = TARGET_NOTE_MATCH

            # A free usable neighbour may still get an assignment: the rule waits for it
            br = adaptation.bar_range
            computable = (prev is not None or not tiling.is_usable(br.from_bar - 1)) and (
                nxt is not None or not tiling.is_usable(br.to_bar + 1)
            )
            if self.strict_start_end and computable:
                if not fragment.is_starting_on_chord_bass() and pre < TARGET_NOTE_MATCH:
                    return ZERO
                if not fragment.is_ending_on_chord_tone() and post < TARGET_NOTE_MATCH:
                    return ZERO

        res = CompatibilityScore(harmonic, transposability, pre, post)
        return res if self.accept(res) else ZERO

    def find_candidates(self, chord_sequence: ChordSequence, tiling: Optional["Tiling"] = None) -> List[FragmentAdaptation]:
        """Scored adaptations of the fragments sharing chord_sequence's root profile.

        Zero scores are dropped. Sorted by descending score, fragment id breaking ties.
        """
        root_profile = chord_sequence.root_profile()
        styles = self.styles or tuple(BassStyle)
        res: List[FragmentAdaptation] = []
        for style in styles:
            for fragment in self.database.fragments_for(style, root_profile):
                a = FragmentAdaptation(fragment, chord_sequence)
                if self.score(a, tiling).overall > 0:
                    res.append(a)
        res.sort(key=lambda a: a.fragment.id)
        res.sort(key=lambda a: a.score, reverse=True)
        logger.debug("find_candidates %s: %d candidates", chord_sequence, len(res))
        return res

    @staticmethod
    def group_by_score(adaptations: Iterable[FragmentAdaptation]) -> List[Tuple[CompatibilityScore, List[FragmentAdaptation]]]:
        """Ordered (score, adaptations) groups, highest score first."""
        groups: List[Tuple[CompatibilityScore, List[FragmentAdaptation]]] = []
        for a in sorted(adaptations, key=lambda x: x.score, reverse=True):
            if groups and groups[-1][0] == a.score:
                groups[-1][1].append(a)
            else:
                groups.append((a.score, [a]))
        return groups


def is_shape_compatible(fragment: Fragment, chord_sequence: ChordSequence) -> bool:
    """Same bar length, chord count, time signature and root profile."""
    return (
        fragment.size == chord_sequence.bar_range.size
        and len(fragment.chord_sequence) == len(chord_sequence)
        and fragment.time_signature == chord_sequence.time_signature
        and fragment.root_profile == chord_sequence.root_profile()
    )


def harmonic_compatibility(fragment: Fragment, chord_sequence: ChordSequence) -> float:
    """Average of the per chord pair compatibilities, 0 as soon as one pair is incompatible."""
    values: List[float] = []
    for src, target in zip(fragment.chord_sequence.slots, chord_sequence.slots):
        v = fragment.slice(src).harmonic_compatibility(target.symbol)
        if v == 0:
            return 0.0
        values.append(v)
    return sum(values) / len(values) if values else 0.0
