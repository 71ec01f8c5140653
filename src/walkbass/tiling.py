from __future__ import annotations

"""
Tiling: the mutable assignment of fragment adaptations to bar ranges of a
target UsableChordSequence.

Only one thread may mutate a Tiling. add() checks and assigns atomically with
respect to later is_usable_and_free() calls.
"""

import logging
from typing import Callable, Dict, List, Optional, Set

from .adaptation import FragmentAdaptation, PhraseAdapter
from .chord_sequence import ChordSequence, UsableChordSequence
from .errors import InvalidArgumentError
from .fragment import Fragment
from .phrase import Phrase
from .timebase import BarRange

logger = logging.getLogger(__name__)

TilingListener = Callable[["Tiling", FragmentAdaptation], None]


class Tiling:
    def __init__(self, chord_sequence: UsableChordSequence) -> None:
        self.target = chord_sequence
        self._by_start: Dict[int, FragmentAdaptation] = {}
        self._by_bar: Dict[int, FragmentAdaptation] = {}
        self._listeners: List[TilingListener] = []

    @property
    def bar_range(self) -> BarRange:
        return self.target.bar_range

    def add_listener(self, listener: TilingListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: TilingListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def add(self, adaptation: FragmentAdaptation) -> None:
        """Assign adaptation to its bar range, which must be usable and free."""
        br = adaptation.bar_range
        if not self.is_usable_and_free(br):
            raise InvalidArgumentError(f"bar range {br} is not usable and free for {adaptation}")
        self._by_start[br.from_bar] = adaptation
        for bar in br:
            self._by_bar[bar] = adaptation
        logger.debug("tiling add %s", adaptation)
        for listener in list(self._listeners):
            listener(self, adaptation)

    def remove(self, adaptation: FragmentAdaptation) -> bool:
        br = adaptation.bar_range
        if self._by_start.get(br.from_bar) is not adaptation:
            return False
        del self._by_start[br.from_bar]
        for bar in br:
            del self._by_bar[bar]
        return True

    def clear(self) -> None:
        self._by_start.clear()
        self._by_bar.clear()

    def adaptations(self) -> List[FragmentAdaptation]:
        """All assigned adaptations in bar order."""
        return [self._by_start[b] for b in sorted(self._by_start)]

    def adaptation_at(self, bar: int) -> Optional[FragmentAdaptation]:
        """The adaptation covering bar, if any."""
        return self._by_bar.get(bar)

    def starting_at(self, bar: int) -> Optional[FragmentAdaptation]:
        return self._by_start.get(bar)

    def previous_of(self, bar_range: BarRange) -> Optional[FragmentAdaptation]:
        """The adaptation covering the bar just before bar_range."""
        return self._by_bar.get(bar_range.from_bar - 1)

    def next_of(self, bar_range: BarRange) -> Optional[FragmentAdaptation]:
        """The adaptation covering the bar just after bar_range."""
        return self._by_bar.get(bar_range.to_bar + 1)

    def is_usable(self, bar: int) -> bool:
        return self.target.is_usable(bar)

    def is_usable_and_free(self, bar_range: BarRange) -> bool:
        """False if bar_range leaves the target, contains a non-usable bar, or overlaps an assignment."""
        if not self.bar_range.contains(bar_range):
            return False
        return all(self.target.is_usable(b) and b not in self._by_bar for b in bar_range)

    def non_tiled_bars(self) -> List[int]:
        """Usable bars not assigned yet, in order."""
        return [b for b in self.bar_range if self.target.is_usable(b) and b not in self._by_bar]

    def untiled_zones(self) -> List[BarRange]:
        """Maximal contiguous ranges of non-tiled usable bars."""
        res: List[BarRange] = []
        for bar in self.non_tiled_bars():
            if res and res[-1].to_bar == bar - 1:
                res[-1] = BarRange(res[-1].from_bar, bar)
            else:
                res.append(BarRange(bar, bar))
        return res

    def is_fully_tiled(self) -> bool:
        return not self.non_tiled_bars()

    def used_fragments(self) -> Set[Fragment]:
        return {a.fragment for a in self._by_start.values()}

    def chord_sequence(self, bar_range: BarRange) -> ChordSequence:
        """Target chords of bar_range, including the chord active at its start."""
        return self.target.sub_sequence(bar_range, carry_in=True)

    def build_phrase(self, adapter: PhraseAdapter) -> Phrase:
        """Concatenate the adapted phrases of all assignments."""
        notes = []
        for a in self.adaptations():
            notes.extend(a.adapted_phrase(adapter))
        return Phrase.of(notes)

    def to_debug_string(self) -> str:
        lines = [f"Tiling {self.bar_range} tiled={len(self._by_bar)} non_tiled={self.non_tiled_bars()}"]
        for a in self.adaptations():
            lines.append(f"  {a}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return f"Tiling{self.bar_range}:" + ",".join(f"{a.bar_range}={a.fragment.id}" for a in self.adaptations())
