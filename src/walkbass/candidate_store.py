from __future__ import annotations

"""
Candidate store: for each non-tiled usable bar of a tiling and each fragment
size, the best scored fragment adaptations, at most `width` of them.

Storage is one bar -> candidates mapping per size, indexed by size.
"""

import logging
import random
from typing import Dict, List, Optional

from .adaptation import FragmentAdaptation
from .errors import InvalidArgumentError
from .fragment import SIZE_MAX, SIZE_MIN, is_valid_size
from .scorer import Scorer
from .tiling import Tiling
from .timebase import BarRange

logger = logging.getLogger(__name__)

DEFAULT_SCORE_WINDOW = 5.0


def randomize_similar_score_sets(
    adaptations: List[FragmentAdaptation],
    window: float,
    rng: random.Random,
) -> List[FragmentAdaptation]:
    """Shuffle adaptations whose scores are close, keeping clearly better ones first.

    adaptations must be sorted by descending score. Walking down from the best
    score, each set of adaptations whose overall value is within `window` of
    the set's first one is shuffled in place; sets keep their order. Returns a
    copy unchanged when window <= 0.
    """
    if window <= 0 or len(adaptations) < 2:
        return list(adaptations)
    res: List[FragmentAdaptation] = []
    subset: List[FragmentAdaptation] = []
    limit = adaptations[0].score.overall - window
    for a in adaptations:
        overall = a.score.overall
        if overall > limit:
            subset.append(a)
        else:
            rng.shuffle(subset)
            res.extend(subset)
            subset = [a]
            limit = overall - window
    rng.shuffle(subset)
    res.extend(subset)
    return res


class CandidateStore:
    """Per generation request cache of the best candidates per (bar, size).

    When the tiling gets a new assignment, entries overlapping it are dropped
    and the ranges just before and after it are scored again, since their
    target note continuity can now be computed.
    """

    def __init__(
        self,
        tiling: Tiling,
        scorer: Scorer,
        width: int,
        score_window: float = DEFAULT_SCORE_WINDOW,
        rng: Optional[random.Random] = None,
        auto_refresh: bool = True,
    ) -> None:
        if width < 1:
            raise InvalidArgumentError(f"width must be >= 1, got {width}")
        self.tiling = tiling
        self.scorer = scorer
        self.width = width
        self.score_window = score_window
        self.rng = rng if rng is not None else random.Random()
        # index = fragment size, index 0 unused
        self._store: List[Dict[int, List[FragmentAdaptation]]] = [{} for _ in range(SIZE_MAX + 1)]
        self._auto_refresh = auto_refresh
        if auto_refresh:
            tiling.add_listener(self._tiling_updated)

    def close(self) -> None:
        """Stop following tiling updates."""
        if self._auto_refresh:
            self.tiling.remove_listener(self._tiling_updated)
            self._auto_refresh = False

    def initialize(self) -> None:
        for sized in self._store:
            sized.clear()
        for bar in self.tiling.non_tiled_bars():
            for size in range(SIZE_MAX, SIZE_MIN - 1, -1):
                self._populate(bar, size)
        logger.debug("candidate store initialized\n%s", self.to_debug_string())

    def _populate(self, bar: int, size: int) -> List[FragmentAdaptation]:
        sized = self._store[size]
        br = BarRange.of_size(bar, size)
        if not self.tiling.is_usable_and_free(br):
            sized.pop(bar, None)
            return []
        seq = self.tiling.chord_sequence(br)
        candidates = self.scorer.find_candidates(seq, self.tiling)
        candidates = randomize_similar_score_sets(candidates, self.score_window, self.rng)
        res = candidates[: self.width]
        if res:
            sized[bar] = res
        else:
            sized.pop(bar, None)
        return res

    def repopulate(self, bar: int, size: int) -> List[FragmentAdaptation]:
        """Recompute the candidates of (bar, size) against the current tiling."""
        if not is_valid_size(size):
            raise InvalidArgumentError(f"invalid fragment size {size}")
        return list(self._populate(bar, size))

    def _tiling_updated(self, tiling: Tiling, adaptation: FragmentAdaptation) -> None:
        br = adaptation.bar_range
        for size in range(SIZE_MIN, SIZE_MAX + 1):
            sized = self._store[size]
            for bar in [b for b in sized if BarRange.of_size(b, size).intersects(br)]:
                del sized[bar]
        for size in range(SIZE_MIN, SIZE_MAX + 1):
            before = br.from_bar - size
            if before >= 0:
                self._populate(before, size)
            self._populate(br.to_bar + 1, size)

    def candidates_at(self, bar: int, size: int) -> List[FragmentAdaptation]:
        if not is_valid_size(size):
            raise InvalidArgumentError(f"invalid fragment size {size}")
        return list(self._store[size].get(bar, ()))

    def candidates_at_bar(self, bar: int) -> List[FragmentAdaptation]:
        """Candidates of every size starting at bar, largest size first."""
        res: List[FragmentAdaptation] = []
        for size in range(SIZE_MAX, SIZE_MIN - 1, -1):
            res.extend(self._store[size].get(bar, ()))
        return res

    def candidates_ranked(self, rank: int, size: int) -> List[FragmentAdaptation]:
        """For each bar, the candidate of size at rank, or the last one if there are fewer."""
        if rank < 0:
            raise InvalidArgumentError(f"rank must be >= 0, got {rank}")
        if not is_valid_size(size):
            raise InvalidArgumentError(f"invalid fragment size {size}")
        sized = self._store[size]
        return [sized[bar][min(rank, len(sized[bar]) - 1)] for bar in sorted(sized)]

    def bars(self, size: int) -> List[int]:
        return sorted(self._store[size])

    def to_debug_string(self) -> str:
        lines = [f"CandidateStore width={self.width} window={self.score_window}"]
        for size in range(SIZE_MAX, SIZE_MIN - 1, -1):
            for bar in sorted(self._store[size]):
                items = " ".join(f"{a.fragment.id}{a.score}" for a in self._store[size][bar])
                lines.append(f"  bar={bar} size={size}: {items}")
        return "\n".join(lines)
