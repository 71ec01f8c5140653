from __future__ import annotations

"""
Allocation driver: fills a Tiling from a CandidateStore, longest fragments first.
"""

import logging
import random
import threading
from dataclasses import dataclass
from typing import Optional, Set

from .adaptation import PhraseAdapter, TransposerPhraseAdapter
from .candidate_store import DEFAULT_SCORE_WINDOW, CandidateStore
from .chord_sequence import ChordSequence, UsableChordSequence
from .config import EngineConfig
from .database import FragmentDatabase
from .errors import InvalidArgumentError
from .fragment import SIZE_MAX, SIZE_MIN, BassStyle, custom_session
from .logging_utils import log_event
from .phrase import Phrase
from .scorer import Scorer
from .seeding import rng_for
from .tiling import Tiling
from .timebase import BarRange

logger = logging.getLogger(__name__)

CUSTOM_SESSION_PREFIX = "custom-"

# Serializes database writes of concurrent generations
_custom_lock = threading.Lock()


class LongestFirstTiler:
    """For sizes 4 down to 1, give each free bar range its best candidate.

    A first pass avoids reusing a fragment, or any fragment of the same session
    material, already in the tiling. A second pass allows it.
    """

    def __init__(
        self,
        scorer: Scorer,
        width: int,
        score_window: float = DEFAULT_SCORE_WINDOW,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.scorer = scorer
        self.width = width
        self.score_window = score_window
        self.rng = rng if rng is not None else random.Random()

    def tile(self, tiling: Tiling) -> int:
        """Fill tiling as much as possible. Returns the number of assignments added."""
        store = CandidateStore(tiling, self.scorer, self.width, self.score_window, self.rng)
        try:
            store.initialize()
            used: Set[str] = set()
            for a in tiling.adaptations():
                used |= self._material_ids(a.fragment)
            added = self._fill(tiling, store, used, allow_reuse=False)
            added += self._fill(tiling, store, used, allow_reuse=True)
        finally:
            store.close()
        return added

    def _material_ids(self, fragment) -> Set[str]:
        return {fragment.id} | {f.id for f in self.scorer.database.related_fragments(fragment)}

    def _fill(self, tiling: Tiling, store: CandidateStore, used: Set[str], allow_reuse: bool) -> int:
        added = 0
        progress = True
        while progress:
            progress = False
            for size in range(SIZE_MAX, SIZE_MIN - 1, -1):
                for bar in tiling.non_tiled_bars():
                    if not tiling.is_usable_and_free(BarRange.of_size(bar, size)):
                        continue
                    for a in store.candidates_at(bar, size):
                        if not allow_reuse and a.fragment.id in used:
                            continue
                        tiling.add(a)
                        used |= self._material_ids(a.fragment)
                        added += 1
                        progress = True
                        break
        logger.debug("tiler pass allow_reuse=%s added=%d", allow_reuse, added)
        return added


def build_missing_fragments(
    database: FragmentDatabase,
    tiling: Tiling,
    style: BassStyle,
    adapter: PhraseAdapter,
) -> int:
    """Add generated one-bar fragments for the non-tiled bars of tiling.

    One session per distinct bar harmony, aiming at the first note of the next
    assignment when there is one. Returns the number of fragments added.
    """
    done: Set[ChordSequence] = set()
    added = 0
    with _custom_lock:
        count = sum(1 for sid in database.session_ids() if sid.startswith(CUSTOM_SESSION_PREFIX))
        for bar in tiling.non_tiled_bars():
            br = BarRange(bar, bar)
            seq = tiling.chord_sequence(br).normalized()
            if seq in done:
                continue
            done.add(seq)
            nxt = tiling.next_of(br)
            target = nxt.adapted_first_pitch(adapter) if nxt is not None else None
            session = custom_session(f"{CUSTOM_SESSION_PREFIX}{style.value}-{count}", seq, style, target)
            count += 1
            n = database.add_session(session)
            if n == 0:
                logger.info("custom session %s for %s: equivalent fragment exists", session.id, seq)
            added += n
    log_event(logger, "custom_fragments_added", style=style.value, fragments=added)
    return added


@dataclass
class BassLine:
    tiling: Tiling
    phrase: Phrase

    @property
    def is_complete(self) -> bool:
        return self.tiling.is_fully_tiled()


def generate_bass_line(
    database: FragmentDatabase,
    chord_sequence: ChordSequence,
    style: BassStyle,
    config: Optional[EngineConfig] = None,
    rng: Optional[random.Random] = None,
) -> BassLine:
    """Tile chord_sequence with fragments of style and assemble the bass phrase.

    Bars no fragment fits get generated fragments, added to database, when
    config.custom_fragments is set. Bars still untiled are logged and left
    empty. Without rng, a generator seeded from config.seed and the chords is
    used.
    """
    config = config or EngineConfig()
    if chord_sequence.time_signature != database.time_signature:
        raise InvalidArgumentError(
            f"chord sequence is in {chord_sequence.time_signature}, database is {database.time_signature}"
        )
    if isinstance(chord_sequence, UsableChordSequence):
        target = chord_sequence
    else:
        target = UsableChordSequence.from_sequence(chord_sequence)
    if rng is None:
        rng = rng_for(config.seed, target)

    adapter = TransposerPhraseAdapter()
    scorer = Scorer(database, adapter, styles=(style,), strict_start_end=config.strict_start_end)
    tiling = Tiling(target)
    tiler = LongestFirstTiler(scorer, config.width, config.effective_score_window, rng)
    tiler.tile(tiling)
    if config.custom_fragments and not tiling.is_fully_tiled():
        if build_missing_fragments(database, tiling, style, adapter):
            tiler.tile(tiling)
    logger.debug("%s", tiling.to_debug_string())

    untiled = tiling.untiled_zones()
    if untiled:
        log_event(
            logger,
            "bars_untiled",
            level=logging.WARNING,
            style=style.value,
            zones=" ".join(str(z) for z in untiled),
        )
    log_event(logger, "bass_line_generated", style=style.value, assignments=len(tiling.adaptations()))
    return BassLine(tiling, tiling.build_phrase(adapter))
