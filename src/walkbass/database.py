from __future__ import annotations

"""
The fragment database: owns every fragment, indexed by id, by session and by
(bass style, root profile).

Build it once (see DatabaseLoader), then share it read-only. add_fragment()
and remove_fragment() are administrative paths which callers must
synchronize themselves.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .adaptation import FragmentAdaptation
from .chord_sequence import RootProfile
from .config import EngineConfig, SourceConfig
from .consistency import ConsistencyReport, check_consistency
from .errors import DatabaseCorruptionError, InvalidArgumentError
from .fragment import (
    NON_QUANTIZED_WINDOW,
    SIZE_MAX,
    SIZE_MIN,
    BassStyle,
    Fragment,
    Session,
    is_valid_size,
    stub_sessions,
)
from .logging_utils import elapsed_ms, log_event
from .midi_loader import load_sessions
from .scorer import Scorer
from .seeding import audit_hash
from .timebase import FOUR_FOUR, TimeSignature

logger = logging.getLogger(__name__)

__all__ = ["FragmentDatabase", "StyleAndProfile", "DatabaseLoader", "SIZE_MIN", "SIZE_MAX"]


@dataclass(frozen=True)
class StyleAndProfile:
    style: BassStyle
    root_profile: RootProfile


class FragmentDatabase:
    """In-memory fragment collection.

    Two interval-equivalent fragments are never both present: when they
    share a root profile, their phrases are equal as intervals (within
    NON_QUANTIZED_WINDOW, durations compared if compare_durations) and one
    scores non-zero on the other's chords, only the first inserted is kept.
    """

    def __init__(self, time_signature: TimeSignature = FOUR_FOUR, compare_durations: bool = False) -> None:
        self.time_signature = time_signature
        self.compare_durations = compare_durations
        self._by_id: Dict[str, Fragment] = {}
        self._by_session: Dict[str, List[Fragment]] = {}
        self._by_key: Dict[StyleAndProfile, List[Fragment]] = {}
        self._session_resources: Dict[str, Optional[str]] = {}
        # Context-free scorer used for the equivalence test
        self._scorer = Scorer(self)

    # --- construction -----------------------------------------------------

    @classmethod
    def from_sessions(
        cls,
        sessions: Iterable[Session],
        time_signature: TimeSignature = FOUR_FOUR,
        resource: Optional[str] = None,
        seed_stubs: bool = True,
    ) -> "FragmentDatabase":
        db = cls(time_signature)
        for session in sessions:
            db.add_session(session, resource)
        if seed_stubs:
            db.seed_stubs_if_empty()
        return db

    @classmethod
    def from_config(cls, config: EngineConfig) -> "FragmentDatabase":
        """Load every configured source, then seed stubs if nothing was loaded."""
        start = time.perf_counter()
        db = cls(config.time_signature)
        db.load_sources(config.sources)
        db.seed_stubs_if_empty()
        log_event(
            logger,
            "database_built",
            fragments=len(db),
            sessions=len(db._session_resources),
            duration_ms=elapsed_ms(start),
        )
        return db

    def load_sources(self, sources: Iterable[SourceConfig]) -> int:
        """Load the sessions of each source file, return the number of fragments added."""
        added = 0
        for src in sources:
            sessions = load_sessions(src.path, self.time_signature, src.session_prefix, src.session_tag)
            for session in sessions:
                added += self.add_session(session, src.path)
        return added

    def add_session(self, session: Session, resource: Optional[str] = None) -> int:
        """Slice session into fragments and add the non-equivalent ones. Returns the number added."""
        if session.chord_sequence.time_signature != self.time_signature:
            raise InvalidArgumentError(
                f"session {session.id} is in {session.chord_sequence.time_signature}, database is {self.time_signature}"
            )
        if session.id in self._session_resources:
            logger.error(
                "duplicate session id %s (from %s, already loaded from %s), ignored",
                session.id, resource, self._session_resources[session.id],
            )
            return 0
        self._session_resources[session.id] = resource
        fragments = session.extract_fragments()
        added = sum(1 for f in fragments if self.add_fragment(f))
        logger.debug("session %s: %d fragments, %d added", session.id, len(fragments), added)
        return added

    def seed_stubs_if_empty(self) -> int:
        """Add stub sessions when the database is empty, so queries never run on an empty index."""
        if self._by_id:
            return 0
        if self.time_signature != FOUR_FOUR:
            logger.warning("empty database in %s, no stub material available", self.time_signature)
            return 0
        added = sum(self.add_session(s, None) for s in stub_sessions(tuple(BassStyle), self.time_signature))
        log_event(logger, "stub_fragments_added", level=logging.WARNING, fragments=added)
        return added

    # --- mutation ---------------------------------------------------------

    def add_fragment(self, fragment: Fragment) -> bool:
        """Insert fragment. False (no change) on id collision or if an equivalent fragment exists."""
        if fragment.id in self._by_id:
            return False
        equivalent = self.find_equivalent(fragment)
        if equivalent is not None:
            logger.debug("fragment %s equivalent to %s, not added", fragment.id, equivalent.id)
            return False
        self._insert(fragment)
        return True

    def _insert(self, fragment: Fragment) -> None:
        if fragment.id in self._by_id:
            raise DatabaseCorruptionError(f"duplicate fragment id {fragment.id}")
        self._by_id[fragment.id] = fragment
        self._by_session.setdefault(fragment.session_id, []).append(fragment)
        self._by_key.setdefault(_key(fragment), []).append(fragment)

    def remove_fragment(self, fragment: Fragment) -> bool:
        """Remove fragment from all indices. False if its id is unknown.

        Raises DatabaseCorruptionError if an index lacks the fragment.
        """
        if fragment.id not in self._by_id:
            return False
        stored = self._by_id[fragment.id]
        key = _key(stored)
        session_list = self._by_session.get(stored.session_id, [])
        key_list = self._by_key.get(key, [])
        if stored not in session_list:
            raise DatabaseCorruptionError(f"{fragment.id} missing from session index {stored.session_id}")
        if stored not in key_list:
            raise DatabaseCorruptionError(f"{fragment.id} missing from style/root-profile index")

        del self._by_id[stored.id]
        session_list.remove(stored)
        if not session_list:
            del self._by_session[stored.session_id]
        key_list.remove(stored)
        if not key_list:
            del self._by_key[key]
        return True

    # --- queries ----------------------------------------------------------

    @staticmethod
    def is_valid_size(size: int) -> bool:
        return is_valid_size(size)

    def find_equivalent(self, fragment: Fragment) -> Optional[Fragment]:
        """An existing fragment equivalent to fragment, or None."""
        for other in self._by_key.get(_key(fragment), ()):
            if other.id == fragment.id:
                continue
            if not other.phrase.equals_as_intervals(fragment.phrase, NON_QUANTIZED_WINDOW, self.compare_durations):
                continue
            if self._scorer.score(FragmentAdaptation(other, fragment.chord_sequence)).overall > 0:
                return other
        return None

    def get(self, fragment_id: str) -> Optional[Fragment]:
        return self._by_id.get(fragment_id)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, fragment: object) -> bool:
        return isinstance(fragment, Fragment) and fragment.id in self._by_id

    def fragments_of(self, size: int = -1, *styles: BassStyle) -> List[Fragment]:
        """Fragments of size (-1 for any size) and of styles (all styles if none)."""
        if size != -1 and not is_valid_size(size):
            raise InvalidArgumentError(f"invalid fragment size {size}")
        wanted = set(styles) if styles else None
        return [
            f for f in self._by_id.values()
            if (size == -1 or f.size == size) and (wanted is None or f.style in wanted)
        ]

    def fragments_for(self, style: BassStyle, root_profile: RootProfile) -> Tuple[Fragment, ...]:
        return tuple(self._by_key.get(StyleAndProfile(style, root_profile), ()))

    def session_ids(self) -> List[str]:
        return list(self._session_resources)

    def session_resource(self, session_id: str) -> Optional[str]:
        """The file a session was loaded from, None for stub or programmatic sessions."""
        return self._session_resources.get(session_id)

    def session_fragments(self, session_id: str) -> Tuple[Fragment, ...]:
        return tuple(self._by_session.get(session_id, ()))

    def related_fragments(self, fragment: Fragment) -> List[Fragment]:
        """Fragments of the same session whose session bar range intersects fragment's, excluding it."""
        br = fragment.session_bar_range
        return [
            f for f in self._by_session.get(fragment.session_id, ())
            if f.id != fragment.id and f.session_bar_range.intersects(br)
        ]

    def check_consistency(self, style: BassStyle) -> ConsistencyReport:
        return check_consistency(self, style)

    def stats(self) -> Dict[str, Dict[int, int]]:
        """Number of fragments per style and size."""
        res: Dict[str, Dict[int, int]] = {s.value: {n: 0 for n in range(SIZE_MIN, SIZE_MAX + 1)} for s in BassStyle}
        for f in self._by_id.values():
            res[f.style.value][f.size] += 1
        return res

    def index_snapshot(self) -> Tuple[Dict[str, str], Dict[str, Tuple[str, ...]], Dict[StyleAndProfile, Tuple[str, ...]]]:
        """Copy of the three indices as fragment ids."""
        return (
            {k: v.id for k, v in self._by_id.items()},
            {k: tuple(f.id for f in v) for k, v in self._by_session.items()},
            {k: tuple(f.id for f in v) for k, v in self._by_key.items()},
        )

    def fingerprint(self) -> str:
        """Stable hash of the fragment ids, for reproducibility checks."""
        return audit_hash(sorted(self._by_id))

    def dump(self, styles: Sequence[BassStyle] = ()) -> None:
        for f in self.fragments_of(-1, *styles):
            logger.info("%s style=%s tags=%s phrase=%s", f, f.style.value, ",".join(f.tags), f.phrase)


def _key(fragment: Fragment) -> StyleAndProfile:
    return StyleAndProfile(fragment.style, fragment.root_profile)


class DatabaseLoader:
    """Builds the database of a configuration once, on first get()."""

    def __init__(self, config: EngineConfig) -> None:
        self.config = config
        self._lock = threading.Lock()
        self._db: Optional[FragmentDatabase] = None

    def is_loaded(self) -> bool:
        return self._db is not None

    def get(self) -> FragmentDatabase:
        if self._db is None:
            with self._lock:
                if self._db is None:
                    self._db = FragmentDatabase.from_config(self.config)
        return self._db
