from __future__ import annotations

import random

import pytest

from walkbass.adaptation import FragmentAdaptation, TransposerPhraseAdapter
from walkbass.candidate_store import CandidateStore, randomize_similar_score_sets
from walkbass.chord_sequence import ChordSequence, UsableChordSequence
from walkbass.database import FragmentDatabase
from walkbass.errors import InvalidArgumentError
from walkbass.fragment import Session
from walkbass.phrase import NoteEvent, Phrase
from walkbass.score import CompatibilityScore
from walkbass.scorer import Scorer
from walkbass.tiling import Tiling
from walkbass.timebase import BarRange

# Twelve distinct Cm7 one-bar lines, chord tones only
_LINES = [
    [36, 39, 43, 46],
    [36, 43, 39, 46],
    [48, 46, 43, 39],
    [46, 43, 39, 36],
    [36, 46, 43, 39],
    [39, 43, 46, 48],
    [36, 39, 43, 48],
    [36, 43, 46, 48],
    [48, 43, 39, 36],
    [36, 39, 46, 48],
    [36, 43, 48, 43],
    [36, 48, 36, 43],
]


def _quarters(pitches):
    return Phrase.of(NoteEvent(start=float(i), pitch=p, duration=0.9) for i, p in enumerate(pitches))


def _db():
    cm7 = ChordSequence.parse("Cm7")
    sessions = [Session(f"cm7-{i:02d}", cm7, _quarters(p), target_note=36) for i, p in enumerate(_LINES)]
    return FragmentDatabase.from_sessions(sessions, seed_stubs=False)


def _scored(db, values):
    seq = ChordSequence.parse("Cm7")
    res = []
    for f, v in zip(db.fragments_of(1), values):
        a = FragmentAdaptation(f, seq)
        a.score = CompatibilityScore.from_overall(v)
        res.append(a)
    return res


def _store(width=8, window=5.0, seed=0, chords="Cm7 Cm7"):
    db = _db()
    tiling = Tiling(UsableChordSequence.from_sequence(ChordSequence.parse(chords)))
    scorer = Scorer(db, TransposerPhraseAdapter())
    store = CandidateStore(tiling, scorer, width, window, random.Random(seed))
    store.initialize()
    return store, tiling


def test_randomization_keeps_score_windows():
    values = [100, 98, 97, 90, 89, 88, 86, 70, 69, 50, 49, 10]
    adaptations = _scored(_db(), values)
    ids = [a.fragment.id for a in adaptations]
    shuffled_once = False
    for seed in range(20):
        res = randomize_similar_score_sets(adaptations, 5.0, random.Random(seed))
        assert sorted(a.fragment.id for a in res) == sorted(ids)
        overall = [a.score.overall for a in res]
        for i in range(len(overall)):
            for j in range(i + 1, len(overall)):
                assert overall[j] < overall[i] + 5.0
        assert sorted(overall[:3], reverse=True) == [100, 98, 97]
        assert sorted(overall[3:7], reverse=True) == [90, 89, 88, 86]
        assert overall[-1] == 10
        shuffled_once = shuffled_once or [a.fragment.id for a in res] != ids
    assert shuffled_once


def test_zero_window_keeps_order():
    adaptations = _scored(_db(), [100, 98, 97, 90])
    res = randomize_similar_score_sets(adaptations, 0.0, random.Random(1))
    assert res == adaptations
    assert res is not adaptations


def test_store_keeps_width_best_candidates():
    store, _ = _store(width=8)
    assert store.bars(1) == [0, 1]
    assert store.bars(2) == []
    assert len(store.candidates_at(0, 1)) == 8
    assert store.candidates_at(0, 2) == []
    assert len(store.candidates_at_bar(1)) == 8
    assert all(a.score.overall == pytest.approx(80) for a in store.candidates_at(0, 1))
    with pytest.raises(InvalidArgumentError):
        store.candidates_at(0, 5)


def test_candidates_ranked():
    store, _ = _store(width=3)
    first = store.candidates_ranked(0, 1)
    assert [a.bar_range.from_bar for a in first] == [0, 1]
    last = store.candidates_ranked(10, 1)
    assert last[0] is store.candidates_at(0, 1)[2]
    with pytest.raises(InvalidArgumentError):
        store.candidates_ranked(-1, 1)


def test_store_follows_tiling_updates():
    store, tiling = _store(width=8)
    assert all(a.score.pre_target_note == 0 for a in store.candidates_at(1, 1))

    tiling.add(store.candidates_at(0, 1)[0])
    assert store.bars(1) == [1]
    best = store.candidates_at(1, 1)[0]
    # Fragments starting on the previous target note C2 now rank first
    assert best.score.pre_target_note == 100
    assert best.fragment.first_note.pitch == 36
    assert best.score.overall == pytest.approx(90)


def test_closed_store_ignores_tiling_updates():
    store, tiling = _store(width=8)
    store.close()
    tiling.add(store.candidates_at(0, 1)[0])
    assert store.bars(1) == [0, 1]
    assert store.repopulate(0, 1) == []
    assert store.bars(1) == [1]


def test_invalid_width():
    db = _db()
    tiling = Tiling(UsableChordSequence.from_sequence(ChordSequence.parse("Cm7")))
    with pytest.raises(InvalidArgumentError):
        CandidateStore(tiling, Scorer(db), 0)


def _four_bar_db():
    # Session i plays lines i..i+3, so windows starting on the same line are equivalent
    cm7 = ChordSequence.parse("Cm7 Cm7 Cm7 Cm7")
    sessions = []
    for i in range(10):
        pitches = [p for j in range(4) for p in _LINES[(i + j) % len(_LINES)]]
        sessions.append(Session(f"four-{i}", cm7, _quarters(pitches), target_note=36))
    return FragmentDatabase.from_sessions(sessions, seed_stubs=False)


def test_store_on_four_usable_bars():
    db = _four_bar_db()
    assert len(db.fragments_of(4)) == 10
    tiling = Tiling(UsableChordSequence.from_sequence(ChordSequence.parse("Cm7 Cm7 Cm7 Cm7")))
    store = CandidateStore(tiling, Scorer(db, TransposerPhraseAdapter()), 8, 0.0, random.Random(0))
    store.initialize()
    assert {size: store.bars(size) for size in range(1, 5)} == {1: [0, 1, 2, 3], 2: [0, 1, 2], 3: [0, 1], 4: [0]}
    for size in range(1, 5):
        for bar in store.bars(size):
            candidates = store.candidates_at(bar, size)
            assert len(candidates) == 8
            assert all(a.bar_range == BarRange.of_size(bar, size) for a in candidates)
    assert store.candidates_at(1, 4) == []
    assert len(store.candidates_at_bar(0)) == 32


def test_strict_store_waits_for_free_neighbours():
    # cm7-03 starts on Bb, cm7-05 on Eb
    off_root = {"cm7-03#fr=0#sz=1", "cm7-05#fr=0#sz=1"}
    db = _db()
    scorer = Scorer(db, TransposerPhraseAdapter(), strict_start_end=True)

    # No neighbour can ever come: the rule applies at once
    alone = Tiling(UsableChordSequence.from_sequence(ChordSequence.parse("Cm7")))
    store = CandidateStore(alone, scorer, 12, 0.0, random.Random(0))
    store.initialize()
    assert len(store.candidates_at(0, 1)) == 10
    assert not off_root & {a.fragment.id for a in store.candidates_at(0, 1)}

    tiling = Tiling(UsableChordSequence.from_sequence(ChordSequence.parse("Cm7 Cm7 Cm7")))
    store = CandidateStore(tiling, scorer, 12, 0.0, random.Random(0))
    store.initialize()
    assert off_root <= {a.fragment.id for a in store.candidates_at(1, 1)}
    assert off_root <= {a.fragment.id for a in store.candidates_at(0, 1)}

    tiling.add(store.candidates_at(0, 1)[0])
    # Bar 2 is still free
    assert off_root <= {a.fragment.id for a in store.candidates_at(1, 1)}

    tiling.add(store.candidates_at(2, 1)[0])
    ids = {a.fragment.id for a in store.candidates_at(1, 1)}
    assert len(ids) == 10
    assert not off_root & ids
