from __future__ import annotations

import pytest

from walkbass.adaptation import FragmentAdaptation, TransposerPhraseAdapter
from walkbass.chord_sequence import ChordSequence, UsableChordSequence
from walkbass.database import FragmentDatabase
from walkbass.errors import InvalidArgumentError
from walkbass.fragment import BassStyle, Session
from walkbass.phrase import NoteEvent, Phrase
from walkbass.score import MAX, ZERO, CompatibilityScore
from walkbass.scorer import Scorer, harmonic_compatibility, is_shape_compatible
from walkbass.tiling import Tiling
from walkbass.timebase import BarRange


def _quarters(pitches):
    return Phrase.of(NoteEvent(start=float(i), pitch=p, duration=0.9) for i, p in enumerate(pitches))


def _db(*specs):
    sessions = [Session(sid, ChordSequence.parse(chords), _quarters(p), target_note=t) for sid, chords, p, t in specs]
    return FragmentDatabase.from_sessions(sessions, seed_stubs=False)


def test_score_bounds_and_overall():
    s = CompatibilityScore(150, -5, 100, 0)
    assert s.harmonic == 100
    assert s.transposability == 0
    assert s.overall == pytest.approx(70.0)
    assert CompatibilityScore(0, 100, 100, 100).overall == 0
    assert CompatibilityScore(0, 100, 100, 100).is_zero()
    assert CompatibilityScore.from_overall(80).overall == pytest.approx(80)
    assert MAX.overall == 100
    assert ZERO.overall == 0
    with pytest.raises(InvalidArgumentError):
        CompatibilityScore.from_overall(101)


def test_score_ordering():
    assert CompatibilityScore(90, 100) > CompatibilityScore(90, 50)
    # Same overall, components break ties
    assert CompatibilityScore(100, 0) > CompatibilityScore(90, 30)
    a = CompatibilityScore(100, 0, 0, 0)
    b = CompatibilityScore(90, 0, 100, 0)
    assert a.overall == pytest.approx(60) and b.overall == pytest.approx(64)
    assert b > a
    assert sorted([ZERO, MAX, a]) == [ZERO, a, MAX]


def test_find_candidates_transposes_to_target_root():
    db = _db(("cm", "Cm7", [36, 39, 43, 46], None))
    res = Scorer(db).find_candidates(ChordSequence.parse("Gm7"))
    assert [a.fragment.id for a in res] == ["cm#fr=0#sz=1"]
    score = res[0].score
    assert score.harmonic == 100
    assert score.transposability == 93
    assert score.pre_target_note == 0 and score.post_target_note == 0
    assert score.overall == pytest.approx(78.6)


def test_find_candidates_filters_root_profile_and_style():
    db = _db(("cm", "Cm7", [36, 39, 43, 46], None), ("ii", "Cm7 F7", [36, 39, 43, 46, 41, 45, 48, 51], None))
    assert Scorer(db).find_candidates(ChordSequence.parse("Cm7 Bb7")) == []
    assert [a.fragment.id for a in Scorer(db).find_candidates(ChordSequence.parse("Dm7 G7"))] == ["ii#fr=0#sz=2"]
    assert Scorer(db, styles=(BassStyle.TWO_FEEL,)).find_candidates(ChordSequence.parse("Dm7 G7")) == []


def test_one_incompatible_chord_zeroes_the_score():
    db = _db(("s", "Cm7,F7", [36, 39, 41, 45], None))
    f = db.get("s#fr=0#sz=1")
    target = ChordSequence.parse("Cm7,Fm7")
    assert is_shape_compatible(f, target)
    assert harmonic_compatibility(f, target) == 0
    a = FragmentAdaptation(f, target)
    assert Scorer(db).score(a).is_zero()
    assert a.score == ZERO
    assert harmonic_compatibility(f, ChordSequence.parse("Cm7,F7")) == 100


def test_shape_mismatch_is_zero():
    db = _db(("s", "Cm7,F7", [36, 39, 41, 45], None))
    f = db.get("s#fr=0#sz=1")
    assert not is_shape_compatible(f, ChordSequence.parse("Cm7"))
    assert Scorer(db).score(FragmentAdaptation(f, ChordSequence.parse("Cm7,Fm7 Cm7"))).is_zero()


def _continuity_setup(strict=False):
    db = _db(
        ("a", "Cm7", [36, 39, 43, 46], 48),
        ("b", "Cm7", [48, 43, 46, 48], None),
        ("b2", "Cm7", [50, 43, 46, 48], None),
    )
    adapter = TransposerPhraseAdapter()
    scorer = Scorer(db, adapter, strict_start_end=strict)
    tiling = Tiling(UsableChordSequence.from_sequence(ChordSequence.parse("Cm7 Cm7 Cm7 Cm7")))
    tiling.add(FragmentAdaptation(db.get("a#fr=0#sz=1"), tiling.chord_sequence(BarRange(2, 2))))
    return db, scorer, tiling


def test_pre_target_note_continuity():
    db, scorer, tiling = _continuity_setup()
    seq = tiling.chord_sequence(BarRange(3, 3))
    b = scorer.score(FragmentAdaptation(db.get("b#fr=0#sz=1"), seq), tiling)
    b2 = scorer.score(FragmentAdaptation(db.get("b2#fr=0#sz=1"), seq), tiling)
    assert (b.harmonic, b.transposability, b.pre_target_note, b.post_target_note) == (100, 100, 100, 0)
    assert (b2.harmonic, b2.transposability, b2.pre_target_note, b2.post_target_note) == (100, 100, 0, 0)
    assert b.overall == pytest.approx(90)
    assert b2.overall == pytest.approx(80)
    # Without a tiling there is no continuity
    assert scorer.score(FragmentAdaptation(db.get("b#fr=0#sz=1"), seq)).pre_target_note == 0


def test_post_target_note_continuity():
    db, scorer, tiling = _continuity_setup()
    seq = tiling.chord_sequence(BarRange(1, 1))
    a2 = FragmentAdaptation(db.get("a#fr=0#sz=1"), seq)
    # a's target note 48 does not match a's own first note 36
    assert scorer.score(a2, tiling).post_target_note == 0
    db2 = _db(("a", "Cm7", [36, 39, 43, 46], 36))
    a3 = FragmentAdaptation(db2.get("a#fr=0#sz=1"), seq)
    assert scorer.score(a3, tiling).post_target_note == 100


def test_strict_start_end():
    db, scorer, tiling = _continuity_setup(strict=True)
    seq = tiling.chord_sequence(BarRange(3, 3))
    # b2 starts on D: needs the previous target note, which is C
    assert scorer.score(FragmentAdaptation(db.get("b2#fr=0#sz=1"), seq), tiling).is_zero()
    assert not scorer.score(FragmentAdaptation(db.get("b#fr=0#sz=1"), seq), tiling).is_zero()
    # Context-free scoring ignores the rule
    assert not scorer.score(FragmentAdaptation(db.get("b2#fr=0#sz=1"), seq)).is_zero()
    # Bar 0 is free and usable, so the start of bar 1 is not decided yet
    early = scorer.score(FragmentAdaptation(db.get("b2#fr=0#sz=1"), tiling.chord_sequence(BarRange(1, 1))), tiling)
    assert not early.is_zero()
    assert early.pre_target_note == 0


def test_custom_accept():
    db = _db(("cm", "Cm7", [36, 39, 43, 46], None))
    strict = Scorer(db, accept=lambda s: s.overall >= 80)
    assert strict.find_candidates(ChordSequence.parse("Gm7")) == []
    assert len(strict.find_candidates(ChordSequence.parse("Cm7"))) == 1


def test_group_by_score():
    db = _db(("cm", "Cm7", [36, 39, 43, 46], None), ("x", "Cm7", [36, 43, 39, 46], None), ("y", "Cm7", [48, 46, 43, 39], None))
    seq = ChordSequence.parse("Cm7")
    adaptations = [FragmentAdaptation(f, seq) for f in db.fragments_of(1)]
    for a, v in zip(adaptations, (80, 90, 80)):
        a.score = CompatibilityScore.from_overall(v)
    groups = Scorer.group_by_score(adaptations)
    assert [g[0].overall for g in groups] == [90, 80]
    assert [a.fragment.id for a in groups[1][1]] == ["cm#fr=0#sz=1", "y#fr=0#sz=1"]
