from __future__ import annotations

import pytest

from walkbass.errors import ChordSymbolError
from walkbass.harmony import MINOR, SUS, ChordSymbol, chord_type, chord_type_compatibility, format_pitch, pitch_class


def test_parse_chord_symbols():
    cs = ChordSymbol.parse("Bbmaj7/D")
    assert cs.root == 10
    assert cs.chord_type.name == "M7"
    assert cs.bass == 2
    assert cs.name == "BbM7/D"

    cs = ChordSymbol.parse("F#7b9")
    assert cs.root == 6
    assert cs.bass == 6
    assert cs.chord_type.intervals == (0, 4, 7, 10, 1)

    assert ChordSymbol.parse("C-7").chord_type.name == "m7"
    assert ChordSymbol.parse("Eø").chord_type.name == "m7b5"
    assert ChordSymbol.parse("G").chord_type.name == ""
    assert ChordSymbol.parse("Ddim7").chord_type.family == MINOR
    assert ChordSymbol.parse("G7sus4").chord_type.family == SUS


@pytest.mark.parametrize("text", ["", "H7", "Cxyz", "C/Q"])
def test_parse_invalid_chord_symbols(text):
    with pytest.raises(ChordSymbolError):
        ChordSymbol.parse(text)


def test_pitch_class_names():
    assert pitch_class("C") == 0
    assert pitch_class("Db") == 1
    assert pitch_class("B") == 11
    assert pitch_class("Cb") == 11
    assert format_pitch(60) == "C4"
    assert format_pitch(39) == "Eb2"


def test_chord_symbol_pitch_classes_and_transpose():
    cs = ChordSymbol.parse("D7")
    assert cs.pitch_classes() == [2, 6, 9, 0]
    assert cs.contains_pitch_class(6)
    assert not cs.contains_pitch_class(5)
    assert cs.transposed(3).name == "F7"


def test_simplified_chord_types():
    assert chord_type("13").simplified(4).name == "7"
    assert chord_type("m11").simplified(4).name == "m7"
    assert chord_type("69").simplified(4).name == "6"
    assert chord_type("9sus").simplified(4).name == "7sus"
    assert chord_type("m7").simplified(4).name == "m7"
    assert chord_type("M7").simplified(3).name == ""


def test_compatibility_equal_types_is_max():
    assert chord_type_compatibility(chord_type("m7"), chord_type("m7")) == 100
    # 6th and major 7th are considered equal
    assert chord_type_compatibility(chord_type("6"), chord_type("M7")) == 100


def test_compatibility_more_source_degrees_is_zero():
    assert chord_type_compatibility(chord_type("7"), chord_type("")) == 0


def test_compatibility_unused_degrees_penalty():
    # C E G over C9: no 9th, no b7
    assert chord_type_compatibility(chord_type(""), chord_type("9")) == 80
    # C D E G over C9: 9th played, no b7
    durations = {0: 1.0, 2: 1.0, 4: 1.0, 7: 1.0}
    assert chord_type_compatibility(chord_type(""), chord_type("9"), durations) == 90


def test_compatibility_clashing_notes():
    # C D E G over Cm: the major third clashes with the minor third
    assert chord_type_compatibility(chord_type(""), chord_type("m"), {0: 1, 2: 1, 4: 1, 7: 1}) == 0
    # C D C G over Cm: no third played, compatible but third unused
    assert chord_type_compatibility(chord_type(""), chord_type("m"), {0: 2, 2: 1, 7: 1}) == 90
    # A long minor third dominates a short major third
    assert chord_type_compatibility(chord_type(""), chord_type("m"), {0: 1, 3: 2, 4: 0.5, 7: 1}) == 100
