from __future__ import annotations

from pathlib import Path

import mido
import pytest

from walkbass.chord_sequence import ChordSequence
from walkbass.config import EngineConfig, SourceConfig
from walkbass.database import FragmentDatabase
from walkbass.fragment import BassStyle
from walkbass.midi_loader import load_sessions
from walkbass.midi_writer import write_phrase
from walkbass.phrase import NoteEvent, Phrase

PPQ = 480
_S1 = [36, 39, 43, 46, 41, 45, 48, 51]
_S2 = [34, 38, 41, 44]


def _make_sessions_midi(path: Path, extra_markers=()) -> None:
    """Two sessions: S1 "Cm7 F7" (double-note tag, target 43) then S2 "Bb7"."""
    markers = [
        (0, "_S1"),
        (0, "#dbl #tn=43"),
        (0, "Cm7"),
        (4 * PPQ, "F7"),
        (8 * PPQ, "_S2"),
        (8 * PPQ, "Bb7"),
        (12 * PPQ, "_END"),
    ]
    markers.extend(extra_markers)

    # (tick, priority, message): markers, then note_off, then note_on
    events = [(tick, 0, mido.MetaMessage("marker", text=text)) for tick, text in markers]
    for start_beat, pitches in ((0, _S1), (8, _S2)):
        for i, pitch in enumerate(pitches):
            on = (start_beat + i) * PPQ
            events.append((on, 2, mido.Message("note_on", note=pitch, velocity=90)))
            events.append((on + int(0.9 * PPQ), 1, mido.Message("note_off", note=pitch, velocity=0)))
    events.sort(key=lambda e: (e[0], e[1]))

    mid = mido.MidiFile(ticks_per_beat=PPQ)
    track = mido.MidiTrack()
    mid.tracks.append(track)
    last_tick = 0
    for tick, _prio, msg in events:
        msg.time = tick - last_tick
        last_tick = tick
        track.append(msg)
    mid.save(str(path))


def test_load_sessions(tmp_path: Path) -> None:
    path = tmp_path / "takes.mid"
    _make_sessions_midi(path)

    sessions = load_sessions(path)
    assert [s.id for s in sessions] == ["S1", "S2"]

    s1, s2 = sessions
    assert s1.tags == ("dbl",)
    assert s1.style == BassStyle.WALKING_DOUBLE_NOTE
    assert s1.target_note == 43
    assert s1.chord_sequence == ChordSequence.parse("Cm7 F7")
    assert [n.pitch for n in s1.phrase] == _S1
    assert s1.phrase[1].start == pytest.approx(1.0)
    assert s1.phrase[1].duration == pytest.approx(0.9)

    assert s2.style == BassStyle.WALKING
    assert s2.target_note is None
    assert s2.chord_sequence == ChordSequence.parse("Bb7")
    assert [n.pitch for n in s2.phrase] == _S2
    assert s2.phrase[0].start == 0.0


def test_load_sessions_prefix_and_tag(tmp_path: Path) -> None:
    path = tmp_path / "takes.mid"
    _make_sessions_midi(path)
    sessions = load_sessions(path, session_prefix="f1/", session_tag="2feel")
    assert [s.id for s in sessions] == ["f1/S1", "f1/S2"]
    assert sessions[1].tags == ("2feel",)
    assert sessions[1].style == BassStyle.TWO_FEEL


def test_bad_markers_are_logged_and_ignored(tmp_path: Path, caplog) -> None:
    path = tmp_path / "takes.mid"
    _make_sessions_midi(path, extra_markers=[(PPQ, "xyz"), (2 * PPQ, "#late"), (3 * PPQ, "Hm7"), (13 * PPQ, "C7")])
    sessions = load_sessions(path)
    assert [s.id for s in sessions] == ["S1", "S2"]
    assert sessions[0].tags == ("dbl",)
    messages = [r.getMessage() for r in caplog.records if r.levelname == "WARNING"]
    assert any("unknown marker 'xyz'" in m for m in messages)
    assert any("'#late' not at start" in m for m in messages)
    assert any("outside any session" in m for m in messages)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_sessions(tmp_path / "nope.mid")


def test_database_from_config(tmp_path: Path) -> None:
    path = tmp_path / "takes.mid"
    _make_sessions_midi(path)
    db = FragmentDatabase.from_config(EngineConfig(sources=[SourceConfig(path=str(path), session_prefix="t:")]))
    assert db.session_ids() == ["t:S1", "t:S2"]
    assert db.session_resource("t:S1") == str(path)
    assert db.get("t:S1#fr=0#sz=2").style == BassStyle.WALKING_DOUBLE_NOTE
    assert db.get("t:S2#fr=0#sz=1").first_chord.symbol.name == "Bb7"
    assert not any(sid.startswith("stub-") for sid in db.session_ids())


def test_write_phrase(tmp_path: Path) -> None:
    out = tmp_path / "bass.mid"
    phrase = Phrase.of(NoteEvent(start=float(i), pitch=p, duration=0.9, velocity=100) for i, p in enumerate(_S1))
    write_phrase(phrase, str(out), bpm=140, ppq=PPQ, chord_sequence=ChordSequence.parse("Cm7 F7"))

    mid = mido.MidiFile(str(out))
    assert mid.ticks_per_beat == PPQ
    msgs = [m for tr in mid.tracks for m in tr]
    tempos = [m.tempo for m in msgs if m.type == "set_tempo"]
    assert abs(mido.tempo2bpm(tempos[0]) - 140) < 1e-2
    assert [m.text for m in msgs if m.type == "marker"] == ["Cm7", "F7"]
    assert [m.note for m in msgs if m.type == "note_on" and m.velocity > 0] == _S1

    # No session marker: the chord markers are ignored
    assert load_sessions(out) == []
