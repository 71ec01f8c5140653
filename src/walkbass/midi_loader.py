from __future__ import annotations

"""
Bulk loader: marker-annotated MIDI files of recorded bass sessions.

Marker (or text) meta events drive the parsing:
- "_Name" opens session Name, closing the previous one; "_END" closes the last one
- "#tag" markers at the session start add tags, "#tn=48" sets the session target note
- markers starting with A-G are chord symbols, e.g. "Cm7" or "Bbmaj7/D"

Session bars are counted from the session marker in the given time signature.
"""

import logging
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import mido

from .chord_sequence import ChordSequence, ChordSlot, Position
from .errors import InvalidArgumentError
from .fragment import NON_QUANTIZED_WINDOW, Session
from .harmony import ChordSymbol
from .logging_utils import log_event
from .phrase import NoteEvent, Phrase
from .timebase import FOUR_FOUR, BarRange, TimeSignature, ticks_to_beats

logger = logging.getLogger(__name__)

END_MARKER = "_END"
_MARKER_TYPES = ("marker", "text", "cue_marker")
# Chord positions are rounded to this beat resolution
_CHORD_BEAT_RESOLUTION = 4


@dataclass
class _RawNote:
    start: int
    end: int
    pitch: int
    velocity: int


@dataclass
class _RawSession:
    name: str
    start: int
    end: int = -1
    tags: List[str] = field(default_factory=list)
    target_note: Optional[int] = None
    chords: List[Tuple[int, str]] = field(default_factory=list)


def _iter_events(midi_path: Path) -> Tuple[int, List[_RawNote], List[Tuple[int, str]]]:
    """Return ticks_per_beat, notes and (tick, text) markers of all tracks."""
    mf = mido.MidiFile(str(midi_path))
    notes: List[_RawNote] = []
    markers: List[Tuple[int, str]] = []
    for track in mf.tracks:
        tick = 0
        pending: Dict[Tuple[int, int], Tuple[int, int]] = {}
        for msg in track:
            tick += int(getattr(msg, "time", 0))
            mtype = getattr(msg, "type", None)
            if mtype in _MARKER_TYPES:
                text = str(getattr(msg, "text", "")).strip()
                if text:
                    markers.append((tick, text))
            elif mtype == "note_on" and msg.velocity > 0:
                key = (msg.channel, msg.note)
                if key in pending:
                    start, vel = pending.pop(key)
                    notes.append(_RawNote(start, tick, msg.note, vel))
                pending[key] = (tick, msg.velocity)
            elif mtype in ("note_off", "note_on"):
                started = pending.pop((msg.channel, msg.note), None)
                if started is not None:
                    notes.append(_RawNote(started[0], tick, msg.note, started[1]))
        for (_channel, pitch), (start, vel) in pending.items():
            notes.append(_RawNote(start, tick, pitch, vel))
    markers.sort(key=lambda m: m[0])
    notes.sort(key=lambda n: (n.start, n.pitch))
    return mf.ticks_per_beat, notes, markers


def _split_sessions(markers: List[Tuple[int, str]], ppq: int, source: str) -> List[_RawSession]:
    sessions: List[_RawSession] = []
    current: Optional[_RawSession] = None
    tag_window = ppq // 2
    for tick, text in markers:
        if text.startswith("_"):
            if current is not None:
                current.end = tick
                sessions.append(current)
                current = None
            if text.upper() != END_MARKER:
                current = _RawSession(name=text[1:].strip(), start=tick)
        elif current is None:
            logger.warning("%s: marker '%s' at tick %d outside any session, ignored", source, text, tick)
        elif text.startswith("#"):
            if tick - current.start > tag_window:
                logger.warning("%s: tag marker '%s' not at start of session %s, ignored", source, text, current.name)
                continue
            for tok in text.split():
                tok = tok.lstrip("#").strip().lower()
                if tok.startswith("tn="):
                    try:
                        current.target_note = int(tok[3:])
                    except ValueError:
                        logger.warning("%s: invalid target note marker '%s' in session %s", source, text, current.name)
                elif tok:
                    current.tags.append(tok)
        elif text[0] in "ABCDEFG":
            current.chords.append((tick, text))
        else:
            logger.warning("%s: unknown marker '%s' in session %s, ignored", source, text, current.name)
    if current is not None:
        logger.warning("%s: session %s has no %s marker, ignored", source, current.name, END_MARKER)
    return sessions


def _build_session(
    raw: _RawSession,
    notes: List[_RawNote],
    ppq: int,
    ts: TimeSignature,
    session_id: str,
    tags: List[str],
    source: str,
) -> Optional[Session]:
    bpb = ts.beats_per_bar
    length = ticks_to_beats(raw.end - raw.start, ppq)
    nb_bars = max(1, int(math.ceil(length / bpb - 1e-6)))

    slots: List[ChordSlot] = []
    for tick, text in raw.chords:
        beats = round(ticks_to_beats(tick - raw.start, ppq) * _CHORD_BEAT_RESOLUTION) / _CHORD_BEAT_RESOLUTION
        bar = int(beats // bpb)
        if bar >= nb_bars:
            logger.warning("%s: chord '%s' after end of session %s, ignored", source, text, session_id)
            continue
        try:
            slots.append(ChordSlot(Position(bar, beats - bar * bpb), ChordSymbol.parse(text)))
        except InvalidArgumentError as exc:
            logger.warning("%s: session %s: %s", source, session_id, exc)
    if not slots or slots[0].position != Position(0, 0.0):
        logger.warning("%s: session %s has no chord on its first beat, ignored", source, session_id)
        return None

    early = int(NON_QUANTIZED_WINDOW * ppq)
    events: List[NoteEvent] = []
    for n in notes:
        if raw.start - early <= n.start < raw.end:
            start = ticks_to_beats(n.start - raw.start, ppq)
            duration = ticks_to_beats(max(1, n.end - n.start), ppq)
            events.append(NoteEvent(start=start, pitch=n.pitch, duration=duration, velocity=n.velocity))
    if not events:
        logger.warning("%s: session %s has no notes, ignored", source, session_id)
        return None

    try:
        seq = ChordSequence(BarRange(0, nb_bars - 1), ts, _dedup_positions(slots))
        return Session(session_id, seq, Phrase.of(events), tuple(tags), raw.target_note)
    except InvalidArgumentError as exc:
        logger.warning("%s: session %s ignored: %s", source, session_id, exc)
        return None


def _dedup_positions(slots: List[ChordSlot]) -> List[ChordSlot]:
    """Keep the last chord when two chord markers round to the same position."""
    by_pos: Dict[Position, ChordSlot] = {}
    for s in slots:
        by_pos[s.position] = s
    return list(by_pos.values())


def load_sessions(
    path: "str | Path",
    time_signature: TimeSignature = FOUR_FOUR,
    session_prefix: str = "",
    session_tag: Optional[str] = None,
) -> List[Session]:
    """Parse all sessions of a marker-annotated MIDI file.

    Malformed markers and sessions are logged and skipped. Raises
    FileNotFoundError if path does not exist.
    """
    midi_path = Path(path)
    if not midi_path.is_file():
        raise FileNotFoundError(f"session file not found: {midi_path}")
    source = os.path.basename(str(midi_path))
    ppq, notes, markers = _iter_events(midi_path)

    res: List[Session] = []
    seen = set()
    for raw in _split_sessions(markers, ppq, source):
        session_id = f"{session_prefix}{raw.name}"
        if not raw.name:
            logger.warning("%s: unnamed session at tick %d, ignored", source, raw.start)
            continue
        if session_id in seen:
            logger.error("%s: duplicate session id %s, ignored", source, session_id)
            continue
        seen.add(session_id)
        tags = list(raw.tags)
        if session_tag:
            tags.append(session_tag)
        session = _build_session(raw, notes, ppq, time_signature, session_id, tags, source)
        if session is not None:
            res.append(session)

    log_event(logger, "sessions_loaded", source=source, sessions=len(res), notes=len(notes))
    return res
