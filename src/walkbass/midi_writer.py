from __future__ import annotations

from typing import List, Optional, Tuple

from mido import Message, MetaMessage, MidiFile, MidiTrack, bpm2tempo

from .chord_sequence import ChordSequence
from .phrase import Phrase
from .timebase import beats_to_ticks


def write_phrase(
    phrase: Phrase,
    out_path: str,
    bpm: float = 120.0,
    ppq: int = 480,
    channel: int = 1,
    chord_sequence: Optional[ChordSequence] = None,
) -> None:
    """
    Write a single-track MIDI file of phrase using absolute tick scheduling.
    Steps:
      - create track, set tempo and time signature meta
      - add one marker per chord of chord_sequence, if given
      - sort by (tick, note_off before note_on)
      - delta-encode times
    """
    mid = MidiFile(type=1)
    mid.ticks_per_beat = int(ppq)

    track = MidiTrack()
    mid.tracks.append(track)

    track.append(MetaMessage("track_name", name="Bass", time=0))
    track.append(MetaMessage("set_tempo", tempo=bpm2tempo(bpm), time=0))

    # (tick, priority, message): markers first, then note_off before note_on
    msgs: List[Tuple[int, int, object]] = []
    if chord_sequence is not None:
        ts = chord_sequence.time_signature
        track.append(MetaMessage("time_signature", numerator=ts.beats_per_bar, denominator=4, time=0))
        for slot in chord_sequence:
            tick = beats_to_ticks(slot.position.to_beats(ts), ppq)
            msgs.append((tick, 0, MetaMessage("marker", text=slot.symbol.name, time=0)))

    for ev in phrase:
        start = max(0, beats_to_ticks(ev.start, ppq))
        end = start + max(1, beats_to_ticks(ev.duration, ppq))
        msgs.append((start, 2, Message("note_on", note=ev.pitch, velocity=ev.velocity, channel=channel, time=0)))
        msgs.append((end, 1, Message("note_off", note=ev.pitch, velocity=0, channel=channel, time=0)))

    msgs.sort(key=lambda t: (t[0], t[1]))

    last_t = 0
    for abs_t, _prio, msg in msgs:
        msg.time = max(0, abs_t - last_t)  # type: ignore[attr-defined]
        track.append(msg)
        last_t = abs_t

    mid.save(out_path)
