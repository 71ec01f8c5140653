"""
Walking bass fragment database and tiling engine.

Recorded bass sessions are cut into 1-4 bar fragments, indexed by bass style
and chord root profile, scored against target chords and tiled into a bass
line.
"""

__all__ = [
    "timebase",
    "harmony",
    "phrase",
    "chord_sequence",
    "fragment",
    "score",
    "adaptation",
    "scorer",
    "database",
    "tiling",
    "candidate_store",
    "tiler",
    "consistency",
    "midi_loader",
    "midi_writer",
    "config",
]
