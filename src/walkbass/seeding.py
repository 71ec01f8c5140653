from __future__ import annotations

"""
Hashing and seed derivation helpers.

Provides:
- canonicalize_json(obj) -> str (sorted keys, compact)
- audit_hash(obj) -> str (sha256 of canonicalized JSON)
- master_seed(base_seed, payload, salt) -> int (stable 32-bit seed)
- chord_sequence_seed(base_seed, chord_sequence) -> int

No external dependencies.
"""

import hashlib
import json
import random
from typing import Any

from .chord_sequence import ChordSequence


def canonicalize_json(obj: Any) -> str:
    """Return a canonical JSON string with sorted keys and compact separators."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def audit_hash(obj: Any) -> str:
    """SHA-256 hex digest of the canonicalized JSON representation of obj."""
    data = canonicalize_json(obj).encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def master_seed(base_seed: int, payload: Any, salt: str = "walkbass_v1") -> int:
    """Derive a stable 32-bit seed from a base seed and arbitrary payload.

    Unlike hash(), the result does not depend on PYTHONHASHSEED.
    """
    base = int(base_seed) & 0xFFFFFFFF
    canon = canonicalize_json(payload)
    h = hashlib.sha256()
    h.update(salt.encode("utf-8"))
    h.update(base.to_bytes(4, "little"))
    h.update(canon.encode("utf-8"))
    return int.from_bytes(h.digest()[:4], "little")


def chord_sequence_payload(chord_sequence: ChordSequence) -> Any:
    return {
        "bars": [chord_sequence.bar_range.from_bar, chord_sequence.bar_range.to_bar],
        "ts": chord_sequence.time_signature.beats_per_bar,
        "chords": [[s.position.bar, s.position.beat, s.symbol.name] for s in chord_sequence],
    }


def chord_sequence_seed(base_seed: int, chord_sequence: ChordSequence) -> int:
    """Seed for one generation request: same base seed and chords, same bass line."""
    return master_seed(base_seed, chord_sequence_payload(chord_sequence))


def rng_for(base_seed: int, chord_sequence: ChordSequence) -> random.Random:
    return random.Random(chord_sequence_seed(base_seed, chord_sequence))
