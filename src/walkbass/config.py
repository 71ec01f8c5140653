from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import InvalidArgumentError
from .fragment import BassStyle
from .timebase import TimeSignature


@dataclass
class SourceConfig:
    """One MIDI file of recorded sessions."""

    path: str
    session_prefix: str = ""
    # Added to the tags of every session of the file
    session_tag: Optional[str] = None


@dataclass
class EngineConfig:
    sources: List[SourceConfig] = field(default_factory=list)
    beats_per_bar: int = 4
    # Candidate store
    width: int = 8
    score_window: float = 5.0
    randomize: bool = True
    seed: int = 1234
    # Scorer
    strict_start_end: bool = False
    style: BassStyle = BassStyle.WALKING
    # Generated fragments for bars no recorded material fits
    custom_fragments: bool = True
    # MIDI output
    bpm: float = 120.0
    ppq: int = 480
    channel: int = 1
    out: str = "out/bass.mid"

    def __post_init__(self) -> None:
        if self.width < 1:
            raise InvalidArgumentError(f"width must be >= 1, got {self.width}")
        if self.beats_per_bar < 1:
            raise InvalidArgumentError(f"beats_per_bar must be >= 1, got {self.beats_per_bar}")
        if self.bpm <= 0 or self.ppq <= 0:
            raise InvalidArgumentError(f"invalid tempo/ppq {self.bpm}/{self.ppq}")
        if not 0 <= self.channel <= 15:
            raise InvalidArgumentError(f"invalid MIDI channel {self.channel}")

    @property
    def time_signature(self) -> TimeSignature:
        return TimeSignature(self.beats_per_bar)

    @property
    def effective_score_window(self) -> float:
        """Score window used by the candidate store, 0 when randomization is off."""
        return self.score_window if self.randomize else 0.0


def _source_from_dict(d: Any, base_dir: Optional[str]) -> SourceConfig:
    if isinstance(d, str):
        d = {"path": d}
    if not isinstance(d, dict) or "path" not in d:
        raise InvalidArgumentError(f"invalid source entry: {d!r}")
    path = str(d["path"])
    if base_dir and not os.path.isabs(path):
        path = os.path.join(base_dir, path)
    tag = d.get("session_tag")
    return SourceConfig(
        path=path,
        session_prefix=str(d.get("session_prefix", "")),
        session_tag=str(tag) if tag else None,
    )


def _engine_config_from_dict(raw: Dict[str, Any], base_dir: Optional[str] = None) -> EngineConfig:
    return EngineConfig(
        sources=[_source_from_dict(s, base_dir) for s in raw.get("sources", [])],
        beats_per_bar=int(raw.get("beats_per_bar", 4)),
        width=int(raw.get("width", 8)),
        score_window=float(raw.get("score_window", 5.0)),
        randomize=bool(raw.get("randomize", True)),
        seed=int(raw.get("seed", 1234)),
        strict_start_end=bool(raw.get("strict_start_end", False)),
        style=BassStyle.parse(str(raw.get("style", "walking"))),
        custom_fragments=bool(raw.get("custom_fragments", True)),
        bpm=float(raw.get("bpm", 120.0)),
        ppq=int(raw.get("ppq", 480)),
        channel=int(raw.get("channel", 1)),
        out=str(raw.get("out", "out/bass.mid")),
    )


def engine_config_from_dict(raw: Dict[str, Any], base_dir: Optional[str] = None) -> EngineConfig:
    """Build an EngineConfig from parsed JSON. Relative source paths are resolved against base_dir."""
    return _engine_config_from_dict(raw, base_dir)


def load_engine_config(path: str) -> EngineConfig:
    with open(path, "r") as f:
        raw = json.load(f)
    return _engine_config_from_dict(raw, os.path.dirname(os.path.abspath(path)))
