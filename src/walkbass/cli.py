from __future__ import annotations

import argparse
import json
import os
import random
from typing import List

from .chord_sequence import ChordSequence
from .config import EngineConfig, SourceConfig, load_engine_config
from .database import DatabaseLoader, FragmentDatabase
from .errors import WalkBassError
from .fragment import BassStyle
from .logging_utils import configure_logging
from .midi_writer import write_phrase
from .scorer import Scorer
from .tiler import generate_bass_line


def _load_config(args: argparse.Namespace) -> EngineConfig:
    cfg = load_engine_config(args.config) if args.config else EngineConfig()
    for path in args.source or []:
        cfg.sources.append(SourceConfig(path=path))
    return cfg


def _load_database(cfg: EngineConfig) -> FragmentDatabase:
    return DatabaseLoader(cfg).get()


def _style(args: argparse.Namespace, cfg: EngineConfig) -> BassStyle:
    return BassStyle.parse(args.style) if args.style else cfg.style


def _cmd_stats(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    db = _load_database(cfg)
    stats = db.stats()
    if args.json:
        payload = {"fragments": len(db), "sessions": len(db.session_ids()), "fingerprint": db.fingerprint(), "by_style": stats}
        print(json.dumps(payload))
        return 0
    print(f"{len(db)} fragments from {len(db.session_ids())} sessions")
    print(f"{'style':20}  " + "  ".join(f"sz={n}" for n in sorted(next(iter(stats.values())))))
    for style, per_size in stats.items():
        print(f"{style:20}  " + "  ".join(f"{per_size[n]:4d}" for n in sorted(per_size)))
    return 0


def _cmd_query(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    db = _load_database(cfg)
    seq = ChordSequence.parse(args.chords, cfg.time_signature)
    scorer = Scorer(db, styles=(_style(args, cfg),))
    candidates = scorer.find_candidates(seq)[: args.limit]
    if args.json:
        print(json.dumps([
            {
                "id": a.fragment.id,
                "overall": round(a.score.overall, 2),
                "harmonic": a.score.harmonic,
                "transposability": a.score.transposability,
            }
            for a in candidates
        ]))
        return 0
    if not candidates:
        print(f"No compatible fragment for {seq}")
        return 0
    for a in candidates:
        print(f"{a.score.overall:6.1f}  {a.fragment.id:40}  {a.fragment.chord_sequence}  {a.score}")
    return 0


def _cmd_check(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    db = _load_database(cfg)
    report = db.check_consistency(_style(args, cfg))
    if report.is_ok:
        print(f"No consistency issue for style {report.style.value}")
    for s in report.summaries:
        print(s)
    return 0


def _cmd_generate(args: argparse.Namespace) -> int:
    cfg = _load_config(args)
    if args.seed is not None:
        cfg.seed = args.seed
    db = _load_database(cfg)
    seq = ChordSequence.parse(args.chords, cfg.time_signature)
    rng = random.Random(args.seed) if args.seed is not None else None
    line = generate_bass_line(db, seq, _style(args, cfg), cfg, rng)
    out = args.out or cfg.out
    out_dir = os.path.dirname(out)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    write_phrase(line.phrase, out, bpm=cfg.bpm, ppq=cfg.ppq, channel=cfg.channel, chord_sequence=seq)
    print(f"Wrote {len(line.phrase)} notes to {out}")
    for a in line.tiling.adaptations():
        print(f"  {a.bar_range}  {a.fragment.id}  {a.score}")
    untiled = line.tiling.untiled_zones()
    if untiled:
        print("Untiled bars: " + " ".join(str(z) for z in untiled))
    return 0


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Walking bass fragment database and generator")
    parser.add_argument("--config", default=None, help="Path to JSON engine config")
    parser.add_argument("--source", action="append", default=None, help="Session MIDI file (repeatable)")
    parser.add_argument("--log-level", default=None, help="Override WALKBASS_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_stats = subparsers.add_parser("stats", help="Show fragment counts per style and size")
    p_stats.add_argument("--json", action="store_true", help="Emit JSON instead of table output")
    p_stats.set_defaults(func=_cmd_stats)

    p_query = subparsers.add_parser("query", help="List the fragments compatible with a chord sequence")
    p_query.add_argument("--chords", required=True, help='Chords, one bar per word, e.g. "Cm7 F7 Bbmaj7"')
    p_query.add_argument("--style", default=None, help="Bass style (default from config)")
    p_query.add_argument("--limit", type=int, default=20, help="Max number of fragments listed")
    p_query.add_argument("--json", action="store_true", help="Emit JSON instead of table output")
    p_query.set_defaults(func=_cmd_query)

    p_check = subparsers.add_parser("check", help="Run the database consistency checks for a style")
    p_check.add_argument("--style", default=None, help="Bass style (default from config)")
    p_check.set_defaults(func=_cmd_check)

    p_gen = subparsers.add_parser("generate", help="Generate a bass line and write it as MIDI")
    p_gen.add_argument("--chords", required=True, help='Chords, one bar per word, e.g. "Dm7 G7 Cmaj7 %%"')
    p_gen.add_argument("--style", default=None, help="Bass style (default from config)")
    p_gen.add_argument("--seed", type=int, default=None, help="RNG seed")
    p_gen.add_argument("--out", default=None, help="Output MIDI path (default from config)")
    p_gen.set_defaults(func=_cmd_generate)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    try:
        return args.func(args)
    except (WalkBassError, FileNotFoundError) as exc:
        print(f"error: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
