from __future__ import annotations

import json
import os
from pathlib import Path

import mido
import pytest

from walkbass import cli
from walkbass.config import EngineConfig, engine_config_from_dict, load_engine_config
from walkbass.errors import InvalidArgumentError
from walkbass.fragment import BassStyle


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)


def test_load_engine_config(tmp_path: Path):
    cfg = {
        "sources": ["takes.mid", {"path": "/data/other.mid", "session_prefix": "o:", "session_tag": "live"}],
        "width": 4,
        "score_window": 2.5,
        "randomize": False,
        "seed": 99,
        "style": "two_feel",
        "bpm": 132,
        "custom_fragments": False,
    }
    p = tmp_path / "cfg.json"
    p.write_text(json.dumps(cfg))

    ec = load_engine_config(str(p))
    assert ec.sources[0].path == os.path.join(str(tmp_path), "takes.mid")
    assert ec.sources[1].path == "/data/other.mid"
    assert ec.sources[1].session_prefix == "o:"
    assert ec.sources[1].session_tag == "live"
    assert ec.width == 4
    assert ec.seed == 99
    assert ec.style == BassStyle.TWO_FEEL
    assert ec.bpm == 132
    assert not ec.custom_fragments
    assert ec.effective_score_window == 0.0
    assert ec.time_signature.beats_per_bar == 4


def test_config_defaults_and_validation():
    ec = engine_config_from_dict({})
    assert ec.width == 8
    assert ec.effective_score_window == 5.0
    assert ec.style == BassStyle.WALKING
    assert ec.custom_fragments
    with pytest.raises(InvalidArgumentError):
        engine_config_from_dict({"width": 0})
    with pytest.raises(InvalidArgumentError):
        engine_config_from_dict({"style": "bossa"})
    with pytest.raises(InvalidArgumentError):
        engine_config_from_dict({"sources": [{"session_prefix": "x"}]})
    with pytest.raises(InvalidArgumentError):
        EngineConfig(channel=16)


def test_cli_stats_json(capsys):
    assert cli.main(["stats", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["fragments"] > 0
    assert payload["by_style"]["walking"]["1"] > 0
    assert len(payload["fingerprint"]) == 64


def test_cli_query(capsys):
    assert cli.main(["query", "--chords", "Fm7", "--limit", "2", "--json"]) == 0
    rows = json.loads(capsys.readouterr().out)
    assert 1 <= len(rows) <= 2
    assert rows[0]["id"] == "stub-walking-m7#fr=0#sz=1"
    assert rows[0]["harmonic"] == 100

    assert cli.main(["query", "--chords", "Fm7,Bb7"]) == 0
    assert "No compatible fragment" in capsys.readouterr().out


def test_cli_generate(tmp_path: Path, capsys):
    out = tmp_path / "out" / "bass.mid"
    rc = cli.main(["generate", "--chords", "Dm7 G7 Cmaj7 %", "--seed", "3", "--out", str(out)])
    assert rc == 0
    assert out.exists()
    assert "Wrote" in capsys.readouterr().out
    mid = mido.MidiFile(str(out))
    markers = [m.text for tr in mid.tracks for m in tr if m.type == "marker"]
    assert markers == ["Dm7", "G7", "CM7"]
    assert any(m.type == "note_on" for tr in mid.tracks for m in tr)


def test_cli_check(capsys):
    assert cli.main(["check", "--style", "walking"]) == 0
    assert "chord types have fewer than 2" in capsys.readouterr().out


def test_cli_errors(tmp_path: Path, capsys):
    assert cli.main(["--source", str(tmp_path / "missing.mid"), "stats"]) == 2
    assert capsys.readouterr().out.startswith("error:")
    assert cli.main(["query", "--chords", "Hm7"]) == 2
    assert "invalid chord symbol" in capsys.readouterr().out
