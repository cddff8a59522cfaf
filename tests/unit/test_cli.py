import json
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf
import yaml
from click.testing import CliRunner

from aurora_sync.rendering.io import export_timeline
from aurora_sync.ui.cli import cli

from conftest import make_timeline, make_track


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "aurora.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "storage": {"data_dir": str(tmp_path / "data")},
                "profiler": {
                    "iterations": 1,
                    "settle_s": 0.0,
                    "poll_interval_s": 0.01,
                    "state_timeout_s": 0.5,
                    "transition_durations_s": [0.05],
                    "brightness_sweep": [1, 255],
                    "reference_colors": [[255, 0, 0]],
                },
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def song(tmp_path: Path) -> Path:
    sr = 22050
    t = np.arange(sr) / sr
    tone = (0.4 * np.sin(2 * np.pi * 110.0 * t) * (0.5 + 0.5 * np.sign(np.sin(2 * np.pi * 4 * t)))).astype(
        np.float32
    )
    path = tmp_path / "song.wav"
    sf.write(path, tone, sr)
    return path


def test_scan_lists_mock_lights(config_path: Path) -> None:
    result = CliRunner().invoke(cli, ["--config", str(config_path), "scan", "--mock"])

    assert result.exit_code == 0, result.output
    assert "light.living_room_strip" in result.output
    assert "3 lights" in result.output


def test_scan_capability_filter(config_path: Path) -> None:
    result = CliRunner().invoke(cli, ["--config", str(config_path), "scan", "--mock", "--capability", "color"])

    assert result.exit_code == 0, result.output
    assert "light.living_room_lamp" not in result.output
    assert "2 lights" in result.output


def test_timeline_import_list_export_delete(config_path: Path, tmp_path: Path) -> None:
    runner = CliRunner()
    document = tmp_path / "show.json"
    document.write_text(export_timeline(make_timeline([make_track("light.a", [0.0, 0.5])])), encoding="utf-8")
    base = ["--config", str(config_path), "timelines"]

    imported = runner.invoke(cli, base + ["import", str(document)])
    listed = runner.invoke(cli, base + ["list"])
    exported_path = tmp_path / "out.json"
    exported = runner.invoke(cli, base + ["export", "tl-1", "-o", str(exported_path)])
    deleted = runner.invoke(cli, base + ["delete", "tl-1"])
    missing = runner.invoke(cli, base + ["delete", "tl-1"])

    assert imported.exit_code == 0, imported.output
    assert "Imported tl-1 (2 commands)" in imported.output
    assert "tl-1" in listed.output
    assert exported.exit_code == 0, exported.output
    assert json.loads(exported_path.read_text(encoding="utf-8"))["tracks"][0]["entityId"] == "light.a"
    assert deleted.exit_code == 0
    assert missing.exit_code == 1


def test_invalid_timeline_import_fails(config_path: Path, tmp_path: Path) -> None:
    document = tmp_path / "bad.json"
    document.write_text(json.dumps({"id": "x"}), encoding="utf-8")

    result = CliRunner().invoke(cli, ["--config", str(config_path), "timelines", "import", str(document)])

    assert result.exit_code == 1
    assert "missing tracks" in result.output


def test_analyze_reports_features(config_path: Path, song: Path) -> None:
    result = CliRunner().invoke(cli, ["--config", str(config_path), "analyze", str(song), "--json"])

    assert result.exit_code == 0, result.output
    assert '"sampleRate": 22050' in result.output


def test_profile_render_and_play_with_mock_platform(config_path: Path, song: Path) -> None:
    runner = CliRunner()
    base = ["--config", str(config_path)]

    profiled = runner.invoke(cli, base + ["profile", "light.living_room_strip", "--mock"])
    rendered = runner.invoke(cli, base + ["render", str(song), "--mock", "--name", "Song", "--intensity", "0.5"])
    listed = runner.invoke(cli, base + ["timelines", "list"])

    assert profiled.exit_code == 0, profiled.output
    assert "latency" in profiled.output
    assert (config_path.parent / "data" / "profiles" / "light.living_room_strip.json").exists()
    assert rendered.exit_code == 0, rendered.output
    assert "(unprofiled)" in rendered.output
    assert "Song" in listed.output

    timeline_id = next((config_path.parent / "data" / "timelines").glob("*.json")).stem
    played = runner.invoke(cli, base + ["play", timeline_id, "--mock", "--start", "0.5"])

    assert played.exit_code == 0, played.output
    assert "Dispatched" in played.output


def test_play_unknown_timeline_fails(config_path: Path) -> None:
    result = CliRunner().invoke(cli, ["--config", str(config_path), "play", "nope", "--mock"])

    assert result.exit_code == 1
    assert "not found" in result.output
