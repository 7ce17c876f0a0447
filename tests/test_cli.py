"""Tests for the command-line interface."""

from pathlib import Path

import orjson
import pytest
from click.testing import CliRunner

from lora_dashboard.cli import main


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    latest = tmp_path / "latest.txt"
    latest.write_text('{"id":"P1","latitude":0,"longitude":0,"battery":50}')
    bulk = tmp_path / "data.txt"
    bulk.write_text(
        '{"id":"p2","alert":1,"temperature":"27.0","pressure":"923.0","battery":45}\n'
    )
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps({
        "sources": {
            "latest": {"location": str(latest)},
            "bulk": {"location": str(bulk)},
        },
        "alert_log": {"store_path": str(tmp_path / "store.json")},
        "output": {"mode": "file", "file_path": str(tmp_path / "dashboard.json")},
    }))
    return path


def test_validate_config(config_file: Path) -> None:
    result = CliRunner().invoke(
        main, ["-c", str(config_file), "--log-level", "error", "--validate-config"]
    )
    assert result.exit_code == 0


def test_bad_config_exits_1(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")
    result = CliRunner().invoke(main, ["-c", str(path)])
    assert result.exit_code == 1


def test_once_then_log_show_and_clear(config_file: Path, tmp_path: Path) -> None:
    runner = CliRunner()
    base = ["-c", str(config_file), "--log-level", "error"]

    result = runner.invoke(main, base + ["--once"])
    assert result.exit_code == 0, result.output

    doc = orjson.loads((tmp_path / "dashboard.json").read_bytes())
    assert doc["markers"]["p1"]["lat"] == 12.9238
    assert doc["devices"]["p1"]["latitude"] == 0
    assert "P2 ALERT detected" in doc["log"][0]

    result = runner.invoke(main, base + ["log", "show"])
    assert result.exit_code == 0
    assert "P2 ALERT detected" in result.output

    result = runner.invoke(main, base + ["log", "clear"])
    assert result.exit_code == 0
    store = orjson.loads((tmp_path / "store.json").read_bytes())
    assert "lora_alert_log" not in store
    doc = orjson.loads((tmp_path / "dashboard.json").read_bytes())
    assert doc["log"] == []
    assert doc["log_empty"] is True
