"""Tests for the command line entry point."""

import json

import main as cli
from conftest import sine, wav_bytes

CONFIG = """
analysis:
  timeout: 120.0
  classification_timeout: 60.0
memory:
  enabled: false
logging:
  level: WARNING
"""


def test_missing_file(tmp_path, capsys):
    assert cli.main([str(tmp_path / "missing.wav")]) == 1
    assert "not found" in capsys.readouterr().out


def test_too_short_file_reports_user_message(tmp_path, capsys):
    path = tmp_path / "short.wav"
    path.write_bytes(wav_bytes(sine(440, 2.0)))

    assert cli.main([str(path)]) == 1
    assert "too short" in capsys.readouterr().out


def test_analyzes_local_file_and_writes_report(tmp_path, capsys):
    config = tmp_path / "config.yaml"
    config.write_text(CONFIG, encoding='utf-8')
    audio = tmp_path / "tone.wav"
    audio.write_bytes(wav_bytes(sine(440, 12.0)))
    report = tmp_path / "report.json"

    exit_code = cli.main([
        str(audio), "--config", str(config), "--output", str(report), "--format", "json",
    ])

    assert exit_code == 0
    assert "ANALYSIS RESULTS" in capsys.readouterr().out
    data = json.loads(report.read_text(encoding='utf-8'))
    assert data["total_tracks"] == 1
    assert str(audio) in data["results"]


def test_logging_settings_come_from_config(tmp_path, monkeypatch):
    calls = []
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: calls.append(kwargs))
    config = tmp_path / "config.yaml"
    config.write_text("logging:\n  level: ERROR\n  format: text\n  colored: false\n", encoding='utf-8')

    cli.main([str(tmp_path / "missing.wav"), "--config", str(config)])

    assert calls[0]['level'] == "ERROR"
    assert calls[0]['log_format'] == "text"
    assert calls[0]['colored'] is False
