"""Tests for the atboot command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from atboot.cli import build_parser, main


def test_help(capsys) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["--help"])
    assert exc.value.code == 0
    assert "surveydir" in capsys.readouterr().out


def test_stepwise_flag() -> None:
    parser = build_parser()
    assert parser.parse_args(["d"]).run_stepwise is None
    assert parser.parse_args(["d", "--no-stepwise"]).run_stepwise is False
    assert parser.parse_args(["d", "--stepwise"]).run_stepwise is True


def test_run_writes_report(raw_survey: Path, tmp_path: Path) -> None:
    out = tmp_path / "report.html"
    code = main([
        str(raw_survey),
        "--classes", "SS1",
        "--nreplicates", "3",
        "--nfit", "2",
        "--no-stepwise",
        "--seed", "1",
        "--output", str(out),
    ])
    assert code == 0
    assert out.is_file()


def test_config_file_with_override(raw_survey: Path, tmp_path: Path) -> None:
    config = tmp_path / "analysis.json"
    config.write_text(json.dumps({
        "surveydir": str(raw_survey),
        "nreplicates": 3,
        "nfit": 2,
        "run_stepwise": False,
        "output": str(tmp_path / "from_config.html"),
    }))
    assert main(["--config", str(config), "--output", str(tmp_path / "override.html")]) == 0
    assert (tmp_path / "override.html").is_file()
    assert not (tmp_path / "from_config.html").exists()


def test_failure_returns_one(tmp_path: Path, caplog) -> None:
    assert main([str(tmp_path / "missing"), "--no-stepwise"]) == 1
    assert "Analysis failed" in caplog.text


def test_no_survey_dir_fails() -> None:
    assert main([]) == 1
