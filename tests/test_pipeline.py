"""End-to-end tests of the analysis pipeline and its HTML report."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from atboot.config import AnalysisConfig
from atboot.pipeline import run_survey_analysis
from atboot.report import render_report, write_report

from conftest import N_TARGET_AGES


def test_single_class_scenario(raw_survey: Path) -> None:
    config = AnalysisConfig(
        raw_survey, classes=("SS1",), resolution=10.0, nreplicates=50, nfit=5, run_stepwise=False, seed=1
    )
    result = run_survey_analysis(config)

    assert len(result.survey.trawl_locations) == len(pd.read_csv(raw_survey / "trawl_locations.csv"))
    assert list(result.problems) == ["SS1"]
    assert len(result.results) == 50 * N_TARGET_AGES
    assert result.n_ages == N_TARGET_AGES
    assert "00" not in set(result.results["age"])
    assert result.stepwise is None and result.stepwise_cv is None
    assert result.totals["n"] > 0


def test_same_seed_same_result(raw_survey: Path) -> None:
    config = AnalysisConfig(raw_survey, nreplicates=4, nfit=3, run_stepwise=False, seed=42)
    a = run_survey_analysis(config)
    b = run_survey_analysis(config)
    pd.testing.assert_frame_equal(a.results, b.results)
    assert a.problems["SS1"].variogram == b.problems["SS1"].variogram


def test_report_with_stepwise(raw_survey: Path, tmp_path: Path) -> None:
    config = AnalysisConfig(
        raw_survey,
        classes=("SS1", "SS2"),
        nreplicates=5,
        nfit=3,
        stepwise_replicates=3,
        stepwise_nboot=10,
        seed=3,
        output=tmp_path / "out" / "report.html",
    )
    result = run_survey_analysis(config)
    assert result.stepwise is not None
    assert len(result.stepwise_cv) == 10 * 7

    path = write_report(result, rng=np.random.default_rng(0))
    assert path == config.report_path
    text = path.read_text(encoding="utf-8")
    assert text.startswith("<!DOCTYPE html>")
    assert "Stepwise error decomposition" in text
    assert "Class SS2" in text
    assert text.count("data:image/png;base64,") >= 8


def test_report_without_stepwise_has_no_stepwise_section(raw_survey: Path) -> None:
    config = AnalysisConfig(raw_survey, nreplicates=3, nfit=2, run_stepwise=False, seed=0)
    text = render_report(run_survey_analysis(config))
    assert "Stepwise error decomposition" not in text
    assert config.survey_id == "survey"
    assert "Survey survey" in text


def test_report_states_units(raw_survey: Path) -> None:
    config = AnalysisConfig(raw_survey, nreplicates=3, nfit=2, run_stepwise=False, seed=0)
    result = run_survey_analysis(config)
    text = render_report(result)
    # 10 km cells are 29.16 nmi²
    assert "domain cells of 29.16 nmi²" in text
    kt = result.totals["biomass"] * (1.0 / 1e6)
    assert f"total biomass {kt:.1f} kt (CV" in text
