"""Smoke tests for the diagnostic figures."""

from __future__ import annotations

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from atboot.plots import (
    plot_age_violins,
    plot_simulated_fields,
    plot_stepwise_cv,
    plot_survey_samples,
    plot_variogram,
)


@pytest.fixture(autouse=True)
def _close_figures():
    yield
    plt.close("all")


def test_survey_and_model_figures(survey, binned, problems) -> None:
    fig = plot_survey_samples(binned, survey.boundary, survey.trawl_locations)
    assert len(fig.axes) == 1
    fig = plot_variogram(problems["SS1"])
    assert len(fig.axes) == 2
    fig = plot_simulated_fields(problems["SS1"], np.random.default_rng(0), nsims=2, boundary=survey.boundary)
    assert len(fig.axes) == 4  # three panels and a colorbar


def test_age_violins_with_constant_age() -> None:
    results = pd.DataFrame({
        "age": ["01"] * 3 + ["02"] * 3,
        "n": [1.0, 2.0, 3.0, 0.0, 0.0, 0.0],
        "biomass": [1.0] * 6,
        "i": [1, 2, 3] * 2,
    })
    fig = plot_age_violins(results, "n")
    assert [t.get_text() for t in fig.axes[0].get_xticklabels()] == ["01", "02"]


def test_stepwise_cv_figure() -> None:
    cv = pd.DataFrame({
        "added_error": pd.Categorical(["calibration", "ts"] * 4, categories=["calibration", "ts"], ordered=True),
        "b": [1, 1, 2, 2, 3, 3, 4, 4],
        "cv_n": np.arange(8.0),
        "cv_biomass": np.arange(8.0),
    })
    fig = plot_stepwise_cv(cv)
    assert [t.get_text() for t in fig.axes[0].get_xticklabels()] == ["+ calibration", "+ ts"]
