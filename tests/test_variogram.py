"""Tests for empirical variogram binning and the exponential model fit."""

from __future__ import annotations

import numpy as np
import pytest

from atboot.variogram import (
    EmpiricalVariogram,
    ExponentialVariogram,
    bin_distances_and_squared_differences,
    compute_matheron,
    fit_exponential_variogram,
    inverse_lag,
)


def test_binning_kernel_on_three_points() -> None:
    coords = np.array([[0.0, 0.0], [1.0, 0.0], [3.0, 0.0]])
    values = np.array([0.0, 1.0, 3.0])
    counts, ssd, sumdist = bin_distances_and_squared_differences(coords, values, 4.0, 2)
    # pairs: d=1 (sq 1) in bin 0; d=3 (sq 9) and d=2 (sq 4) in bin 1
    np.testing.assert_array_equal(counts, [1, 2])
    np.testing.assert_allclose(ssd, [1.0, 13.0])
    np.testing.assert_allclose(sumdist, [1.0, 5.0])


def test_pairs_beyond_maxlag_are_ignored() -> None:
    coords = np.array([[0.0, 0.0], [10.0, 0.0]])
    counts, _, _ = bin_distances_and_squared_differences(coords, np.array([0.0, 1.0]), 5.0, 5)
    assert counts.sum() == 0


def test_compute_matheron_masks_sparse_bins() -> None:
    gamma = compute_matheron(np.array([20, 3]), np.array([40.0, 6.0]), min_pairs=10)
    assert gamma[0] == pytest.approx(1.0)
    assert np.isnan(gamma[1])


def test_model_properties() -> None:
    model = ExponentialVariogram(nugget=2.0, sill=10.0, range=50.0)
    assert model(0.0) == 0.0
    assert model(1e-9) == pytest.approx(2.0, abs=1e-6)
    assert model(50.0) == pytest.approx(2.0 + 8.0 * (1 - np.exp(-3.0)))
    assert model(1e6) == pytest.approx(10.0)
    h = np.linspace(0.1, 200.0, 50)
    assert np.all(np.diff(model(h)) > 0)
    assert model.partial_sill == pytest.approx(8.0)
    assert model.structured_covariance(0.0) == pytest.approx(8.0)
    assert model.covariance(0.0) == pytest.approx(10.0)


def test_fit_recovers_known_parameters() -> None:
    truth = ExponentialVariogram(nugget=2.0, sill=10.0, range=50.0)
    lags = np.linspace(10.0, 190.0, 10)
    empirical = EmpiricalVariogram(
        lags=lags, gamma=truth(lags), counts=np.full(10, 100), maxlag=200.0, nlags=10
    )
    fit = fit_exponential_variogram(empirical, rng=np.random.default_rng(0))
    assert fit.nugget == pytest.approx(2.0, rel=0.05)
    assert fit.sill == pytest.approx(10.0, rel=0.05)
    assert fit.range == pytest.approx(50.0, rel=0.05)


def test_from_samples_on_survey(binned) -> None:
    df = binned[binned["class"] == "SS1"]
    emp = EmpiricalVariogram.from_samples(df[["x", "y"]].to_numpy(), df["nasc"].to_numpy(), nlags=10, maxlag=200.0)
    assert len(emp.lags) >= 2
    assert np.all(emp.counts >= 10)
    assert np.all(emp.gamma >= 0)
    assert np.all((emp.lags > 0) & (emp.lags <= 200.0))


def test_from_samples_too_few_bins() -> None:
    coords = np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0]])
    with pytest.raises(ValueError, match="lag bin"):
        EmpiricalVariogram.from_samples(coords, np.array([1.0, 2.0, 3.0]), nlags=5, maxlag=10.0)


def test_inverse_lag_is_finite_at_zero() -> None:
    assert np.isfinite(inverse_lag(0.0))
    assert inverse_lag(4.0) == pytest.approx(0.25)
