"""Tests for the conditional simulation of NASC fields."""

from __future__ import annotations

import numpy as np
import pytest

from atboot.distributions import get_distribution
from atboot.simulation import (
    ATBootstrapProblem,
    gaussian_field,
    lu_factors,
    nonneg_lusim,
)
from atboot.variogram import ExponentialVariogram


def test_problem_fields(problems, survey) -> None:
    assert list(problems) == ["SS1", "SS2"]
    p = problems["SS1"]
    m = len(survey.domain)
    assert p.domain_coords.shape == (m, 2)
    assert p.factors.lower.shape == (m, m)
    assert p.factors.weights.shape == (m, len(p.nasc))
    assert p.zdist.name in p.kl_scores
    assert p.kl_scores[p.zdist.name] == min(p.kl_scores.values())
    assert p.noise_variance > 0
    assert p.variogram.sill >= p.variogram.nugget >= 0


def test_simulations_are_non_negative(problems, survey) -> None:
    rng = np.random.default_rng(11)
    for problem in problems.values():
        for _ in range(10):
            field = problem.simulate(rng)
            assert field.shape == (len(survey.domain),)
            assert np.all(field >= 0.0)
            assert np.all(np.isfinite(field))
        assert np.all(problem.kriged_mean >= 0.0)


def test_simulation_is_reproducible_with_seed(problems) -> None:
    p = problems["SS1"]
    a = nonneg_lusim(p, np.random.default_rng(3))
    b = nonneg_lusim(p, np.random.default_rng(3))
    np.testing.assert_array_equal(a, b)
    c = nonneg_lusim(p, np.random.default_rng(4))
    assert not np.array_equal(a, c)


def test_build_is_reproducible_with_seed(survey, binned) -> None:
    kwargs = dict(nfit=3, candidates=("gamma", "exponential"))
    a = ATBootstrapProblem.build(binned, "SS2", survey.domain_coords, rng=np.random.default_rng(5), **kwargs)
    b = ATBootstrapProblem.build(binned, "SS2", survey.domain_coords, rng=np.random.default_rng(5), **kwargs)
    assert a.variogram == b.variogram
    assert a.zdist.name == b.zdist.name
    assert a.kl_scores == b.kl_scores
    assert set(a.kl_scores) == {"gamma", "exponential"}


def test_with_distribution(problems) -> None:
    p = problems["SS1"].with_distribution(get_distribution("exponential"))
    assert p.zdist.name == "exponential"
    assert p.factors is problems["SS1"].factors


def test_gaussian_field_honours_data_without_nugget() -> None:
    coords = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
    values = np.array([1.0, 3.0, 2.0, 5.0])
    model = ExponentialVariogram(nugget=0.0, sill=2.0, range=30.0)
    factors = lu_factors(coords, values, coords, model)
    np.testing.assert_allclose(factors.mean, values, atol=1e-4)
    field = gaussian_field(factors, np.random.default_rng(0))
    np.testing.assert_allclose(field, values, atol=1e-2)


def test_kriged_mean_reverts_to_data_mean_far_away() -> None:
    coords = np.array([[0.0, 0.0], [5.0, 0.0], [0.0, 5.0]])
    values = np.array([1.0, 2.0, 6.0])
    model = ExponentialVariogram(nugget=0.5, sill=3.0, range=10.0)
    factors = lu_factors(coords, values, np.array([[1000.0, 1000.0]]), model)
    assert factors.mean[0] == pytest.approx(3.0)


def test_class_with_too_few_observations(survey, binned) -> None:
    few = binned[binned["class"] == "SS1"].head(2)
    with pytest.raises(ValueError, match="too few"):
        ATBootstrapProblem.build(few, "SS1", survey.domain_coords, rng=np.random.default_rng(0), nfit=2)
