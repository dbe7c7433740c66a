"""Conditional simulation of non-negative backscatter fields per scaling class.

The simulation follows the LU (Cholesky) method: with D the binned acoustic
observations and S the survey domain grid, the structured covariance of the
fitted exponential variogram gives

    L11 L11ᵀ = C_DD + nugget·I
    W        = C_SD C_DD⁻¹                      (simple-kriging weights)
    L22 L22ᵀ = C_SS − W C_DS                    (conditional covariance)

and one Gaussian realization on S is  μ + W (z_D − μ) + L22 ε,  ε ~ N(0, I).
That realization is then used as the local mean of the class's driving
distribution, with the nugget as local variance, which yields a field that
honours the spatial structure and is non-negative everywhere.

Classes:
- LUFactors: precomputed kriging weights, conditional mean and Cholesky factor
- ATBootstrapProblem: everything needed to simulate one scaling class
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.linalg import cho_solve
from scipy.spatial.distance import cdist

from .distributions import (
    DEFAULT_CANDIDATES,
    DrivingDistribution,
    kl_divergence,
    resolve_candidates,
)
from .variogram import (
    MIN_PAIRS,
    EmpiricalVariogram,
    ExponentialVariogram,
    fit_exponential_variogram,
    inverse_lag,
)

logger = logging.getLogger(__name__)

JITTER = 1e-8
# Lower bound on the driving-distribution variance, as a fraction of the data variance
NOISE_FLOOR_FRACTION = 1e-3


def _stable_cholesky(matrix: np.ndarray, scale: float, max_tries: int = 6) -> np.ndarray:
    """Lower Cholesky factor, adding a growing diagonal jitter if needed."""
    eye = np.eye(matrix.shape[0])
    jitter = JITTER * scale
    for _ in range(max_tries):
        try:
            return np.linalg.cholesky(matrix + jitter * eye)
        except np.linalg.LinAlgError:
            jitter *= 10.0
    raise np.linalg.LinAlgError(
        f"Covariance matrix ({matrix.shape[0]}x{matrix.shape[0]}) is not positive definite "
        f"even with a diagonal jitter of {jitter / 10.0:.3g}."
    )


@dataclass(frozen=True)
class LUFactors:
    """
    Precomputed pieces of the LU conditional simulation.

    Attributes
    ----------
    weights : np.ndarray
        (m, n) simple-kriging weights C_SD C_DD⁻¹.
    mean : np.ndarray
        (m,) conditional expectation on the domain grid.
    lower : np.ndarray
        (m, m) lower Cholesky factor of the conditional covariance.
    """
    weights: np.ndarray
    mean: np.ndarray
    lower: np.ndarray


def lu_factors(
    data_coords: np.ndarray,
    data_values: np.ndarray,
    sim_coords: np.ndarray,
    variogram: ExponentialVariogram,
) -> LUFactors:
    """Build the simple-kriging weights and conditional Cholesky factor for a domain."""
    data_coords = np.asarray(data_coords, dtype=float)
    sim_coords = np.asarray(sim_coords, dtype=float)
    data_values = np.asarray(data_values, dtype=float)

    scale = variogram.sill if variogram.sill > 0 else 1.0
    mu = float(np.mean(data_values))

    c_dd = variogram.structured_covariance(cdist(data_coords, data_coords))
    c_dd[np.diag_indices_from(c_dd)] += variogram.nugget
    c_sd = variogram.structured_covariance(cdist(sim_coords, data_coords))
    c_ss = variogram.structured_covariance(cdist(sim_coords, sim_coords))

    l11 = _stable_cholesky(c_dd, scale)
    weights = cho_solve((l11, True), c_sd.T).T
    cond_mean = mu + weights @ (data_values - mu)
    cond_cov = c_ss - weights @ c_sd.T
    cond_cov = 0.5 * (cond_cov + cond_cov.T)
    lower = _stable_cholesky(cond_cov, scale)
    return LUFactors(weights=weights, mean=cond_mean, lower=lower)


def gaussian_field(factors: LUFactors, rng: np.random.Generator) -> np.ndarray:
    """One conditional Gaussian realization on the domain grid."""
    eps = rng.standard_normal(factors.mean.shape[0])
    return factors.mean + factors.lower @ eps


def choose_distribution(
    observed: np.ndarray,
    factors: LUFactors,
    noise_variance: float,
    candidates: Sequence[DrivingDistribution],
    nfit: int,
    rng: np.random.Generator,
) -> Tuple[DrivingDistribution, Dict[str, float]]:
    """
    Pick the driving distribution minimising the mean KL divergence to the observations.

    Each candidate is scored over ``nfit`` independent trial simulations.

    Returns
    -------
    (best, scores)
        The winning candidate and the mean KL divergence of every candidate.
    """
    if nfit < 1:
        raise ValueError("nfit must be >= 1.")
    if not np.max(observed) > 0:
        raise ValueError("Observed values are all zero; densities cannot be compared.")
    scores: Dict[str, float] = {}
    for cand in candidates:
        kls = np.empty(nfit)
        for t in range(nfit):
            sim = cand.sample(gaussian_field(factors, rng), noise_variance, rng)
            kls[t] = kl_divergence(observed, sim)
        scores[cand.name] = float(np.mean(kls))

    best_name = min(scores, key=scores.get)
    if not np.isfinite(scores[best_name]):
        raise RuntimeError("Every candidate distribution produced degenerate simulations.")
    best = next(c for c in candidates if c.name == best_name)
    return best, scores


@dataclass(frozen=True)
class ATBootstrapProblem:
    """
    Simulation problem for one scaling class.

    Built once by :meth:`build`, then consumed read-only by the bootstrap.

    Attributes
    ----------
    class_name : str
    coords : np.ndarray
        (n, 2) binned observation positions (km).
    nasc : np.ndarray
        (n,) binned mean NASC.
    domain_coords : np.ndarray
        (m, 2) domain grid cell centres (km).
    empirical : EmpiricalVariogram
    variogram : ExponentialVariogram
    zdist : DrivingDistribution
        Selected driving distribution.
    kl_scores : Mapping[str, float]
        Mean KL divergence of every candidate tried.
    noise_variance : float
        Local variance of the driving distribution.
    factors : LUFactors
    """
    class_name: str
    coords: np.ndarray
    nasc: np.ndarray
    domain_coords: np.ndarray
    empirical: EmpiricalVariogram
    variogram: ExponentialVariogram
    zdist: DrivingDistribution
    kl_scores: Mapping[str, float]
    noise_variance: float
    factors: LUFactors

    @classmethod
    def build(
        cls,
        acoustics: pd.DataFrame,
        class_name: str,
        domain_coords: np.ndarray,
        *,
        nlags: int = 10,
        maxlag: float = 200.0,
        weightfunc: Callable[[np.ndarray], np.ndarray] = inverse_lag,
        candidates: Sequence[str] = DEFAULT_CANDIDATES,
        nfit: int = 500,
        min_pairs: int = MIN_PAIRS,
        rng: Optional[np.random.Generator] = None,
    ) -> "ATBootstrapProblem":
        """
        Fit the variogram and select the driving distribution for one scaling class.

        Parameters
        ----------
        acoustics : pd.DataFrame
            Binned acoustics (class, x, y, nasc), see :func:`atboot.aggregation.bin_acoustics`.
        class_name : str
        domain_coords : np.ndarray
            (m, 2) simulation grid.
        nlags, maxlag, min_pairs : empirical variogram binning.
        weightfunc : callable
            Lag weighting for the exponential fit.
        candidates : sequence of str
            Names of candidate driving distributions.
        nfit : int
            Trial simulations per candidate.
        rng : np.random.Generator | None

        Raises
        ------
        ValueError
            If the class has too few distinct observations.
        """
        if rng is None:
            rng = np.random.default_rng()
        df = acoustics[acoustics["class"].astype(str) == str(class_name)]
        if len(df) < 3 or df["nasc"].nunique() < 3:
            raise ValueError(
                f"Scaling class '{class_name}' has too few distinct binned observations ({len(df)} rows)."
            )
        coords = df[["x", "y"]].to_numpy(dtype=float)
        nasc = df["nasc"].to_numpy(dtype=float)
        domain_coords = np.asarray(domain_coords, dtype=float)

        empirical = EmpiricalVariogram.from_samples(coords, nasc, nlags=nlags, maxlag=maxlag, min_pairs=min_pairs)
        variogram = fit_exponential_variogram(empirical, weightfunc=weightfunc, rng=rng)
        logger.info(
            f"Class {class_name}: exponential variogram nugget={variogram.nugget:.4g}, "
            f"sill={variogram.sill:.4g}, range={variogram.range:.4g} km"
        )

        factors = lu_factors(coords, nasc, domain_coords, variogram)
        noise_variance = max(variogram.nugget, NOISE_FLOOR_FRACTION * float(np.var(nasc)))

        zdist, scores = choose_distribution(
            nasc, factors, noise_variance, resolve_candidates(candidates), nfit, rng
        )
        logger.info(
            f"Class {class_name}: selected '{zdist.name}' driving distribution "
            f"(mean KL {scores[zdist.name]:.4g} over {nfit} trials)"
        )
        return cls(
            class_name=str(class_name),
            coords=coords,
            nasc=nasc,
            domain_coords=domain_coords,
            empirical=empirical,
            variogram=variogram,
            zdist=zdist,
            kl_scores=dict(scores),
            noise_variance=noise_variance,
            factors=factors,
        )

    @property
    def kriged_mean(self) -> np.ndarray:
        """Non-negative conditional expectation of NASC on the domain grid."""
        return np.maximum(self.factors.mean, 0.0)

    def with_distribution(self, zdist: DrivingDistribution) -> "ATBootstrapProblem":
        """Copy of this problem driven by a different distribution."""
        return dataclasses.replace(self, zdist=zdist)

    def simulate(self, rng: np.random.Generator) -> np.ndarray:
        """One independent non-negative NASC realization on the domain grid."""
        return nonneg_lusim(self, rng)


def nonneg_lusim(problem: ATBootstrapProblem, rng: np.random.Generator) -> np.ndarray:
    """Draw a conditional Gaussian field and pass it through the problem's driving distribution."""
    field = gaussian_field(problem.factors, rng)
    sim = problem.zdist.sample(field, problem.noise_variance, rng)
    return np.maximum(sim, 0.0)


def build_class_problems(
    acoustics: pd.DataFrame,
    classes: Sequence[str],
    domain_coords: np.ndarray,
    *,
    rng: np.random.Generator,
    **kwargs,
) -> Dict[str, ATBootstrapProblem]:
    """Build one :class:`ATBootstrapProblem` per scaling class, in the given order."""
    return {
        str(c): ATBootstrapProblem.build(acoustics, c, domain_coords, rng=rng, **kwargs)
        for c in classes
    }
