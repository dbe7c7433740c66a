"""Empirical and exponential semivariograms of binned backscatter.

Provides utilities for:
- Binning pairwise squared differences by lag distance (Numba kernel)
- Matheron semivariance estimates over a bounded lag range
- Fitting an exponential model with lag-dependent weights

Classes:
- EmpiricalVariogram: binned semivariance estimates
- ExponentialVariogram: fitted model, callable as γ(h), with covariance helpers
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
from numba import njit
from scipy.optimize import curve_fit

MIN_PAIRS = 10


@njit
def bin_distances_and_squared_differences(coords, values, maxlag, nlags):
    """
    Bin pairwise distances and squared differences for Matheron estimation.

    Parameters:
    -----------
    coords : np.ndarray
        Array of coordinates of shape (M, 2).
    values : np.ndarray
        Array of values of shape (M,).
    maxlag : float
        Pairs further apart than this are ignored.
    nlags : int
        Number of equal-width bins on [0, maxlag].

    Returns:
    --------
    bin_counts : np.ndarray
        Counts of pairs in each bin.
    binned_sum_squared_diff : np.ndarray
        Sum of squared differences for each bin.
    binned_sum_distance : np.ndarray
        Sum of pair distances for each bin (for mean lag per bin).
    """
    bin_width = maxlag / nlags
    M = coords.shape[0]
    bin_counts = np.zeros(nlags, dtype=np.int64)
    binned_sum_squared_diff = np.zeros(nlags, dtype=np.float64)
    binned_sum_distance = np.zeros(nlags, dtype=np.float64)

    for i in range(M):
        for j in range(i + 1, M):
            d = 0.0
            for k in range(coords.shape[1]):
                tmp = coords[i, k] - coords[j, k]
                d += tmp * tmp
            dist = np.sqrt(d)
            if dist > maxlag:
                continue
            bin_idx = int(dist / bin_width)
            if bin_idx >= nlags:
                bin_idx = nlags - 1
            diff = values[i] - values[j]
            bin_counts[bin_idx] += 1
            binned_sum_squared_diff[bin_idx] += diff * diff
            binned_sum_distance[bin_idx] += dist

    return bin_counts, binned_sum_squared_diff, binned_sum_distance


def compute_matheron(bin_counts, ssd, min_pairs: int = MIN_PAIRS) -> np.ndarray:
    """
    Compute Matheron semivariance γ(h) = SSD(h) / (2 N(h)) for bins with >= min_pairs.
    """
    gamma_est = np.full(len(bin_counts), np.nan, dtype=float)
    for i, (cnt, sum_sq) in enumerate(zip(bin_counts, ssd)):
        if cnt >= min_pairs:
            gamma_est[i] = sum_sq / (2.0 * cnt)
    return gamma_est


def inverse_lag(h):
    """Default fitting weight w(h) = 1/h, favouring the short-range structure."""
    h = np.asarray(h, dtype=float)
    return 1.0 / np.maximum(h, np.finfo(float).eps)


@dataclass(frozen=True)
class EmpiricalVariogram:
    """
    Binned Matheron semivariogram.

    Attributes
    ----------
    lags : np.ndarray
        Mean pair distance of each retained bin.
    gamma : np.ndarray
        Semivariance of each retained bin.
    counts : np.ndarray
        Number of pairs in each retained bin.
    maxlag : float
    nlags : int
    """
    lags: np.ndarray
    gamma: np.ndarray
    counts: np.ndarray
    maxlag: float
    nlags: int

    @classmethod
    def from_samples(
        cls,
        coords: np.ndarray,
        values: np.ndarray,
        nlags: int = 10,
        maxlag: float = 200.0,
        min_pairs: int = MIN_PAIRS,
    ) -> "EmpiricalVariogram":
        """
        Estimate the semivariogram of ``values`` at ``coords`` on ``nlags`` bins up to ``maxlag``.

        Raises
        ------
        ValueError
            If fewer than two bins have at least ``min_pairs`` pairs.
        """
        if nlags < 1:
            raise ValueError("nlags must be >= 1.")
        if maxlag <= 0:
            raise ValueError("maxlag must be positive.")
        coords = np.ascontiguousarray(coords, dtype=np.float64)
        values = np.ascontiguousarray(values, dtype=np.float64)
        if coords.ndim != 2 or coords.shape[0] != values.shape[0]:
            raise ValueError("coords must be (M, 2) and match the length of values.")

        counts, ssd, sumdist = bin_distances_and_squared_differences(coords, values, float(maxlag), int(nlags))
        gamma = compute_matheron(counts, ssd, min_pairs=min_pairs)
        valid = ~np.isnan(gamma)
        if valid.sum() < 2:
            raise ValueError(
                f"Only {int(valid.sum())} lag bin(s) have >= {min_pairs} pairs; "
                "increase maxlag or reduce nlags."
            )
        with np.errstate(invalid="ignore", divide="ignore"):
            lags = sumdist / counts
        return cls(
            lags=lags[valid],
            gamma=gamma[valid],
            counts=counts[valid],
            maxlag=float(maxlag),
            nlags=int(nlags),
        )


@dataclass(frozen=True)
class ExponentialVariogram:
    """
    Exponential model γ(h) = nugget + (sill − nugget)(1 − exp(−3h / range)), γ(0) = 0.

    ``range`` is the practical range, where 95% of the partial sill is reached.
    """
    nugget: float
    sill: float
    range: float

    @property
    def partial_sill(self) -> float:
        return self.sill - self.nugget

    @staticmethod
    def model(h, psill, a, nugget):
        """Parametric form used for curve fitting: parameters [partial sill, range, nugget]."""
        h = np.asarray(h, dtype=float)
        g = nugget + psill * (1.0 - np.exp(-3.0 * h / a))
        return np.where(h > 0, g, 0.0)

    def __call__(self, h) -> np.ndarray:
        return self.model(h, self.partial_sill, self.range, self.nugget)

    def structured_covariance(self, h) -> np.ndarray:
        """Covariance of the spatially structured component, C(h) = (sill − nugget) exp(−3h / range)."""
        h = np.asarray(h, dtype=float)
        return self.partial_sill * np.exp(-3.0 * h / self.range)

    def covariance(self, h) -> np.ndarray:
        """Full covariance C(h) = sill − γ(h); C(0) = sill."""
        return self.sill - self(h)


def fit_exponential_variogram(
    empirical: EmpiricalVariogram,
    weightfunc: Callable[[np.ndarray], np.ndarray] = inverse_lag,
    n_starts: int = 5,
    maxfev: int = 20000,
    *,
    rng: Optional[np.random.Generator] = None,
) -> ExponentialVariogram:
    """
    Fit an exponential model to an empirical variogram by weighted least squares.

    Parameters
    ----------
    empirical : EmpiricalVariogram
    weightfunc : callable
        Weight per lag; enters curve_fit as sigma = 1 / sqrt(w(h)).
    n_starts : int
        Number of randomly perturbed initial guesses tried.
    maxfev : int
        curve_fit evaluation budget per attempt.
    rng : np.random.Generator | None
        Source of the perturbations.

    Returns
    -------
    ExponentialVariogram

    Raises
    ------
    RuntimeError
        If no attempt converges.
    """
    if rng is None:
        rng = np.random.default_rng()
    lags = np.asarray(empirical.lags, dtype=float)
    gamma = np.asarray(empirical.gamma, dtype=float)

    weights = np.asarray(weightfunc(lags), dtype=float)
    if np.any(~np.isfinite(weights)) or np.any(weights <= 0):
        raise ValueError("Variogram weights must be finite and positive at every lag.")
    sigma = 1.0 / np.sqrt(weights)

    gmax = float(np.max(gamma))
    base = np.array([0.75 * gmax, float(np.max(lags)) / 3.0, 0.25 * float(np.min(gamma))], dtype=float)
    lower = [0.0, 1e-6, 0.0]
    upper = [np.inf, 10.0 * empirical.maxlag, np.inf]

    p0s = [np.clip(base, 1e-6, None)]
    for _ in range(max(n_starts - 1, 0)):
        perturb = (rng.random(len(base)) - 0.5) * 2.0 * 0.5  # +/-50%
        p0s.append(np.clip(base * (1 + perturb), 1e-6, None))

    best_params = None
    best_sse = np.inf
    for p0 in p0s:
        p0 = np.minimum(p0, np.array(upper) * 0.999)
        try:
            popt, _ = curve_fit(
                ExponentialVariogram.model,
                lags,
                gamma,
                p0=p0,
                sigma=sigma,
                bounds=(lower, upper),
                method="trf",
                maxfev=maxfev,
            )
        except RuntimeError:
            continue
        resid = (gamma - ExponentialVariogram.model(lags, *popt)) / sigma
        sse = float(np.sum(resid ** 2))
        if sse < best_sse:
            best_sse = sse
            best_params = popt

    if best_params is None:
        raise RuntimeError("No valid exponential variogram fit found. Check the empirical variogram for NaN values.")

    psill, a, nugget = (float(p) for p in best_params)
    return ExponentialVariogram(nugget=nugget, sill=nugget + psill, range=a)
