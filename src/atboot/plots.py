"""Diagnostic plots for the survey uncertainty analysis.

Every function returns a matplotlib Figure and leaves saving or embedding to
the caller.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from shapely.geometry import MultiPolygon, Polygon

from .simulation import ATBootstrapProblem


def _draw_boundary(ax, boundary) -> None:
    if boundary is None:
        return
    polys = boundary.geoms if isinstance(boundary, MultiPolygon) else [boundary]
    for poly in polys:
        x, y = poly.exterior.xy
        ax.plot(x, y, color="black", linewidth=0.8)


def plot_survey_samples(
    acoustics: pd.DataFrame,
    boundary: Optional[Polygon] = None,
    trawls: Optional[pd.DataFrame] = None,
    title: str = "Binned acoustic samples",
):
    """
    Scatter of binned NASC (marker size ∝ NASC), one colour per scaling class,
    with trawl positions and the survey boundary.
    """
    fig, ax = plt.subplots(figsize=(8, 7))
    smax = float(acoustics["nasc"].max()) or 1.0
    for cls, df in acoustics.groupby("class", sort=True):
        ax.scatter(df["x"], df["y"], s=2 + 80 * df["nasc"] / smax, alpha=0.5, label=str(cls))
    if trawls is not None:
        ax.scatter(trawls["x"], trawls["y"], marker="x", color="black", s=25, label="Trawls")
    _draw_boundary(ax, boundary)
    ax.set_xlabel("Easting (km)")
    ax.set_ylabel("Northing (km)")
    ax.set_aspect("equal")
    ax.set_title(title)
    ax.legend(loc="upper right")
    plt.tight_layout()
    return fig


def plot_variogram(problem: ATBootstrapProblem):
    """
    Empirical semivariogram with the fitted exponential model; bar plot of pair counts above.
    """
    emp = problem.empirical
    model = problem.variogram
    lags = np.asarray(emp.lags)

    fig, axs = plt.subplots(2, 1, gridspec_kw={"height_ratios": [1, 3]}, figsize=(8, 6), sharex=True)

    # guard single-bin bar width
    if len(lags) > 1:
        bar_width = (lags[1] - lags[0]) * 0.9
    else:
        bar_width = (lags[0] if len(lags) else 1.0) * 0.9
    axs[0].bar(lags, emp.counts, width=bar_width, color="orange", alpha=0.5)
    axs[0].set_ylabel("Pairs")
    axs[0].tick_params(labelbottom=False)

    h = np.linspace(0.0, emp.maxlag, 200)
    axs[1].plot(lags, emp.gamma, "o", color="blue", label="Empirical")
    axs[1].plot(h, model(h), "r-", label="Exponential fit")
    axs[1].axhline(model.sill, color="black", linestyle="--", linewidth=1, label="Sill")
    if model.nugget > 0:
        axs[1].axhline(model.nugget, color="gray", linestyle=":", linewidth=1, label="Nugget")
    axs[1].set_xlabel("Lag distance (km)")
    axs[1].set_ylabel("Semivariance")
    axs[1].set_xlim(0, emp.maxlag)
    axs[1].legend(loc="lower right")
    axs[1].set_title(
        f"{problem.class_name}: range {model.range:.1f} km, driving distribution {problem.zdist.name}"
    )
    plt.tight_layout()
    return fig


def plot_simulated_fields(
    problem: ATBootstrapProblem,
    rng: np.random.Generator,
    nsims: int = 3,
    boundary: Optional[Polygon] = None,
):
    """Kriged mean next to ``nsims`` conditional simulations, on a shared colour scale."""
    fields = [problem.kriged_mean] + [problem.simulate(rng) for _ in range(nsims)]
    titles = ["Kriged mean"] + [f"Simulation {k}" for k in range(1, nsims + 1)]
    vmax = float(np.percentile(np.concatenate(fields), 99)) or 1.0

    ncols = len(fields)
    fig, axs = plt.subplots(1, ncols, figsize=(4 * ncols, 4), sharex=True, sharey=True)
    axs = np.atleast_1d(axs)
    x, y = problem.domain_coords[:, 0], problem.domain_coords[:, 1]
    for ax, field, title in zip(axs, fields, titles):
        sc = ax.scatter(x, y, c=field, s=12, marker="s", cmap="viridis", vmin=0.0, vmax=vmax)
        _draw_boundary(ax, boundary)
        ax.set_aspect("equal")
        ax.set_title(title)
    fig.colorbar(sc, ax=list(axs), label="NASC (m² nmi⁻²)", shrink=0.8)
    fig.suptitle(f"Scaling class {problem.class_name}")
    return fig


def plot_age_violins(results: pd.DataFrame, value: str = "n", scale: float = 1.0, ylabel: Optional[str] = None):
    """Violin plot of replicate abundance (``value='n'``) or biomass by age class."""
    ages = sorted(results["age"].unique())
    data = [results.loc[results["age"] == a, value].to_numpy(dtype=float) / scale for a in ages]
    fig, ax = plt.subplots(figsize=(10, 5))
    # constant samples have no density; draw them as markers
    spread = [k for k, d in enumerate(data) if d.size > 1 and np.ptp(d) > 0]
    flat = [k for k in range(len(data)) if k not in spread]
    if spread:
        ax.violinplot([data[k] for k in spread], positions=[k + 1 for k in spread], showmedians=True)
    for k in flat:
        ax.plot([k + 1], [data[k][0] if data[k].size else 0.0], "o", color="C0")
    ax.set_xticks(range(1, len(ages) + 1))
    ax.set_xticklabels(ages)
    ax.set_xlabel("Age class")
    ax.set_ylabel(ylabel or value)
    plt.tight_layout()
    return fig


def plot_stepwise_cv(cv_table: pd.DataFrame, value: str = "cv_n", ylabel: str = "CV (%)"):
    """Box plot of bootstrapped CV estimates for each added error source."""
    if isinstance(cv_table["added_error"].dtype, pd.CategoricalDtype):
        labels: Sequence[str] = list(cv_table["added_error"].cat.categories)
    else:
        labels = list(pd.unique(cv_table["added_error"]))
    data = [cv_table.loc[cv_table["added_error"] == lab, value].dropna().to_numpy() for lab in labels]
    fig, ax = plt.subplots(figsize=(10, 5))
    ax.boxplot(data)
    ax.set_xticks(range(1, len(labels) + 1))
    ax.set_xticklabels([f"+ {lab}" for lab in labels], rotation=30, ha="right")
    ax.set_ylabel(ylabel)
    ax.set_title("CV as error sources are added")
    plt.tight_layout()
    return fig
