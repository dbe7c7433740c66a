"""Bootstrap propagation of spatial and biological error into abundance and biomass at age.

Every replicate repeats the whole estimation chain: one simulated NASC field
per scaling class, a calibration offset, assignment of domain cells to trawls,
apportioning of backscatter to the measured fish of each trawl through target
strength, and conversion to numbers and biomass at age through resampled
age-length and length-weight data. Each error source can be switched off
independently, which is what the stepwise decomposition relies on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.spatial import cKDTree

from .biology import (
    NON_TARGET_AGE,
    age_length_key,
    fit_length_weight,
    key_for_lengths,
    resample_rows,
    resample_within,
    sigma_bs,
    target_age_classes,
)
from .simulation import ATBootstrapProblem
from .survey_io import SurveyData
from .units import KM_TO_NMI, cell_area_nmi2

logger = logging.getLogger(__name__)

ERROR_SOURCES: Tuple[str, ...] = (
    "calibration",
    "ts",
    "trawl_assignment",
    "resample_scaling",
    "age_length",
    "length_weight",
    "spatial",
)

RESULT_COLUMNS = ["age", "n", "biomass", "i"]


@dataclass(frozen=True)
class ErrorSources:
    """Switches for each error source propagated by the bootstrap."""
    calibration: bool = True
    ts: bool = True
    trawl_assignment: bool = True
    resample_scaling: bool = True
    age_length: bool = True
    length_weight: bool = True
    spatial: bool = True

    @classmethod
    def none(cls) -> "ErrorSources":
        return cls(**{name: False for name in ERROR_SOURCES})

    @classmethod
    def first(cls, k: int) -> "ErrorSources":
        """Only the first ``k`` sources of :data:`ERROR_SOURCES` switched on."""
        if not 0 <= k <= len(ERROR_SOURCES):
            raise ValueError(f"k must lie within [0, {len(ERROR_SOURCES)}]")
        return cls(**{name: i < k for i, name in enumerate(ERROR_SOURCES)})

    def enabled(self) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(self) if getattr(self, f.name))


@dataclass(frozen=True)
class BootstrapConfig:
    """Biological and acoustic constants of the bootstrap."""

    target_species: int = 21740
    ts_slope: float = 20.0
    ts_intercept: float = -66.0
    ts_intercept_sd: float = 0.14
    calibration_sd: float = 0.1
    trawl_neighbors: int = 4
    km_to_nmi: float = KM_TO_NMI

    def __post_init__(self) -> None:
        if self.ts_intercept_sd < 0.0:
            raise ValueError("ts_intercept_sd must be non-negative")
        if self.calibration_sd < 0.0:
            raise ValueError("calibration_sd must be non-negative")
        if self.trawl_neighbors < 1:
            raise ValueError("trawl_neighbors must be >= 1")
        if self.km_to_nmi <= 0.0:
            raise ValueError("km_to_nmi must be positive")


@dataclass(frozen=True)
class _ClassTrawls:
    """Trawls carrying a scaling class and the domain cells' nearest of them."""
    events: np.ndarray
    neighbors: np.ndarray  # (m, k) indices into events, nearest first


def _class_trawls(
    survey: SurveyData, class_name: str, domain_coords: np.ndarray, k: int
) -> _ClassTrawls:
    scaling = survey.scaling[survey.scaling["class"].astype(str) == class_name]
    weights = scaling.groupby("event_id")["w"].sum()
    events = np.array(sorted(weights[weights > 0].index))
    if events.size == 0:
        raise ValueError(f"No trawl carries scaling data for class '{class_name}'.")
    trawls = survey.trawl_locations.set_index("event_id").loc[events]
    tree = cKDTree(trawls[["x", "y"]].to_numpy(dtype=float))
    k = min(k, events.size)
    _, idx = tree.query(domain_coords, k=k)
    idx = np.asarray(idx).reshape(len(domain_coords), k)
    return _ClassTrawls(events=events, neighbors=idx)


def _numbers_by_specimen(
    scaling: pd.DataFrame,
    trawls: _ClassTrawls,
    backscatter: np.ndarray,
    config: BootstrapConfig,
    ts_delta: float,
) -> pd.DataFrame:
    """
    Split each trawl's backscatter (m²) among its specimen rows and convert to numbers.

    N_row = B_t / (4π σ̄_t) · w_row / Σw_t, with σ̄_t the w-weighted mean σ_bs of trawl t.
    """
    pos = pd.Index(trawls.events).get_indexer(scaling["event_id"])
    rows = scaling[pos >= 0]
    pos = pos[pos >= 0]
    w = rows["w"].to_numpy(dtype=float)
    lengths = rows["primary_length"].to_numpy(dtype=float)
    sig = sigma_bs(lengths, config.ts_slope, config.ts_intercept, ts_delta)

    n_events = trawls.events.size
    sum_w = np.bincount(pos, weights=w, minlength=n_events)
    sum_wsig = np.bincount(pos, weights=w * sig, minlength=n_events)
    with np.errstate(invalid="ignore", divide="ignore"):
        density = np.where(sum_wsig > 0, backscatter * sum_w / (4.0 * np.pi * sum_wsig), 0.0)
        share = np.where(sum_w[pos] > 0, w / sum_w[pos], 0.0)
    return pd.DataFrame({
        "species_code": rows["species_code"].to_numpy(),
        "length": lengths,
        "numbers": density[pos] * share,
    })


def simulate_classes(
    problems: Mapping[str, ATBootstrapProblem],
    survey: SurveyData,
    *,
    nreplicates: int = 500,
    config: Optional[BootstrapConfig] = None,
    errors: Optional[ErrorSources] = None,
    rng: Optional[np.random.Generator] = None,
) -> pd.DataFrame:
    """
    Run the bootstrap and return abundance and biomass at age per replicate.

    Parameters
    ----------
    problems : mapping class name -> ATBootstrapProblem
        Class problems built on ``survey.domain``.
    survey : SurveyData
    nreplicates : int
    config : BootstrapConfig, optional
    errors : ErrorSources, optional
        Error sources to propagate; all by default.
    rng : np.random.Generator, optional

    Returns
    -------
    pd.DataFrame
        Columns age, n, biomass, i; one row per target age class and replicate,
        so exactly ``nreplicates × n_ages`` rows. Age "00" is never included.
    """
    if nreplicates < 1:
        raise ValueError("nreplicates must be >= 1")
    if not problems:
        raise ValueError("At least one class problem is required.")
    config = config or BootstrapConfig()
    errors = errors or ErrorSources()
    rng = rng if rng is not None else np.random.default_rng()

    domain_coords = survey.domain_coords
    for name, problem in problems.items():
        if problem.domain_coords.shape != domain_coords.shape:
            raise ValueError(f"Class problem '{name}' was not built on this survey's domain grid.")
    area = cell_area_nmi2(survey.dx, km_to_nmi=config.km_to_nmi)

    ages = target_age_classes(survey.age_length)
    if not ages:
        raise ValueError("The age-length table holds no target age classes.")
    class_trawls = {
        name: _class_trawls(survey, name, domain_coords, config.trawl_neighbors) for name in problems
    }
    m = domain_coords.shape[0]

    logger.info(
        f"Bootstrapping {nreplicates} replicates over {len(problems)} class(es); "
        f"error sources: {', '.join(errors.enabled()) or 'none'}"
    )
    frames: List[pd.DataFrame] = []
    for i in range(1, nreplicates + 1):
        scaling = (
            resample_within(survey.scaling, ["event_id", "class"], rng)
            if errors.resample_scaling else survey.scaling
        )
        key = age_length_key(
            resample_rows(survey.age_length, rng) if errors.age_length else survey.age_length, ages
        )
        lw = fit_length_weight(
            resample_rows(survey.length_weight, rng) if errors.length_weight else survey.length_weight
        )
        calibration = 10.0 ** (rng.normal(0.0, config.calibration_sd) / 10.0) if errors.calibration else 1.0
        ts_delta = rng.normal(0.0, config.ts_intercept_sd) if errors.ts else 0.0

        specimens = []
        for name, problem in problems.items():
            nasc = problem.simulate(rng) if errors.spatial else problem.kriged_mean
            nasc = nasc * calibration
            trawls = class_trawls[name]
            if errors.trawl_assignment:
                pick = rng.integers(0, trawls.neighbors.shape[1], size=m)
                assign = trawls.neighbors[np.arange(m), pick]
            else:
                assign = trawls.neighbors[:, 0]
            backscatter = np.bincount(assign, weights=nasc * area, minlength=trawls.events.size)
            class_scaling = scaling[scaling["class"].astype(str) == name]
            specimens.append(_numbers_by_specimen(class_scaling, trawls, backscatter, config, ts_delta))

        fish = pd.concat(specimens, ignore_index=True)
        target = fish[fish["species_code"] == config.target_species]
        props = key_for_lengths(key, target["length"])
        numbers = target["numbers"].to_numpy(dtype=float)
        weights = lw(target["length"].to_numpy(dtype=float))
        frames.append(pd.DataFrame({
            "age": ages,
            "n": numbers @ props if len(target) else np.zeros(len(ages)),
            "biomass": (numbers * weights) @ props if len(target) else np.zeros(len(ages)),
            "i": i,
        }))
        logger.debug(f"Replicate {i}/{nreplicates} done")

    results = pd.concat(frames, ignore_index=True)[RESULT_COLUMNS]
    return results[results["age"] != NON_TARGET_AGE].reset_index(drop=True)


def _cv(sd: pd.Series, mean: pd.Series) -> pd.Series:
    with np.errstate(invalid="ignore", divide="ignore"):
        return sd / mean * 100.0


def summarize(results: pd.DataFrame) -> pd.DataFrame:
    """
    Mean, standard deviation and CV (sd / mean × 100) of abundance and biomass per age.
    """
    df = results[results["age"] != NON_TARGET_AGE]
    g = df.groupby("age", sort=True)
    out = pd.DataFrame({
        "n": g["n"].mean(),
        "n_sd": g["n"].std(ddof=1),
        "biomass": g["biomass"].mean(),
        "biomass_sd": g["biomass"].std(ddof=1),
    })
    out["n_cv"] = _cv(out["n_sd"], out["n"])
    out["biomass_cv"] = _cv(out["biomass_sd"], out["biomass"])
    out = out.reset_index()
    return out[["age", "n", "n_sd", "n_cv", "biomass", "biomass_sd", "biomass_cv"]]


def replicate_totals(results: pd.DataFrame) -> pd.DataFrame:
    """Abundance and biomass summed over ages for every replicate (and stepwise label, if present)."""
    keys = ["added_error", "i"] if "added_error" in results.columns else ["i"]
    return results.groupby(keys, sort=False, observed=True)[["n", "biomass"]].sum().reset_index()


def summarize_totals(results: pd.DataFrame) -> Dict[str, float]:
    """Mean, sd and CV of total abundance and biomass across replicates."""
    totals = replicate_totals(results)
    summary = {}
    for col in ("n", "biomass"):
        mean = float(totals[col].mean())
        sd = float(totals[col].std(ddof=1)) if len(totals) > 1 else float("nan")
        summary[col] = mean
        summary[f"{col}_sd"] = sd
        summary[f"{col}_cv"] = sd / mean * 100.0 if mean else float("nan")
    return summary
