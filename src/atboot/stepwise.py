"""Stepwise attribution of survey variance to individual error sources.

The bootstrap is rerun once per error source, each time switching on one
more source in the order of :data:`atboot.bootstrap.ERROR_SOURCES`. A second,
outer bootstrap over the replicate totals of each step then gives a
distribution of CV estimates per step, so the contribution of each added
source can be compared in box plots.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .bootstrap import ERROR_SOURCES, BootstrapConfig, ErrorSources, replicate_totals, simulate_classes
from .simulation import ATBootstrapProblem
from .survey_io import SurveyData

logger = logging.getLogger(__name__)

# IQR of a standard normal
_IQR_TO_SD = 1.349


def iqr_cv(values) -> float:
    """Robust CV (%): (IQR / 1.349) / median × 100."""
    values = np.asarray(values, dtype=float)
    q1, med, q3 = np.percentile(values, [25, 50, 75])
    if med == 0:
        return float("nan")
    return float((q3 - q1) / _IQR_TO_SD / med * 100.0)


def stepwise_error(
    problems: Mapping[str, ATBootstrapProblem],
    survey: SurveyData,
    *,
    nreplicates: int = 500,
    config: Optional[BootstrapConfig] = None,
    sources: Sequence[str] = ERROR_SOURCES,
    rng: Optional[np.random.Generator] = None,
) -> pd.DataFrame:
    """
    Bootstrap with error sources added one at a time.

    Returns
    -------
    pd.DataFrame
        Columns age, n, biomass, i, added_error; ``added_error`` is an ordered
        categorical naming the source switched on at that step (all earlier
        sources stay on).
    """
    unknown = [s for s in sources if s not in ERROR_SOURCES]
    if unknown:
        raise ValueError(f"Unknown error source(s) {unknown}. Use any of {list(ERROR_SOURCES)}.")
    if not sources:
        raise ValueError("At least one error source is required.")
    rng = rng if rng is not None else np.random.default_rng()

    frames = []
    enabled = {name: False for name in ERROR_SOURCES}
    for source in sources:
        enabled[source] = True
        logger.info(f"Stepwise error: adding '{source}'")
        results = simulate_classes(
            problems,
            survey,
            nreplicates=nreplicates,
            config=config,
            errors=ErrorSources(**enabled),
            rng=rng,
        )
        frames.append(results.assign(added_error=source))

    out = pd.concat(frames, ignore_index=True)
    out["added_error"] = pd.Categorical(out["added_error"], categories=list(sources), ordered=True)
    return out


def stepwise_cv(
    stepwise_results: pd.DataFrame,
    nboot: int = 1000,
    *,
    rng: Optional[np.random.Generator] = None,
) -> pd.DataFrame:
    """
    Distribution of IQR-based CV estimates per stepwise label.

    Replicate totals of each step are resampled with replacement ``nboot`` times.

    Returns
    -------
    pd.DataFrame
        Columns added_error, b, cv_n, cv_biomass.
    """
    if nboot < 1:
        raise ValueError("nboot must be >= 1")
    rng = rng if rng is not None else np.random.default_rng()
    totals = replicate_totals(stepwise_results)

    labels = (
        list(stepwise_results["added_error"].cat.categories)
        if isinstance(stepwise_results["added_error"].dtype, pd.CategoricalDtype)
        else list(pd.unique(stepwise_results["added_error"]))
    )
    rows = []
    for label in labels:
        step = totals[totals["added_error"] == label]
        if step.empty:
            continue
        n_tot = step["n"].to_numpy(dtype=float)
        b_tot = step["biomass"].to_numpy(dtype=float)
        for b in range(1, nboot + 1):
            idx = rng.integers(0, len(step), size=len(step))
            rows.append((label, b, iqr_cv(n_tot[idx]), iqr_cv(b_tot[idx])))

    out = pd.DataFrame(rows, columns=["added_error", "b", "cv_n", "cv_biomass"])
    out["added_error"] = pd.Categorical(out["added_error"], categories=labels, ordered=True)
    return out
