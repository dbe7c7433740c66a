"""End-to-end survey uncertainty analysis.

``run_survey_analysis`` chains the stages: preprocessing of the raw survey
directory at the analysis resolution, loading, scaling-class binning, one
simulation problem per class, the total-uncertainty bootstrap and (optionally)
the stepwise error decomposition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
import pandas as pd

from .aggregation import bin_acoustics
from .bootstrap import ERROR_SOURCES, simulate_classes, summarize, summarize_totals
from .config import AnalysisConfig
from .simulation import ATBootstrapProblem, build_class_problems
from .stepwise import stepwise_cv, stepwise_error
from .survey_io import SurveyData, preprocess_survey_data, read_survey_files

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Everything produced by one analysis run."""
    config: AnalysisConfig
    survey: SurveyData
    acoustics: pd.DataFrame
    problems: Dict[str, ATBootstrapProblem]
    results: pd.DataFrame
    summary: pd.DataFrame
    totals: Dict[str, float]
    stepwise: Optional[pd.DataFrame] = None
    stepwise_cv: Optional[pd.DataFrame] = None

    @property
    def n_ages(self) -> int:
        return int(self.results["age"].nunique())


def run_survey_analysis(config: AnalysisConfig, rng: Optional[np.random.Generator] = None) -> AnalysisResult:
    """
    Run the full analysis described by ``config``.

    Parameters
    ----------
    config : AnalysisConfig
    rng : np.random.Generator, optional
        Defaults to a generator seeded with ``config.seed``.

    Returns
    -------
    AnalysisResult
    """
    if rng is None:
        rng = np.random.default_rng(config.seed)

    logger.info(f"Survey {config.survey_id}: preprocessing at {config.resolution} km")
    preprocess_survey_data(config.surveydir, dx=config.resolution)
    survey = read_survey_files(config.surveydir)

    acoustics = bin_acoustics(
        survey.acoustics, config.classes, config.resolution, max_transect=config.max_transect
    )
    logger.info(f"Building simulation problems for class(es) {list(config.classes)}")
    problems = build_class_problems(
        acoustics,
        config.classes,
        survey.domain_coords,
        rng=rng,
        nlags=config.nlags,
        maxlag=config.maxlag,
        candidates=config.candidates,
        nfit=config.nfit,
    )

    boot = config.bootstrap_config()
    results = simulate_classes(
        problems, survey, nreplicates=config.nreplicates, config=boot, rng=rng
    )
    summary = summarize(results)
    totals = summarize_totals(results)
    logger.info(
        f"Total abundance {totals['n']:.4g} (CV {totals['n_cv']:.1f}%), "
        f"biomass {totals['biomass']:.4g} kg (CV {totals['biomass_cv']:.1f}%)"
    )

    result = AnalysisResult(
        config=config,
        survey=survey,
        acoustics=acoustics,
        problems=problems,
        results=results,
        summary=summary,
        totals=totals,
    )
    if config.run_stepwise:
        logger.info(f"Stepwise decomposition over {len(ERROR_SOURCES)} error sources")
        result.stepwise = stepwise_error(
            problems,
            survey,
            nreplicates=config.stepwise_replicates,
            config=boot,
            sources=ERROR_SOURCES,
            rng=rng,
        )
        result.stepwise_cv = stepwise_cv(result.stepwise, nboot=config.stepwise_nboot, rng=rng)
    return result
