"""Total uncertainty of acoustic-trawl fish surveys.

This package provides tools for:
- Projecting and gridding survey data
- Binning acoustic backscatter by scaling class
- Exponential variogram fitting and driving-distribution selection
- Non-negative conditional simulation of NASC fields
- Bootstrapping abundance and biomass at age
- Stepwise attribution of variance to error sources

Example usage:
    from atboot import AnalysisConfig, run_survey_analysis, write_report

    config = AnalysisConfig("surveydata/201207", classes=("SS1",), seed=1)
    result = run_survey_analysis(config)
    write_report(result)
"""

__version__ = "0.1.0"

# Survey data
from .survey_io import (
    SurveyData,
    SurveyFileError,
    preprocess_survey_data,
    read_survey_files,
)
from .aggregation import bin_acoustics

# Spatial model
from .variogram import EmpiricalVariogram, ExponentialVariogram, fit_exponential_variogram
from .distributions import DrivingDistribution, get_distribution, kl_divergence
from .simulation import ATBootstrapProblem, build_class_problems, nonneg_lusim

# Bootstrap
from .bootstrap import (
    ERROR_SOURCES,
    BootstrapConfig,
    ErrorSources,
    simulate_classes,
    summarize,
    summarize_totals,
)
from .stepwise import iqr_cv, stepwise_cv, stepwise_error

# Orchestration
from .config import AnalysisConfig
from .pipeline import AnalysisResult, run_survey_analysis
from .report import write_report

__all__ = [
    # Version
    "__version__",
    # Survey data
    "SurveyData",
    "SurveyFileError",
    "preprocess_survey_data",
    "read_survey_files",
    "bin_acoustics",
    # Spatial model
    "EmpiricalVariogram",
    "ExponentialVariogram",
    "fit_exponential_variogram",
    "DrivingDistribution",
    "get_distribution",
    "kl_divergence",
    "ATBootstrapProblem",
    "build_class_problems",
    "nonneg_lusim",
    # Bootstrap
    "ERROR_SOURCES",
    "BootstrapConfig",
    "ErrorSources",
    "simulate_classes",
    "summarize",
    "summarize_totals",
    "iqr_cv",
    "stepwise_cv",
    "stepwise_error",
    # Orchestration
    "AnalysisConfig",
    "AnalysisResult",
    "run_survey_analysis",
    "write_report",
]
