"""Command-line entry point: ``atboot SURVEYDIR [options]``.

Runs the full analysis on one survey directory and writes the HTML report.
Parameters come from an optional JSON config file; command-line options
override it.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from .config import AnalysisConfig
from .pipeline import run_survey_analysis
from .report import write_report

logger = logging.getLogger("atboot.cli")


def _build_logger(verbose: bool) -> logging.Logger:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(levelname)s - %(message)s")
    return logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="atboot",
        description="Total uncertainty of an acoustic-trawl survey by geostatistical bootstrap.",
    )
    parser.add_argument("surveydir", type=Path, nargs="?", help="Raw survey directory.")
    parser.add_argument("--config", type=Path, help="JSON file with analysis parameters.")
    parser.add_argument("--survey-id", help="Survey label (default: directory name).")
    parser.add_argument("--resolution", type=float, help="Grid and binning resolution in km (default 10).")
    parser.add_argument("--classes", nargs="+", help="Scaling classes to model (default SS1).")
    parser.add_argument("--max-transect", type=int, help="Exclude transects numbered at or above this.")
    parser.add_argument("--nfit", type=int, help="Trial simulations per candidate distribution.")
    parser.add_argument("--nreplicates", type=int, help="Bootstrap replicates.")
    parser.add_argument("--stepwise-replicates", type=int, help="Bootstrap replicates per stepwise step.")
    parser.add_argument(
        "--stepwise",
        dest="run_stepwise",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run the stepwise error decomposition (default on).",
    )
    parser.add_argument("--seed", type=int, help="Random seed for a reproducible run.")
    parser.add_argument("--output", type=Path, help="HTML report path.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _config_from_args(args: argparse.Namespace) -> AnalysisConfig:
    overrides = {
        "surveydir": args.surveydir,
        "survey_id": args.survey_id,
        "resolution": args.resolution,
        "classes": args.classes,
        "max_transect": args.max_transect,
        "nfit": args.nfit,
        "nreplicates": args.nreplicates,
        "stepwise_replicates": args.stepwise_replicates,
        "run_stepwise": args.run_stepwise,
        "seed": args.seed,
        "output": args.output,
    }
    if args.config is not None:
        return AnalysisConfig.from_json(args.config, **overrides)
    if args.surveydir is None:
        raise ValueError("A survey directory or --config file is required.")
    return AnalysisConfig(**{k: v for k, v in overrides.items() if v is not None})


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    log = _build_logger(args.verbose)

    try:
        config = _config_from_args(args)
        result = run_survey_analysis(config)
        path = write_report(result)
    except Exception as exc:
        log.error(f"Analysis failed: {exc}")
        log.debug("Traceback", exc_info=True)
        return 1
    log.info(f"Done: {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
