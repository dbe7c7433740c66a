"""Self-contained HTML report of an analysis run."""

from __future__ import annotations

import base64
import html
import io
import logging
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import matplotlib.pyplot as plt

from .bootstrap import ERROR_SOURCES
from .pipeline import AnalysisResult
from .plots import (
    plot_age_violins,
    plot_simulated_fields,
    plot_stepwise_cv,
    plot_survey_samples,
    plot_variogram,
)
from .units import KILOGRAM, KILOTONNE, NAUTICAL_MILE, cell_area_nmi2, format_value_with_unit

logger = logging.getLogger(__name__)

_STYLE = """
body { font-family: sans-serif; max-width: 1100px; margin: 2em auto; color: #222; }
table { border-collapse: collapse; margin: 1em 0; }
th, td { border: 1px solid #ccc; padding: 4px 8px; text-align: right; }
img { max-width: 100%; }
"""


def _figure_to_data_url(fig, dpi: int = 100) -> str:
    """Render a figure to a base64 PNG data URL and close it."""
    buf = io.BytesIO()
    try:
        fig.savefig(buf, format="png", dpi=dpi, bbox_inches="tight")
    finally:
        plt.close(fig)
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def _img(fig, alt: str) -> str:
    return f'<img src="{_figure_to_data_url(fig)}" alt="{html.escape(alt)}">'


def render_report(result: AnalysisResult, rng: Optional[np.random.Generator] = None) -> str:
    """Build the HTML text of the report."""
    cfg = result.config
    rng = rng if rng is not None else np.random.default_rng(cfg.seed)
    survey = result.survey
    totals = result.totals
    biomass = format_value_with_unit(float(KILOGRAM.convert_to(totals["biomass"], KILOTONNE)), KILOTONNE, precision=1)
    cell = format_value_with_unit(
        cell_area_nmi2(survey.dx, km_to_nmi=cfg.km_to_nmi), NAUTICAL_MILE, squared=True
    )

    parts: List[str] = [
        "<!DOCTYPE html>",
        "<html><head><meta charset='utf-8'>",
        f"<title>{html.escape(cfg.survey_id)} survey uncertainty</title>",
        f"<style>{_STYLE}</style></head><body>",
        f"<h1>Survey {html.escape(cfg.survey_id)}: total uncertainty</h1>",
        "<p>"
        f"Scaling classes {', '.join(html.escape(c) for c in cfg.classes)} were binned at "
        f"{cfg.resolution:g} km and simulated on {len(survey.domain)} domain cells of {cell}. "
        f"Abundance and biomass at age were bootstrapped over {cfg.nreplicates} replicates "
        f"with every error source switched on.</p>",
        "<p>"
        f"Total abundance {totals['n']:.4g} fish (CV {totals['n_cv']:.1f}%); "
        f"total biomass {biomass} (CV {totals['biomass_cv']:.1f}%).</p>",
        "<h2>Survey samples</h2>",
        _img(plot_survey_samples(result.acoustics, survey.boundary, survey.trawl_locations), "Survey samples"),
    ]

    parts.append("<h2>Spatial models</h2>")
    for name, problem in result.problems.items():
        model = problem.variogram
        scores = ", ".join(f"{k}: {v:.3g}" for k, v in problem.kl_scores.items())
        parts.append(f"<h3>Class {html.escape(name)}</h3>")
        parts.append(
            f"<p>{len(problem.nasc)} binned samples. Exponential variogram: nugget {model.nugget:.4g}, "
            f"sill {model.sill:.4g}, range {model.range:.4g} km. Driving distribution "
            f"<b>{html.escape(problem.zdist.name)}</b> (mean KL divergence {html.escape(scores)}).</p>"
        )
        parts.append(_img(plot_variogram(problem), f"Variogram {name}"))
        parts.append(_img(plot_simulated_fields(problem, rng, boundary=survey.boundary), f"Simulations {name}"))

    parts.append("<h2>Abundance and biomass at age</h2>")
    parts.append(result.summary.to_html(index=False, float_format=lambda v: f"{v:.4g}"))
    parts.append(_img(plot_age_violins(result.results, "n", scale=1e6, ylabel="Abundance (millions)"), "Abundance"))
    parts.append(_img(plot_age_violins(result.results, "biomass", scale=1e6, ylabel="Biomass (kt)"), "Biomass"))

    if result.stepwise_cv is not None:
        parts.append("<h2>Stepwise error decomposition</h2>")
        parts.append(
            f"<p>Error sources were switched on one at a time in the order "
            f"{', '.join(ERROR_SOURCES)}, with {cfg.stepwise_replicates} replicates per step and "
            f"{cfg.stepwise_nboot} resamples of the replicate totals for the CV distribution.</p>"
        )
        medians = (
            result.stepwise_cv.groupby("added_error", observed=True)[["cv_n", "cv_biomass"]]
            .median()
            .reset_index()
        )
        parts.append(medians.to_html(index=False, float_format=lambda v: f"{v:.3g}"))
        parts.append(_img(plot_stepwise_cv(result.stepwise_cv, "cv_n", "Abundance CV (%)"), "Stepwise CV"))
        parts.append(_img(plot_stepwise_cv(result.stepwise_cv, "cv_biomass", "Biomass CV (%)"), "Stepwise CV"))

    parts.append("</body></html>")
    return "\n".join(parts)


def write_report(
    result: AnalysisResult,
    path: Optional[Union[str, Path]] = None,
    rng: Optional[np.random.Generator] = None,
) -> Path:
    """Write the HTML report to ``path`` (default ``config.report_path``)."""
    path = Path(path) if path is not None else result.config.report_path
    text = render_report(result, rng)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.info(f"Report written to {path}")
    return path
