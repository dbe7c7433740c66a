"""Analysis parameters for one survey run.

``AnalysisConfig`` gathers the parameters of the analysis: which survey to
load and at what resolution, which scaling classes to model, variogram and
distribution-selection settings, bootstrap size and the biological/acoustic
constants. It can be read from a JSON file and overridden field by field.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .aggregation import DEFAULT_MAX_TRANSECT
from .bootstrap import BootstrapConfig
from .distributions import CANDIDATES, DEFAULT_CANDIDATES
from .units import KM_TO_NMI


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Parameters of a survey uncertainty analysis.

    Attributes
    ----------
    surveydir : Path
        Raw survey directory.
    survey_id : str
        Survey label used in the report (defaults to the directory name).
    resolution : float
        Spatial resolution (km) of the domain grid and of acoustic binning.
    classes : tuple of str
        Scaling classes to model.
    max_transect : int
        Transects numbered at or above this are excluded.
    nlags, maxlag : variogram binning (maxlag in km).
    nfit : int
        Trial simulations per candidate distribution.
    candidates : tuple of str
        Candidate driving distributions.
    nreplicates : int
        Bootstrap replicates for the total-uncertainty run.
    run_stepwise : bool
        Whether to run the stepwise error decomposition.
    stepwise_replicates, stepwise_nboot : stepwise sizes.
    target_species, ts_slope, ts_intercept, ts_intercept_sd, calibration_sd,
    trawl_neighbors, km_to_nmi : see :class:`atboot.bootstrap.BootstrapConfig`.
    seed : int | None
        Seed of the single random generator used for the whole run.
    output : Path | None
        HTML report path (defaults to ``<surveydir>/<survey_id>_report.html``).
    """

    surveydir: Path
    survey_id: str = ""
    resolution: float = 10.0
    classes: Tuple[str, ...] = ("SS1",)
    max_transect: int = DEFAULT_MAX_TRANSECT
    nlags: int = 10
    maxlag: float = 200.0
    nfit: int = 500
    candidates: Tuple[str, ...] = DEFAULT_CANDIDATES
    nreplicates: int = 500
    run_stepwise: bool = True
    stepwise_replicates: int = 100
    stepwise_nboot: int = 1000
    target_species: int = 21740
    ts_slope: float = 20.0
    ts_intercept: float = -66.0
    ts_intercept_sd: float = 0.14
    calibration_sd: float = 0.1
    trawl_neighbors: int = 4
    km_to_nmi: float = KM_TO_NMI
    seed: Optional[int] = None
    output: Optional[Path] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "surveydir", Path(self.surveydir))
        if not self.survey_id:
            object.__setattr__(self, "survey_id", self.surveydir.name)
        if isinstance(self.classes, str):
            object.__setattr__(self, "classes", (self.classes,))
        object.__setattr__(self, "classes", tuple(str(c) for c in self.classes))
        object.__setattr__(self, "candidates", tuple(self.candidates))
        if self.output is not None:
            object.__setattr__(self, "output", Path(self.output))

        if self.resolution <= 0.0:
            raise ValueError("resolution must be positive")
        if not self.classes:
            raise ValueError("at least one scaling class is required")
        if len(set(self.classes)) != len(self.classes):
            raise ValueError("scaling classes must be unique")
        if self.nlags < 1:
            raise ValueError("nlags must be >= 1")
        if self.maxlag <= 0.0:
            raise ValueError("maxlag must be positive")
        if self.nfit < 1:
            raise ValueError("nfit must be >= 1")
        unknown = [c for c in self.candidates if c not in CANDIDATES]
        if not self.candidates or unknown:
            raise ValueError(f"candidates must be a non-empty subset of {sorted(CANDIDATES)}")
        if self.nreplicates < 2:
            raise ValueError("nreplicates must be >= 2")
        if self.stepwise_replicates < 2:
            raise ValueError("stepwise_replicates must be >= 2")
        if self.stepwise_nboot < 1:
            raise ValueError("stepwise_nboot must be >= 1")
        # validates the biological/acoustic constants
        self.bootstrap_config()

    @property
    def report_path(self) -> Path:
        if self.output is not None:
            return self.output
        return self.surveydir / f"{self.survey_id}_report.html"

    def bootstrap_config(self) -> BootstrapConfig:
        return BootstrapConfig(
            target_species=self.target_species,
            ts_slope=self.ts_slope,
            ts_intercept=self.ts_intercept,
            ts_intercept_sd=self.ts_intercept_sd,
            calibration_sd=self.calibration_sd,
            trawl_neighbors=self.trawl_neighbors,
            km_to_nmi=self.km_to_nmi,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["surveydir"] = str(self.surveydir)
        out["output"] = str(self.output) if self.output is not None else None
        out["classes"] = list(self.classes)
        out["candidates"] = list(self.candidates)
        return out

    @classmethod
    def from_json(cls, path: Union[str, Path], **overrides: Any) -> "AnalysisConfig":
        """
        Read a config from JSON. Keyword overrides that are not None replace file values.

        Raises
        ------
        ValueError
            If the file holds keys that are not config fields.
        """
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must hold a JSON object.")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config key(s) in {path}: {unknown}")
        # paths in the file are relative to the file itself
        for key in ("surveydir", "output"):
            if data.get(key) is not None and not Path(data[key]).is_absolute():
                data[key] = Path(path).parent / data[key]
        data.update({k: v for k, v in overrides.items() if v is not None})
        if "surveydir" not in data:
            raise ValueError(f"Config file {path} does not name a surveydir.")
        return cls(**data)
